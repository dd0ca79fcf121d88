"""Ordered fallback resolution: try strategies in order, first hit wins."""

from typing import Callable, Iterable, Optional, Tuple, TypeVar

from stewards.logging_config import get_logger

logger = get_logger("resolution")

T = TypeVar("T")

Strategy = Tuple[str, Callable[[], Optional[T]]]


def first_success(
    strategies: Iterable[Strategy],
    *,
    on_error: Optional[Callable[[str, Exception], None]] = None,
    context: Optional[dict] = None,
) -> Tuple[Optional[T], Optional[str]]:
    """
    Run named strategies in order and return (value, strategy_name) for the first truthy value.

    A strategy that raises is logged and counted as a miss so later tiers still run.
    Returns (None, None) when every tier misses.
    """
    for name, strategy in strategies:
        try:
            value = strategy()
        except Exception as exc:
            logger.warning(
                "Resolution tier failed",
                extra={"context": {**(context or {}), "tier": name, "error": str(exc)}},
            )
            if on_error is not None:
                on_error(name, exc)
            continue
        if value:
            return value, name
    return None, None
