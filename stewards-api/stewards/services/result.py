"""Outcome of a workflow operation that can fail for business reasons (missing task, closed job)."""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown") -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    def to_context(self) -> dict:
        """Log-friendly view for extra={"context": ...}."""
        if self.ok:
            return {"ok": True}
        return {"ok": False, "error": self.error, "code": self.error_code}
