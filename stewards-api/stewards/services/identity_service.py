"""Resolve the inspector behind an inbound WhatsApp conversation.

Tiers, first hit wins:
  1. inspector_id already cached in the session (no I/O)
  2. directory lookup by phone, as received and with the leading "+" toggled
  3. first inspector assigned to the session's work order
A resolved id is written back to the session and is authoritative from then on.
"""

from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stewards.logging_config import get_logger
from stewards.services.inspector_service import (
    get_assigned_inspector_ids,
    get_inspector,
    get_inspector_by_phone,
)
from stewards.services.resolution import first_success
from stewards.services.session_store import SessionStore

logger = get_logger("identity_service")


def normalize_phone(raw: Optional[str]) -> str:
    """Canonical session key: digits only, no leading zeros, no WhatsApp suffix."""
    if not raw:
        return ""
    value = str(raw).split("@", 1)[0]
    value = value.replace(" ", "").replace("+", "").replace("-", "")
    value = "".join(ch for ch in value if ch.isdigit())
    return value.lstrip("0")


def phone_candidates(phone: Optional[str]) -> List[str]:
    """The number as received, then the same number with the leading '+' toggled."""
    if not phone:
        return []
    phone = phone.strip()
    alternate = phone[1:] if phone.startswith("+") else f"+{phone}"
    candidates = [phone]
    if alternate and alternate != "+" and alternate not in candidates:
        candidates.append(alternate)
    return candidates


def _rollback_on_db_error(db: Session):
    def _handler(tier: str, exc: Exception) -> None:
        if isinstance(exc, SQLAlchemyError):
            db.rollback()

    return _handler


def resolve_inspector_id(
    db: Session,
    store: SessionStore,
    session_key: str,
    session: Optional[dict],
    *,
    work_order_id: Optional[str] = None,
    phone: Optional[str] = None,
) -> Optional[str]:
    session = session or {}
    cached = session.get("inspector_id")
    if cached:
        return cached

    def _by_phone(candidate: str):
        def _lookup() -> Optional[str]:
            inspector = get_inspector_by_phone(db, candidate)
            if not inspector:
                return None
            store.merge(
                session_key,
                {
                    "inspector_id": inspector.id,
                    "inspector_name": inspector.name,
                    "inspector_phone": inspector.mobile_phone,
                },
            )
            return inspector.id

        return _lookup

    def _by_work_order() -> Optional[str]:
        target = work_order_id or session.get("work_order_id")
        if not target:
            return None
        assigned = get_assigned_inspector_ids(db, target)
        if not assigned:
            return None
        inspector_id = assigned[0]
        updates = {"inspector_id": inspector_id}
        inspector = get_inspector(db, inspector_id)
        if inspector:
            updates["inspector_name"] = inspector.name
        store.merge(session_key, updates)
        logger.info(
            "Inspector resolved from work order assignment",
            extra={"context": {"session_key": session_key, "work_order_id": target}},
        )
        return inspector_id

    tiers = [(f"phone:{candidate}", _by_phone(candidate)) for candidate in phone_candidates(phone)]
    tiers.append(("work_order", _by_work_order))

    inspector_id, tier = first_success(
        tiers,
        on_error=_rollback_on_db_error(db),
        context={"session_key": session_key},
    )
    if inspector_id:
        logger.info(
            "Inspector resolved",
            extra={"context": {"session_key": session_key, "tier": tier}},
        )
    return inspector_id
