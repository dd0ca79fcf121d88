"""Admin API endpoints for inspecting conversation state."""
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from stewards.config import settings
from stewards.database import get_db
from stewards.logging_config import get_logger
from stewards.schemas.session import LocationItem, LocationsResponse, SessionResponse
from stewards.services.identity_service import normalize_phone
from stewards.services.inspector_service import get_work_order
from stewards.services.location_service import format_locations, get_locations_with_status
from stewards.services.session_store import SessionStore, get_session_store

logger = get_logger("admin")

router = APIRouter(prefix="/admin", tags=["admin"])


def _require_admin_token(provided: Optional[str]) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not provided or provided != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


def _session_key(phone: str) -> str:
    key = normalize_phone(phone)
    if not key:
        raise HTTPException(status_code=400, detail="Invalid phone number")
    return key


@router.get("/sessions/{phone}", response_model=SessionResponse)
def get_session(
    phone: str,
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    store: SessionStore = Depends(get_session_store),
):
    _require_admin_token(x_admin_token)
    key = _session_key(phone)
    session = store.get(key)
    return SessionResponse(session_key=key, exists=session is not None, session=session)


@router.delete("/sessions/{phone}", response_model=SessionResponse)
def clear_session(
    phone: str,
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    store: SessionStore = Depends(get_session_store),
):
    _require_admin_token(x_admin_token)
    key = _session_key(phone)
    existed = store.has(key)
    with store.lock(key):
        store.delete(key)
    logger.info("Session cleared", extra={"context": {"session_key": key, "existed": existed}})
    return SessionResponse(session_key=key, exists=False, session=None)


@router.get("/work-orders/{work_order_id}/locations", response_model=LocationsResponse)
def get_work_order_locations(
    work_order_id: str,
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    db: Session = Depends(get_db),
):
    _require_admin_token(x_admin_token)
    if get_work_order(db, work_order_id) is None:
        raise HTTPException(status_code=404, detail="Work order not found")
    locations = get_locations_with_status(db, work_order_id)
    return LocationsResponse(
        work_order_id=work_order_id,
        locations=[
            LocationItem(name=loc.name, checklist_item_id=loc.checklist_item_id, completed=loc.completed)
            for loc in locations
        ],
        formatted=format_locations(locations),
    )
