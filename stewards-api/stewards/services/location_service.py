"""Locations of a work order's checklist and checklist-item resolution."""

import re
import threading
import time
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stewards.config import settings
from stewards.logging_config import get_logger
from stewards.models import ContractChecklist, ContractChecklistItem, WorkOrder
from stewards.services.resolution import first_success

logger = get_logger("location_service")

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def normalize_location_name(name: Optional[str]) -> str:
    if not name:
        return ""
    return _NON_ALNUM_RE.sub(" ", name.lower()).strip()


class ChecklistLookupError(Exception):
    def __init__(self, work_order_id: str, location_name: str, cause: Exception):
        self.work_order_id = work_order_id
        self.location_name = location_name
        self.cause = cause
        super().__init__(f"Checklist lookup failed for {work_order_id}/{location_name}: {cause}")


@dataclass
class LocationStatus:
    name: str
    checklist_item_id: str
    item_ids: List[str]
    completed: bool


class ChecklistItemCache:
    """In-process TTL map of (work_order_id, normalized location) -> checklist item id."""

    def __init__(self, ttl_seconds: Optional[int] = None, max_entries: int = 5000):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.checklist_cache_ttl_seconds
        self.max_entries = max_entries
        self._entries: dict[tuple[str, str], dict] = {}
        self._lock = threading.Lock()

    def _purge(self, now_ts: float) -> None:
        if len(self._entries) < self.max_entries:
            return
        expired = [key for key, item in self._entries.items() if item.get("expires_at", 0) <= now_ts]
        for key in expired:
            self._entries.pop(key, None)
        # Still full: drop the oldest writes (dict keeps insertion order).
        overflow = len(self._entries) - self.max_entries + 1
        for key in list(self._entries)[:max(overflow, 0)]:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, work_order_id: str, location_name: str) -> Optional[str]:
        key = (work_order_id, normalize_location_name(location_name))
        now_ts = time.time()
        with self._lock:
            item = self._entries.get(key)
            if not item:
                return None
            if item["expires_at"] <= now_ts:
                self._entries.pop(key, None)
                return None
            return item["value"]

    def set(self, work_order_id: str, location_name: str, item_id: str) -> None:
        key = (work_order_id, normalize_location_name(location_name))
        now_ts = time.time()
        with self._lock:
            self._entries.pop(key, None)
            self._purge(now_ts)
            self._entries[key] = {"value": item_id, "expires_at": now_ts + self.ttl_seconds}

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


checklist_item_cache = ChecklistItemCache()


def _get_checklist_items(db: Session, work_order_id: str) -> List[ContractChecklistItem]:
    work_order = db.query(WorkOrder).filter(WorkOrder.id == work_order_id).first()
    if not work_order:
        return []
    checklist = (
        db.query(ContractChecklist)
        .filter(ContractChecklist.contract_id == work_order.contract_id)
        .first()
    )
    if not checklist:
        return []
    return (
        db.query(ContractChecklistItem)
        .filter(ContractChecklistItem.contract_checklist_id == checklist.id)
        .order_by(ContractChecklistItem.order, ContractChecklistItem.id)
        .all()
    )


def get_locations_with_status(
    db: Session,
    work_order_id: str,
    cache: Optional[ChecklistItemCache] = None,
) -> List[LocationStatus]:
    """Distinct locations in checklist order; a location is done when all of its items are entered."""
    cache = cache if cache is not None else checklist_item_cache
    groups: dict[str, List[ContractChecklistItem]] = {}
    for item in _get_checklist_items(db, work_order_id):
        groups.setdefault(item.name, []).append(item)

    locations = []
    for name, items in groups.items():
        completed = len(items) > 0 and all(item.entered_on is not None for item in items)
        locations.append(
            LocationStatus(
                name=name,
                checklist_item_id=items[0].id,
                item_ids=[item.id for item in items],
                completed=completed,
            )
        )
        cache.set(work_order_id, name, items[0].id)
    return locations


def format_locations(locations: List[LocationStatus]) -> List[str]:
    return [
        f"[{index + 1}] {location.name}" + (" (Done)" if location.completed else "")
        for index, location in enumerate(locations)
    ]


def build_locations_formatted(db: Session, work_order_id: str) -> List[str]:
    return format_locations(get_locations_with_status(db, work_order_id))


def match_location(locations: List[LocationStatus], text: Optional[str]) -> Optional[LocationStatus]:
    target = normalize_location_name(text)
    if not target:
        return None
    for location in locations:
        if normalize_location_name(location.name) == target:
            return location
    return None


def resolve_checklist_item_id(
    db: Session,
    work_order_id: Optional[str],
    location_name: Optional[str],
    cache: Optional[ChecklistItemCache] = None,
) -> Optional[str]:
    """
    Cached item id for the location, else the first matching item of the work order's checklist.

    Returns None only when the checklist was read and nothing matched. When no tier
    produced an answer because one of them failed, raises ChecklistLookupError so
    callers never mistake an outage for a stale location.
    """
    if not work_order_id or not normalize_location_name(location_name):
        return None
    cache = cache if cache is not None else checklist_item_cache

    target = normalize_location_name(location_name)
    failures: List[Exception] = []

    def _from_checklist() -> Optional[str]:
        for item in _get_checklist_items(db, work_order_id):
            if normalize_location_name(item.name) == target:
                cache.set(work_order_id, location_name, item.id)
                return item.id
        return None

    def _on_error(tier: str, exc: Exception) -> None:
        failures.append(exc)
        if isinstance(exc, SQLAlchemyError):
            db.rollback()

    item_id, _ = first_success(
        [
            ("cache", lambda: cache.get(work_order_id, location_name)),
            ("checklist", _from_checklist),
        ],
        on_error=_on_error,
        context={"work_order_id": work_order_id},
    )
    if item_id:
        return item_id
    if failures:
        raise ChecklistLookupError(work_order_id, location_name, failures[-1])

    logger.info(
        "No checklist item for location",
        extra={"context": {"work_order_id": work_order_id, "location": location_name}},
    )
    return None
