from datetime import datetime, time, timedelta, timezone
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload

from stewards.logging_config import get_logger
from stewards.models import Inspector, WorkOrder, WorkOrderInspector

logger = get_logger("inspector_service")

ACTIVE_STATUSES = ("SCHEDULED", "STARTED")


def get_inspector_by_phone(db: Session, phone: str) -> Optional[Inspector]:
    """Exact-match lookup of an active inspector by stored mobile phone."""
    if not phone:
        return None
    return (
        db.query(Inspector)
        .filter(Inspector.mobile_phone == phone, Inspector.status == "ACTIVE")
        .first()
    )


def get_inspector(db: Session, inspector_id: str) -> Optional[Inspector]:
    return db.query(Inspector).filter(Inspector.id == inspector_id).first()


def get_assigned_inspector_ids(db: Session, work_order_id: str) -> List[str]:
    """Inspector ids assigned to a work order, first-assigned first."""
    rows = (
        db.query(WorkOrderInspector.inspector_id)
        .filter(WorkOrderInspector.work_order_id == work_order_id)
        .order_by(WorkOrderInspector.position, WorkOrderInspector.id)
        .all()
    )
    return [row[0] for row in rows]


def _day_bounds(day: datetime) -> tuple[datetime, datetime]:
    start = datetime.combine(day.date(), time.min, tzinfo=day.tzinfo or timezone.utc)
    return start, start + timedelta(days=1)


def get_today_jobs(db: Session, inspector_id: str, now: Optional[datetime] = None) -> List[WorkOrder]:
    """Scheduled or started work orders for the inspector, scheduled today, earliest first."""
    now = now or datetime.now(timezone.utc)
    start, end = _day_bounds(now)
    return (
        db.query(WorkOrder)
        .join(WorkOrderInspector, WorkOrderInspector.work_order_id == WorkOrder.id)
        .options(joinedload(WorkOrder.contract))
        .filter(
            WorkOrderInspector.inspector_id == inspector_id,
            WorkOrder.status.in_(ACTIVE_STATUSES),
            WorkOrder.scheduled_start >= start,
            WorkOrder.scheduled_start < end,
        )
        .order_by(WorkOrder.scheduled_start, WorkOrder.id)
        .all()
    )


def get_started_work_orders(db: Session, inspector_id: str) -> List[WorkOrder]:
    return (
        db.query(WorkOrder)
        .join(WorkOrderInspector, WorkOrderInspector.work_order_id == WorkOrder.id)
        .options(joinedload(WorkOrder.contract))
        .filter(WorkOrderInspector.inspector_id == inspector_id, WorkOrder.status == "STARTED")
        .order_by(WorkOrder.actual_start.desc(), WorkOrder.id)
        .all()
    )


def get_work_order(db: Session, work_order_id: str) -> Optional[WorkOrder]:
    return (
        db.query(WorkOrder)
        .options(joinedload(WorkOrder.contract))
        .filter(WorkOrder.id == work_order_id)
        .first()
    )


def start_work_order(db: Session, work_order: WorkOrder) -> WorkOrder:
    """Mark a work order STARTED. Restarting a started job keeps its original actual_start."""
    if work_order.status != "STARTED":
        work_order.status = "STARTED"
    if work_order.actual_start is None:
        work_order.actual_start = datetime.now(timezone.utc)
    db.commit()
    logger.info("Work order started", extra={"context": {"work_order_id": work_order.id}})
    return work_order


def format_jobs(jobs: List[WorkOrder]) -> List[str]:
    lines = []
    for index, job in enumerate(jobs):
        contract = job.contract
        address = (contract.property_address if contract else None) or "Unknown address"
        customer = (contract.customer_name if contract else None) or "Unknown customer"
        when = job.scheduled_start.strftime("%H:%M") if job.scheduled_start else "--:--"
        lines.append(f"[{index + 1}] {when} {customer} - {address}")
    return lines
