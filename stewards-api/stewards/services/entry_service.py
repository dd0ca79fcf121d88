from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stewards.logging_config import get_logger
from stewards.models import ChecklistTask, ContractChecklistItem, ItemEntry, ItemEntryMedia
from stewards.services.result import Result

logger = get_logger("entry_service")


def get_or_create_entry(db: Session, item_id: str, inspector_id: str) -> ItemEntry:
    """One entry per (item, inspector)."""
    entry = (
        db.query(ItemEntry)
        .filter(ItemEntry.item_id == item_id, ItemEntry.inspector_id == inspector_id)
        .first()
    )
    if entry:
        return entry

    entry = ItemEntry(item_id=item_id, inspector_id=inspector_id)
    db.add(entry)
    try:
        db.commit()
    except IntegrityError:
        # concurrent create for the same pair
        db.rollback()
        entry = (
            db.query(ItemEntry)
            .filter(ItemEntry.item_id == item_id, ItemEntry.inspector_id == inspector_id)
            .first()
        )
        if entry is None:
            raise
        return entry
    db.refresh(entry)
    return entry


def save_remarks(db: Session, item_id: str, inspector_id: str, text: str) -> ItemEntry:
    """Append a remark line to the inspector's entry for the item."""
    entry = get_or_create_entry(db, item_id, inspector_id)
    text = (text or "").strip()
    if text:
        entry.remarks = f"{entry.remarks}\n{text}" if entry.remarks else text
        db.commit()
    return entry


def attach_media(
    db: Session,
    item_id: str,
    inspector_id: str,
    url: str,
    *,
    media_type: str = "PHOTO",
    caption: Optional[str] = None,
    task_id: Optional[str] = None,
    source_message_id: Optional[str] = None,
) -> ItemEntryMedia:
    """Record stored media on the entry. Re-attaching the same provider message is a no-op."""
    if source_message_id:
        existing = (
            db.query(ItemEntryMedia)
            .filter(ItemEntryMedia.source_message_id == source_message_id)
            .first()
        )
        if existing:
            return existing

    entry = get_or_create_entry(db, item_id, inspector_id)
    media = ItemEntryMedia(
        entry_id=entry.id,
        task_id=task_id,
        url=url,
        caption=caption,
        media_type=media_type.upper(),
        source_message_id=source_message_id,
    )
    db.add(media)
    if caption:
        entry.remarks = f"{entry.remarks}\n{caption}" if entry.remarks else caption
    db.commit()
    logger.info(
        "Media attached",
        extra={"context": {"entry_id": entry.id, "task_id": task_id, "media_type": media.media_type}},
    )
    return media


def complete_task(db: Session, task_id: str, inspector_id: str) -> Result[ChecklistTask]:
    """Mark a task completed; when all tasks of the item are done the item counts as entered."""
    task = db.query(ChecklistTask).filter(ChecklistTask.id == task_id).first()
    if not task:
        return Result.failure(f"Task {task_id} not found", "task_not_found")
    if task.status == "COMPLETED":
        return Result.success(task)

    entry = get_or_create_entry(db, task.item_id, inspector_id)
    task.status = "COMPLETED"
    task.entry_id = entry.id
    task.inspector_id = inspector_id
    db.flush()

    pending = (
        db.query(ChecklistTask)
        .filter(ChecklistTask.item_id == task.item_id, ChecklistTask.status != "COMPLETED")
        .count()
    )
    if pending == 0:
        item = db.query(ContractChecklistItem).filter(ContractChecklistItem.id == task.item_id).first()
        if item and item.entered_on is None:
            item.entered_on = datetime.now(timezone.utc)
            item.entered_by_id = inspector_id
    db.commit()
    logger.info(
        "Task completed",
        extra={"context": {"task_id": task_id, "item_id": task.item_id, "item_done": pending == 0}},
    )
    return Result.success(task)


CONDITIONS = ("GOOD", "FAIR", "UNSATISFACTORY", "UN_OBSERVABLE", "NOT_APPLICABLE")
CONDITION_LABELS = {
    "GOOD": "Good",
    "FAIR": "Fair",
    "UNSATISFACTORY": "Un-Satisfactory",
    "UN_OBSERVABLE": "Un-Observable",
    "NOT_APPLICABLE": "Not Applicable",
}
# Conditions that need a cause and a resolution before notes.
CONDITIONS_WITH_FINDINGS = ("FAIR", "UNSATISFACTORY")


def condition_for_option(option: Optional[int]) -> Optional[str]:
    """Menu number 1-5 -> condition code."""
    if option is None or not 1 <= option <= len(CONDITIONS):
        return None
    return CONDITIONS[option - 1]


def set_task_condition(db: Session, task_id: str, inspector_id: str, condition: str) -> Result[ChecklistTask]:
    if condition not in CONDITIONS:
        return Result.failure(f"Unknown condition {condition}", "invalid_condition")
    task = db.query(ChecklistTask).filter(ChecklistTask.id == task_id).first()
    if not task:
        return Result.failure(f"Task {task_id} not found", "task_not_found")

    entry = get_or_create_entry(db, task.item_id, inspector_id)
    task.condition = condition
    task.entry_id = entry.id
    task.inspector_id = inspector_id
    if condition not in CONDITIONS_WITH_FINDINGS:
        task.cause = None
        task.resolution = None
    db.commit()
    logger.info("Task condition set", extra={"context": {"task_id": task_id, "condition": condition}})
    return Result.success(task)


def save_task_finding(db: Session, task_id: str, field: str, text: str) -> Result[ChecklistTask]:
    """Store the cause or resolution text of a task."""
    if field not in ("cause", "resolution"):
        return Result.failure(f"Unknown finding field {field}", "invalid_field")
    text = (text or "").strip()
    if not text:
        return Result.failure(f"Empty {field}", "empty_text")
    task = db.query(ChecklistTask).filter(ChecklistTask.id == task_id).first()
    if not task:
        return Result.failure(f"Task {task_id} not found", "task_not_found")
    setattr(task, field, text)
    db.commit()
    return Result.success(task)
