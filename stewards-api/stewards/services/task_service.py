from typing import List

from sqlalchemy.orm import Session

from stewards.models import ChecklistTask


def get_tasks_for_item(db: Session, item_id: str) -> List[ChecklistTask]:
    return (
        db.query(ChecklistTask)
        .filter(ChecklistTask.item_id == item_id)
        .order_by(ChecklistTask.order, ChecklistTask.id)
        .all()
    )


def format_tasks(tasks: List[ChecklistTask]) -> List[str]:
    """Numbered task lines followed by a final 'Go back' option."""
    lines = [
        f"[{index + 1}] {task.name}" + (" (Done)" if task.status == "COMPLETED" else "")
        for index, task in enumerate(tasks)
    ]
    lines.append(f"[{len(tasks) + 1}] Go back")
    return lines
