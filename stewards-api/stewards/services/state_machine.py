from enum import Enum
from typing import Optional


class InspectionStep(str, Enum):
    NEED_WORK_ORDER = "need_work_order"
    NEED_LOCATION = "need_location"
    NEED_CHECKLIST_TASK = "need_checklist_task"
    COLLECTING_MEDIA_OR_NOTES = "collecting_media_or_notes"
    TASK_COMPLETE = "task_complete"


VALID_TRANSITIONS = {
    InspectionStep.NEED_WORK_ORDER: [InspectionStep.NEED_LOCATION],
    InspectionStep.NEED_LOCATION: [InspectionStep.NEED_CHECKLIST_TASK, InspectionStep.NEED_WORK_ORDER],
    InspectionStep.NEED_CHECKLIST_TASK: [
        InspectionStep.COLLECTING_MEDIA_OR_NOTES,
        InspectionStep.NEED_LOCATION,
        InspectionStep.NEED_WORK_ORDER,
    ],
    InspectionStep.COLLECTING_MEDIA_OR_NOTES: [
        InspectionStep.TASK_COMPLETE,
        InspectionStep.NEED_CHECKLIST_TASK,
        InspectionStep.NEED_LOCATION,
        InspectionStep.NEED_WORK_ORDER,
    ],
    InspectionStep.TASK_COMPLETE: [
        InspectionStep.COLLECTING_MEDIA_OR_NOTES,
        InspectionStep.NEED_LOCATION,
        InspectionStep.NEED_WORK_ORDER,
    ],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_step: InspectionStep, to_step: InspectionStep):
        self.from_step = from_step
        self.to_step = to_step
        super().__init__(f"Invalid transition: {from_step.value} -> {to_step.value}")


def can_transition(from_step: InspectionStep, to_step: InspectionStep) -> bool:
    """Check if transition is valid. Staying in the same step (re-prompt) is always allowed."""
    if from_step == to_step:
        return True
    allowed = VALID_TRANSITIONS.get(from_step, [])
    return to_step in allowed


def transition(from_step: InspectionStep, to_step: InspectionStep) -> InspectionStep:
    """Perform step transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_step, to_step):
        raise InvalidTransitionError(from_step, to_step)
    return to_step


def reset(current_step: InspectionStep) -> InspectionStep:
    """Return to job selection."""
    if current_step == InspectionStep.NEED_WORK_ORDER:
        return current_step
    return transition(current_step, InspectionStep.NEED_WORK_ORDER)


_STEP_REQUIREMENTS = {
    InspectionStep.NEED_WORK_ORDER: (),
    InspectionStep.NEED_LOCATION: ("work_order_id",),
    InspectionStep.NEED_CHECKLIST_TASK: ("work_order_id", "current_location"),
    InspectionStep.TASK_COMPLETE: ("work_order_id", "current_location"),
    InspectionStep.COLLECTING_MEDIA_OR_NOTES: ("work_order_id", "current_location", "current_task_id"),
}


def derive_step(session: Optional[dict]) -> InspectionStep:
    """Stored step when the session still holds its context, otherwise inferred from the filled fields."""
    session = session or {}
    raw = session.get("step")
    if raw:
        try:
            step = InspectionStep(raw)
        except ValueError:
            step = None
        if step is not None and all(session.get(name) for name in _STEP_REQUIREMENTS[step]):
            return step
    if not session.get("work_order_id"):
        return InspectionStep.NEED_WORK_ORDER
    if not session.get("current_location"):
        return InspectionStep.NEED_LOCATION
    if not session.get("current_task_id"):
        return InspectionStep.NEED_CHECKLIST_TASK
    return InspectionStep.COLLECTING_MEDIA_OR_NOTES
