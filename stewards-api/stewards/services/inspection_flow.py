"""WhatsApp inspection workflow.

One inbound event moves the conversation at most one step:
job -> location -> checklist task -> condition, media and notes -> task complete.
Handlers for the same phone are serialized by the session store lock; the
reply goes out after the lock is released and never rolls state back.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from stewards.logging_config import get_logger
from stewards.services.entry_service import (
    CONDITION_LABELS,
    CONDITIONS,
    CONDITIONS_WITH_FINDINGS,
    attach_media,
    complete_task,
    condition_for_option,
    save_remarks,
    save_task_finding,
    set_task_condition,
)
from stewards.services.identity_service import resolve_inspector_id
from stewards.services.inspector_service import (
    format_jobs,
    get_started_work_orders,
    get_today_jobs,
    get_work_order,
    start_work_order,
)
from stewards.services.location_service import (
    format_locations,
    get_locations_with_status,
    match_location,
    resolve_checklist_item_id,
)
from stewards.services.media_classifier import MediaReference, extract_media_reference, has_media
from stewards.services.media_service import (
    MediaDownloadError,
    MediaStorage,
    get_media_storage,
    store_inbound_media,
)
from stewards.services.notifier import NotificationError, send_whatsapp_message
from stewards.services.session_store import SessionStore
from stewards.services.state_machine import InspectionStep, derive_step, reset, transition
from stewards.services.task_service import format_tasks, get_tasks_for_item

logger = get_logger("inspection_flow")

MSG_UNKNOWN_INSPECTOR = (
    "Sorry, this number is not registered as an active inspector. Please contact the office."
)
MSG_NO_JOBS = "You have no inspection jobs scheduled for today."
MSG_SELECT_JOB_FIRST = "Please select a job first before uploading media."
MSG_MEDIA_FAILED = "Sorry, I couldn't save that media. Please send it again."
MSG_LOCATION_NOT_FOUND = "I couldn't find a matching location. Please reply with the number shown:"
MSG_WHICH_LOCATION = "Which location should I attach this photo to?"
MSG_TASK_NOT_FOUND = "Please reply with the number of a task:"

WORK_ORDER_FIELDS = (
    "work_order_id",
    "customer_name",
    "property_address",
)
LOCATION_FIELDS = ("current_location", "current_checklist_item_id")
TASK_FIELDS = ("current_task_id", "current_task_name", "task_stage")

# Sub-stages of COLLECTING_MEDIA_OR_NOTES, in order. Cause and resolution only follow FAIR/UNSATISFACTORY.
STAGE_CONDITION = "condition"
STAGE_CAUSE = "cause"
STAGE_RESOLUTION = "resolution"
STAGE_NOTES = "notes"

CONDITION_OPTIONS = [f"[{index + 1}] {CONDITION_LABELS[code]}" for index, code in enumerate(CONDITIONS)]
_CONDITION_PROMPT = "\n".join(
    ["Set the condition for this task:", *CONDITION_OPTIONS, "", "Reply 1-5 to set the condition."]
)
MSG_NOTES_HINT = "Send photos, videos or notes, or reply [1] to mark complete, [2] to go back."
STAGE_PROMPTS = {
    STAGE_CONDITION: _CONDITION_PROMPT,
    STAGE_CAUSE: "Please describe the cause of this issue.",
    STAGE_RESOLUTION: "Please describe the resolution.",
    STAGE_NOTES: MSG_NOTES_HINT,
}

_OPTION_RE = re.compile(r"^(?:option\s*)?\[?\s*(\d{1,3})\s*\]?\s*[.)]?$", re.IGNORECASE)
BACK_WORDS = {"back", "go back", "b"}
RESET_WORDS = {"jobs", "menu", "restart"}
DONE_WORDS = {"done", "complete", "completed"}

Notifier = Callable[[str, str], object]


@dataclass
class InboundEvent:
    session_key: str
    phone: str
    message_id: Optional[str] = None
    text: str = ""
    payload: dict = field(default_factory=dict)
    timestamp: Optional[str] = None


@dataclass
class StepResult:
    reply: Optional[str]
    next_step: InspectionStep
    updates: dict = field(default_factory=dict)


@dataclass
class FlowOutcome:
    session_key: str
    step: Optional[InspectionStep]
    reply: Optional[str]
    delivered: bool = False
    inspector_id: Optional[str] = None


@dataclass
class FlowContext:
    db: Session
    store: SessionStore
    event: InboundEvent
    session: dict
    inspector_id: str
    storage: Optional[MediaStorage]
    step: InspectionStep
    option: Optional[int]
    command: str
    media: bool


def parse_option(text: Optional[str]) -> Optional[int]:
    """'1', '[1]', '1.', 'option 1' -> 1."""
    match = _OPTION_RE.match((text or "").strip())
    if not match:
        return None
    return int(match.group(1))


def _clear(*groups) -> dict:
    return {name: None for group in groups for name in group}


def _lines(header: str, lines: List[str], footer: Optional[str] = None) -> str:
    parts = [header, "", *lines]
    if footer:
        parts.extend(["", footer])
    return "\n".join(parts)


def _jobs_reply(ctx: FlowContext) -> str:
    jobs = get_today_jobs(ctx.db, ctx.inspector_id)
    if not jobs:
        return MSG_NO_JOBS
    name = ctx.session.get("inspector_name") or "there"
    return _lines(
        f"Hi {name}, here are your jobs for today:",
        format_jobs(jobs),
        "Reply with the job number to start.",
    )


def _locations_reply(ctx: FlowContext, work_order_id: str, header: str = "Please select a location:") -> str:
    locations = get_locations_with_status(ctx.db, work_order_id)
    if not locations:
        return "This job has no checklist locations yet. Reply 'jobs' to pick another job."
    return _lines(header, format_locations(locations))


def _tasks_reply(ctx: FlowContext, item_id: str, header: str) -> str:
    tasks = get_tasks_for_item(ctx.db, item_id)
    return _lines(header, format_tasks(tasks))


def _current_item_id(ctx: FlowContext) -> Optional[str]:
    return ctx.session.get("current_checklist_item_id") or resolve_checklist_item_id(
        ctx.db,
        ctx.session.get("work_order_id"),
        ctx.session.get("current_location"),
    )


def _save_inbound_media(ctx: FlowContext, item_id: str, task_id: Optional[str]) -> Optional[str]:
    """Store and attach the event's media. Returns an error reply on failure, None on success."""
    reference: Optional[MediaReference] = extract_media_reference(ctx.event.payload)
    if reference is None:
        logger.warning(
            "Media payload without a fetchable location",
            extra={"context": {"session_key": ctx.event.session_key, "message_id": ctx.event.message_id}},
        )
        return MSG_MEDIA_FAILED

    storage = ctx.storage or get_media_storage()
    try:
        url = store_inbound_media(
            reference,
            storage,
            work_order_id=ctx.session.get("work_order_id"),
            location=ctx.session.get("current_location"),
            message_id=ctx.event.message_id,
        )
    except (MediaDownloadError, OSError) as exc:
        logger.warning(
            "Media download/storage failed",
            extra={"context": {"session_key": ctx.event.session_key, "error": str(exc)}},
        )
        return MSG_MEDIA_FAILED

    attach_media(
        ctx.db,
        item_id,
        ctx.inspector_id,
        url,
        media_type="VIDEO" if reference.media_type == "video" else "PHOTO",
        caption=reference.caption,
        task_id=task_id,
        source_message_id=ctx.event.message_id,
    )
    return None


def _handle_reset(ctx: FlowContext) -> StepResult:
    return StepResult(
        reply=_jobs_reply(ctx),
        next_step=reset(ctx.step),
        updates=_clear(WORK_ORDER_FIELDS, LOCATION_FIELDS, TASK_FIELDS),
    )


def _handle_need_work_order(ctx: FlowContext) -> StepResult:
    if ctx.media:
        return StepResult(MSG_SELECT_JOB_FIRST, InspectionStep.NEED_WORK_ORDER)

    jobs = get_today_jobs(ctx.db, ctx.inspector_id)
    if ctx.option is None or not 1 <= ctx.option <= len(jobs):
        return StepResult(_jobs_reply(ctx), InspectionStep.NEED_WORK_ORDER)

    job = start_work_order(ctx.db, jobs[ctx.option - 1])
    contract = job.contract
    address = contract.property_address if contract else None
    updates = {
        **_clear(LOCATION_FIELDS, TASK_FIELDS),
        "work_order_id": job.id,
        "customer_name": contract.customer_name if contract else None,
        "property_address": address,
    }
    header = f"Starting inspection at {address or 'the property'}.\n\nPlease select a location:"
    return StepResult(_locations_reply(ctx, job.id, header), InspectionStep.NEED_LOCATION, updates)


def _handle_need_location(ctx: FlowContext) -> StepResult:
    work_order_id = ctx.session["work_order_id"]
    if ctx.command in BACK_WORDS:
        return StepResult(
            _jobs_reply(ctx),
            InspectionStep.NEED_WORK_ORDER,
            _clear(WORK_ORDER_FIELDS, LOCATION_FIELDS, TASK_FIELDS),
        )

    locations = get_locations_with_status(ctx.db, work_order_id)
    if ctx.media:
        return StepResult(_lines(MSG_WHICH_LOCATION, format_locations(locations)), InspectionStep.NEED_LOCATION)

    location = None
    if ctx.option is not None:
        if 1 <= ctx.option <= len(locations):
            location = locations[ctx.option - 1]
    else:
        location = match_location(locations, ctx.event.text)

    if location is None:
        return StepResult(_lines(MSG_LOCATION_NOT_FOUND, format_locations(locations)), InspectionStep.NEED_LOCATION)

    item_id = resolve_checklist_item_id(ctx.db, work_order_id, location.name) or location.checklist_item_id
    return StepResult(
        _tasks_reply(ctx, item_id, f"{location.name}: please select a task:"),
        InspectionStep.NEED_CHECKLIST_TASK,
        {
            **_clear(TASK_FIELDS),
            "current_location": location.name,
            "current_checklist_item_id": item_id,
        },
    )


def _handle_need_checklist_task(ctx: FlowContext) -> StepResult:
    location = ctx.session.get("current_location")
    item_id = _current_item_id(ctx)
    if not item_id:
        return StepResult(
            _locations_reply(ctx, ctx.session["work_order_id"], MSG_LOCATION_NOT_FOUND),
            InspectionStep.NEED_LOCATION,
            _clear(LOCATION_FIELDS, TASK_FIELDS),
        )

    tasks = get_tasks_for_item(ctx.db, item_id)
    if ctx.command in BACK_WORDS or ctx.option == len(tasks) + 1:
        return StepResult(
            _locations_reply(ctx, ctx.session["work_order_id"]),
            InspectionStep.NEED_LOCATION,
            _clear(LOCATION_FIELDS, TASK_FIELDS),
        )

    if ctx.media:
        error = _save_inbound_media(ctx, item_id, task_id=None)
        reply = error or _lines(f"Saved to {location}. Please select a task:", format_tasks(tasks))
        return StepResult(reply, ctx.step, {"current_checklist_item_id": item_id})

    if ctx.option is None or not 1 <= ctx.option <= len(tasks):
        return StepResult(_lines(MSG_TASK_NOT_FOUND, format_tasks(tasks)), ctx.step, {"current_checklist_item_id": item_id})

    task = tasks[ctx.option - 1]
    reply = f"{location} - {task.name}\n\n{_CONDITION_PROMPT}\nYou can send photos, videos or notes at any time."
    return StepResult(
        reply,
        InspectionStep.COLLECTING_MEDIA_OR_NOTES,
        {
            "current_checklist_item_id": item_id,
            "current_task_id": task.id,
            "current_task_name": task.name,
            "task_stage": STAGE_CONDITION,
        },
    )


def _back_to_tasks(ctx: FlowContext, item_id: str, header: str) -> StepResult:
    return StepResult(
        _tasks_reply(ctx, item_id, header),
        InspectionStep.NEED_CHECKLIST_TASK,
        _clear(TASK_FIELDS),
    )


def _handle_condition(ctx: FlowContext, item_id: str, task_id: str) -> StepResult:
    condition = condition_for_option(ctx.option)
    if condition is None:
        return StepResult(_CONDITION_PROMPT, InspectionStep.COLLECTING_MEDIA_OR_NOTES)

    result = set_task_condition(ctx.db, task_id, ctx.inspector_id, condition)
    if not result.ok:
        logger.warning(
            "Setting task condition failed",
            extra={"context": {"task_id": task_id, **result.to_context()}},
        )
        return _back_to_tasks(ctx, item_id, MSG_TASK_NOT_FOUND)

    stage = STAGE_CAUSE if condition in CONDITIONS_WITH_FINDINGS else STAGE_NOTES
    return StepResult(
        f"Condition saved: {CONDITION_LABELS[condition]}.\n\n{STAGE_PROMPTS[stage]}",
        InspectionStep.COLLECTING_MEDIA_OR_NOTES,
        {"task_stage": stage},
    )


def _handle_collecting(ctx: FlowContext) -> StepResult:
    item_id = _current_item_id(ctx)
    task_id = ctx.session.get("current_task_id")
    task_name = ctx.session.get("current_task_name") or "this task"
    if not item_id or not task_id:
        return _handle_need_checklist_task(ctx)
    stage = ctx.session.get("task_stage")
    if stage not in STAGE_PROMPTS:
        stage = STAGE_NOTES

    if ctx.media:
        error = _save_inbound_media(ctx, item_id, task_id=task_id)
        reply = error or f"Saved for {task_name}.\n\n{STAGE_PROMPTS[stage]}"
        return StepResult(reply, InspectionStep.COLLECTING_MEDIA_OR_NOTES)

    if stage == STAGE_CONDITION and ctx.option is not None:
        return _handle_condition(ctx, item_id, task_id)

    if (stage == STAGE_NOTES and ctx.option == 1) or ctx.command in DONE_WORDS:
        result = complete_task(ctx.db, task_id, ctx.inspector_id)
        if not result.ok:
            logger.warning(
                "Task completion failed",
                extra={"context": {"task_id": task_id, **result.to_context()}},
            )
            return _back_to_tasks(ctx, item_id, MSG_TASK_NOT_FOUND)
        return StepResult(
            _tasks_reply(ctx, item_id, f"{task_name} marked complete. Next task:"),
            InspectionStep.TASK_COMPLETE,
            _clear(TASK_FIELDS),
        )

    if (stage == STAGE_NOTES and ctx.option == 2) or ctx.command in BACK_WORDS:
        return _back_to_tasks(ctx, item_id, "Please select a task:")

    # Any other number is a mistyped menu choice, never a note.
    if ctx.option is not None:
        return StepResult(STAGE_PROMPTS[stage], InspectionStep.COLLECTING_MEDIA_OR_NOTES)

    text = (ctx.event.text or "").strip()
    if not text:
        return StepResult(STAGE_PROMPTS[stage], InspectionStep.COLLECTING_MEDIA_OR_NOTES)

    if stage in (STAGE_CAUSE, STAGE_RESOLUTION):
        save_task_finding(ctx.db, task_id, stage, text)
        next_stage = STAGE_RESOLUTION if stage == STAGE_CAUSE else STAGE_NOTES
        return StepResult(
            f"{stage.capitalize()} saved.\n\n{STAGE_PROMPTS[next_stage]}",
            InspectionStep.COLLECTING_MEDIA_OR_NOTES,
            {"task_stage": next_stage},
        )

    save_remarks(ctx.db, item_id, ctx.inspector_id, text)
    return StepResult(
        f"Noted for {task_name}.\n\n{STAGE_PROMPTS[stage]}",
        InspectionStep.COLLECTING_MEDIA_OR_NOTES,
    )


STEP_HANDLERS = {
    InspectionStep.NEED_WORK_ORDER: _handle_need_work_order,
    InspectionStep.NEED_LOCATION: _handle_need_location,
    InspectionStep.NEED_CHECKLIST_TASK: _handle_need_checklist_task,
    InspectionStep.COLLECTING_MEDIA_OR_NOTES: _handle_collecting,
    InspectionStep.TASK_COMPLETE: _handle_need_checklist_task,
}


def recover_context(db: Session, store: SessionStore, session_key: str, session: dict, inspector_id: str) -> dict:
    """
    Repair a stale session or adopt the inspector's single started job. Not a step transition.

    Only a lookup that completed without a match drops the location; a failing lookup
    raises ChecklistLookupError and leaves the session untouched.
    """
    work_order_id = session.get("work_order_id")
    if work_order_id:
        work_order = get_work_order(db, work_order_id)
        if work_order is None or work_order.status in ("CANCELLED", "COMPLETED"):
            logger.info(
                "Dropping stale work order from session",
                extra={"context": {"session_key": session_key, "work_order_id": work_order_id}},
            )
            return store.merge(
                session_key,
                {**_clear(WORK_ORDER_FIELDS, LOCATION_FIELDS, TASK_FIELDS), "step": None},
            )
        if session.get("current_location") and not resolve_checklist_item_id(
            db, work_order_id, session["current_location"]
        ):
            return store.merge(session_key, {**_clear(LOCATION_FIELDS, TASK_FIELDS), "step": None})
        return session

    # An explicit step means the inspector navigated here; only fresh sessions adopt a job.
    if session.get("step"):
        return session

    started = get_started_work_orders(db, inspector_id)
    if len(started) != 1:
        return session
    job = started[0]
    contract = job.contract
    logger.info(
        "Recovered started work order",
        extra={"context": {"session_key": session_key, "work_order_id": job.id}},
    )
    return store.merge(
        session_key,
        {
            "work_order_id": job.id,
            "customer_name": contract.customer_name if contract else None,
            "property_address": contract.property_address if contract else None,
            "step": InspectionStep.NEED_LOCATION.value,
        },
    )


def _deliver(notifier: Notifier, phone: str, reply: Optional[str], session_key: str) -> bool:
    if not reply:
        return False
    try:
        notifier(phone, reply)
        return True
    except NotificationError as exc:
        logger.error(
            "Reply delivery failed",
            extra={"context": {"session_key": session_key, "status": exc.status_code, "error": exc.body}},
        )
        return False


def handle_inbound_event(
    db: Session,
    store: SessionStore,
    event: InboundEvent,
    *,
    notifier: Optional[Notifier] = None,
    storage: Optional[MediaStorage] = None,
) -> FlowOutcome:
    key = event.session_key
    with store.lock(key):
        session = store.get(key)
        if session is None:
            session = store.merge(key, {"phone_number": event.phone, "channel": "whatsapp"})
            logger.info("Session created", extra={"context": {"session_key": key}})
        elif event.message_id and session.get("last_message_id") == event.message_id:
            logger.info(
                "Message already applied to session",
                extra={"context": {"session_key": key, "message_id": event.message_id}},
            )
            return FlowOutcome(session_key=key, step=derive_step(session), reply=None)

        inspector_id = resolve_inspector_id(db, store, key, session, phone=event.phone)
        if not inspector_id:
            logger.info("Unresolved inspector", extra={"context": {"session_key": key}})
            outcome = FlowOutcome(session_key=key, step=None, reply=MSG_UNKNOWN_INSPECTOR)
        else:
            session = recover_context(db, store, key, store.get(key) or {}, inspector_id)
            current = derive_step(session)
            command = (event.text or "").strip().lower()
            ctx = FlowContext(
                db=db,
                store=store,
                event=event,
                session=session,
                inspector_id=inspector_id,
                storage=storage,
                step=current,
                option=parse_option(event.text),
                command=command,
                media=has_media(event.payload),
            )

            if command in RESET_WORDS:
                result = _handle_reset(ctx)
            else:
                result = STEP_HANDLERS[current](ctx)

            next_step = transition(current, result.next_step)
            store.merge(
                key,
                {**result.updates, "step": next_step.value, "last_message_id": event.message_id},
            )
            if next_step != current:
                logger.info(
                    "Step transition",
                    extra={"context": {"session_key": key, "from": current.value, "to": next_step.value}},
                )
            outcome = FlowOutcome(session_key=key, step=next_step, reply=result.reply, inspector_id=inspector_id)

    outcome.delivered = _deliver(notifier or send_whatsapp_message, event.phone, outcome.reply, key)
    return outcome
