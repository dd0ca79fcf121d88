from itertools import count
from unittest.mock import Mock, patch

import pytest
from sqlalchemy.exc import OperationalError

from stewards.models import ChecklistTask, ContractChecklistItem, ItemEntry, ItemEntryMedia
from stewards.services.inspection_flow import (
    MSG_LOCATION_NOT_FOUND,
    MSG_MEDIA_FAILED,
    MSG_SELECT_JOB_FIRST,
    MSG_UNKNOWN_INSPECTOR,
    InboundEvent,
    handle_inbound_event,
    parse_option,
)
from stewards.services.location_service import ChecklistLookupError, checklist_item_cache
from stewards.services.media_service import MediaDownloadError
from stewards.services.notifier import NotificationError
from stewards.services.state_machine import InspectionStep

KEY = "6591234567"
PHONE = "+6591234567"

_ids = count(1)


def _event(text="", payload=None, message_id=None, phone=PHONE, key=KEY):
    return InboundEvent(
        session_key=key,
        phone=phone,
        message_id=message_id or f"wamid-{next(_ids)}",
        text=text,
        payload=payload if payload is not None else {"type": "chat", "body": text},
    )


@pytest.fixture
def notifier():
    return Mock()


@pytest.fixture
def send(db, store, notifier):
    def _send(text="", **kwargs):
        return handle_inbound_event(db, store, _event(text, **kwargs), notifier=notifier)

    return _send


class TestParseOption:
    def test_numbered_forms(self):
        assert parse_option("1") == 1
        assert parse_option(" [2] ") == 2
        assert parse_option("3.") == 3
        assert parse_option("Option 4") == 4

    def test_non_numbers(self):
        assert parse_option("kitchen") is None
        assert parse_option("1 kitchen") is None
        assert parse_option("") is None


class TestFirstContact:
    def test_unknown_session_selects_first_location(self, db, store, notifier, inspection):
        event = _event("1", message_id="wamid-first")

        outcome = handle_inbound_event(db, store, event, notifier=notifier)

        session = store.get(KEY)
        assert session["inspector_id"] == "insp-x"
        assert session["work_order_id"] == "wo-1"
        assert session["current_location"] == "Kitchen"
        assert session["current_checklist_item_id"] == "item-kitchen"
        assert session["step"] == InspectionStep.NEED_CHECKLIST_TASK.value
        assert outcome.step == InspectionStep.NEED_CHECKLIST_TASK
        assert outcome.delivered is True

        notifier.assert_called_once()
        phone, reply = notifier.call_args[0]
        assert phone == PHONE
        assert "[1] Walls" in reply
        assert "[3] Go back" in reply

    def test_unregistered_number(self, send, store, notifier, inspection):
        outcome = send("1", phone="+6511112222", key="6511112222")

        assert outcome.reply == MSG_UNKNOWN_INSPECTOR
        assert outcome.step is None
        session = store.get("6511112222")
        assert "inspector_id" not in session
        assert "step" not in session
        notifier.assert_called_once_with("+6511112222", MSG_UNKNOWN_INSPECTOR)

    def test_free_text_location(self, send, store, inspection):
        send("living room")
        session = store.get(KEY)
        assert session["current_location"] == "Living Room"
        assert session["current_checklist_item_id"] == "item-living"

    def test_unmatched_location_reprompts(self, send, store, inspection):
        outcome = send("Garage")
        assert outcome.step == InspectionStep.NEED_LOCATION
        assert outcome.reply.startswith(MSG_LOCATION_NOT_FOUND)
        assert "[2] Living Room" in outcome.reply
        assert "current_location" not in store.get(KEY)

    def test_out_of_range_location_reprompts(self, send, inspection):
        outcome = send("9")
        assert outcome.step == InspectionStep.NEED_LOCATION
        assert outcome.reply.startswith(MSG_LOCATION_NOT_FOUND)


class TestRedelivery:
    def test_same_message_applied_once(self, db, store, notifier, inspection):
        event = _event("1", message_id="wamid-dup")

        handle_inbound_event(db, store, event, notifier=notifier)
        second = handle_inbound_event(db, store, event, notifier=notifier)

        assert second.reply is None
        assert second.delivered is False
        assert store.get(KEY)["step"] == InspectionStep.NEED_CHECKLIST_TASK.value
        assert store.get(KEY).get("current_task_id") is None
        assert notifier.call_count == 1


class TestDeliveryFailure:
    def test_send_failure_keeps_state(self, db, store, inspection):
        notifier = Mock(side_effect=NotificationError(500, "gateway down"))

        outcome = handle_inbound_event(db, store, _event("1"), notifier=notifier)

        assert outcome.delivered is False
        assert outcome.reply is not None
        assert store.get(KEY)["step"] == InspectionStep.NEED_CHECKLIST_TASK.value


class TestTaskWorkflow:
    def test_complete_location(self, db, send, store, inspection):
        send("1")
        outcome = send("1")
        assert outcome.step == InspectionStep.COLLECTING_MEDIA_OR_NOTES
        assert "[3] Un-Satisfactory" in outcome.reply
        assert store.get(KEY)["current_task_id"] == "task-walls"
        assert store.get(KEY)["task_stage"] == "condition"

        assert send("Crack near window").step == InspectionStep.COLLECTING_MEDIA_OR_NOTES
        entry = db.query(ItemEntry).filter(ItemEntry.item_id == "item-kitchen").first()
        assert entry.remarks == "Crack near window"

        outcome = send("1")
        assert outcome.reply.startswith("Condition saved: Good.")
        assert db.get(ChecklistTask, "task-walls").condition == "GOOD"
        assert store.get(KEY)["task_stage"] == "notes"

        outcome = send("1")
        assert outcome.step == InspectionStep.TASK_COMPLETE
        assert "[1] Walls (Done)" in outcome.reply
        assert "current_task_id" not in store.get(KEY)
        assert "task_stage" not in store.get(KEY)
        assert db.get(ContractChecklistItem, "item-kitchen").entered_on is None

        assert send("2").step == InspectionStep.COLLECTING_MEDIA_OR_NOTES
        assert store.get(KEY)["current_task_name"] == "Sink"
        assert send("done").step == InspectionStep.TASK_COMPLETE
        item = db.get(ContractChecklistItem, "item-kitchen")
        assert item.entered_on is not None
        assert item.entered_by_id == "insp-x"

        outcome = send("3")
        assert outcome.step == InspectionStep.NEED_LOCATION
        assert "[1] Kitchen (Done)" in outcome.reply
        assert "current_location" not in store.get(KEY)

    def test_not_yet_returns_to_tasks(self, db, send, inspection):
        send("1")
        send("1")
        send("1")
        outcome = send("2")
        assert outcome.step == InspectionStep.NEED_CHECKLIST_TASK
        assert db.get(ChecklistTask, "task-walls").status == "PENDING"

    def test_back_from_tasks(self, send, store, inspection):
        send("1")
        outcome = send("back")
        assert outcome.step == InspectionStep.NEED_LOCATION
        assert "Please select a location" in outcome.reply

    def test_fair_condition_asks_cause_then_resolution(self, db, send, store, inspection):
        send("1")
        send("1")

        assert send("2").reply.endswith("Please describe the cause of this issue.")
        assert send("Water seeping from window frame").reply.endswith("Please describe the resolution.")
        outcome = send("Reseal the frame")
        assert outcome.reply.startswith("Resolution saved.")
        assert store.get(KEY)["task_stage"] == "notes"

        task = db.get(ChecklistTask, "task-walls")
        assert task.condition == "FAIR"
        assert task.cause == "Water seeping from window frame"
        assert task.resolution == "Reseal the frame"
        assert task.status == "PENDING"
        assert db.query(ItemEntry).one().remarks is None

    def test_out_of_range_condition_reprompts(self, db, send, store, inspection):
        send("1")
        send("1")
        outcome = send("7")
        assert outcome.reply.startswith("Set the condition for this task:")
        assert store.get(KEY)["task_stage"] == "condition"
        assert db.get(ChecklistTask, "task-walls").condition is None

    def test_unknown_number_in_notes_reprompts(self, db, send, store, inspection):
        send("1")
        send("1")
        send("1")

        outcome = send("3")

        assert outcome.step == InspectionStep.COLLECTING_MEDIA_OR_NOTES
        assert "[1] to mark complete" in outcome.reply
        assert db.query(ItemEntry).count() == 1
        assert db.query(ItemEntry).one().remarks is None
        assert db.get(ChecklistTask, "task-walls").status == "PENDING"


class TestMedia:
    @patch("stewards.services.inspection_flow.store_inbound_media", return_value="https://media/wo-1/a.jpg")
    def test_photo_attached_to_current_task(self, mock_store, db, send, inspection):
        send("1")
        send("1")
        payload = {"type": "image", "body": "Stain", "media": {"links": {"download": "/v1/files/a/download"}}}

        outcome = send(payload=payload, message_id="wamid-photo")

        assert outcome.step == InspectionStep.COLLECTING_MEDIA_OR_NOTES
        media = db.query(ItemEntryMedia).one()
        assert media.url == "https://media/wo-1/a.jpg"
        assert media.task_id == "task-walls"
        assert media.caption == "Stain"
        assert media.source_message_id == "wamid-photo"
        assert mock_store.call_args.kwargs["location"] == "Kitchen"

    @patch("stewards.services.inspection_flow.store_inbound_media", return_value="https://media/wo-1/b.jpg")
    def test_photo_at_task_menu_attaches_to_location(self, mock_store, db, send, inspection):
        send("1")
        outcome = send(payload={"type": "image", "url": "https://cdn/b.jpg"})
        assert outcome.step == InspectionStep.NEED_CHECKLIST_TASK
        assert outcome.reply.startswith("Saved to Kitchen")
        assert db.query(ItemEntryMedia).one().task_id is None

    @patch("stewards.services.inspection_flow.store_inbound_media", side_effect=MediaDownloadError("status 404"))
    def test_download_failure_asks_to_resend(self, mock_store, db, send, inspection):
        send("1")
        send("1")
        outcome = send(payload={"type": "image", "url": "https://cdn/c.jpg"})
        assert outcome.reply == MSG_MEDIA_FAILED
        assert outcome.step == InspectionStep.COLLECTING_MEDIA_OR_NOTES
        assert db.query(ItemEntryMedia).count() == 0

    def test_photo_before_location_asks_which(self, send, inspection):
        outcome = send(payload={"type": "image", "url": "https://cdn/d.jpg"})
        assert outcome.step == InspectionStep.NEED_LOCATION
        assert outcome.reply.startswith("Which location should I attach this photo to?")
        assert "[1] Kitchen" in outcome.reply


class TestJobSelection:
    def test_reset_then_pick_job(self, db, send, store, inspection):
        send("1")
        outcome = send("jobs")
        assert outcome.step == InspectionStep.NEED_WORK_ORDER
        assert "12 Orchard Road" in outcome.reply
        assert "work_order_id" not in store.get(KEY)

        assert send(payload={"type": "image", "url": "https://cdn/e.jpg"}).reply == MSG_SELECT_JOB_FIRST

        outcome = send("1")
        assert outcome.step == InspectionStep.NEED_LOCATION
        assert outcome.reply.startswith("Starting inspection at 12 Orchard Road.")
        assert store.get(KEY)["work_order_id"] == "wo-1"

    def test_stale_work_order_dropped(self, db, send, store, inspection):
        send("1")
        inspection.work_order.status = "CANCELLED"
        db.commit()

        outcome = send("1")

        assert outcome.step == InspectionStep.NEED_WORK_ORDER
        assert "work_order_id" not in store.get(KEY)

    def test_checklist_outage_keeps_location(self, db, send, store, inspection):
        send("1")
        send("1")
        before = store.get(KEY)
        checklist_item_cache.clear()

        with patch(
            "stewards.services.location_service._get_checklist_items",
            side_effect=OperationalError("SELECT", {}, Exception("db down")),
        ):
            with pytest.raises(ChecklistLookupError):
                send("Crack near window")

        after = store.get(KEY)
        for name in ("current_location", "current_checklist_item_id", "current_task_id", "task_stage", "step"):
            assert after[name] == before[name]
        assert db.query(ItemEntry).count() == 0

        assert send("Crack near window").step == InspectionStep.COLLECTING_MEDIA_OR_NOTES
        assert db.query(ItemEntry).one().remarks == "Crack near window"


class TestReplyAddress:
    def test_reply_goes_to_number_as_received(self, db, store, notifier, inspection):
        event = _event("1", phone="6591234567")

        handle_inbound_event(db, store, event, notifier=notifier)

        assert notifier.call_args[0][0] == "6591234567"
