from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from stewards.database import get_db
from stewards.main import app
from stewards.models import ProcessedMessage
from stewards.routers.webhook import build_inbound_event
from stewards.services.session_store import get_session_store

SECRET = "test-secret"


def _payload(body="1", message_id="wamid-1", **data):
    return {
        "event": "message:in:new",
        "data": {
            "id": message_id,
            "fromNumber": "+6591234567",
            "type": "chat",
            "body": body,
            "fromMe": False,
            **data,
        },
    }


@pytest.fixture
def client(db, store):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_session_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestBuildInboundEvent:
    def test_normalizes_sender_and_body(self):
        event = build_inbound_event(_payload(body="  kitchen "))
        assert event.session_key == "6591234567"
        assert event.phone == "+6591234567"
        assert event.message_id == "wamid-1"
        assert event.text == "kitchen"

    def test_nested_text_body_and_jid_sender(self):
        payload = {
            "event": "message:in:new",
            "data": {"id": "m", "from": "6591234567@c.us", "message": {"text": {"body": "back"}}},
        }
        event = build_inbound_event(payload)
        assert event.session_key == "6591234567"
        assert event.text == "back"

    def test_missing_sender(self):
        assert build_inbound_event({"event": "message:in:new", "data": {"id": "m"}}) is None


class TestVerifyWebhook:
    def test_valid_secret(self, client):
        response = client.get("/webhook/whatsapp", params={"secret": SECRET})
        assert response.status_code == 200

    def test_invalid_secret(self, client):
        assert client.get("/webhook/whatsapp", params={"secret": "nope"}).status_code == 403
        assert client.get("/webhook/whatsapp").status_code == 403


class TestHandleWebhook:
    def test_rejects_wrong_secret(self, client):
        response = client.post("/webhook/whatsapp", params={"secret": "nope"}, json=_payload())
        assert response.status_code == 401

    def test_ignores_other_events(self, client):
        response = client.post(
            "/webhook/whatsapp",
            params={"secret": SECRET},
            json={"event": "message:out:new", "data": {"id": "x"}},
        )
        assert response.status_code == 200
        assert response.json()["message"].startswith("Ignored event")

    def test_ignores_outbound_echo(self, client):
        response = client.post("/webhook/whatsapp", params={"secret": SECRET}, json=_payload(fromMe=True))
        assert response.json()["message"] == "Ignored outbound message"

    def test_invalid_json(self, client):
        response = client.post(
            "/webhook/whatsapp",
            params={"secret": SECRET},
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 200
        assert response.json()["success"] is False

    @patch("stewards.services.inspection_flow.send_whatsapp_message")
    def test_processes_message(self, mock_send, client, store, inspection):
        response = client.post("/webhook/whatsapp", params={"secret": SECRET}, json=_payload())

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["step"] == "need_checklist_task"
        assert data["delivered"] is True
        mock_send.assert_called_once()
        assert store.get("6591234567")["current_location"] == "Kitchen"

    @patch("stewards.services.inspection_flow.send_whatsapp_message")
    def test_redelivery_is_skipped(self, mock_send, client, store, inspection):
        client.post("/webhook/whatsapp", params={"secret": SECRET}, json=_payload())
        response = client.post("/webhook/whatsapp", params={"secret": SECRET}, json=_payload())

        assert response.json()["message"] == "Duplicate message_id"
        assert mock_send.call_count == 1
        assert store.get("6591234567")["step"] == "need_checklist_task"

    @patch("stewards.routers.webhook.handle_inbound_event", side_effect=RuntimeError("boom"))
    def test_failure_releases_claim(self, mock_handle, db, store):
        app.dependency_overrides[get_db] = lambda: db
        app.dependency_overrides[get_session_store] = lambda: store
        try:
            client = TestClient(app, raise_server_exceptions=False)
            response = client.post("/webhook/whatsapp", params={"secret": SECRET}, json=_payload())
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 500
        assert db.query(ProcessedMessage).count() == 0


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}
