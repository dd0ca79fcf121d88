import hmac
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.requests import ClientDisconnect

from stewards.config import settings
from stewards.database import get_db
from stewards.logging_config import get_logger
from stewards.schemas.webhook import WassengerEvent, WebhookResponse
from stewards.services.dedup_service import is_duplicate_message, release_message_claim
from stewards.services.identity_service import normalize_phone
from stewards.services.inspection_flow import InboundEvent, handle_inbound_event
from stewards.services.session_store import SessionStore, get_session_store

logger = get_logger("webhook")

router = APIRouter()

INBOUND_EVENT = "message:in:new"


def _secret_matches(provided: Optional[str]) -> bool:
    expected = settings.wassenger_webhook_secret
    if not expected:
        logger.error("Webhook secret is missing (WASSENGER_WEBHOOK_SECRET env var not set)")
        return False
    return bool(provided) and hmac.compare_digest(provided, expected)


def _clean_sender(raw: Optional[str]) -> str:
    """Sender as received, minus formatting and the WhatsApp JID suffix."""
    value = (raw or "").split("@", 1)[0]
    return value.replace(" ", "").replace("-", "").strip()


def _extract_text(data: dict) -> str:
    body = data.get("body")
    if isinstance(body, str) and body.strip():
        return body.strip()
    message = data.get("message") if isinstance(data.get("message"), dict) else {}
    text = message.get("text") if isinstance(message.get("text"), dict) else {}
    nested = text.get("body")
    return nested.strip() if isinstance(nested, str) else ""


def _is_outbound(event: WassengerEvent) -> bool:
    data = event.data
    return bool(data and (data.fromMe or data.self_ or (data.flow or "").lower() == "outbound"))


def build_inbound_event(payload: dict) -> Optional[InboundEvent]:
    """Normalized inbound event, or None when the payload has no usable sender."""
    event = WassengerEvent.model_validate(payload)
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    sender = _clean_sender((event.data.fromNumber or event.data.sender) if event.data else None)
    session_key = normalize_phone(sender)
    if not session_key:
        return None
    return InboundEvent(
        session_key=session_key,
        phone=sender,
        message_id=event.data.id if event.data else None,
        text=_extract_text(data),
        payload=data,
        timestamp=str(event.data.timestamp) if event.data and event.data.timestamp is not None else None,
    )


@router.get("/webhook/whatsapp")
def verify_webhook(secret: Optional[str] = Query(default=None)):
    if not _secret_matches(secret):
        raise HTTPException(status_code=403, detail="Forbidden")
    return {"status": "ok"}


def _process_event(db: Session, store: SessionStore, inbound: InboundEvent) -> WebhookResponse:
    if is_duplicate_message(db, inbound.message_id):
        logger.info(f"Duplicate message_id skipped: {inbound.message_id}")
        return WebhookResponse(success=True, message="Duplicate message_id")

    try:
        outcome = handle_inbound_event(db, store, inbound)
    except Exception:
        logger.exception(
            "Inbound event handling failed",
            extra={"context": {"session_key": inbound.session_key, "message_id": inbound.message_id}},
        )
        release_message_claim(db, inbound.message_id)
        raise

    return WebhookResponse(
        success=True,
        message="Processed",
        step=outcome.step.value if outcome.step else None,
        reply=outcome.reply,
        delivered=outcome.delivered,
    )


@router.post("/webhook/whatsapp", response_model=WebhookResponse)
async def handle_webhook(
    request: Request,
    secret: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
):
    if not _secret_matches(secret):
        raise HTTPException(status_code=401, detail="Invalid webhook secret")

    try:
        payload = await request.json()
    except ClientDisconnect:
        logger.info("Webhook client disconnected during read")
        return WebhookResponse(success=True, message="Client disconnected")
    except ValueError as exc:
        logger.warning("Webhook payload is not valid JSON", extra={"context": {"error": str(exc)}})
        return WebhookResponse(success=False, message="Invalid JSON payload")

    if not isinstance(payload, dict):
        return WebhookResponse(success=False, message="Invalid payload format")

    try:
        event = WassengerEvent.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Webhook payload validation failed", extra={"context": {"error": str(exc)}})
        return WebhookResponse(success=False, message="Invalid webhook payload")

    if event.event != INBOUND_EVENT:
        return WebhookResponse(success=True, message=f"Ignored event: {event.event}")
    if _is_outbound(event):
        return WebhookResponse(success=True, message="Ignored outbound message")

    inbound = build_inbound_event(payload)
    if inbound is None:
        logger.info(
            "Webhook payload missing sender",
            extra={"context": {"payload_keys": list(payload.keys())[:20]}},
        )
        return WebhookResponse(success=True, message="Ignored: missing sender")

    return await run_in_threadpool(_process_event, db, store, inbound)
