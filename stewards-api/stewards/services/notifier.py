from typing import Optional

import httpx

from stewards.config import settings
from stewards.logging_config import get_logger

logger = get_logger("notifier")


class NotificationError(Exception):
    def __init__(self, status_code: Optional[int], body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Wassenger API error: {status_code} - {body}")


def _format_phone(phone: str) -> str:
    phone = (phone or "").strip()
    return phone if phone.startswith("+") else f"+{phone}"


def send_whatsapp_message(phone: str, message: str, *, http_client: Optional[httpx.Client] = None) -> dict:
    """Send a text message via the Wassenger API. Raises NotificationError on any failure."""
    if not settings.wassenger_api_key:
        logger.error("Wassenger API key is missing (WASSENGER_API_KEY env var not set)")
        raise NotificationError(None, "missing_api_key")
    if not phone or not message:
        raise NotificationError(None, "missing phone or message")

    payload = {"phone": _format_phone(phone), "message": message}
    headers = {"Content-Type": "application/json", "Token": settings.wassenger_api_key}

    try:
        if http_client is not None:
            response = http_client.post(settings.wassenger_api_url, json=payload, headers=headers)
        else:
            with httpx.Client(timeout=settings.http_timeout_seconds) as client:
                response = client.post(settings.wassenger_api_url, json=payload, headers=headers)
    except httpx.HTTPError as exc:
        logger.error(f"Error sending WhatsApp message: {exc}")
        raise NotificationError(None, str(exc)) from exc

    if not response.is_success:
        raise NotificationError(response.status_code, response.text[:500])

    logger.info(
        "Wassenger message sent",
        extra={"context": {"phone": payload["phone"], "status": response.status_code}},
    )
    try:
        return response.json()
    except ValueError:
        return {}
