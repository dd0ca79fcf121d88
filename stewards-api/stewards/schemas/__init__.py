from stewards.schemas.session import LocationItem, LocationsResponse, SessionResponse
from stewards.schemas.webhook import WassengerEvent, WassengerMessageData, WebhookResponse

__all__ = [
    "WassengerEvent",
    "WassengerMessageData",
    "WebhookResponse",
    "SessionResponse",
    "LocationItem",
    "LocationsResponse",
]
