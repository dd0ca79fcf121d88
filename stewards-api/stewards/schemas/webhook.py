from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field


class WassengerMessageData(BaseModel):
    id: Optional[str] = None
    fromNumber: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("fromNumber", "from_number"),
    )
    sender: Optional[str] = Field(default=None, validation_alias=AliasChoices("from", "sender"))
    type: Optional[str] = None
    body: Optional[str] = None
    fromMe: Optional[bool] = None
    self_: Optional[Any] = Field(default=None, validation_alias=AliasChoices("self", "self_"))
    flow: Optional[str] = None
    timestamp: Optional[Any] = None
    message: Optional[Any] = None

    model_config = {"extra": "allow"}


class WassengerEvent(BaseModel):
    event: Optional[str] = None
    data: Optional[WassengerMessageData] = None


class WebhookResponse(BaseModel):
    success: bool
    message: str
    step: Optional[str] = None
    reply: Optional[str] = None
    delivered: Optional[bool] = None
