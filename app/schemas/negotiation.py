from pydantic import BaseModel, Field

from .message import MessageCreate, MessageRead
from .offer import OfferRead


class OfferResponseRequest(BaseModel):
    accept: bool
    content: str | None = Field(None, max_length=500)


class CancellationRequestBody(BaseModel):
    reason: str = Field(..., min_length=10, max_length=500)
    content: str | None = Field(None, max_length=500)


class CancellationResponseBody(BaseModel):
    approved: bool
    content: str | None = Field(None, max_length=500)


class RetryNotificationRequest(BaseModel):
    pending_message: MessageCreate


class ProtocolResultRead(BaseModel):
    offer: OfferRead
    conversation_id: int
    conversation_active: bool
    message: MessageRead | None = None
    notification_delivered: bool
    notification_error: str | None = None
    pending_message: MessageCreate | None = None
