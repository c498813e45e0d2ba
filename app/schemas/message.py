from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Literal, Self, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)

from app.config import settings
from app.models.message import CancellationRequestType, MessageType, OfferResponseType
from .common import Attachment
from .offer import MAX_PRICE


class MessageCreateBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    attachments: list[Attachment] = Field(default_factory=list, max_length=3)


class TextMessageCreate(MessageCreateBase):
    message_type: Literal["text"] = "text"
    content: str = Field(..., min_length=1, max_length=2000)

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Message content cannot be blank")
        return v


class OfferResponseMessageCreate(MessageCreateBase):
    message_type: Literal["offer_response"] = "offer_response"
    offer_response_type: OfferResponseType
    counter_offer_price: Decimal | None = Field(
        None, gt=0, le=MAX_PRICE, decimal_places=2
    )
    counter_offer_details: str | None = Field(None, min_length=1, max_length=1000)
    content: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    def validate_counter_offer(self) -> Self:
        has_price = self.counter_offer_price is not None
        has_details = self.counter_offer_details is not None

        if self.offer_response_type == OfferResponseType.COUNTER_OFFER:
            if not has_price or not has_details:
                raise ValueError(
                    "A counter offer requires counter_offer_price and counter_offer_details"
                )
        elif has_price or has_details:
            raise ValueError("Counter offer fields are only allowed on counter offers")

        return self


class SystemMessageCreate(MessageCreateBase):
    message_type: Literal["system"] = "system"
    content: str = Field(..., min_length=1, max_length=1000)


class CancellationMessageCreate(MessageCreateBase):
    message_type: Literal["cancellation_request"] = "cancellation_request"
    cancellation_request_type: CancellationRequestType
    cancellation_reason: str | None = Field(None, min_length=10, max_length=500)
    content: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    def validate_reason(self) -> Self:
        if self.cancellation_request_type == CancellationRequestType.REQUEST:
            if self.cancellation_reason is None:
                raise ValueError("A cancellation request requires a cancellation_reason")
        elif self.cancellation_reason is not None:
            raise ValueError("cancellation_reason is only allowed on a request")

        return self


MessageCreate = Annotated[
    Union[
        TextMessageCreate,
        OfferResponseMessageCreate,
        SystemMessageCreate,
        CancellationMessageCreate,
    ],
    Field(discriminator="message_type"),
]

# Variants a participant may post directly; the others are protocol output.
UserMessageCreate = Annotated[
    Union[TextMessageCreate, OfferResponseMessageCreate],
    Field(discriminator="message_type"),
]

message_create_adapter: TypeAdapter[MessageCreate] = TypeAdapter(MessageCreate)


class MessageReadBase(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    attachments: list[Attachment]
    is_read: bool
    created_at: datetime
    updated_at: datetime


class TextMessageRead(MessageReadBase):
    message_type: Literal["text"]
    content: str


class OfferResponseMessageRead(MessageReadBase):
    message_type: Literal["offer_response"]
    offer_response_type: OfferResponseType
    counter_offer_price: Decimal | None = None
    counter_offer_details: str | None = None
    content: str | None = None


class SystemMessageRead(MessageReadBase):
    message_type: Literal["system"]
    content: str


class CancellationMessageRead(MessageReadBase):
    message_type: Literal["cancellation_request"]
    cancellation_request_type: CancellationRequestType
    cancellation_reason: str | None = None
    content: str | None = None


MessageRead = Annotated[
    Union[
        TextMessageRead,
        OfferResponseMessageRead,
        SystemMessageRead,
        CancellationMessageRead,
    ],
    Field(discriminator="message_type"),
]

message_read_adapter: TypeAdapter[MessageRead] = TypeAdapter(MessageRead)


class MessageFilters(BaseModel):
    message_type: MessageType | None = None
    unread_only: bool = False
    before: datetime | None = None
    after: datetime | None = None
    limit: int = Field(
        settings.MESSAGE_PAGE_SIZE, ge=1, le=settings.MESSAGE_PAGE_SIZE_MAX
    )
    offset: int = Field(0, ge=0)

    @model_validator(mode="after")
    def validate_bounds(self) -> Self:
        if self.before is not None and self.before.tzinfo is None:
            self.before = self.before.replace(tzinfo=timezone.utc)
        if self.after is not None and self.after.tzinfo is None:
            self.after = self.after.replace(tzinfo=timezone.utc)
        if self.before and self.after and self.after >= self.before:
            raise ValueError("after must be earlier than before")
        return self


class MessageListResponse(BaseModel):
    messages: list[MessageRead]
    total: int
    has_more: bool
    limit: int
    offset: int


class MarkReadRequest(BaseModel):
    message_ids: list[int] | None = Field(None, min_length=1, max_length=50)


class MarkReadResponse(BaseModel):
    conversation_id: int
    marked_count: int


class UnreadCountResponse(BaseModel):
    total_unread: int
    conversations: dict[int, int]
