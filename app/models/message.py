from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, Numeric, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..utils.datetime_utils import serialize_datetime
from .base import Base
from .types import UTCDateTime


class MessageType(str, Enum):
    TEXT = "text"
    OFFER_RESPONSE = "offer_response"
    SYSTEM = "system"
    CANCELLATION_REQUEST = "cancellation_request"


class OfferResponseType(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"
    COUNTER_OFFER = "counter_offer"


class CancellationRequestType(str, Enum):
    REQUEST = "request"
    APPROVE = "approve"
    DENY = "deny"


# Columns owned by a single message variant; every other variant stores NULL.
VARIANT_COLUMNS: dict[MessageType, tuple[str, ...]] = {
    MessageType.TEXT: (),
    MessageType.SYSTEM: (),
    MessageType.OFFER_RESPONSE: (
        "offer_response_type",
        "counter_offer_price",
        "counter_offer_details",
    ),
    MessageType.CANCELLATION_REQUEST: (
        "cancellation_request_type",
        "cancellation_reason",
    ),
}


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    conversation_id: Mapped[int] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[int] = mapped_column(Integer, nullable=False)

    message_type: Mapped[MessageType] = mapped_column(
        SQLEnum(MessageType, native_enum=False, length=30), nullable=False
    )
    content: Mapped[str | None] = mapped_column(Text)

    offer_response_type: Mapped[OfferResponseType | None] = mapped_column(
        SQLEnum(OfferResponseType, native_enum=False, length=20)
    )
    counter_offer_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    counter_offer_details: Mapped[str | None] = mapped_column(Text)

    cancellation_request_type: Mapped[CancellationRequestType | None] = mapped_column(
        SQLEnum(CancellationRequestType, native_enum=False, length=20)
    )
    cancellation_reason: Mapped[str | None] = mapped_column(Text)

    attachments: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )

    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    conversation: Mapped["Conversation"] = relationship(
        "Conversation", back_populates="messages"
    )

    __table_args__ = (
        Index("idx_messages_conversation_created", "conversation_id", "created_at"),
        Index("idx_messages_unread", "conversation_id", "is_read", "sender_id"),
    )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "sender_id": self.sender_id,
            "message_type": MessageType(self.message_type).value,
            "content": self.content,
            "attachments": self.attachments or [],
            "is_read": self.is_read,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        for column in VARIANT_COLUMNS[MessageType(self.message_type)]:
            payload[column] = getattr(self, column)
        return payload

    def to_feed_event(self) -> dict[str, Any]:
        event = self.to_payload()
        event["created_at"] = serialize_datetime(self.created_at)
        event["updated_at"] = serialize_datetime(self.updated_at)
        if event.get("counter_offer_price") is not None:
            event["counter_offer_price"] = str(event["counter_offer_price"])
        for key in ("offer_response_type", "cancellation_request_type"):
            if event.get(key) is not None:
                event[key] = event[key].value
        return event
