from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Index, Integer, Numeric, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .types import UTCDateTime


class OfferStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OfferType(str, Enum):
    HELP_WANTED = "help_wanted"
    OFFERING_HELP = "offering_help"


class Offer(Base):
    __tablename__ = "offers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    poster_id: Mapped[int] = mapped_column(Integer, nullable=False)
    taker_id: Mapped[int | None] = mapped_column(Integer)

    category_id: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[OfferType] = mapped_column(
        SQLEnum(OfferType, native_enum=False, length=20), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    deadline: Mapped[datetime | None] = mapped_column(UTCDateTime)
    requirements: Mapped[str | None] = mapped_column(Text)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    attachments: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )

    status: Mapped[OfferStatus] = mapped_column(
        SQLEnum(OfferStatus, native_enum=False, length=20),
        nullable=False,
        default=OfferStatus.OPEN,
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    cancellation_requested_by: Mapped[int | None] = mapped_column(Integer)
    cancellation_reason: Mapped[str | None] = mapped_column(Text)
    cancellation_requested_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    conversations: Mapped[list["Conversation"]] = relationship(
        "Conversation", back_populates="offer", passive_deletes="all"
    )

    __table_args__ = (
        Index("idx_offers_poster", "poster_id", "status"),
        Index("idx_offers_taker", "taker_id", "status"),
        Index("idx_offers_status_created", "status", "created_at"),
        Index("idx_offers_category", "category_id"),
    )

    def is_poster(self, user_id: int) -> bool:
        return self.poster_id == user_id

    def is_taker(self, user_id: int) -> bool:
        return self.taker_id is not None and self.taker_id == user_id

    def has_pending_cancellation(self) -> bool:
        return self.cancellation_requested_by is not None
