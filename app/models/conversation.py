from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .types import UTCDateTime


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    offer_id: Mapped[int] = mapped_column(
        ForeignKey("offers.id", ondelete="RESTRICT"), nullable=False
    )
    poster_id: Mapped[int] = mapped_column(Integer, nullable=False)
    interested_user_id: Mapped[int] = mapped_column(Integer, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_message_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    offer: Mapped["Offer"] = relationship("Offer", back_populates="conversations")
    messages: Mapped[list["Message"]] = relationship(
        "Message", back_populates="conversation", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint(
            "offer_id", "interested_user_id", name="uq_conversation_offer_user"
        ),
        Index("idx_conversations_poster", "poster_id", "last_message_at"),
        Index("idx_conversations_interested", "interested_user_id", "last_message_at"),
        Index("idx_conversations_active", "is_active"),
    )

    def is_participant(self, user_id: int) -> bool:
        return user_id in (self.poster_id, self.interested_user_id)

    def other_participant(self, user_id: int) -> int:
        if user_id == self.poster_id:
            return self.interested_user_id
        return self.poster_id
