from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .types import UTCDateTime


class SavedOffer(Base):
    __tablename__ = "saved_offers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    offer_id: Mapped[int] = mapped_column(
        ForeignKey("offers.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    offer: Mapped["Offer"] = relationship("Offer")

    __table_args__ = (
        UniqueConstraint("user_id", "offer_id", name="uq_saved_offer_user_offer"),
        Index("idx_saved_offers_user", "user_id", "created_at"),
    )
