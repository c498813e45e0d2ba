from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from app.models.offer import OfferStatus
from .offer import OfferRead


class SavedOfferRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    offer_id: int
    created_at: datetime


class SavedOffersParams(BaseModel):
    category_id: int | None = Field(None, gt=0)
    offer_status: OfferStatus | None = None
    sort_by: Literal["created_at", "offer_created_at", "price"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"
    limit: int = Field(20, ge=1, le=100)
    offset: int = Field(0, ge=0)


class SavedOfferItem(BaseModel):
    saved_id: int
    saved_at: datetime
    offer: OfferRead


class SavedOfferListResponse(BaseModel):
    saved_offers: list[SavedOfferItem]
    total: int
    limit: int
    offset: int


class SaveStatusResponse(BaseModel):
    offer_id: int
    is_saved: bool
