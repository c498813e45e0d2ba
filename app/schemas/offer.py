from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.config import settings
from app.models.offer import OfferStatus, OfferType
from .common import Attachment

MAX_PRICE = Decimal("99999.99")


def _clean_tags(v: list[str]) -> list[str]:
    cleaned = []
    for tag in v:
        tag = tag.strip()
        if not tag or len(tag) > 50:
            raise ValueError("Tags must be between 1 and 50 characters")
        if tag not in cleaned:
            cleaned.append(tag)
    return cleaned


def _as_utc(v: datetime | None) -> datetime | None:
    if v is not None and v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v


class OfferCreate(BaseModel):
    category_id: int = Field(..., gt=0)
    type: OfferType
    title: str = Field(..., min_length=5, max_length=200)
    description: str = Field(..., min_length=10, max_length=2000)
    price: Decimal = Field(..., ge=0, le=MAX_PRICE, decimal_places=2)
    deadline: datetime | None = None
    requirements: str | None = Field(None, max_length=1000)
    tags: list[str] = Field(default_factory=list, max_length=10)
    attachments: list[Attachment] = Field(default_factory=list, max_length=5)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str]) -> list[str]:
        return _clean_tags(v)

    @field_validator("deadline")
    @classmethod
    def validate_deadline(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)


class OfferUpdate(BaseModel):
    title: str | None = Field(None, min_length=5, max_length=200)
    description: str | None = Field(None, min_length=10, max_length=2000)
    price: Decimal | None = Field(None, gt=0, le=MAX_PRICE, decimal_places=2)
    deadline: datetime | None = None
    requirements: str | None = Field(None, max_length=1000)
    tags: list[str] | None = Field(None, max_length=10)
    attachments: list[Attachment] | None = Field(None, max_length=5)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return v
        return _clean_tags(v)

    @field_validator("deadline")
    @classmethod
    def validate_deadline(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)


class OfferStatusChange(BaseModel):
    status: OfferStatus

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: OfferStatus) -> OfferStatus:
        if v == OfferStatus.IN_PROGRESS:
            raise ValueError("An offer moves to in_progress only by accepting a response")
        return v


class OfferSearchParams(BaseModel):
    query: str | None = Field(None, min_length=2, max_length=100)
    category_id: int | None = Field(None, gt=0)
    type: OfferType | None = None
    status: OfferStatus = OfferStatus.OPEN
    min_price: Decimal | None = Field(None, ge=0)
    max_price: Decimal | None = Field(None, ge=0)
    has_deadline: bool | None = None
    deadline_before: datetime | None = None
    tags: list[str] | None = Field(None, max_length=10)
    sort_by: Literal["created_at", "price", "deadline"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"
    limit: int = Field(settings.OFFER_SEARCH_PAGE_SIZE, ge=1, le=100)
    offset: int = Field(0, ge=0)

    @model_validator(mode="after")
    def validate_price_range(self) -> Self:
        if (
            self.min_price is not None
            and self.max_price is not None
            and self.min_price > self.max_price
        ):
            raise ValueError("min_price must not be greater than max_price")
        self.deadline_before = _as_utc(self.deadline_before)
        return self


class OfferPermissionsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    can_edit: bool
    can_delete: bool
    can_cancel: bool
    can_reopen: bool
    can_complete: bool
    can_request_cancellation: bool
    can_withdraw_cancellation: bool
    can_respond_to_cancellation: bool


class OfferSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    type: OfferType
    status: OfferStatus
    price: Decimal
    poster_id: int
    taker_id: int | None = None


class OfferRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    poster_id: int
    taker_id: int | None = None
    category_id: int
    type: OfferType
    title: str
    description: str
    price: Decimal
    deadline: datetime | None = None
    requirements: str | None = None
    tags: list[str]
    attachments: list[Attachment]
    status: OfferStatus
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    cancellation_requested_by: int | None = None
    cancellation_reason: str | None = None
    cancellation_requested_at: datetime | None = None
    permissions: OfferPermissionsRead | None = None


class OfferListResponse(BaseModel):
    offers: list[OfferRead]
    total: int
    limit: int
    offset: int
