from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.config import settings
from .message import MessageRead
from .offer import OfferPermissionsRead, OfferSummary


class ConversationCreate(BaseModel):
    offer_id: int = Field(..., gt=0)


class ConversationListParams(BaseModel):
    offer_id: int | None = Field(None, gt=0)
    is_active: bool | None = None
    sort_by: Literal["last_message_at", "created_at"] = "last_message_at"
    sort_order: Literal["asc", "desc"] = "desc"
    limit: int = Field(settings.CONVERSATION_PAGE_SIZE, ge=1, le=100)
    offset: int = Field(0, ge=0)


class ConversationRead(BaseModel):
    id: int
    offer_id: int
    poster_id: int
    interested_user_id: int
    is_active: bool
    is_usable: bool
    created_at: datetime
    last_message_at: datetime
    unread_count: int = 0
    last_message: MessageRead | None = None
    offer: OfferSummary


class ConversationDetail(ConversationRead):
    first_unread_message_id: int | None = None
    permissions: OfferPermissionsRead


class ConversationListResponse(BaseModel):
    conversations: list[ConversationRead]
    total: int
    limit: int
    offset: int
