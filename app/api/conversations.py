import logging
from datetime import datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Body, Query, status

from app.config import settings
from app.core.dependencies import (
    ConversationServiceDep,
    CurrentUserId,
    MessageServiceDep,
    NegotiationServiceDep,
)
from app.core.exceptions import ValidationFailed
from app.models.message import MessageType, OfferResponseType
from app.schemas.conversation import (
    ConversationCreate,
    ConversationDetail,
    ConversationListResponse,
    ConversationRead,
)
from app.schemas.message import (
    MarkReadRequest,
    MarkReadResponse,
    MessageListResponse,
    MessageRead,
    OfferResponseMessageCreate,
    UnreadCountResponse,
    UserMessageCreate,
    message_read_adapter,
)
from app.schemas.negotiation import (
    CancellationRequestBody,
    CancellationResponseBody,
    OfferResponseRequest,
    ProtocolResultRead,
    RetryNotificationRequest,
)
from app.schemas.offer import OfferRead
from app.services.negotiation_service import ProtocolResult

logger = logging.getLogger(__name__)

router = APIRouter()


def _protocol_response(result: ProtocolResult) -> ProtocolResultRead:
    return ProtocolResultRead(
        offer=OfferRead.model_validate(result.offer),
        conversation_id=result.conversation.id,
        conversation_active=result.conversation.is_active,
        message=(
            message_read_adapter.validate_python(result.message.to_payload())
            if result.message
            else None
        ),
        notification_delivered=result.notification_delivered,
        notification_error=result.notification_error,
        pending_message=result.pending_message,
    )


@router.post("", response_model=ConversationDetail, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    data: ConversationCreate,
    current_user_id: CurrentUserId,
    service: ConversationServiceDep,
) -> ConversationDetail:
    conversation = await service.create_conversation(data.offer_id, current_user_id)
    return ConversationDetail.model_validate(
        await service.get_conversation(conversation.id, current_user_id)
    )


@router.get("", response_model=ConversationListResponse)
async def list_conversations(
    current_user_id: CurrentUserId,
    service: ConversationServiceDep,
    offer_id: Annotated[int | None, Query(gt=0)] = None,
    is_active: Annotated[bool | None, Query()] = None,
    sort_by: Annotated[
        Literal["last_message_at", "created_at"], Query()
    ] = "last_message_at",
    sort_order: Annotated[Literal["asc", "desc"], Query()] = "desc",
    limit: Annotated[int, Query(ge=1, le=100)] = settings.CONVERSATION_PAGE_SIZE,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> ConversationListResponse:
    rows, total = await service.find_by_participant(
        current_user_id,
        {
            "offer_id": offer_id,
            "is_active": is_active,
            "sort_by": sort_by,
            "sort_order": sort_order,
            "limit": limit,
            "offset": offset,
        },
    )
    return ConversationListResponse(
        conversations=[ConversationRead.model_validate(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    current_user_id: CurrentUserId,
    message_service: MessageServiceDep,
) -> UnreadCountResponse:
    return await message_service.get_unread_summary(current_user_id)


@router.get("/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(
    conversation_id: int,
    current_user_id: CurrentUserId,
    service: ConversationServiceDep,
) -> ConversationDetail:
    return ConversationDetail.model_validate(
        await service.get_conversation(conversation_id, current_user_id)
    )


@router.get("/{conversation_id}/messages", response_model=MessageListResponse)
async def get_messages(
    conversation_id: int,
    current_user_id: CurrentUserId,
    message_service: MessageServiceDep,
    message_type: Annotated[MessageType | None, Query()] = None,
    unread_only: Annotated[bool, Query()] = False,
    before: Annotated[datetime | None, Query()] = None,
    after: Annotated[datetime | None, Query()] = None,
    limit: Annotated[
        int, Query(ge=1, le=settings.MESSAGE_PAGE_SIZE_MAX)
    ] = settings.MESSAGE_PAGE_SIZE,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> MessageListResponse:
    messages, total, has_more = await message_service.get_messages(
        conversation_id,
        current_user_id,
        {
            "message_type": message_type,
            "unread_only": unread_only,
            "before": before,
            "after": after,
            "limit": limit,
            "offset": offset,
        },
    )
    return MessageListResponse(
        messages=[message_read_adapter.validate_python(m.to_payload()) for m in messages],
        total=total,
        has_more=has_more,
        limit=limit,
        offset=offset,
    )


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageRead,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: int,
    data: Annotated[UserMessageCreate, Body()],
    current_user_id: CurrentUserId,
    message_service: MessageServiceDep,
):
    if (
        isinstance(data, OfferResponseMessageCreate)
        and data.offer_response_type != OfferResponseType.COUNTER_OFFER
    ):
        raise ValidationFailed(
            "Accept and decline go through the offer-response endpoint",
            field="offer_response_type",
        )

    message = await message_service.create_message(
        conversation_id, current_user_id, data
    )
    return message_read_adapter.validate_python(message.to_payload())


@router.post("/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_as_read(
    conversation_id: int,
    current_user_id: CurrentUserId,
    message_service: MessageServiceDep,
    data: MarkReadRequest | None = None,
) -> MarkReadResponse:
    marked = await message_service.mark_messages_as_read(
        conversation_id, current_user_id, data.message_ids if data else None
    )
    return MarkReadResponse(conversation_id=conversation_id, marked_count=marked)


@router.post("/{conversation_id}/offer-response", response_model=ProtocolResultRead)
async def respond_to_offer(
    conversation_id: int,
    data: OfferResponseRequest,
    current_user_id: CurrentUserId,
    service: NegotiationServiceDep,
) -> ProtocolResultRead:
    result = await service.respond_to_offer(
        conversation_id, current_user_id, data.accept, data.content
    )
    return _protocol_response(result)


@router.post("/{conversation_id}/cancellation", response_model=ProtocolResultRead)
async def request_cancellation(
    conversation_id: int,
    data: CancellationRequestBody,
    current_user_id: CurrentUserId,
    service: NegotiationServiceDep,
) -> ProtocolResultRead:
    result = await service.request_cancellation(
        conversation_id, current_user_id, data.reason, data.content
    )
    return _protocol_response(result)


@router.post(
    "/{conversation_id}/cancellation/respond", response_model=ProtocolResultRead
)
async def respond_to_cancellation(
    conversation_id: int,
    data: CancellationResponseBody,
    current_user_id: CurrentUserId,
    service: NegotiationServiceDep,
) -> ProtocolResultRead:
    result = await service.respond_to_cancellation(
        conversation_id, current_user_id, data.approved, data.content
    )
    return _protocol_response(result)


@router.delete("/{conversation_id}/cancellation", response_model=ProtocolResultRead)
async def withdraw_cancellation(
    conversation_id: int,
    current_user_id: CurrentUserId,
    service: NegotiationServiceDep,
) -> ProtocolResultRead:
    result = await service.withdraw_cancellation(conversation_id, current_user_id)
    return _protocol_response(result)


@router.post(
    "/{conversation_id}/notifications/retry", response_model=ProtocolResultRead
)
async def retry_notification(
    conversation_id: int,
    data: RetryNotificationRequest,
    current_user_id: CurrentUserId,
    service: NegotiationServiceDep,
) -> ProtocolResultRead:
    result = await service.retry_notification(
        conversation_id, current_user_id, data.pending_message
    )
    if not result.notification_delivered:
        logger.warning(
            f"Retry for conversation {conversation_id} failed again: "
            f"{result.notification_error}"
        )
    return _protocol_response(result)
