import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ConversationInactive,
    PermissionDenied,
    PreconditionFailed,
    ValidationFailed,
)
from app.core.logging import NegotiationLogger
from app.core.sentry_helpers import add_breadcrumb, capture_exception_with_context
from app.models.conversation import Conversation
from app.models.message import (
    CancellationRequestType,
    Message,
    MessageType,
    OfferResponseType,
)
from app.models.offer import Offer, OfferStatus
from app.schemas.message import (
    CancellationMessageCreate,
    MessageCreate,
    OfferResponseMessageCreate,
    SystemMessageCreate,
    message_create_adapter,
)
from app.services import offer_state_machine as machine
from app.services.conversation_service import ConversationService
from app.services.message_service import MessageService
from app.services.offer_service import OfferService
from app.utils.validation import validate_union

logger = logging.getLogger(__name__)

WITHDRAWN_NOTICE = "The cancellation request was withdrawn."


@dataclass
class ProtocolResult:
    """Outcome of one negotiation step.

    ``offer`` and ``conversation`` always reflect the committed state change.
    When the announcing message could not be stored, ``message`` is None,
    ``notification_delivered`` is False and ``pending_message`` holds the
    payload to pass to ``retry_notification``.
    """

    offer: Offer
    conversation: Conversation
    message: Message | None = None
    notification_delivered: bool = True
    notification_error: str | None = None
    pending_message: dict[str, Any] | None = field(default=None)


class NegotiationService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.offers = OfferService(db)
        self.conversations = ConversationService(db)
        self.messages = MessageService(db)

    async def _emit(
        self,
        conversation_id: int,
        sender_id: int,
        pending: MessageCreate,
        step: str,
    ) -> ProtocolResult:
        message = None
        error = None

        try:
            message = await self.messages.create_message(
                conversation_id, sender_id, pending, enforce_active=False
            )
        except Exception as e:
            await self.db.rollback()
            error = str(e) or e.__class__.__name__

            conversation = await self.conversations.get_for_participant(
                conversation_id, sender_id
            )
            NegotiationLogger.log_notification_failure(
                conversation_id, step, error, offer_id=conversation.offer_id
            )
            capture_exception_with_context(
                e,
                {
                    "negotiation": {
                        "step": step,
                        "conversation_id": conversation_id,
                        "offer_id": conversation.offer_id,
                        "sender_id": sender_id,
                    }
                },
            )

        conversation = await self.conversations.get_for_participant(
            conversation_id, sender_id
        )
        offer = await self.offers.get_offer(conversation.offer_id)

        if message is None:
            return ProtocolResult(
                offer=offer,
                conversation=conversation,
                notification_delivered=False,
                notification_error=error,
                pending_message=pending.model_dump(mode="json"),
            )

        return ProtocolResult(offer=offer, conversation=conversation, message=message)

    async def respond_to_offer(
        self,
        conversation_id: int,
        caller_id: int,
        accept: bool,
        content: str | None = None,
    ) -> ProtocolResult:
        conversation = await self.conversations.get_for_participant(
            conversation_id, caller_id
        )
        offer = conversation.offer

        pending = validate_union(
            message_create_adapter,
            {
                "message_type": MessageType.OFFER_RESPONSE.value,
                "offer_response_type": (
                    OfferResponseType.ACCEPT if accept else OfferResponseType.DECLINE
                ).value,
                "content": content,
            },
        )

        if not offer.is_poster(caller_id):
            NegotiationLogger.log_rejected_action(
                "respond_to_offer", caller_id, "not poster", offer.id, conversation_id
            )
            raise PermissionDenied("Only the poster can accept or decline")
        if not self.conversations.is_usable(conversation):
            raise ConversationInactive(
                f"Conversation {conversation_id} is no longer active"
            )
        if offer.status != OfferStatus.OPEN:
            raise PreconditionFailed("Only open offers can be accepted or declined")

        if accept:
            await self.offers.update_offer_status(
                offer.id,
                OfferStatus.IN_PROGRESS,
                taker_id=conversation.interested_user_id,
                expected_status=OfferStatus.OPEN,
            )
        else:
            await self.offers.update_offer_status(
                offer.id, OfferStatus.CANCELLED, expected_status=OfferStatus.OPEN
            )

        add_breadcrumb(
            f"Offer {offer.id} {'accepted' if accept else 'declined'}",
            category="negotiation",
            data={"conversation_id": conversation_id},
        )
        return await self._emit(
            conversation_id,
            caller_id,
            pending,
            "offer_accepted" if accept else "offer_declined",
        )

    async def request_cancellation(
        self,
        conversation_id: int,
        caller_id: int,
        reason: str,
        content: str | None = None,
    ) -> ProtocolResult:
        conversation = await self.conversations.get_for_participant(
            conversation_id, caller_id
        )
        reason = (reason or "").strip()

        pending = validate_union(
            message_create_adapter,
            {
                "message_type": MessageType.CANCELLATION_REQUEST.value,
                "cancellation_request_type": CancellationRequestType.REQUEST.value,
                "cancellation_reason": reason,
                "content": content,
            },
        )

        await self.offers.request_cancellation(conversation.offer_id, caller_id, reason)
        return await self._emit(
            conversation_id, caller_id, pending, "cancellation_requested"
        )

    async def respond_to_cancellation(
        self,
        conversation_id: int,
        caller_id: int,
        approved: bool,
        content: str | None = None,
    ) -> ProtocolResult:
        conversation = await self.conversations.get_for_participant(
            conversation_id, caller_id
        )
        offer = conversation.offer

        pending = validate_union(
            message_create_adapter,
            {
                "message_type": MessageType.CANCELLATION_REQUEST.value,
                "cancellation_request_type": (
                    CancellationRequestType.APPROVE
                    if approved
                    else CancellationRequestType.DENY
                ).value,
                "content": content,
            },
        )

        if (
            offer.is_poster(caller_id)
            and offer.has_pending_cancellation()
            and conversation.interested_user_id != offer.cancellation_requested_by
        ):
            raise PreconditionFailed(
                "Respond in the conversation with the user who requested cancellation"
            )

        await self.offers.respond_to_cancellation_request(
            offer.id, caller_id, approved, conversation_id=conversation_id
        )
        if approved:
            await self.conversations.publish_update(conversation_id)

        return await self._emit(
            conversation_id,
            caller_id,
            pending,
            "cancellation_approved" if approved else "cancellation_denied",
        )

    async def withdraw_cancellation(
        self,
        conversation_id: int,
        caller_id: int,
        content: str | None = None,
    ) -> ProtocolResult:
        conversation = await self.conversations.get_for_participant(
            conversation_id, caller_id
        )

        notice = WITHDRAWN_NOTICE
        if content:
            notice = f"{WITHDRAWN_NOTICE} {content}"
        pending = validate_union(
            message_create_adapter,
            {"message_type": MessageType.SYSTEM.value, "content": notice},
        )

        await self.offers.cancel_cancellation_request(conversation.offer_id, caller_id)
        return await self._emit(
            conversation_id, caller_id, pending, "cancellation_withdrawn"
        )

    async def retry_notification(
        self,
        conversation_id: int,
        caller_id: int,
        pending_message: MessageCreate | dict[str, Any],
    ) -> ProtocolResult:
        """Store a protocol message whose state change already committed.

        The offer is never touched here. The message is accepted only while
        it still describes the current offer state.
        """
        pending = validate_union(message_create_adapter, pending_message)
        conversation = await self.conversations.get_for_participant(
            conversation_id, caller_id
        )

        if not self._still_describes_state(pending, conversation, caller_id):
            raise PreconditionFailed(
                "The pending message no longer matches the offer state"
            )
        if await self._already_delivered(pending, conversation, caller_id):
            raise PreconditionFailed("This notification was already delivered")

        logger.info(
            f"Retrying {pending.message_type} notification in conversation "
            f"{conversation_id} for user {caller_id}"
        )
        return await self._emit(conversation_id, caller_id, pending, "retry")

    async def _already_delivered(
        self, pending: MessageCreate, conversation: Conversation, caller_id: int
    ) -> bool:
        """Whether a message of the same kind followed the current state change.

        An accept binds the taker once per conversation, so any stored accept
        counts. Every other kind only counts when it is newer than the
        offer's last update.
        """
        offer = conversation.offer
        conditions = [
            Message.conversation_id == conversation.id,
            Message.sender_id == caller_id,
            Message.message_type == MessageType(pending.message_type),
        ]

        if isinstance(pending, OfferResponseMessageCreate):
            conditions.append(Message.offer_response_type == pending.offer_response_type)
            if pending.offer_response_type != OfferResponseType.ACCEPT:
                conditions.append(Message.created_at >= offer.updated_at)
        elif isinstance(pending, CancellationMessageCreate):
            conditions.append(
                Message.cancellation_request_type == pending.cancellation_request_type
            )
            conditions.append(Message.created_at >= offer.updated_at)
        else:
            conditions.append(Message.content == pending.content)
            conditions.append(Message.created_at >= offer.updated_at)

        result = await self.db.execute(select(Message.id).where(*conditions).limit(1))
        return result.scalar_one_or_none() is not None

    def _still_describes_state(
        self, pending: MessageCreate, conversation: Conversation, caller_id: int
    ) -> bool:
        offer = conversation.offer

        if isinstance(pending, OfferResponseMessageCreate):
            if not offer.is_poster(caller_id):
                return False
            if pending.offer_response_type == OfferResponseType.ACCEPT:
                return offer.taker_id == conversation.interested_user_id
            if pending.offer_response_type == OfferResponseType.DECLINE:
                return offer.status == OfferStatus.CANCELLED
            raise ValidationFailed(
                "Counter offers are sent as regular messages", field="pending_message"
            )

        if isinstance(pending, CancellationMessageCreate):
            kind = pending.cancellation_request_type
            if kind == CancellationRequestType.REQUEST:
                return offer.cancellation_requested_by == caller_id
            if kind == CancellationRequestType.APPROVE:
                return offer.is_poster(caller_id) and not conversation.is_active
            return offer.is_poster(caller_id) and machine.is_conversation_usable(
                conversation, offer
            )

        if isinstance(pending, SystemMessageCreate):
            return offer.is_taker(caller_id) and not offer.has_pending_cancellation()

        raise ValidationFailed(
            "Only protocol messages can be retried", field="pending_message"
        )
