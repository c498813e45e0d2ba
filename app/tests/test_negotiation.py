import logging

import pytest

from app.core.exceptions import (
    ConversationInactive,
    PermissionDenied,
    PreconditionFailed,
    ValidationFailed,
)
from app.models.message import CancellationRequestType, MessageType, OfferResponseType
from app.models.offer import OfferStatus
from app.services.negotiation_service import WITHDRAWN_NOTICE, NegotiationService
from .test_utils import OTHER_USER_ID, POSTER_ID, TAKER_ID


async def fail_create_message(*args, **kwargs):
    raise RuntimeError("message store unavailable")


class TestOfferResponse:

    @pytest.mark.asyncio
    async def test_accept_binds_taker(self, negotiation_service: NegotiationService, conversation):
        result = await negotiation_service.respond_to_offer(
            conversation.id, POSTER_ID, accept=True, content="Deal, see you Friday"
        )

        assert result.offer.status == OfferStatus.IN_PROGRESS
        assert result.offer.taker_id == TAKER_ID
        assert result.notification_delivered is True
        assert result.message.message_type == MessageType.OFFER_RESPONSE
        assert result.message.offer_response_type == OfferResponseType.ACCEPT
        assert result.message.sender_id == POSTER_ID
        assert result.conversation.is_active is True

    @pytest.mark.asyncio
    async def test_decline_cancels_offer(self, negotiation_service: NegotiationService, conversation):
        result = await negotiation_service.respond_to_offer(
            conversation.id, POSTER_ID, accept=False
        )

        assert result.offer.status == OfferStatus.CANCELLED
        assert result.offer.taker_id is None
        assert result.message.offer_response_type == OfferResponseType.DECLINE
        assert not negotiation_service.conversations.is_usable(result.conversation)

    @pytest.mark.asyncio
    async def test_only_poster_responds(self, negotiation_service: NegotiationService, conversation):
        with pytest.raises(PermissionDenied):
            await negotiation_service.respond_to_offer(conversation.id, TAKER_ID, accept=True)

        offer = await negotiation_service.offers.get_offer(conversation.offer_id)
        assert offer.status == OfferStatus.OPEN

    @pytest.mark.asyncio
    async def test_second_accept_is_rejected(
        self, negotiation_service: NegotiationService, conversation, open_offer
    ):
        other = await negotiation_service.conversations.create_conversation(
            open_offer.id, OTHER_USER_ID
        )
        await negotiation_service.respond_to_offer(conversation.id, POSTER_ID, accept=True)

        with pytest.raises(PreconditionFailed):
            await negotiation_service.respond_to_offer(other.id, POSTER_ID, accept=True)

        offer = await negotiation_service.offers.get_offer(open_offer.id)
        assert offer.taker_id == TAKER_ID

    @pytest.mark.asyncio
    async def test_cannot_respond_in_unusable_conversation(
        self, negotiation_service: NegotiationService, conversation
    ):
        await negotiation_service.offers.change_status(
            conversation.offer_id, POSTER_ID, OfferStatus.CANCELLED
        )

        with pytest.raises(ConversationInactive):
            await negotiation_service.respond_to_offer(conversation.id, POSTER_ID, accept=True)


class TestCancellationProtocol:

    @pytest.mark.asyncio
    async def test_request_records_reason_and_message(
        self, negotiation_service: NegotiationService, conversation, accepted_offer
    ):
        result = await negotiation_service.request_cancellation(
            conversation.id, TAKER_ID, "schedule conflict"
        )

        assert result.offer.status == OfferStatus.IN_PROGRESS
        assert result.offer.cancellation_requested_by == TAKER_ID
        assert result.offer.cancellation_reason == "schedule conflict"
        assert result.offer.cancellation_requested_at is not None
        assert result.message.message_type == MessageType.CANCELLATION_REQUEST
        assert result.message.cancellation_request_type == CancellationRequestType.REQUEST
        assert result.message.cancellation_reason == "schedule conflict"

    @pytest.mark.asyncio
    async def test_approve_reopens_offer_and_closes_conversation(
        self, negotiation_service: NegotiationService, conversation, pending_cancellation
    ):
        result = await negotiation_service.respond_to_cancellation(
            conversation.id, POSTER_ID, approved=True
        )

        assert result.offer.status == OfferStatus.OPEN
        assert result.offer.taker_id is None
        assert result.offer.cancellation_requested_by is None
        assert result.offer.cancellation_reason is None
        assert result.offer.cancellation_requested_at is None
        assert result.conversation.is_active is False
        assert result.message.cancellation_request_type == CancellationRequestType.APPROVE

        with pytest.raises(ConversationInactive):
            await negotiation_service.messages.create_message(
                conversation.id, TAKER_ID, {"message_type": "text", "content": "wait!"}
            )

    @pytest.mark.asyncio
    async def test_deny_keeps_taker_and_conversation(
        self, negotiation_service: NegotiationService, conversation, pending_cancellation
    ):
        result = await negotiation_service.respond_to_cancellation(
            conversation.id, POSTER_ID, approved=False, content="Let's finish it"
        )

        assert result.offer.status == OfferStatus.IN_PROGRESS
        assert result.offer.taker_id == TAKER_ID
        assert result.offer.cancellation_requested_by is None
        assert result.conversation.is_active is True
        assert result.message.cancellation_request_type == CancellationRequestType.DENY
        assert result.message.content == "Let's finish it"

    @pytest.mark.asyncio
    async def test_request_from_non_taker_is_rejected(
        self, negotiation_service: NegotiationService, conversation, accepted_offer
    ):
        with pytest.raises(PermissionDenied):
            await negotiation_service.request_cancellation(
                conversation.id, POSTER_ID, "I changed my mind"
            )

        offer = await negotiation_service.offers.get_offer(accepted_offer.id)
        assert offer.cancellation_requested_by is None
        assert offer.status == OfferStatus.IN_PROGRESS
        assert offer.taker_id == TAKER_ID

    @pytest.mark.asyncio
    async def test_outsider_cannot_use_the_protocol(
        self, negotiation_service: NegotiationService, conversation, accepted_offer
    ):
        with pytest.raises(PermissionDenied):
            await negotiation_service.request_cancellation(
                conversation.id, OTHER_USER_ID, "I am not even here"
            )

    @pytest.mark.asyncio
    async def test_response_must_happen_with_the_requester(
        self, negotiation_service: NegotiationService, conversation, open_offer
    ):
        other = await negotiation_service.conversations.create_conversation(
            open_offer.id, OTHER_USER_ID
        )
        await negotiation_service.respond_to_offer(conversation.id, POSTER_ID, accept=True)
        await negotiation_service.request_cancellation(
            conversation.id, TAKER_ID, "schedule conflict"
        )

        with pytest.raises(PreconditionFailed):
            await negotiation_service.respond_to_cancellation(
                other.id, POSTER_ID, approved=True
            )

    @pytest.mark.asyncio
    async def test_withdraw_posts_system_notice(
        self, negotiation_service: NegotiationService, conversation, pending_cancellation
    ):
        result = await negotiation_service.withdraw_cancellation(conversation.id, TAKER_ID)

        assert result.offer.cancellation_requested_by is None
        assert result.offer.status == OfferStatus.IN_PROGRESS
        assert result.message.message_type == MessageType.SYSTEM
        assert result.message.content == WITHDRAWN_NOTICE

    @pytest.mark.asyncio
    async def test_respond_after_withdraw_is_rejected(
        self, negotiation_service: NegotiationService, conversation, pending_cancellation
    ):
        await negotiation_service.withdraw_cancellation(conversation.id, TAKER_ID)

        with pytest.raises(PreconditionFailed):
            await negotiation_service.respond_to_cancellation(
                conversation.id, POSTER_ID, approved=True
            )

    @pytest.mark.asyncio
    async def test_failed_close_leaves_cancellation_pending(
        self, negotiation_service: NegotiationService, conversation, pending_cancellation, monkeypatch
    ):
        conversation_id, offer_id = conversation.id, conversation.offer_id

        async def fail_close(*args, **kwargs):
            raise RuntimeError("conversation store unavailable")

        monkeypatch.setattr(negotiation_service.offers, "_close_conversation", fail_close)
        with pytest.raises(RuntimeError):
            await negotiation_service.respond_to_cancellation(
                conversation_id, POSTER_ID, approved=True
            )
        monkeypatch.undo()

        offer = await negotiation_service.offers.get_offer(offer_id)
        assert offer.status == OfferStatus.IN_PROGRESS
        assert offer.taker_id == TAKER_ID
        assert offer.cancellation_requested_by == TAKER_ID
        current = await negotiation_service.conversations.get_for_participant(
            conversation_id, POSTER_ID
        )
        assert current.is_active is True

        result = await negotiation_service.respond_to_cancellation(
            conversation_id, POSTER_ID, approved=True
        )
        assert result.offer.status == OfferStatus.OPEN
        assert result.conversation.is_active is False

    @pytest.mark.asyncio
    async def test_complete_after_denied_request(
        self, negotiation_service: NegotiationService, conversation, pending_cancellation
    ):
        await negotiation_service.respond_to_cancellation(
            conversation.id, POSTER_ID, approved=False
        )

        offer = await negotiation_service.offers.change_status(
            pending_cancellation.id, POSTER_ID, OfferStatus.COMPLETED
        )
        assert offer.status == OfferStatus.COMPLETED
        assert offer.completed_at is not None

    @pytest.mark.asyncio
    async def test_protocol_messages_appear_in_history(
        self, negotiation_service: NegotiationService, conversation, pending_cancellation
    ):
        await negotiation_service.respond_to_cancellation(
            conversation.id, POSTER_ID, approved=False
        )

        messages, _, _ = await negotiation_service.messages.get_messages(
            conversation.id, TAKER_ID
        )
        assert [(m.message_type, m.sender_id) for m in messages] == [
            (MessageType.OFFER_RESPONSE, POSTER_ID),
            (MessageType.CANCELLATION_REQUEST, TAKER_ID),
            (MessageType.CANCELLATION_REQUEST, POSTER_ID),
        ]


class TestNotificationFailure:

    @pytest.mark.asyncio
    async def test_state_change_survives_failed_message(
        self, negotiation_service: NegotiationService, conversation, monkeypatch, caplog
    ):
        caplog.set_level(logging.INFO, logger="negotiation")
        monkeypatch.setattr(negotiation_service.messages, "create_message", fail_create_message)

        result = await negotiation_service.respond_to_offer(
            conversation.id, POSTER_ID, accept=True
        )

        assert result.offer.status == OfferStatus.IN_PROGRESS
        assert result.offer.taker_id == TAKER_ID
        assert result.message is None
        assert result.notification_delivered is False
        assert "message store unavailable" in result.notification_error
        assert result.pending_message["message_type"] == "offer_response"
        assert result.pending_message["offer_response_type"] == "accept"
        assert any(record.name == "negotiation" for record in caplog.records)

    @pytest.mark.asyncio
    async def test_retry_stores_pending_message(
        self, negotiation_service: NegotiationService, conversation, monkeypatch
    ):
        monkeypatch.setattr(negotiation_service.messages, "create_message", fail_create_message)
        failed = await negotiation_service.respond_to_offer(
            conversation.id, POSTER_ID, accept=True
        )
        monkeypatch.undo()

        result = await negotiation_service.retry_notification(
            conversation.id, POSTER_ID, failed.pending_message
        )

        assert result.notification_delivered is True
        assert result.message.offer_response_type == OfferResponseType.ACCEPT
        assert result.offer.status == OfferStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_retry_of_stale_message_is_rejected(
        self, negotiation_service: NegotiationService, conversation, accepted_offer, monkeypatch
    ):
        monkeypatch.setattr(negotiation_service.messages, "create_message", fail_create_message)
        failed = await negotiation_service.request_cancellation(
            conversation.id, TAKER_ID, "schedule conflict"
        )
        monkeypatch.undo()
        assert failed.offer.cancellation_requested_by == TAKER_ID

        await negotiation_service.withdraw_cancellation(conversation.id, TAKER_ID)

        with pytest.raises(PreconditionFailed):
            await negotiation_service.retry_notification(
                conversation.id, TAKER_ID, failed.pending_message
            )

    @pytest.mark.asyncio
    async def test_retry_only_accepts_protocol_messages(
        self, negotiation_service: NegotiationService, conversation
    ):
        with pytest.raises(ValidationFailed):
            await negotiation_service.retry_notification(
                conversation.id, POSTER_ID, {"message_type": "text", "content": "hello"}
            )

    @pytest.mark.asyncio
    async def test_retry_after_delivery_is_rejected(
        self, negotiation_service: NegotiationService, conversation, monkeypatch
    ):
        monkeypatch.setattr(negotiation_service.messages, "create_message", fail_create_message)
        failed = await negotiation_service.respond_to_offer(
            conversation.id, POSTER_ID, accept=True
        )
        monkeypatch.undo()

        await negotiation_service.retry_notification(
            conversation.id, POSTER_ID, failed.pending_message
        )
        with pytest.raises(PreconditionFailed):
            await negotiation_service.retry_notification(
                conversation.id, POSTER_ID, failed.pending_message
            )

        history, _, _ = await negotiation_service.messages.get_messages(
            conversation.id, POSTER_ID
        )
        accepts = [m for m in history if m.offer_response_type == OfferResponseType.ACCEPT]
        assert len(accepts) == 1

    @pytest.mark.asyncio
    async def test_retry_of_renewed_request_is_allowed(
        self, negotiation_service: NegotiationService, conversation, accepted_offer, monkeypatch
    ):
        await negotiation_service.request_cancellation(conversation.id, TAKER_ID, "sick")
        await negotiation_service.withdraw_cancellation(conversation.id, TAKER_ID)

        monkeypatch.setattr(negotiation_service.messages, "create_message", fail_create_message)
        failed = await negotiation_service.request_cancellation(
            conversation.id, TAKER_ID, "still sick"
        )
        monkeypatch.undo()

        result = await negotiation_service.retry_notification(
            conversation.id, TAKER_ID, failed.pending_message
        )
        assert result.message.cancellation_reason == "still sick"

        with pytest.raises(PreconditionFailed):
            await negotiation_service.retry_notification(
                conversation.id, TAKER_ID, failed.pending_message
            )
