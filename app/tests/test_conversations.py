import pytest

from app.core.exceptions import (
    NotFound,
    PermissionDenied,
    PreconditionFailed,
    ValidationFailed,
)
from app.models.offer import OfferStatus
from app.services.conversation_service import ConversationService
from app.services.message_service import MessageService
from app.services.offer_service import OfferService
from .test_utils import OTHER_USER_ID, POSTER_ID, TAKER_ID


class TestCreateConversation:

    @pytest.mark.asyncio
    async def test_create_binds_participants(self, conversation_service: ConversationService, open_offer):
        conversation = await conversation_service.create_conversation(open_offer.id, TAKER_ID)

        assert conversation.offer_id == open_offer.id
        assert conversation.poster_id == POSTER_ID
        assert conversation.interested_user_id == TAKER_ID
        assert conversation.is_active is True
        assert conversation.last_message_at == conversation.created_at

    @pytest.mark.asyncio
    async def test_create_is_idempotent(self, conversation_service: ConversationService, open_offer):
        first = await conversation_service.create_conversation(open_offer.id, TAKER_ID)
        second = await conversation_service.create_conversation(open_offer.id, TAKER_ID)

        assert first.id == second.id
        assert await conversation_service.count_for_offer(open_offer.id) == 1

    @pytest.mark.asyncio
    async def test_concurrent_create_returns_the_stored_conversation(
        self, conversation_service: ConversationService, second_session, open_offer, monkeypatch
    ):
        offer_id = open_offer.id
        winner = await ConversationService(second_session).create_conversation(
            offer_id, TAKER_ID
        )

        real_find = conversation_service._find_existing
        lookups = []

        async def miss_first_lookup(*args):
            lookups.append(args)
            if len(lookups) == 1:
                return None
            return await real_find(*args)

        monkeypatch.setattr(conversation_service, "_find_existing", miss_first_lookup)
        conversation = await conversation_service.create_conversation(offer_id, TAKER_ID)

        assert conversation.id == winner.id
        assert len(lookups) == 2
        assert await conversation_service.count_for_offer(offer_id) == 1

    @pytest.mark.asyncio
    async def test_distinct_users_get_distinct_conversations(
        self, conversation_service: ConversationService, open_offer
    ):
        first = await conversation_service.create_conversation(open_offer.id, TAKER_ID)
        second = await conversation_service.create_conversation(open_offer.id, OTHER_USER_ID)

        assert first.id != second.id
        conversations = await conversation_service.find_by_offer(open_offer.id)
        assert [c.id for c in conversations] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_poster_cannot_open_conversation_with_self(
        self, conversation_service: ConversationService, open_offer
    ):
        with pytest.raises(ValidationFailed):
            await conversation_service.create_conversation(open_offer.id, POSTER_ID)

    @pytest.mark.asyncio
    async def test_unknown_offer(self, conversation_service: ConversationService):
        with pytest.raises(NotFound):
            await conversation_service.create_conversation(999, TAKER_ID)

    @pytest.mark.asyncio
    async def test_closed_offer_rejects_new_conversations(
        self, conversation_service: ConversationService, offer_service: OfferService, open_offer
    ):
        await offer_service.change_status(open_offer.id, POSTER_ID, OfferStatus.CANCELLED)

        with pytest.raises(PreconditionFailed):
            await conversation_service.create_conversation(open_offer.id, TAKER_ID)

    @pytest.mark.asyncio
    async def test_existing_conversation_returned_after_offer_taken(
        self, conversation_service: ConversationService, conversation, accepted_offer
    ):
        again = await conversation_service.create_conversation(accepted_offer.id, TAKER_ID)

        assert again.id == conversation.id


class TestConversationAccess:

    @pytest.mark.asyncio
    async def test_outsider_is_rejected(self, conversation_service: ConversationService, conversation):
        with pytest.raises(PermissionDenied):
            await conversation_service.get_for_participant(conversation.id, OTHER_USER_ID)

    @pytest.mark.asyncio
    async def test_missing_conversation(self, conversation_service: ConversationService):
        with pytest.raises(NotFound):
            await conversation_service.get_for_participant(12345, POSTER_ID)

    @pytest.mark.asyncio
    async def test_get_conversation_includes_permissions(
        self, conversation_service: ConversationService, conversation
    ):
        poster_view = await conversation_service.get_conversation(conversation.id, POSTER_ID)
        taker_view = await conversation_service.get_conversation(conversation.id, TAKER_ID)

        assert poster_view["permissions"]["can_cancel"] is True
        assert poster_view["permissions"]["can_delete"] is False
        assert taker_view["permissions"]["can_cancel"] is False
        assert poster_view["is_usable"] is True
        assert poster_view["first_unread_message_id"] is None
        assert poster_view["offer"]["status"] == OfferStatus.OPEN


class TestConversationUsability:

    @pytest.mark.asyncio
    async def test_usable_while_offer_open(self, conversation_service: ConversationService, conversation):
        assert conversation_service.is_usable(conversation)

    @pytest.mark.asyncio
    async def test_unusable_after_offer_cancelled(
        self, conversation_service: ConversationService, offer_service: OfferService, conversation
    ):
        await offer_service.change_status(conversation.offer_id, POSTER_ID, OfferStatus.CANCELLED)

        reloaded = await conversation_service.get_for_participant(conversation.id, TAKER_ID)
        assert reloaded.is_active is True
        assert not conversation_service.is_usable(reloaded)

    @pytest.mark.asyncio
    async def test_reopened_offer_makes_conversation_usable_again(
        self, conversation_service: ConversationService, offer_service: OfferService, conversation
    ):
        await offer_service.change_status(conversation.offer_id, POSTER_ID, OfferStatus.CANCELLED)
        await offer_service.change_status(conversation.offer_id, POSTER_ID, OfferStatus.OPEN)

        reloaded = await conversation_service.get_for_participant(conversation.id, TAKER_ID)
        assert conversation_service.is_usable(reloaded)

    @pytest.mark.asyncio
    async def test_deactivate_is_permanent(self, conversation_service: ConversationService, conversation):
        deactivated = await conversation_service.deactivate(conversation.id)

        assert deactivated.is_active is False
        assert not conversation_service.is_usable(deactivated)


class TestFindByParticipant:

    @pytest.mark.asyncio
    async def test_lists_both_sides_with_unread_counts(
        self,
        conversation_service: ConversationService,
        message_service: MessageService,
        conversation,
    ):
        await message_service.create_message(
            conversation.id, TAKER_ID, {"message_type": "text", "content": "Hi there!"}
        )
        await message_service.create_message(
            conversation.id, TAKER_ID, {"message_type": "text", "content": "Still free?"}
        )

        poster_rows, poster_total = await conversation_service.find_by_participant(POSTER_ID)
        taker_rows, taker_total = await conversation_service.find_by_participant(TAKER_ID)
        outsider_rows, outsider_total = await conversation_service.find_by_participant(
            OTHER_USER_ID
        )

        assert poster_total == 1 and taker_total == 1 and outsider_total == 0
        assert outsider_rows == []
        assert poster_rows[0]["unread_count"] == 2
        assert taker_rows[0]["unread_count"] == 0
        assert poster_rows[0]["last_message"]["content"] == "Still free?"

    @pytest.mark.asyncio
    async def test_sorted_by_latest_activity(
        self,
        conversation_service: ConversationService,
        message_service: MessageService,
        open_offer,
    ):
        older = await conversation_service.create_conversation(open_offer.id, TAKER_ID)
        newer = await conversation_service.create_conversation(open_offer.id, OTHER_USER_ID)

        rows, _ = await conversation_service.find_by_participant(POSTER_ID)
        assert [row["id"] for row in rows] == [newer.id, older.id]

        await message_service.create_message(
            older.id, TAKER_ID, {"message_type": "text", "content": "Bumping this"}
        )

        rows, _ = await conversation_service.find_by_participant(POSTER_ID)
        assert [row["id"] for row in rows] == [older.id, newer.id]

    @pytest.mark.asyncio
    async def test_filters_and_paging(
        self, conversation_service: ConversationService, open_offer
    ):
        first = await conversation_service.create_conversation(open_offer.id, TAKER_ID)
        await conversation_service.create_conversation(open_offer.id, OTHER_USER_ID)
        await conversation_service.deactivate(first.id)

        rows, total = await conversation_service.find_by_participant(
            POSTER_ID, {"is_active": False}
        )
        assert total == 1
        assert rows[0]["id"] == first.id

        rows, total = await conversation_service.find_by_participant(
            POSTER_ID, {"limit": 1}
        )
        assert total == 2
        assert len(rows) == 1
