import logging
from typing import Any

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import (
    NotFound,
    PermissionDenied,
    PreconditionFailed,
    ValidationFailed,
)
from app.models.conversation import Conversation
from app.models.message import Message
from app.models.offer import Offer, OfferStatus
from app.schemas.conversation import ConversationListParams
from app.services import offer_state_machine as machine
from app.services.realtime_service import realtime_hub
from app.utils.datetime_utils import serialize_datetime, utc_now
from app.utils.validation import validate_model

logger = logging.getLogger(__name__)


class ConversationService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_conversation_or_404(self, conversation_id: int) -> Conversation:
        result = await self.db.execute(
            select(Conversation)
            .options(selectinload(Conversation.offer))
            .where(Conversation.id == conversation_id)
            .execution_options(populate_existing=True)
        )
        conversation = result.scalar_one_or_none()
        if not conversation:
            raise NotFound(f"Conversation {conversation_id} not found")
        return conversation

    async def get_for_participant(
        self, conversation_id: int, user_id: int
    ) -> Conversation:
        conversation = await self._get_conversation_or_404(conversation_id)
        if not conversation.is_participant(user_id):
            raise PermissionDenied("You are not a participant in this conversation")
        return conversation

    async def _find_existing(
        self, offer_id: int, interested_user_id: int
    ) -> Conversation | None:
        result = await self.db.execute(
            select(Conversation)
            .options(selectinload(Conversation.offer))
            .where(
                and_(
                    Conversation.offer_id == offer_id,
                    Conversation.interested_user_id == interested_user_id,
                )
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create_conversation(
        self, offer_id: int, interested_user_id: int
    ) -> Conversation:
        existing = await self._find_existing(offer_id, interested_user_id)
        if existing:
            return existing

        offer = await self.db.get(Offer, offer_id)
        if not offer:
            raise NotFound(f"Offer {offer_id} not found")
        if offer.is_poster(interested_user_id):
            raise ValidationFailed(
                "You cannot start a conversation about your own offer",
                field="offer_id",
            )
        if offer.status != OfferStatus.OPEN:
            raise PreconditionFailed("Only open offers accept new conversations")

        now = utc_now()
        conversation = Conversation(
            offer_id=offer_id,
            poster_id=offer.poster_id,
            interested_user_id=interested_user_id,
            is_active=True,
            created_at=now,
            last_message_at=now,
        )
        self.db.add(conversation)

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing = await self._find_existing(offer_id, interested_user_id)
            if existing is None:
                raise
            logger.info(
                f"Concurrent create for offer {offer_id} and user "
                f"{interested_user_id}; using conversation {existing.id}"
            )
            return existing

        logger.info(
            f"Conversation {conversation.id} created for offer {offer_id} "
            f"(poster {offer.poster_id}, interested {interested_user_id})"
        )
        return await self._get_conversation_or_404(conversation.id)

    def is_usable(self, conversation: Conversation) -> bool:
        return machine.is_conversation_usable(conversation, conversation.offer)

    async def deactivate(self, conversation_id: int) -> Conversation:
        await self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        logger.info(f"Conversation {conversation_id} deactivated")
        return await self.publish_update(conversation_id)

    async def publish_update(self, conversation_id: int) -> Conversation:
        conversation = await self._get_conversation_or_404(conversation_id)
        await realtime_hub.publish(conversation_id, self.to_feed_event(conversation))
        return conversation

    async def find_by_offer(self, offer_id: int) -> list[Conversation]:
        result = await self.db.execute(
            select(Conversation)
            .options(selectinload(Conversation.offer))
            .where(Conversation.offer_id == offer_id)
            .order_by(Conversation.created_at.asc(), Conversation.id.asc())
        )
        return list(result.scalars().all())

    async def count_for_offer(self, offer_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Conversation.id)).where(Conversation.offer_id == offer_id)
        )
        return result.scalar_one()

    async def find_by_participant(
        self,
        user_id: int,
        params: ConversationListParams | dict[str, Any] | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        params = validate_model(ConversationListParams, params or {})

        conditions = [
            or_(
                Conversation.poster_id == user_id,
                Conversation.interested_user_id == user_id,
            )
        ]
        if params.offer_id is not None:
            conditions.append(Conversation.offer_id == params.offer_id)
        if params.is_active is not None:
            conditions.append(Conversation.is_active.is_(params.is_active))

        total_result = await self.db.execute(
            select(func.count(Conversation.id)).where(*conditions)
        )
        total = total_result.scalar_one()

        sort_column = getattr(Conversation, params.sort_by)
        ordering = sort_column.asc() if params.sort_order == "asc" else sort_column.desc()

        result = await self.db.execute(
            select(Conversation)
            .options(selectinload(Conversation.offer))
            .where(*conditions)
            .order_by(ordering, Conversation.id.desc())
            .limit(params.limit)
            .offset(params.offset)
            .execution_options(populate_existing=True)
        )
        conversations = list(result.scalars().all())

        unread_counts = await self.unread_counts(
            [c.id for c in conversations], user_id
        )
        last_messages = await self.last_messages([c.id for c in conversations])

        rows = [
            self._format_conversation(
                conversation,
                unread_count=unread_counts.get(conversation.id, 0),
                last_message=last_messages.get(conversation.id),
            )
            for conversation in conversations
        ]
        return rows, total

    async def get_conversation(self, conversation_id: int, caller_id: int) -> dict[str, Any]:
        conversation = await self.get_for_participant(conversation_id, caller_id)

        unread_counts = await self.unread_counts([conversation.id], caller_id)
        last_messages = await self.last_messages([conversation.id])
        first_unread = await self.first_unread_message_id(conversation.id, caller_id)

        row = self._format_conversation(
            conversation,
            unread_count=unread_counts.get(conversation.id, 0),
            last_message=last_messages.get(conversation.id),
        )
        row["first_unread_message_id"] = first_unread
        row["permissions"] = machine.permissions_for(
            conversation.offer, caller_id, has_conversations=True
        ).to_dict()
        return row

    def _format_conversation(
        self,
        conversation: Conversation,
        unread_count: int,
        last_message: Message | None,
    ) -> dict[str, Any]:
        offer = conversation.offer
        return {
            "id": conversation.id,
            "offer_id": conversation.offer_id,
            "poster_id": conversation.poster_id,
            "interested_user_id": conversation.interested_user_id,
            "is_active": conversation.is_active,
            "is_usable": machine.is_conversation_usable(conversation, offer),
            "created_at": conversation.created_at,
            "last_message_at": conversation.last_message_at,
            "unread_count": unread_count,
            "last_message": last_message.to_payload() if last_message else None,
            "offer": {
                "id": offer.id,
                "title": offer.title,
                "type": offer.type,
                "status": offer.status,
                "price": offer.price,
                "poster_id": offer.poster_id,
                "taker_id": offer.taker_id,
            },
        }

    async def unread_counts(
        self, conversation_ids: list[int], user_id: int
    ) -> dict[int, int]:
        if not conversation_ids:
            return {}

        result = await self.db.execute(
            select(Message.conversation_id, func.count(Message.id))
            .where(
                Message.conversation_id.in_(conversation_ids),
                Message.sender_id != user_id,
                Message.is_read.is_(False),
            )
            .group_by(Message.conversation_id)
        )
        return {conversation_id: count for conversation_id, count in result.all()}

    async def last_messages(self, conversation_ids: list[int]) -> dict[int, Message]:
        if not conversation_ids:
            return {}

        latest = (
            select(
                Message.id,
                func.row_number()
                .over(
                    partition_by=Message.conversation_id,
                    order_by=(Message.created_at.desc(), Message.id.desc()),
                )
                .label("position"),
            )
            .where(Message.conversation_id.in_(conversation_ids))
            .subquery()
        )
        result = await self.db.execute(
            select(Message).join(latest, Message.id == latest.c.id).where(
                latest.c.position == 1
            )
        )
        return {message.conversation_id: message for message in result.scalars().all()}

    async def first_unread_message_id(
        self, conversation_id: int, user_id: int
    ) -> int | None:
        result = await self.db.execute(
            select(Message.id)
            .where(
                Message.conversation_id == conversation_id,
                Message.sender_id != user_id,
                Message.is_read.is_(False),
            )
            .order_by(Message.created_at.asc(), Message.id.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    def to_feed_event(self, conversation: Conversation) -> dict[str, Any]:
        return {
            "type": "conversation_updated",
            "conversation_id": conversation.id,
            "is_active": conversation.is_active,
            "is_usable": self.is_usable(conversation),
            "last_message_at": serialize_datetime(conversation.last_message_at),
        }
