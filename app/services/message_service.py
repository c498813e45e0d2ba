import logging
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    ConversationInactive,
    NotFound,
    PermissionDenied,
    ValidationFailed,
)
from app.models.conversation import Conversation
from app.models.message import VARIANT_COLUMNS, Message, MessageType
from app.schemas.message import (
    MessageCreate,
    MessageFilters,
    UnreadCountResponse,
    message_create_adapter,
)
from app.services.conversation_service import ConversationService
from app.services.realtime_service import realtime_hub
from app.utils.datetime_utils import serialize_datetime, utc_now
from app.utils.validation import validate_model, validate_union

logger = logging.getLogger(__name__)


class MessageService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.conversations = ConversationService(db)

    async def create_message(
        self,
        conversation_id: int,
        sender_id: int,
        data: MessageCreate | dict[str, Any],
        enforce_active: bool = True,
    ) -> Message:
        """Append a message and bump the conversation's ``last_message_at``.

        ``enforce_active`` is switched off only by the negotiation protocol,
        which has to announce an approval on a conversation it just closed.
        """
        data = validate_union(message_create_adapter, data)
        conversation = await self.conversations.get_for_participant(
            conversation_id, sender_id
        )

        if enforce_active and not self.conversations.is_usable(conversation):
            raise ConversationInactive(
                f"Conversation {conversation_id} is no longer active"
            )

        message_type = MessageType(data.message_type)
        now = utc_now()

        message = Message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            message_type=message_type,
            content=data.content,
            attachments=[a.model_dump(mode="json") for a in data.attachments],
            is_read=False,
            created_at=now,
            updated_at=now,
        )
        for column in VARIANT_COLUMNS[message_type]:
            setattr(message, column, getattr(data, column))

        self.db.add(message)
        conversation.last_message_at = now
        await self.db.commit()

        logger.debug(
            f"Message {message.id} ({message_type.value}) added to conversation "
            f"{conversation_id} by user {sender_id}"
        )

        await realtime_hub.publish(
            conversation_id,
            {
                "type": "message_inserted",
                "conversation_id": conversation_id,
                "message": message.to_feed_event(),
            },
        )

        try:
            recipient_id = conversation.other_participant(sender_id)
            unread = await self.get_unread_summary(recipient_id)
            await realtime_hub.send_to_user(
                recipient_id,
                {"type": "unread_count_update", "data": unread.model_dump()},
            )
        except Exception as e:
            logger.warning(f"Failed to send unread updates for {conversation_id}: {e}")

        return message

    async def get_messages(
        self,
        conversation_id: int,
        reader_id: int,
        filters: MessageFilters | dict[str, Any] | None = None,
    ) -> tuple[list[Message], int, bool]:
        filters = validate_model(MessageFilters, filters or {})
        await self.conversations.get_for_participant(conversation_id, reader_id)

        conditions = [Message.conversation_id == conversation_id]
        if filters.message_type is not None:
            conditions.append(Message.message_type == filters.message_type)
        if filters.unread_only:
            conditions.append(Message.sender_id != reader_id)
            conditions.append(Message.is_read.is_(False))
        if filters.before is not None:
            conditions.append(Message.created_at < filters.before)
        if filters.after is not None:
            conditions.append(Message.created_at > filters.after)

        total_result = await self.db.execute(
            select(func.count(Message.id)).where(*conditions)
        )
        total = total_result.scalar_one()

        result = await self.db.execute(
            select(Message)
            .where(*conditions)
            .order_by(Message.created_at.asc(), Message.id.asc())
            .limit(filters.limit)
            .offset(filters.offset)
            .execution_options(populate_existing=True)
        )
        messages = list(result.scalars().all())
        has_more = filters.offset + len(messages) < total

        return messages, total, has_more

    async def mark_messages_as_read(
        self,
        conversation_id: int,
        reader_id: int,
        message_ids: list[int] | None = None,
    ) -> int:
        if message_ids is not None and not (
            1 <= len(message_ids) <= settings.MARK_READ_BATCH_MAX
        ):
            raise ValidationFailed(
                f"message_ids must contain 1 to {settings.MARK_READ_BATCH_MAX} ids",
                field="message_ids",
            )

        await self.conversations.get_for_participant(conversation_id, reader_id)

        conditions = [
            Message.conversation_id == conversation_id,
            Message.sender_id != reader_id,
            Message.is_read.is_(False),
        ]
        if message_ids is not None:
            conditions.append(Message.id.in_(message_ids))

        now = utc_now()
        result = await self.db.execute(
            update(Message)
            .where(*conditions)
            .values(is_read=True, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        marked_count = result.rowcount
        await self.db.commit()

        if marked_count:
            await realtime_hub.publish(
                conversation_id,
                {
                    "type": "messages_read",
                    "conversation_id": conversation_id,
                    "reader_id": reader_id,
                    "marked_count": marked_count,
                    "read_at": serialize_datetime(now),
                },
            )
            unread = await self.get_unread_summary(reader_id)
            await realtime_hub.send_to_user(
                reader_id, {"type": "unread_count_update", "data": unread.model_dump()}
            )

        return marked_count

    async def get_unread_count(self, conversation_id: int, user_id: int) -> int:
        await self.conversations.get_for_participant(conversation_id, user_id)
        counts = await self.conversations.unread_counts([conversation_id], user_id)
        return counts.get(conversation_id, 0)

    async def get_unread_summary(self, user_id: int) -> UnreadCountResponse:
        result = await self.db.execute(
            select(Message.conversation_id, func.count(Message.id))
            .join(Conversation, Conversation.id == Message.conversation_id)
            .where(
                or_(
                    Conversation.poster_id == user_id,
                    Conversation.interested_user_id == user_id,
                ),
                Message.sender_id != user_id,
                Message.is_read.is_(False),
            )
            .group_by(Message.conversation_id)
        )
        conversations = {conversation_id: count for conversation_id, count in result.all()}

        return UnreadCountResponse(
            total_unread=sum(conversations.values()), conversations=conversations
        )

    async def get_first_unread_message_id(
        self, conversation_id: int, user_id: int
    ) -> int | None:
        await self.conversations.get_for_participant(conversation_id, user_id)
        return await self.conversations.first_unread_message_id(conversation_id, user_id)

    async def delete_message(self, message_id: int, caller_id: int) -> None:
        message = await self.db.get(Message, message_id)
        if not message:
            raise NotFound(f"Message {message_id} not found")
        if message.sender_id != caller_id:
            raise PermissionDenied("You can only delete your own messages")

        conversation_id = message.conversation_id
        await self.db.execute(delete(Message).where(Message.id == message_id))
        await self.db.commit()

        logger.info(
            f"Message {message_id} deleted from conversation {conversation_id} "
            f"by user {caller_id}"
        )
