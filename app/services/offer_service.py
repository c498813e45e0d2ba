import logging
import json
from collections.abc import Callable

from sqlalchemy import delete, func, or_, select, update, String, cast
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ConflictError,
    DeleteBlocked,
    NotFound,
    PermissionDenied,
    PreconditionFailed,
    ValidationFailed,
)
from app.core.logging import NegotiationLogger
from app.models.conversation import Conversation
from app.models.offer import Offer, OfferStatus
from app.schemas.offer import OfferCreate, OfferRead, OfferSearchParams, OfferUpdate
from app.services import offer_state_machine as machine
from app.services.conversation_service import ConversationService
from app.services.realtime_service import realtime_hub
from app.utils.datetime_utils import utc_now
from app.utils.validation import validate_model

logger = logging.getLogger(__name__)

CANCELLATION_CLEARED = {
    "cancellation_requested_by": None,
    "cancellation_reason": None,
    "cancellation_requested_at": None,
}


class OfferService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.conversations = ConversationService(db)

    async def _get_offer_or_404(self, offer_id: int) -> Offer:
        result = await self.db.execute(
            select(Offer)
            .where(Offer.id == offer_id)
            .execution_options(populate_existing=True)
        )
        offer = result.scalar_one_or_none()
        if not offer:
            raise NotFound(f"Offer {offer_id} not found")
        return offer

    async def _apply_conditional_update(
        self, offer_id: int, *conditions, commit: bool = True, **values
    ) -> bool:
        result = await self.db.execute(
            update(Offer)
            .where(Offer.id == offer_id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            return False
        if commit:
            await self.db.commit()
        return True

    async def _recheck_after_lost_race(
        self, offer_id: int, check: Callable[[Offer], None], message: str
    ) -> None:
        offer = await self._get_offer_or_404(offer_id)
        check(offer)
        raise ConflictError(message)

    async def _reload(self, offer_id: int) -> Offer:
        offer = await self._get_offer_or_404(offer_id)
        await self.publish_offer_update(offer)
        return offer

    async def create_offer(self, poster_id: int, data: OfferCreate | dict) -> Offer:
        data = validate_model(OfferCreate, data)
        now = utc_now()

        offer = Offer(
            poster_id=poster_id,
            category_id=data.category_id,
            type=data.type,
            title=data.title,
            description=data.description,
            price=data.price,
            deadline=data.deadline,
            requirements=data.requirements,
            tags=data.tags,
            attachments=[a.model_dump(mode="json") for a in data.attachments],
            status=OfferStatus.OPEN,
            created_at=now,
            updated_at=now,
        )
        self.db.add(offer)
        await self.db.commit()
        await self.db.refresh(offer)

        logger.info(f"Offer {offer.id} created by user {poster_id}")
        return offer

    async def get_offer(self, offer_id: int) -> Offer:
        return await self._get_offer_or_404(offer_id)

    async def update_offer(
        self, offer_id: int, caller_id: int, data: OfferUpdate | dict
    ) -> Offer:
        data = validate_model(OfferUpdate, data)
        offer = await self._get_offer_or_404(offer_id)

        def check(current: Offer) -> None:
            if not current.is_poster(caller_id):
                raise PermissionDenied("Only the poster can edit this offer")
            if not machine.can_edit(current, caller_id):
                raise PreconditionFailed(
                    "Offers can only be edited while open and without a taker"
                )

        check(offer)

        values = data.model_dump(exclude_unset=True, exclude={"attachments"})
        for required in ("title", "description", "price"):
            if required in values and values[required] is None:
                raise ValidationFailed(f"{required} cannot be null", field=required)
        if data.attachments is not None:
            values["attachments"] = [a.model_dump(mode="json") for a in data.attachments]
        if values.get("tags") is None:
            values.pop("tags", None)

        if not values:
            return offer

        values["updated_at"] = utc_now()
        updated = await self._apply_conditional_update(
            offer_id,
            Offer.status == OfferStatus.OPEN,
            Offer.taker_id.is_(None),
            **values,
        )
        if not updated:
            await self._recheck_after_lost_race(
                offer_id, check, "Offer changed while it was being edited"
            )

        logger.info(f"Offer {offer_id} edited by user {caller_id}")
        return await self._reload(offer_id)

    async def update_offer_status(
        self,
        offer_id: int,
        status: OfferStatus,
        taker_id: int | None = None,
        expected_status: OfferStatus | None = None,
    ) -> Offer:
        """Write a status change together with the fields it implies.

        Transition legality is the caller's job; this keeps the taker,
        ``completed_at`` and the cancellation fields consistent with the new
        status. With ``expected_status`` the write only lands if the offer is
        still in that status, otherwise ``ConflictError`` is raised.
        """
        status = OfferStatus(status)
        offer = await self._get_offer_or_404(offer_id)
        from_status = OfferStatus(offer.status)
        now = utc_now()

        values: dict[str, object] = {"status": status, "updated_at": now}

        if status == OfferStatus.IN_PROGRESS:
            if taker_id is None:
                raise ValidationFailed(
                    "taker_id is required to start an offer", field="taker_id"
                )
            if taker_id == offer.poster_id:
                raise ValidationFailed(
                    "The poster cannot take their own offer", field="taker_id"
                )
            values.update(taker_id=taker_id, completed_at=None, **CANCELLATION_CLEARED)
        elif status == OfferStatus.COMPLETED:
            taker_id = taker_id if taker_id is not None else offer.taker_id
            if taker_id is None:
                raise ValidationFailed(
                    "A completed offer needs a taker", field="taker_id"
                )
            values.update(taker_id=taker_id, completed_at=now, **CANCELLATION_CLEARED)
        else:
            values.update(taker_id=None, completed_at=None, **CANCELLATION_CLEARED)

        conditions = []
        if expected_status is not None:
            conditions.append(Offer.status == OfferStatus(expected_status))

        updated = await self._apply_conditional_update(offer_id, *conditions, **values)
        if not updated:
            await self._get_offer_or_404(offer_id)
            raise ConflictError(
                f"Offer {offer_id} is no longer {OfferStatus(expected_status).value}"
            )

        NegotiationLogger.log_offer_transition(
            offer_id, from_status.value, status.value, taker_id=values.get("taker_id")
        )
        return await self._reload(offer_id)

    async def change_status(
        self, offer_id: int, caller_id: int, target: OfferStatus
    ) -> Offer:
        target = OfferStatus(target)
        offer = await self._get_offer_or_404(offer_id)

        if not offer.is_poster(caller_id):
            NegotiationLogger.log_rejected_action(
                f"change_status:{target.value}", caller_id, "not poster", offer_id
            )
            raise PermissionDenied("Only the poster can change the offer status")

        if not machine.can_change_status(offer, caller_id, target):
            NegotiationLogger.log_rejected_action(
                f"change_status:{target.value}",
                caller_id,
                f"illegal from {OfferStatus(offer.status).value}",
                offer_id,
            )
            raise PreconditionFailed(
                f"Cannot move offer from {OfferStatus(offer.status).value} "
                f"to {target.value}"
            )

        return await self.update_offer_status(
            offer_id, target, expected_status=OfferStatus(offer.status)
        )

    async def request_cancellation(
        self, offer_id: int, requester_id: int, reason: str
    ) -> Offer:
        reason = (reason or "").strip()
        if not 10 <= len(reason) <= 500:
            raise ValidationFailed(
                "Cancellation reason must be between 10 and 500 characters",
                field="reason",
            )

        def check(current: Offer) -> None:
            if not current.is_taker(requester_id):
                NegotiationLogger.log_rejected_action(
                    "request_cancellation", requester_id, "not taker", offer_id
                )
                raise PermissionDenied("Only the taker can request cancellation")
            if current.status != OfferStatus.IN_PROGRESS:
                raise PreconditionFailed("Offer is not in progress")
            if current.has_pending_cancellation():
                raise PreconditionFailed("A cancellation request is already pending")

        check(await self._get_offer_or_404(offer_id))

        now = utc_now()
        updated = await self._apply_conditional_update(
            offer_id,
            Offer.status == OfferStatus.IN_PROGRESS,
            Offer.taker_id == requester_id,
            Offer.cancellation_requested_by.is_(None),
            cancellation_requested_by=requester_id,
            cancellation_reason=reason,
            cancellation_requested_at=now,
            updated_at=now,
        )
        if not updated:
            await self._recheck_after_lost_race(
                offer_id, check, "Offer changed while requesting cancellation"
            )

        NegotiationLogger.log_cancellation_event(offer_id, "requested", requester_id)
        return await self._reload(offer_id)

    async def _close_conversation(self, offer_id: int, conversation_id: int) -> None:
        result = await self.db.execute(
            update(Conversation)
            .where(
                Conversation.id == conversation_id,
                Conversation.offer_id == offer_id,
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFound(
                f"Conversation {conversation_id} not found for offer {offer_id}"
            )
        logger.info(f"Conversation {conversation_id} closed with offer {offer_id}")

    async def respond_to_cancellation_request(
        self,
        offer_id: int,
        responder_id: int,
        approved: bool,
        conversation_id: int | None = None,
    ) -> Offer:
        """Approve or deny the pending cancellation request.

        With ``conversation_id`` an approval also closes that conversation in
        the same transaction as the offer change.
        """
        offer = await self._get_offer_or_404(offer_id)

        if not offer.is_poster(responder_id):
            NegotiationLogger.log_rejected_action(
                "respond_to_cancellation", responder_id, "not poster", offer_id
            )
            raise PermissionDenied("Only the poster can respond to a cancellation")
        if not offer.has_pending_cancellation():
            raise PreconditionFailed("No cancellation request is pending")
        if not machine.can_respond_to_cancellation(offer, responder_id):
            raise PermissionDenied("You cannot respond to your own cancellation request")

        expected_requester = offer.cancellation_requested_by
        values: dict[str, object] = {"updated_at": utc_now(), **CANCELLATION_CLEARED}
        if approved:
            values.update(status=OfferStatus.OPEN, taker_id=None, completed_at=None)

        updated = await self._apply_conditional_update(
            offer_id,
            Offer.status == OfferStatus.IN_PROGRESS,
            Offer.cancellation_requested_by == expected_requester,
            commit=False,
            **values,
        )
        if not updated:
            await self._get_offer_or_404(offer_id)
            raise ConflictError("Cancellation request is no longer pending")

        try:
            if approved and conversation_id is not None:
                await self._close_conversation(offer_id, conversation_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        NegotiationLogger.log_cancellation_event(
            offer_id,
            "approved" if approved else "denied",
            responder_id,
            additional_data={"requested_by": expected_requester},
        )
        if approved:
            NegotiationLogger.log_offer_transition(
                offer_id,
                OfferStatus.IN_PROGRESS.value,
                OfferStatus.OPEN.value,
                actor_id=responder_id,
            )
        return await self._reload(offer_id)

    async def cancel_cancellation_request(
        self, offer_id: int, requester_id: int
    ) -> Offer:
        offer = await self._get_offer_or_404(offer_id)

        if not offer.has_pending_cancellation():
            raise PreconditionFailed("No cancellation request is pending")
        if not machine.can_withdraw_cancellation(offer, requester_id):
            NegotiationLogger.log_rejected_action(
                "withdraw_cancellation", requester_id, "not requester", offer_id
            )
            raise PermissionDenied("Only the original requester can withdraw it")

        updated = await self._apply_conditional_update(
            offer_id,
            Offer.cancellation_requested_by == requester_id,
            updated_at=utc_now(),
            **CANCELLATION_CLEARED,
        )
        if not updated:
            await self._get_offer_or_404(offer_id)
            raise ConflictError("Cancellation request is no longer pending")

        NegotiationLogger.log_cancellation_event(offer_id, "withdrawn", requester_id)
        return await self._reload(offer_id)

    async def can_delete(self, offer: Offer) -> bool:
        if offer.status != OfferStatus.OPEN:
            return False
        return await self.conversations.count_for_offer(offer.id) == 0

    async def delete_offer(self, offer_id: int, caller_id: int) -> None:
        offer = await self._get_offer_or_404(offer_id)

        if not offer.is_poster(caller_id):
            raise PermissionDenied("Only the poster can delete this offer")
        if offer.status != OfferStatus.OPEN:
            raise DeleteBlocked("Only open offers can be deleted")

        conversation_count = await self.conversations.count_for_offer(offer_id)
        if conversation_count:
            raise DeleteBlocked(
                f"Offer has {conversation_count} conversation(s) and cannot be deleted"
            )

        try:
            result = await self.db.execute(
                delete(Offer).where(
                    Offer.id == offer_id, Offer.status == OfferStatus.OPEN
                )
            )
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise DeleteBlocked(
                "Offer gained a conversation and cannot be deleted"
            ) from e

        if result.rowcount == 0:
            raise ConflictError("Offer changed while it was being deleted")

        logger.info(f"Offer {offer_id} deleted by user {caller_id}")

    async def permissions_for(
        self, offer: Offer, user_id: int
    ) -> machine.OfferPermissions:
        has_conversations = await self.conversations.count_for_offer(offer.id) > 0
        return machine.permissions_for(offer, user_id, has_conversations)

    async def find_by_participant(
        self, user_id: int, status: OfferStatus | None = None
    ) -> list[Offer]:
        query = select(Offer).where(
            or_(Offer.poster_id == user_id, Offer.taker_id == user_id)
        )
        if status is not None:
            query = query.where(Offer.status == OfferStatus(status))

        result = await self.db.execute(
            query.order_by(Offer.created_at.desc(), Offer.id.desc())
        )
        return list(result.scalars().all())

    async def search_offers(
        self, params: OfferSearchParams | dict
    ) -> tuple[list[Offer], int]:
        params = validate_model(OfferSearchParams, params)

        conditions = [Offer.status == params.status]
        if params.query:
            conditions.append(
                or_(
                    Offer.title.icontains(params.query, autoescape=True),
                    Offer.description.icontains(params.query, autoescape=True),
                )
            )
        if params.category_id is not None:
            conditions.append(Offer.category_id == params.category_id)
        if params.type is not None:
            conditions.append(Offer.type == params.type)
        if params.min_price is not None:
            conditions.append(Offer.price >= params.min_price)
        if params.max_price is not None:
            conditions.append(Offer.price <= params.max_price)
        if params.has_deadline is True:
            conditions.append(Offer.deadline.is_not(None))
        elif params.has_deadline is False:
            conditions.append(Offer.deadline.is_(None))
        if params.deadline_before is not None:
            conditions.append(Offer.deadline <= params.deadline_before)
        if params.tags:
            tags_text = cast(Offer.tags, String)
            conditions.append(
                or_(
                    *[
                        tags_text.contains(json.dumps(tag), autoescape=True)
                        for tag in params.tags
                    ]
                )
            )

        total_result = await self.db.execute(
            select(func.count(Offer.id)).where(*conditions)
        )
        total = total_result.scalar_one()

        sort_column = getattr(Offer, params.sort_by)
        ordering = sort_column.asc() if params.sort_order == "asc" else sort_column.desc()

        result = await self.db.execute(
            select(Offer)
            .where(*conditions)
            .order_by(ordering, Offer.id.desc())
            .limit(params.limit)
            .offset(params.offset)
        )
        return list(result.scalars().all()), total

    async def publish_offer_update(self, offer: Offer) -> None:
        result = await self.db.execute(
            select(Conversation.id).where(Conversation.offer_id == offer.id)
        )
        conversation_ids = result.scalars().all()
        if not conversation_ids:
            return

        payload = OfferRead.model_validate(offer).model_dump(mode="json")
        for conversation_id in conversation_ids:
            await realtime_hub.publish(
                conversation_id,
                {
                    "type": "offer_updated",
                    "conversation_id": conversation_id,
                    "offer": payload,
                },
            )
