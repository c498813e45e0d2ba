import logging
from typing import Any

from sqlalchemy import and_, delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager

from app.core.exceptions import NotFound, PreconditionFailed
from app.models.offer import Offer
from app.models.saved_offer import SavedOffer
from app.schemas.saved_offer import SavedOffersParams
from app.utils.datetime_utils import utc_now
from app.utils.validation import validate_model

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "created_at": SavedOffer.created_at,
    "offer_created_at": Offer.created_at,
    "price": Offer.price,
}


class SavedOfferService:
    """A user's bookmarks on offers. One row per (user, offer) pair."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _match(self, user_id: int, offer_id: int):
        return and_(SavedOffer.user_id == user_id, SavedOffer.offer_id == offer_id)

    async def save_offer(self, user_id: int, offer_id: int) -> SavedOffer:
        offer = await self.db.get(Offer, offer_id)
        if not offer:
            raise NotFound(f"Offer {offer_id} not found")

        saved = SavedOffer(user_id=user_id, offer_id=offer_id, created_at=utc_now())
        self.db.add(saved)

        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise PreconditionFailed("Offer already saved") from e

        logger.info(f"Offer {offer_id} saved by user {user_id}")
        return saved

    async def unsave_offer(self, user_id: int, offer_id: int) -> bool:
        result = await self.db.execute(
            delete(SavedOffer).where(self._match(user_id, offer_id))
        )
        await self.db.commit()

        removed = result.rowcount > 0
        if removed:
            logger.info(f"Offer {offer_id} unsaved by user {user_id}")
        return removed

    async def is_saved(self, user_id: int, offer_id: int) -> bool:
        result = await self.db.execute(
            select(SavedOffer.id).where(self._match(user_id, offer_id))
        )
        return result.scalar_one_or_none() is not None

    async def toggle_save(self, user_id: int, offer_id: int) -> bool:
        if await self.is_saved(user_id, offer_id):
            await self.unsave_offer(user_id, offer_id)
            return False

        try:
            await self.save_offer(user_id, offer_id)
        except PreconditionFailed:
            # saved by a parallel request in between
            pass
        return True

    async def list_saved(
        self, user_id: int, params: SavedOffersParams | dict[str, Any] | None = None
    ) -> tuple[list[SavedOffer], int]:
        params = validate_model(SavedOffersParams, params or {})

        conditions = [SavedOffer.user_id == user_id]
        if params.category_id is not None:
            conditions.append(Offer.category_id == params.category_id)
        if params.offer_status is not None:
            conditions.append(Offer.status == params.offer_status)

        total_result = await self.db.execute(
            select(func.count(SavedOffer.id))
            .join(Offer, SavedOffer.offer_id == Offer.id)
            .where(*conditions)
        )
        total = total_result.scalar_one()

        sort_column = SORT_COLUMNS[params.sort_by]
        ordering = sort_column.asc() if params.sort_order == "asc" else sort_column.desc()

        result = await self.db.execute(
            select(SavedOffer)
            .join(SavedOffer.offer)
            .options(contains_eager(SavedOffer.offer))
            .where(*conditions)
            .order_by(ordering, SavedOffer.id.desc())
            .limit(params.limit)
            .offset(params.offset)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all()), total
