from decimal import Decimal

import pytest
from httpx import AsyncClient
from fastapi import status

from app.core.exceptions import NotFound, PreconditionFailed, ValidationFailed
from app.models.offer import OfferStatus
from app.services.offer_service import OfferService
from app.services.saved_offer_service import SavedOfferService
from .test_utils import OTHER_USER_ID, POSTER_ID, TAKER_ID, get_auth_headers, offer_payload


class TestSaveOffer:

    @pytest.mark.asyncio
    async def test_save_and_check(self, saved_offer_service: SavedOfferService, open_offer):
        saved = await saved_offer_service.save_offer(TAKER_ID, open_offer.id)

        assert saved.user_id == TAKER_ID
        assert saved.offer_id == open_offer.id
        assert saved.created_at is not None
        assert await saved_offer_service.is_saved(TAKER_ID, open_offer.id) is True
        assert await saved_offer_service.is_saved(OTHER_USER_ID, open_offer.id) is False

    @pytest.mark.asyncio
    async def test_duplicate_save_is_precondition_failure(
        self, saved_offer_service: SavedOfferService, open_offer
    ):
        offer_id = open_offer.id
        await saved_offer_service.save_offer(TAKER_ID, offer_id)

        with pytest.raises(PreconditionFailed) as exc_info:
            await saved_offer_service.save_offer(TAKER_ID, offer_id)

        assert exc_info.value.detail == "Offer already saved"
        assert await saved_offer_service.is_saved(TAKER_ID, offer_id) is True

    @pytest.mark.asyncio
    async def test_unknown_offer(self, saved_offer_service: SavedOfferService):
        with pytest.raises(NotFound):
            await saved_offer_service.save_offer(TAKER_ID, 999)

    @pytest.mark.asyncio
    async def test_unsave_is_idempotent(self, saved_offer_service: SavedOfferService, open_offer):
        await saved_offer_service.save_offer(TAKER_ID, open_offer.id)

        assert await saved_offer_service.unsave_offer(TAKER_ID, open_offer.id) is True
        assert await saved_offer_service.unsave_offer(TAKER_ID, open_offer.id) is False
        assert await saved_offer_service.is_saved(TAKER_ID, open_offer.id) is False

    @pytest.mark.asyncio
    async def test_toggle(self, saved_offer_service: SavedOfferService, open_offer):
        assert await saved_offer_service.toggle_save(TAKER_ID, open_offer.id) is True
        assert await saved_offer_service.is_saved(TAKER_ID, open_offer.id) is True

        assert await saved_offer_service.toggle_save(TAKER_ID, open_offer.id) is False
        assert await saved_offer_service.is_saved(TAKER_ID, open_offer.id) is False

    @pytest.mark.asyncio
    async def test_deleted_offer_drops_bookmarks(
        self, saved_offer_service: SavedOfferService, offer_service: OfferService, open_offer
    ):
        offer_id = open_offer.id
        await saved_offer_service.save_offer(TAKER_ID, offer_id)

        await offer_service.delete_offer(offer_id, POSTER_ID)

        saved, total = await saved_offer_service.list_saved(TAKER_ID)
        assert saved == []
        assert total == 0


class TestListSaved:

    @pytest.mark.asyncio
    async def test_newest_first_with_offer_details(
        self, saved_offer_service: SavedOfferService, offer_service: OfferService
    ):
        first = await offer_service.create_offer(POSTER_ID, offer_payload(title="Fix my bike chain"))
        second = await offer_service.create_offer(POSTER_ID, offer_payload(title="Walk the dog daily"))
        await saved_offer_service.save_offer(TAKER_ID, first.id)
        await saved_offer_service.save_offer(TAKER_ID, second.id)
        await saved_offer_service.save_offer(OTHER_USER_ID, first.id)

        saved, total = await saved_offer_service.list_saved(TAKER_ID)

        assert total == 2
        assert [row.offer_id for row in saved] == [second.id, first.id]
        assert saved[0].offer.title == "Walk the dog daily"

    @pytest.mark.asyncio
    async def test_filters_sorting_and_paging(
        self, saved_offer_service: SavedOfferService, offer_service: OfferService
    ):
        cheap = await offer_service.create_offer(POSTER_ID, offer_payload(price="10.00"))
        pricey = await offer_service.create_offer(
            POSTER_ID, offer_payload(price="80.00", category_id=2)
        )
        cancelled = await offer_service.create_offer(POSTER_ID, offer_payload(price="40.00"))
        for offer in (cheap, pricey, cancelled):
            await saved_offer_service.save_offer(TAKER_ID, offer.id)
        await offer_service.change_status(cancelled.id, POSTER_ID, OfferStatus.CANCELLED)

        by_price, _ = await saved_offer_service.list_saved(
            TAKER_ID, {"sort_by": "price", "sort_order": "asc"}
        )
        assert [row.offer.price for row in by_price] == [
            Decimal("10.00"),
            Decimal("40.00"),
            Decimal("80.00"),
        ]

        open_only, total = await saved_offer_service.list_saved(
            TAKER_ID, {"offer_status": OfferStatus.OPEN}
        )
        assert total == 2
        assert {row.offer_id for row in open_only} == {cheap.id, pricey.id}

        in_category, total = await saved_offer_service.list_saved(TAKER_ID, {"category_id": 2})
        assert total == 1
        assert in_category[0].offer_id == pricey.id

        page, total = await saved_offer_service.list_saved(TAKER_ID, {"limit": 1, "offset": 1})
        assert total == 3
        assert len(page) == 1

    @pytest.mark.asyncio
    async def test_invalid_params(self, saved_offer_service: SavedOfferService):
        with pytest.raises(ValidationFailed):
            await saved_offer_service.list_saved(TAKER_ID, {"limit": 0})


class TestSavedOffersAPI:

    @pytest.mark.asyncio
    async def test_save_list_and_unsave(self, async_client: AsyncClient):
        created = await async_client.post(
            "/api/offers", json=offer_payload(), headers=get_auth_headers(POSTER_ID)
        )
        offer_id = created.json()["id"]
        headers = get_auth_headers(TAKER_ID)

        response = await async_client.post(f"/api/offers/{offer_id}/save", headers=headers)
        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["offer_id"] == offer_id

        duplicate = await async_client.post(f"/api/offers/{offer_id}/save", headers=headers)
        assert duplicate.status_code == status.HTTP_409_CONFLICT
        assert duplicate.json()["error"] == "precondition_failed"

        check = await async_client.get(f"/api/offers/{offer_id}/save", headers=headers)
        assert check.json() == {"offer_id": offer_id, "is_saved": True}

        listing = await async_client.get("/api/offers/saved", headers=headers)
        assert listing.status_code == status.HTTP_200_OK
        body = listing.json()
        assert body["total"] == 1
        assert body["saved_offers"][0]["offer"]["id"] == offer_id
        assert body["saved_offers"][0]["saved_id"] == response.json()["id"]

        removed = await async_client.delete(f"/api/offers/{offer_id}/save", headers=headers)
        assert removed.status_code == status.HTTP_204_NO_CONTENT

        check = await async_client.get(f"/api/offers/{offer_id}/save", headers=headers)
        assert check.json()["is_saved"] is False

    @pytest.mark.asyncio
    async def test_toggle_endpoint(self, async_client: AsyncClient):
        created = await async_client.post(
            "/api/offers", json=offer_payload(), headers=get_auth_headers(POSTER_ID)
        )
        offer_id = created.json()["id"]
        headers = get_auth_headers(TAKER_ID)

        first = await async_client.put(f"/api/offers/{offer_id}/save", headers=headers)
        second = await async_client.put(f"/api/offers/{offer_id}/save", headers=headers)

        assert first.json()["is_saved"] is True
        assert second.json()["is_saved"] is False

    @pytest.mark.asyncio
    async def test_requires_authentication(self, async_client: AsyncClient):
        response = await async_client.get("/api/offers/saved")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
