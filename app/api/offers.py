from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal

from fastapi import APIRouter, Query, Response, status

from app.config import settings
from app.core.dependencies import CurrentUserId, OfferServiceDep, SavedOfferServiceDep
from app.models.offer import Offer, OfferStatus, OfferType
from app.schemas.offer import (
    OfferCreate,
    OfferListResponse,
    OfferPermissionsRead,
    OfferRead,
    OfferStatusChange,
    OfferUpdate,
)
from app.schemas.saved_offer import (
    SavedOfferItem,
    SavedOfferListResponse,
    SavedOfferRead,
    SaveStatusResponse,
)
from app.services.offer_service import OfferService

router = APIRouter()


async def _with_permissions(
    service: OfferService, offer: Offer, user_id: int
) -> OfferRead:
    permissions = await service.permissions_for(offer, user_id)
    return OfferRead.model_validate(offer).model_copy(
        update={"permissions": OfferPermissionsRead.model_validate(permissions)}
    )


@router.post("", response_model=OfferRead, status_code=status.HTTP_201_CREATED)
async def create_offer(
    data: OfferCreate,
    current_user_id: CurrentUserId,
    service: OfferServiceDep,
) -> OfferRead:
    offer = await service.create_offer(current_user_id, data)
    return await _with_permissions(service, offer, current_user_id)


@router.get("", response_model=OfferListResponse)
async def search_offers(
    current_user_id: CurrentUserId,
    service: OfferServiceDep,
    query: Annotated[str | None, Query()] = None,
    category_id: Annotated[int | None, Query()] = None,
    type: Annotated[OfferType | None, Query()] = None,
    min_price: Annotated[Decimal | None, Query()] = None,
    max_price: Annotated[Decimal | None, Query()] = None,
    has_deadline: Annotated[bool | None, Query()] = None,
    deadline_before: Annotated[datetime | None, Query()] = None,
    tags: Annotated[list[str] | None, Query()] = None,
    sort_by: Annotated[Literal["created_at", "price", "deadline"], Query()] = "created_at",
    sort_order: Annotated[Literal["asc", "desc"], Query()] = "desc",
    limit: Annotated[int, Query(ge=1, le=100)] = settings.OFFER_SEARCH_PAGE_SIZE,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> OfferListResponse:
    params = {
        "query": query,
        "category_id": category_id,
        "type": type,
        "min_price": min_price,
        "max_price": max_price,
        "has_deadline": has_deadline,
        "deadline_before": deadline_before,
        "tags": tags,
        "sort_by": sort_by,
        "sort_order": sort_order,
        "limit": limit,
        "offset": offset,
    }
    offers, total = await service.search_offers(
        {key: value for key, value in params.items() if value is not None}
    )
    return OfferListResponse(
        offers=[OfferRead.model_validate(offer) for offer in offers],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/mine", response_model=list[OfferRead])
async def get_my_offers(
    current_user_id: CurrentUserId,
    service: OfferServiceDep,
    status_filter: Annotated[OfferStatus | None, Query(alias="status")] = None,
) -> list[OfferRead]:
    offers = await service.find_by_participant(current_user_id, status_filter)
    return [await _with_permissions(service, offer, current_user_id) for offer in offers]


@router.get("/saved", response_model=SavedOfferListResponse)
async def get_saved_offers(
    current_user_id: CurrentUserId,
    service: SavedOfferServiceDep,
    category_id: Annotated[int | None, Query()] = None,
    offer_status: Annotated[OfferStatus | None, Query()] = None,
    sort_by: Annotated[
        Literal["created_at", "offer_created_at", "price"], Query()
    ] = "created_at",
    sort_order: Annotated[Literal["asc", "desc"], Query()] = "desc",
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> SavedOfferListResponse:
    params = {
        "category_id": category_id,
        "offer_status": offer_status,
        "sort_by": sort_by,
        "sort_order": sort_order,
        "limit": limit,
        "offset": offset,
    }
    saved, total = await service.list_saved(
        current_user_id, {key: value for key, value in params.items() if value is not None}
    )
    return SavedOfferListResponse(
        saved_offers=[
            SavedOfferItem(
                saved_id=row.id,
                saved_at=row.created_at,
                offer=OfferRead.model_validate(row.offer),
            )
            for row in saved
        ],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{offer_id}", response_model=OfferRead)
async def get_offer(
    offer_id: int,
    current_user_id: CurrentUserId,
    service: OfferServiceDep,
) -> OfferRead:
    offer = await service.get_offer(offer_id)
    return await _with_permissions(service, offer, current_user_id)


@router.patch("/{offer_id}", response_model=OfferRead)
async def update_offer(
    offer_id: int,
    data: OfferUpdate,
    current_user_id: CurrentUserId,
    service: OfferServiceDep,
) -> OfferRead:
    offer = await service.update_offer(offer_id, current_user_id, data)
    return await _with_permissions(service, offer, current_user_id)


@router.post("/{offer_id}/status", response_model=OfferRead)
async def change_offer_status(
    offer_id: int,
    data: OfferStatusChange,
    current_user_id: CurrentUserId,
    service: OfferServiceDep,
) -> OfferRead:
    offer = await service.change_status(offer_id, current_user_id, data.status)
    return await _with_permissions(service, offer, current_user_id)


@router.delete("/{offer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_offer(
    offer_id: int,
    current_user_id: CurrentUserId,
    service: OfferServiceDep,
) -> Response:
    await service.delete_offer(offer_id, current_user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{offer_id}/save", response_model=SaveStatusResponse)
async def get_save_status(
    offer_id: int,
    current_user_id: CurrentUserId,
    service: SavedOfferServiceDep,
) -> SaveStatusResponse:
    is_saved = await service.is_saved(current_user_id, offer_id)
    return SaveStatusResponse(offer_id=offer_id, is_saved=is_saved)


@router.post(
    "/{offer_id}/save",
    response_model=SavedOfferRead,
    status_code=status.HTTP_201_CREATED,
)
async def save_offer(
    offer_id: int,
    current_user_id: CurrentUserId,
    service: SavedOfferServiceDep,
) -> SavedOfferRead:
    saved = await service.save_offer(current_user_id, offer_id)
    return SavedOfferRead.model_validate(saved)


@router.put("/{offer_id}/save", response_model=SaveStatusResponse)
async def toggle_saved_offer(
    offer_id: int,
    current_user_id: CurrentUserId,
    service: SavedOfferServiceDep,
) -> SaveStatusResponse:
    is_saved = await service.toggle_save(current_user_id, offer_id)
    return SaveStatusResponse(offer_id=offer_id, is_saved=is_saved)


@router.delete("/{offer_id}/save", status_code=status.HTTP_204_NO_CONTENT)
async def unsave_offer(
    offer_id: int,
    current_user_id: CurrentUserId,
    service: SavedOfferServiceDep,
) -> Response:
    await service.unsave_offer(current_user_id, offer_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
