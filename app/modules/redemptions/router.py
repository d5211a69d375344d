"""
Redemption endpoints
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.dependencies.dbDependecies import async_db_dependency
from app.dependencies.listingDependencies import list_params_dependency
from app.modules.redemptions.schemas import (
    RedemptionCreate, RedemptionList, RedemptionOut, RedemptionUpdate, RedemptionUpdateResult
)
from app.modules.redemptions.service import RedemptionService

router = APIRouter(prefix="/redemptions", tags=["Redemptions"])


@router.get("/", response_model=RedemptionList)
async def list_redemptions(
    db: async_db_dependency,
    params: list_params_dependency,
    shop_id: Optional[UUID] = Query(None, description="Only redemptions issued by or redeemed at this shop")
):
    service = RedemptionService(db)
    return await service.list_redemptions(
        page=params.page,
        size=params.size,
        sort_by=params.sort_by,
        sort_order=params.sort_order,
        search_value=params.search_value,
        column_filters=params.column_filters,
        shop_id=shop_id
    )


@router.post("/", response_model=RedemptionOut, status_code=status.HTTP_201_CREATED)
async def redeem_giftcard(data: RedemptionCreate, db: async_db_dependency):
    """Redeem part or all of a gift card balance at a shop"""
    service = RedemptionService(db)
    return await service.redeem_giftcard(data)


@router.patch("/{redemption_id}", response_model=RedemptionUpdateResult)
async def update_redemption(redemption_id: UUID, data: RedemptionUpdate, db: async_db_dependency):
    """
    Correct the amount, shop or comment of a redemption.

    Redemptions already on a negotiation invoice only accept comment changes.
    """
    service = RedemptionService(db)
    return await service.update_redemption(redemption_id, data)
