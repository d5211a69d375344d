"""
Pydantic schemas for redemptions
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.common.money import truncate_amount
from app.common.schemas import Money


class RedemptionCreate(BaseModel):
    giftcard_code: str = Field(..., min_length=1, max_length=50)
    amount: Decimal = Field(..., gt=0)
    redeemed_shop_id: UUID


class RedemptionUpdate(BaseModel):
    amount: Optional[Decimal] = Field(None, ge=0)
    redeemed_shop_id: Optional[UUID] = None
    comment: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def floor_amount(cls, v):
        # Edited amounts never credit more than what was typed
        if v is None:
            return v
        return truncate_amount(v, 2, mode="floor")


class RedemptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    giftcard_id: UUID
    redeemed_shop_id: UUID
    issuer_shop_id: UUID
    amount: Money
    fees: Money
    redeemed_date: datetime
    comment: Optional[str] = None
    negotiation_invoice_id: Optional[UUID] = None


class RedemptionUpdateResult(BaseModel):
    available_amount: Money


class RedemptionListItem(BaseModel):
    id: UUID
    code: str
    amount: Money
    fees: Money
    available_amount: Money
    redeemed_date: datetime
    comment: Optional[str] = None
    studio_name: Optional[str] = None  # Issuer
    redeemed_shop: Optional[str] = None
    invoice_number: Optional[str] = None


class RedemptionList(BaseModel):
    redemptions: List[RedemptionListItem]
    total_redemptions: int
