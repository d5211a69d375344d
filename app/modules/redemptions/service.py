"""
Redemption lifecycle: redeeming gift cards, correcting redemptions and listing them.

Fees are only charged on cards issued by the platform shop; they are computed
with the fee schedule of the shop the card was redeemed at.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.common.exceptions import (
    ConfigurationError, GiftCardAmountExceeded, GiftCardModeMismatch, GiftCardNotFound,
    InvalidRedemptionShop, RedemptionAlreadyInvoiced, RedemptionNotFound,
    RedemptionShopChangeNotAllowed, ShopNotFound
)
from app.common.listing import ColumnFilter, SortOrder
from app.common.money import ZERO, percentage_fee, truncate_amount
from app.common.schemas import get_pagination
from app.modules.giftcards.crud import giftcard_crud
from app.modules.giftcards.models import GiftCard, GiftCardMode
from app.modules.redemptions.crud import redemption_crud
from app.modules.redemptions.models import Redemption
from app.modules.redemptions.schemas import (
    RedemptionCreate, RedemptionList, RedemptionListItem, RedemptionUpdate, RedemptionUpdateResult
)
from app.modules.shops.crud import shop_crud
from app.modules.shops.models import Shop, StudioMode

logger = logging.getLogger(__name__)


def redemption_fee(amount: Decimal, redeemed_shop: Shop) -> Decimal:
    """
    Platform fee for redeeming ``amount`` of an admin issued card at ``redeemed_shop``.

    A fee that would eat the whole amount is waived.
    """
    if redeemed_shop.platform_redeem_fee is None or redeemed_shop.fixed_payment_redeem_fee is None:
        raise ConfigurationError("platform redeem fee or fixed redeem fee not defined")
    fees = percentage_fee(amount, redeemed_shop.platform_redeem_fee, redeemed_shop.fixed_payment_redeem_fee)
    if fees >= amount:
        return ZERO
    return fees


def _card_matches_issuer_mode(giftcard: GiftCard, issuer: Shop) -> bool:
    live_card = giftcard.giftcard_mode == GiftCardMode.LIVE
    live_issuer = issuer.studio_mode == StudioMode.LIVE
    return live_card == live_issuer


class RedemptionService:
    """Redeem, correct and list gift card redemptions"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_shop(self, shop_id: UUID) -> Shop:
        shop = await shop_crud.get_shop(self.db, shop_id)
        if not shop:
            raise ShopNotFound()
        return shop

    async def redeem_giftcard(self, data: RedemptionCreate) -> Redemption:
        """Consume ``data.amount`` from a card and record the redemption."""
        try:
            giftcard = await giftcard_crud.get_by_code(self.db, data.giftcard_code, for_update=True)
            if not giftcard:
                raise GiftCardNotFound()

            issuer = await self._get_shop(giftcard.shop_id)
            redeemed_shop = await self._get_shop(data.redeemed_shop_id)

            if not _card_matches_issuer_mode(giftcard, issuer):
                raise GiftCardModeMismatch()

            fees = ZERO
            if issuer.is_platform_admin:
                if redeemed_shop.is_platform_admin:
                    raise InvalidRedemptionShop()
                if redeemed_shop.studio_mode != issuer.studio_mode:
                    raise GiftCardModeMismatch("Gift card cannot be redeemed at a studio in a different mode")
            else:
                # Cards of regular shops are always redeemed at the issuer
                redeemed_shop = issuer

            if data.amount > giftcard.available_amount:
                raise GiftCardAmountExceeded()

            if issuer.is_platform_admin:
                fees = redemption_fee(data.amount, redeemed_shop)

            redemption = await redemption_crud.create(
                self.db,
                giftcard_id=giftcard.id,
                redeemed_shop_id=redeemed_shop.id,
                issuer_shop_id=issuer.id,
                amount=data.amount,
                fees=fees,
                redeemed_date=datetime.now(timezone.utc)
            )
            giftcard.available_amount = truncate_amount(giftcard.available_amount - data.amount)

            await self.db.commit()
            await self.db.refresh(redemption)
            logger.info(f"Gift card {giftcard.id} redeemed at shop {redeemed_shop.id}: {data.amount} (fees {fees})")
            return redemption
        except Exception:
            await self.db.rollback()
            raise

    async def update_redemption(self, redemption_id: UUID, data: RedemptionUpdate) -> RedemptionUpdateResult:
        """
        Correct amount, redeemed shop or comment of a redemption.

        Amount and shop are frozen once a negotiation invoice settled the
        redemption. Changing the amount moves the difference back to or from
        the card balance; fees are recomputed for admin issued cards.
        """
        try:
            redemption = await redemption_crud.get(self.db, redemption_id, for_update=True)
            if not redemption:
                raise RedemptionNotFound()

            giftcard = await giftcard_crud.get(self.db, redemption.giftcard_id, for_update=True)
            if not giftcard:
                raise GiftCardNotFound()

            redeemed_shop = await self._get_shop(redemption.redeemed_shop_id)
            issuer = await self._get_shop(redemption.issuer_shop_id)

            amount_changed = data.amount is not None and data.amount != redemption.amount
            shop_changed = (
                data.redeemed_shop_id is not None and data.redeemed_shop_id != redemption.redeemed_shop_id
            )
            available_amount = giftcard.available_amount

            if amount_changed:
                if redemption.is_invoiced:
                    raise RedemptionAlreadyInvoiced()
                reset_available = truncate_amount(giftcard.available_amount + redemption.amount)
                if data.amount > reset_available:
                    raise GiftCardAmountExceeded()
                available_amount = truncate_amount(reset_available - data.amount)

            if shop_changed:
                if not issuer.is_platform_admin:
                    raise RedemptionShopChangeNotAllowed()
                if redemption.is_invoiced:
                    raise RedemptionAlreadyInvoiced()
                redeemed_shop = await self._get_shop(data.redeemed_shop_id)
                if redeemed_shop.is_platform_admin:
                    raise InvalidRedemptionShop()

            if amount_changed:
                redemption.amount = data.amount
                giftcard.available_amount = available_amount
            if shop_changed:
                redemption.redeemed_shop_id = redeemed_shop.id
            if data.comment is not None and data.comment != redemption.comment:
                redemption.comment = data.comment

            if (amount_changed or shop_changed) and issuer.is_platform_admin:
                redemption.fees = redemption_fee(Decimal(redemption.amount), redeemed_shop)

            await self.db.commit()
            logger.info(f"Redemption {redemption.id} updated")
            return RedemptionUpdateResult(available_amount=available_amount)
        except Exception:
            await self.db.rollback()
            raise

    async def list_redemptions(
        self,
        page: Optional[int] = None,
        size: Optional[int] = None,
        sort_by: Optional[str] = None,
        sort_order: SortOrder = SortOrder.DESC,
        search_value: Optional[str] = None,
        column_filters: Optional[List[ColumnFilter]] = None,
        shop_id: Optional[UUID] = None
    ) -> RedemptionList:
        limit, offset = get_pagination(page, size)
        rows, total = await redemption_crud.get_many(
            self.db,
            limit=limit,
            offset=offset,
            sort_by=sort_by,
            sort_order=sort_order,
            search_value=search_value,
            column_filters=column_filters,
            shop_id=shop_id
        )
        items = [
            RedemptionListItem(
                id=row.Redemption.id,
                code=row.code,
                amount=row.Redemption.amount,
                fees=row.Redemption.fees,
                available_amount=row.available_amount,
                redeemed_date=row.Redemption.redeemed_date,
                comment=row.Redemption.comment,
                studio_name=row.issuer_studio_name,
                redeemed_shop=row.redeemed_studio_name,
                invoice_number=row.invoice_number
            )
            for row in rows
        ]
        return RedemptionList(redemptions=items, total_redemptions=total)
