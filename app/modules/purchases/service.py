from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.common.exceptions import ConfigurationError, ShopNotFound
from app.common.money import percentage_fee
from app.modules.purchases.crud import purchase_crud
from app.modules.purchases.models import Purchase, PurchaseMode, TransactionStatus
from app.modules.shops.crud import shop_crud
from app.modules.shops.models import Shop

logger = logging.getLogger(__name__)


def purchase_fee(amount: Decimal, shop: Shop) -> Decimal:
    """Platform fee the shop owes for selling ``amount`` worth of gift cards."""
    if shop.platform_fee is None or shop.fixed_payment_fee is None:
        raise ConfigurationError("platform fee or fixed payment fee not defined")
    return percentage_fee(amount, shop.platform_fee, shop.fixed_payment_fee)


class PurchaseService:
    """Stores customer purchases together with the platform fee they incur"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record_purchase(
        self,
        shop_id: UUID,
        total_amount: Decimal,
        invoice_number: Optional[str] = None,
        transaction_status: TransactionStatus = TransactionStatus.COMPLETED,
        invoice_mode: PurchaseMode = PurchaseMode.LIVE,
        date: Optional[datetime] = None
    ) -> Purchase:
        try:
            shop = await shop_crud.get_shop(self.db, shop_id)
            if not shop:
                raise ShopNotFound()

            purchase = await purchase_crud.create(
                self.db,
                shop_id=shop.id,
                invoice_number=invoice_number,
                total_amount=total_amount,
                fees=purchase_fee(total_amount, shop),
                transaction_status=transaction_status,
                invoice_mode=invoice_mode,
                date=date or datetime.now(timezone.utc)
            )
            await self.db.commit()
            logger.info(f"Purchase {purchase.id} recorded for shop {shop.id}: {total_amount} (fees {purchase.fees})")
            return purchase
        except Exception:
            await self.db.rollback()
            raise
