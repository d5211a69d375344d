"""
CRUD operations for customer purchases and refunds
"""
from datetime import datetime
from typing import List, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.purchases.models import Purchase, PurchaseMode, Refund, TransactionStatus


class PurchaseCRUD:
    """Purchases and refunds as a payment invoice sees them"""

    async def create(self, db: AsyncSession, **fields) -> Purchase:
        purchase = Purchase(**fields)
        db.add(purchase)
        await db.flush()
        return purchase

    async def create_refund(self, db: AsyncSession, **fields) -> Refund:
        refund = Refund(**fields)
        db.add(refund)
        await db.flush()
        return refund

    async def find_unbilled_purchases(
        self, db: AsyncSession, shop_id: UUID, start_date: datetime, end_date: datetime
    ) -> Sequence:
        """Completed LIVE purchases of the shop in range without a payment invoice, newest first."""
        query = (
            select(
                Purchase.id,
                Purchase.invoice_number,
                Purchase.total_amount,
                Purchase.fees,
                Purchase.date
            )
            .where(
                Purchase.shop_id == shop_id,
                Purchase.date.between(start_date, end_date),
                Purchase.transaction_status == TransactionStatus.COMPLETED,
                Purchase.invoice_mode == PurchaseMode.LIVE,
                Purchase.payment_invoice_id.is_(None),
                Purchase.not_deleted()
            )
            .order_by(Purchase.date.desc(), Purchase.id)
        )
        result = await db.execute(query)
        return result.all()

    async def find_unbilled_refunds(
        self, db: AsyncSession, shop_id: UUID, start_date: datetime, end_date: datetime
    ) -> Sequence:
        query = (
            select(
                Refund.id,
                Refund.invoice_number,
                Refund.refund_amount,
                Refund.tax_amount,
                Refund.date
            )
            .where(
                Refund.shop_id == shop_id,
                Refund.date.between(start_date, end_date),
                Refund.payment_invoice_id.is_(None),
                Refund.not_deleted()
            )
            .order_by(Refund.date.desc(), Refund.id)
        )
        result = await db.execute(query)
        return result.all()

    async def _claim(self, db: AsyncSession, model, ids: List[UUID], invoice_id: UUID) -> int:
        if not ids:
            return 0
        query = (
            update(model)
            .where(
                model.id.in_(ids),
                model.payment_invoice_id.is_(None),
                model.not_deleted()
            )
            .values(payment_invoice_id=invoice_id)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(query)
        return result.rowcount

    async def claim_purchases(self, db: AsyncSession, purchase_ids: List[UUID], invoice_id: UUID) -> int:
        return await self._claim(db, Purchase, purchase_ids, invoice_id)

    async def claim_refunds(self, db: AsyncSession, refund_ids: List[UUID], invoice_id: UUID) -> int:
        return await self._claim(db, Refund, refund_ids, invoice_id)


purchase_crud = PurchaseCRUD()
