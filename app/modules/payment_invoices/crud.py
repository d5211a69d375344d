"""
CRUD and reporting queries for payment invoices
"""
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.common.listing import ColumnFilter, ColumnSpec, ColumnTable, FilterKind, SortOrder
from app.modules.payment_invoices.models import PaymentInvoice
from app.modules.purchases.models import Purchase, PurchaseMode, Refund, TransactionStatus
from app.modules.shops.models import Shop


class PaymentInvoiceColumn(str, Enum):
    STUDIO_NAME = "studio_name"
    INVOICE_NUMBER = "invoice_number"
    TOTAL_AMOUNT = "total_amount"
    TOTAL_FEES = "total_fees"
    INVOICE_DATE = "invoice_date"


# Persisted invoices of one shop
PAYMENT_INVOICE_COLUMNS = ColumnTable(PaymentInvoiceColumn, {
    PaymentInvoiceColumn.STUDIO_NAME: ColumnSpec(Shop.studio_name),
    PaymentInvoiceColumn.INVOICE_NUMBER: ColumnSpec(PaymentInvoice.invoice_number),
    PaymentInvoiceColumn.TOTAL_AMOUNT: ColumnSpec(PaymentInvoice.purchased_amount, FilterKind.NUMBER),
    PaymentInvoiceColumn.TOTAL_FEES: ColumnSpec(PaymentInvoice.fee_amount, FilterKind.NUMBER),
    PaymentInvoiceColumn.INVOICE_DATE: ColumnSpec(PaymentInvoice.date, FilterKind.DATE_RANGE, searchable=False),
})

_purchased = func.round(func.sum(Purchase.total_amount), 2)
_fees = func.round(func.sum(Purchase.fees), 2)

# Purchases grouped per (shop, invoice); unbilled ones form their own group.
# Amount filters see the purchase volume before refunds.
ADMIN_COLUMNS = ColumnTable(PaymentInvoiceColumn, {
    PaymentInvoiceColumn.STUDIO_NAME: ColumnSpec(Shop.studio_name),
    PaymentInvoiceColumn.INVOICE_NUMBER: ColumnSpec(PaymentInvoice.invoice_number),
    PaymentInvoiceColumn.TOTAL_AMOUNT: ColumnSpec(_purchased, FilterKind.NUMBER),
    PaymentInvoiceColumn.TOTAL_FEES: ColumnSpec(_fees, FilterKind.NUMBER),
    PaymentInvoiceColumn.INVOICE_DATE: ColumnSpec(PaymentInvoice.date, FilterKind.DATE_RANGE, searchable=False),
}, aggregated=True)


class PaymentInvoiceCRUD:

    async def create(self, db: AsyncSession, **fields) -> PaymentInvoice:
        invoice = PaymentInvoice(**fields)
        db.add(invoice)
        await db.flush()
        return invoice

    async def get_grouped_for_admin(
        self,
        db: AsyncSession,
        admin_shop_id: UUID,
        start_date: datetime,
        end_date: datetime,
        limit: int,
        offset: int,
        sort_by: Optional[str] = None,
        sort_order: SortOrder = SortOrder.ASC,
        search_value: Optional[str] = None,
        column_filters: Optional[List[ColumnFilter]] = None
    ) -> Tuple[Sequence, int]:
        """
        Completed LIVE purchases of partner shops in the period, grouped by
        shop and payment invoice. Rows carry raw sums; callers truncate them.
        """
        query = (
            select(
                Purchase.shop_id,
                PaymentInvoice.id.label("payment_invoice_id"),
                Shop.studio_name,
                PaymentInvoice.invoice_number,
                PaymentInvoice.pdf_url,
                PaymentInvoice.date.label("invoice_date"),
                func.sum(Purchase.total_amount).label("total_amount"),
                func.sum(Purchase.fees).label("total_fees")
            )
            .join(Shop, Purchase.shop_id == Shop.id)
            .outerjoin(
                PaymentInvoice,
                (Purchase.payment_invoice_id == PaymentInvoice.id) & PaymentInvoice.not_deleted()
            )
            .where(
                Purchase.shop_id != admin_shop_id,
                Purchase.date.between(start_date, end_date),
                Purchase.transaction_status == TransactionStatus.COMPLETED,
                Purchase.invoice_mode == PurchaseMode.LIVE,
                Purchase.not_deleted()
            )
            .group_by(
                Purchase.shop_id,
                PaymentInvoice.id,
                Shop.studio_name,
                PaymentInvoice.invoice_number,
                PaymentInvoice.pdf_url,
                PaymentInvoice.date
            )
        )
        query = ADMIN_COLUMNS.apply_filters(query, search_value, column_filters)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await db.execute(count_query)).scalar_one()

        query = ADMIN_COLUMNS.order_by(query, sort_by, sort_order, default=Shop.studio_name.asc())
        result = await db.execute(query.offset(offset).limit(limit))
        return result.all(), total

    async def get_refund_totals(
        self, db: AsyncSession, shop_ids: Iterable[UUID], start_date: datetime, end_date: datetime
    ) -> Dict[Tuple[UUID, Optional[UUID]], object]:
        """Refunded volume per (shop, payment invoice); unbilled refunds are keyed by ``None``."""
        shop_ids = list(shop_ids)
        if not shop_ids:
            return {}
        query = (
            select(
                Refund.shop_id,
                PaymentInvoice.id.label("payment_invoice_id"),
                func.sum(func.abs(Refund.refund_amount)).label("refunded")
            )
            .outerjoin(
                PaymentInvoice,
                (Refund.payment_invoice_id == PaymentInvoice.id) & PaymentInvoice.not_deleted()
            )
            .where(
                Refund.shop_id.in_(shop_ids),
                Refund.date.between(start_date, end_date),
                Refund.not_deleted()
            )
            .group_by(Refund.shop_id, PaymentInvoice.id)
        )
        result = await db.execute(query)
        return {(row.shop_id, row.payment_invoice_id): row.refunded for row in result.all()}

    async def get_many_for_shop(
        self,
        db: AsyncSession,
        shop_id: UUID,
        start_date: datetime,
        end_date: datetime,
        limit: int,
        offset: int,
        sort_by: Optional[str] = None,
        sort_order: SortOrder = SortOrder.DESC,
        search_value: Optional[str] = None,
        column_filters: Optional[List[ColumnFilter]] = None
    ) -> Tuple[Sequence, int]:
        query = (
            select(PaymentInvoice)
            .join(Shop, PaymentInvoice.shop_id == Shop.id)
            .where(
                PaymentInvoice.shop_id == shop_id,
                PaymentInvoice.date.between(start_date, end_date),
                PaymentInvoice.not_deleted()
            )
        )
        query = PAYMENT_INVOICE_COLUMNS.apply_filters(query, search_value, column_filters)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await db.execute(count_query)).scalar_one()

        query = PAYMENT_INVOICE_COLUMNS.order_by(query, sort_by, sort_order, default=PaymentInvoice.date.desc())
        result = await db.execute(query.offset(offset).limit(limit))
        return result.scalars().all(), total


payment_invoice_crud = PaymentInvoiceCRUD()
