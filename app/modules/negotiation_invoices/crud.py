"""
CRUD and reporting queries for negotiation invoices
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.common.listing import ColumnFilter, ColumnSpec, ColumnTable, FilterKind, SortOrder
from app.modules.giftcards.models import GiftCard
from app.modules.negotiation_invoices.models import NegotiationInvoice
from app.modules.redemptions.models import Redemption
from app.modules.shops.models import Shop


class NegotiationInvoiceColumn(str, Enum):
    STUDIO_NAME = "studio_name"
    IBAN = "iban"
    INVOICE_IBAN = "invoice_iban"
    INVOICE_NUMBER = "invoice_number"
    TOTAL_AMOUNT = "total_amount"
    TOTAL_FEES = "total_fees"
    TOTAL_PAYOUT = "total_payout"
    INVOICE_DATE = "invoice_date"


_total_amount = func.round(func.sum(Redemption.amount), 2)
_total_fees = func.round(func.sum(Redemption.fees), 2)

# Redemptions grouped per (redeemed shop, invoice); unbilled ones form their own group
ADMIN_COLUMNS = ColumnTable(NegotiationInvoiceColumn, {
    NegotiationInvoiceColumn.STUDIO_NAME: ColumnSpec(Shop.studio_name),
    NegotiationInvoiceColumn.IBAN: ColumnSpec(Shop.iban),
    NegotiationInvoiceColumn.INVOICE_IBAN: ColumnSpec(NegotiationInvoice.iban),
    NegotiationInvoiceColumn.INVOICE_NUMBER: ColumnSpec(NegotiationInvoice.invoice_number),
    NegotiationInvoiceColumn.TOTAL_AMOUNT: ColumnSpec(_total_amount, FilterKind.NUMBER),
    NegotiationInvoiceColumn.TOTAL_FEES: ColumnSpec(_total_fees, FilterKind.NUMBER),
    NegotiationInvoiceColumn.TOTAL_PAYOUT: ColumnSpec(_total_amount - _total_fees, FilterKind.NUMBER),
    NegotiationInvoiceColumn.INVOICE_DATE: ColumnSpec(NegotiationInvoice.date, FilterKind.DATE_RANGE, searchable=False),
}, aggregated=True)

# Persisted invoices of one shop
SHOP_COLUMNS = ColumnTable(NegotiationInvoiceColumn, {
    NegotiationInvoiceColumn.STUDIO_NAME: ColumnSpec(Shop.studio_name),
    NegotiationInvoiceColumn.IBAN: ColumnSpec(NegotiationInvoice.iban),
    NegotiationInvoiceColumn.INVOICE_IBAN: ColumnSpec(NegotiationInvoice.iban, searchable=False),
    NegotiationInvoiceColumn.INVOICE_NUMBER: ColumnSpec(NegotiationInvoice.invoice_number),
    NegotiationInvoiceColumn.TOTAL_AMOUNT: ColumnSpec(NegotiationInvoice.redeemed_amount, FilterKind.NUMBER),
    NegotiationInvoiceColumn.TOTAL_FEES: ColumnSpec(NegotiationInvoice.fee_amount, FilterKind.NUMBER),
    NegotiationInvoiceColumn.TOTAL_PAYOUT: ColumnSpec(NegotiationInvoice.payout_amount, FilterKind.NUMBER),
    NegotiationInvoiceColumn.INVOICE_DATE: ColumnSpec(NegotiationInvoice.date, FilterKind.DATE_RANGE, searchable=False),
})


class NegotiationInvoiceCRUD:

    async def create(self, db: AsyncSession, **fields) -> NegotiationInvoice:
        invoice = NegotiationInvoice(**fields)
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
        sort_order: SortOrder = SortOrder.DESC,
        search_value: Optional[str] = None,
        column_filters: Optional[List[ColumnFilter]] = None
    ) -> Tuple[Sequence, int]:
        """
        Redemptions of LIVE admin cards in the period, grouped by redeemed shop
        and negotiation invoice. Rows carry raw sums; callers truncate them.
        """
        query = (
            select(
                Redemption.redeemed_shop_id.label("shop_id"),
                Shop.studio_name,
                Shop.iban,
                NegotiationInvoice.invoice_number,
                NegotiationInvoice.pdf_url,
                NegotiationInvoice.iban.label("invoice_iban"),
                NegotiationInvoice.date.label("invoice_date"),
                func.sum(Redemption.amount).label("total_amount"),
                func.sum(Redemption.fees).label("total_fees")
            )
            .join(GiftCard, Redemption.giftcard_id == GiftCard.id)
            .join(Shop, Redemption.redeemed_shop_id == Shop.id)
            .outerjoin(
                NegotiationInvoice,
                (Redemption.negotiation_invoice_id == NegotiationInvoice.id) & NegotiationInvoice.not_deleted()
            )
            .where(
                GiftCard.live_issued_by(admin_shop_id),
                GiftCard.not_deleted(),
                Redemption.redeemed_date.between(start_date, end_date),
                Redemption.not_deleted()
            )
            .group_by(
                Redemption.redeemed_shop_id,
                NegotiationInvoice.id,
                Shop.studio_name,
                Shop.iban,
                NegotiationInvoice.invoice_number,
                NegotiationInvoice.pdf_url,
                NegotiationInvoice.iban,
                NegotiationInvoice.date
            )
        )
        query = ADMIN_COLUMNS.apply_filters(query, search_value, column_filters)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await db.execute(count_query)).scalar_one()

        query = ADMIN_COLUMNS.order_by(query, sort_by, sort_order, default=Shop.studio_name.asc())
        result = await db.execute(query.offset(offset).limit(limit))
        return result.all(), total

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
            select(NegotiationInvoice, Shop.studio_name, Shop.iban.label("shop_iban"))
            .join(Shop, NegotiationInvoice.shop_id == Shop.id)
            .where(
                NegotiationInvoice.shop_id == shop_id,
                NegotiationInvoice.date.between(start_date, end_date),
                NegotiationInvoice.not_deleted()
            )
        )
        query = SHOP_COLUMNS.apply_filters(query, search_value, column_filters)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await db.execute(count_query)).scalar_one()

        query = SHOP_COLUMNS.order_by(query, sort_by, sort_order, default=NegotiationInvoice.date.desc())
        result = await db.execute(query.offset(offset).limit(limit))
        return result.all(), total


negotiation_invoice_crud = NegotiationInvoiceCRUD()
