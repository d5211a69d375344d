"""
Redemption store

Every method takes the caller's session and never commits, so the
settlement workflow can read, link and roll back inside one transaction.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.common.listing import ColumnFilter, ColumnSpec, ColumnTable, FilterKind, SortOrder
from app.modules.giftcards.models import GiftCard
from app.modules.negotiation_invoices.models import NegotiationInvoice
from app.modules.redemptions.models import Redemption
from app.modules.shops.models import Shop

IssuerShop = aliased(Shop, name="issuer_shop")
RedeemedShop = aliased(Shop, name="redeemed_shop")


class RedemptionColumn(str, Enum):
    CODE = "code"
    AMOUNT = "amount"
    REDEEMED_SHOP = "redeemed_shop"
    STUDIO_NAME = "studio_name"
    REDEEMED_DATE = "redeemed_date"
    NEGOTIATION_INVOICE = "negotiation_invoice"
    INVOICE_NUMBER = "invoice_number"
    CREATED_AT = "created_at"


REDEMPTION_COLUMNS = ColumnTable(RedemptionColumn, {
    RedemptionColumn.CODE: ColumnSpec(GiftCard.code),
    RedemptionColumn.AMOUNT: ColumnSpec(Redemption.amount, FilterKind.NUMBER),
    RedemptionColumn.REDEEMED_SHOP: ColumnSpec(RedeemedShop.studio_name),
    RedemptionColumn.STUDIO_NAME: ColumnSpec(IssuerShop.studio_name),
    RedemptionColumn.REDEEMED_DATE: ColumnSpec(Redemption.redeemed_date, FilterKind.DATE_RANGE, searchable=False),
    RedemptionColumn.NEGOTIATION_INVOICE: ColumnSpec(NegotiationInvoice.invoice_number),
    # Alias kept for sorting by the invoice number column
    RedemptionColumn.INVOICE_NUMBER: ColumnSpec(NegotiationInvoice.invoice_number, searchable=False),
    RedemptionColumn.CREATED_AT: ColumnSpec(Redemption.created_at, FilterKind.DATE_RANGE, searchable=False),
})


class RedemptionCRUD:
    """Persistence and settlement queries for redemptions"""

    async def create(self, db: AsyncSession, **fields) -> Redemption:
        redemption = Redemption(**fields)
        db.add(redemption)
        await db.flush()
        return redemption

    async def get(self, db: AsyncSession, redemption_id: UUID, for_update: bool = False) -> Optional[Redemption]:
        query = select(Redemption).where(Redemption.id == redemption_id, Redemption.not_deleted())
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def find_unbilled_for_negotiation(
        self,
        db: AsyncSession,
        shop_id: UUID,
        admin_shop_id: UUID,
        start_date: datetime,
        end_date: datetime
    ) -> Sequence:
        """
        Redemptions at ``shop_id`` in ``[start_date, end_date]`` that no
        negotiation invoice has claimed yet, restricted to LIVE cards issued by
        the admin shop. Newest first.

        Rows are ``(id, code, amount, fees, redeemed_date)`` projections.
        """
        query = (
            select(
                Redemption.id,
                GiftCard.code,
                Redemption.amount,
                Redemption.fees,
                Redemption.redeemed_date
            )
            .join(GiftCard, Redemption.giftcard_id == GiftCard.id)
            .where(
                GiftCard.live_issued_by(admin_shop_id),
                Redemption.redeemed_shop_id == shop_id,
                Redemption.redeemed_date.between(start_date, end_date),
                Redemption.negotiation_invoice_id.is_(None),
                Redemption.not_deleted()
            )
            .order_by(Redemption.redeemed_date.desc(), Redemption.id)
        )
        result = await db.execute(query)
        return result.all()

    async def claim_for_negotiation_invoice(
        self, db: AsyncSession, redemption_ids: List[UUID], invoice_id: UUID
    ) -> int:
        """
        Link unclaimed redemptions to ``invoice_id``.

        Rows that another invoice claimed in the meantime are left alone; the
        returned row count tells the caller whether it got all of them.
        """
        if not redemption_ids:
            return 0
        query = (
            update(Redemption)
            .where(
                Redemption.id.in_(redemption_ids),
                Redemption.negotiation_invoice_id.is_(None),
                Redemption.not_deleted()
            )
            .values(negotiation_invoice_id=invoice_id)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(query)
        return result.rowcount

    async def get_many(
        self,
        db: AsyncSession,
        limit: int,
        offset: int,
        sort_by: Optional[str] = None,
        sort_order: SortOrder = SortOrder.DESC,
        search_value: Optional[str] = None,
        column_filters: Optional[List[ColumnFilter]] = None,
        shop_id: Optional[UUID] = None
    ) -> Tuple[Sequence, int]:
        """Redemptions with card, issuer, redeemed shop and invoice number, plus the total count"""
        query = (
            select(
                Redemption,
                GiftCard.code,
                GiftCard.available_amount,
                IssuerShop.studio_name.label("issuer_studio_name"),
                RedeemedShop.studio_name.label("redeemed_studio_name"),
                NegotiationInvoice.invoice_number
            )
            .join(GiftCard, Redemption.giftcard_id == GiftCard.id)
            .join(IssuerShop, GiftCard.shop_id == IssuerShop.id)
            .join(RedeemedShop, Redemption.redeemed_shop_id == RedeemedShop.id)
            .outerjoin(
                NegotiationInvoice,
                (Redemption.negotiation_invoice_id == NegotiationInvoice.id) & NegotiationInvoice.not_deleted()
            )
            .where(
                Redemption.not_deleted(),
                GiftCard.not_deleted(),
                IssuerShop.deleted_at.is_(None),
                RedeemedShop.deleted_at.is_(None)
            )
        )
        if shop_id:
            query = query.where(Redemption.redeemed_shop_id == shop_id)

        query = REDEMPTION_COLUMNS.apply_filters(query, search_value, column_filters)

        count_query = select(func.count()).select_from(query.order_by(None).subquery())
        total = (await db.execute(count_query)).scalar_one()

        query = REDEMPTION_COLUMNS.order_by(query, sort_by, sort_order, default=Redemption.redeemed_date.desc())
        result = await db.execute(query.offset(offset).limit(limit))
        return result.all(), total


redemption_crud = RedemptionCRUD()
