"""
Negotiation invoices: the payout documents the platform issues to shops for
redemptions of gift cards it issued itself.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.common.exceptions import NoRedemptionsForPeriod, RedemptionsAlreadyClaimed, ShopNotFound
from app.common.formatting import format_date_german, format_giftcard_code, invoice_timezone, to_utc
from app.common.listing import ColumnFilter, SortOrder
from app.common.money import ZERO, format_euro, truncate_amount
from app.common.schemas import get_pagination
from app.modules.email.notifier import NEGOTIATION_INVOICE_SUBJECT, NEGOTIATION_INVOICE_TEMPLATE
from app.modules.files.service import NEGOTIATION_INVOICE_FOLDER
from app.modules.invoice_numbers.service import InvoiceNumberAllocator
from app.modules.negotiation_invoices.crud import negotiation_invoice_crud
from app.modules.negotiation_invoices.models import NegotiationInvoice
from app.modules.negotiation_invoices.schemas import (
    InvoiceRedemption, NegotiationInvoiceList,
    NegotiationInvoicePdfData, NegotiationInvoiceSummary, PdfRedemption, RedemptionsOfInvoice
)
from app.modules.redemptions.crud import redemption_crud
from app.modules.settlements.documents import date_range_text, fee_line_item, fee_tax_split, invoice_party
from app.modules.settlements.workflow import SettlementRequest, SettlementWorkflow
from app.modules.shops.crud import shop_crud
from app.modules.shops.models import Shop, StudioMode

logger = logging.getLogger(__name__)

FEE_LINE_DESCRIPTION = "Vermittlungs-Provision"


def summarize_redemptions(rows: Sequence) -> RedemptionsOfInvoice:
    """
    Turn ``(id, code, amount, fees, redeemed_date)`` rows into an invoice preview.

    Each payout is truncated on its own and the truncated payouts are summed,
    so ``total_payout`` is not recomputed from the totals.
    """
    redemptions: List[InvoiceRedemption] = []
    total_amount = ZERO
    total_fees = ZERO
    total_payout = ZERO
    for row in rows:
        amount = Decimal(row.amount)
        fees = Decimal(row.fees or 0)
        payout = truncate_amount(amount - fees)
        redemptions.append(InvoiceRedemption(
            id=row.id,
            giftcard_code=row.code,
            amount=amount,
            fees=fees,
            payout=payout,
            redeemed_date=row.redeemed_date
        ))
        total_amount += amount
        total_fees += fees
        total_payout += payout

    return RedemptionsOfInvoice(
        redemptions=redemptions,
        total_amount=truncate_amount(total_amount),
        total_fees=truncate_amount(total_fees),
        total_payout=truncate_amount(total_payout)
    )


def invoice_summary(invoice: NegotiationInvoice, shop: Shop) -> NegotiationInvoiceSummary:
    return NegotiationInvoiceSummary(
        shop_id=shop.id,
        studio_name=shop.studio_name or "",
        total_amount=invoice.redeemed_amount,
        total_fees=invoice.fee_amount,
        total_payout=invoice.payout_amount,
        iban=shop.iban or "",
        invoice_number=invoice.invoice_number,
        pdf_url=invoice.pdf_url,
        invoice_iban=invoice.iban,
        invoice_date=invoice.date
    )


class NegotiationInvoiceWorkflow(SettlementWorkflow[RedemptionsOfInvoice, NegotiationInvoice]):
    """Issues a payout invoice and claims the redemptions it covers"""

    storage_folder = NEGOTIATION_INVOICE_FOLDER
    empty_period_error = NoRedemptionsForPeriod
    notification_flag = "negotiation_invoice_notifications"
    mail_subject = NEGOTIATION_INVOICE_SUBJECT
    mail_template = NEGOTIATION_INVOICE_TEMPLATE

    async def aggregate(self, shop_id, admin_shop_id, start_date, end_date) -> RedemptionsOfInvoice:
        rows = await redemption_crud.find_unbilled_for_negotiation(
            self.db, shop_id, admin_shop_id, start_date, end_date
        )
        return summarize_redemptions(rows)

    def is_empty(self, aggregate: RedemptionsOfInvoice) -> bool:
        return aggregate.is_empty

    async def persist_invoice(self, shop, invoice_number, aggregate, pdf_url, request) -> NegotiationInvoice:
        return await negotiation_invoice_crud.create(
            self.db,
            shop_id=shop.id,
            invoice_number=invoice_number,
            redeemed_amount=truncate_amount(aggregate.total_amount),
            fee_amount=truncate_amount(aggregate.total_fees),
            payout_amount=truncate_amount(aggregate.total_payout),
            iban=shop.iban or "",
            pdf_url=pdf_url,
            date=datetime.now(timezone.utc),
            date_range_start=to_utc(request.start_date),
            date_range_end=to_utc(request.end_date)
        )

    async def link(self, aggregate: RedemptionsOfInvoice, invoice: NegotiationInvoice) -> None:
        ids = [item.id for item in aggregate.redemptions]
        claimed = await redemption_crud.claim_for_negotiation_invoice(self.db, ids, invoice.id)
        if claimed != len(ids):
            logger.warning(f"Only {claimed} of {len(ids)} redemptions could be claimed for {invoice.invoice_number}")
            raise RedemptionsAlreadyClaimed()

    def mail_context(self, invoice: NegotiationInvoice, shop: Shop) -> Dict[str, Any]:
        return {
            "invoice_date": format_date_german(invoice.date),
            "invoice_number": invoice.invoice_number,
            "invoice_url": invoice.pdf_url,
            "logo_url": shop.logo_url or "",
            "studio_name": shop.studio_name or "",
            "total_payout": format_euro(invoice.payout_amount)
        }


class NegotiationInvoiceService:
    """Previews, PDF data, listings and creation of negotiation invoices"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_admin_shop(self) -> Shop:
        admin_shop = await shop_crud.get_admin_shop(self.db)
        if not admin_shop:
            raise ShopNotFound("Platform shop not found")
        return admin_shop

    async def _get_shop(self, shop_id: UUID) -> Shop:
        shop = await shop_crud.get_shop(self.db, shop_id)
        if not shop:
            raise ShopNotFound()
        return shop

    async def get_redemptions_of_invoice(
        self, shop_id: UUID, start_date: datetime, end_date: datetime
    ) -> RedemptionsOfInvoice:
        """What an invoice for this shop and period would contain right now"""
        admin_shop = await self._get_admin_shop()
        shop = await self._get_shop(shop_id)
        return await self._unbilled_summary(shop, admin_shop, start_date, end_date)

    async def _unbilled_summary(self, shop: Shop, admin_shop: Shop, start_date: datetime, end_date: datetime):
        rows = await redemption_crud.find_unbilled_for_negotiation(
            self.db, shop.id, admin_shop.id, to_utc(start_date), to_utc(end_date)
        )
        return summarize_redemptions(rows)

    async def get_invoice_pdf_data(
        self,
        shop_id: UUID,
        start_date: datetime,
        end_date: datetime,
        tz_name: Optional[str] = None,
        allocator: Optional[InvoiceNumberAllocator] = None
    ) -> NegotiationInvoicePdfData:
        """
        Data for rendering the payout invoice before it is issued.

        The invoice number shown here is the one ``create`` expects back.
        """
        tz_name = invoice_timezone(tz_name).key
        allocator = allocator or InvoiceNumberAllocator(self.db)
        admin_shop, candidate = await allocator.next_candidate()
        shop = await self._get_shop(shop_id)

        summary = await self._unbilled_summary(shop, admin_shop, start_date, end_date)
        split = fee_tax_split(summary.total_fees)

        return NegotiationInvoicePdfData(
            invoice_number=candidate.number,
            date=format_date_german(datetime.now(timezone.utc), tz_name),
            date_range=date_range_text(start_date, end_date, tz_name),
            seller=invoice_party(admin_shop),
            buyer=invoice_party(shop),
            invoice_items=[fee_line_item(FEE_LINE_DESCRIPTION, summary.total_fees)],
            redemptions=[
                PdfRedemption(
                    id=item.id,
                    giftcard_code=format_giftcard_code(item.giftcard_code),
                    redeemed_date=format_date_german(item.redeemed_date, tz_name),
                    amount=format_euro(item.amount),
                    fees=format_euro(item.fees),
                    payout=format_euro(item.payout)
                )
                for item in summary.redemptions
            ],
            total_amount=format_euro(summary.total_amount),
            total_fees=format_euro(summary.total_fees),
            total_payout=format_euro(summary.total_payout),
            net_amount=format_euro(split.net_amount),
            tax_amount=format_euro(split.tax_amount)
        )

    async def list_for_admin(
        self,
        start_date: datetime,
        end_date: datetime,
        page: Optional[int] = None,
        size: Optional[int] = None,
        sort_by: Optional[str] = None,
        sort_order: SortOrder = SortOrder.DESC,
        search_value: Optional[str] = None,
        column_filters: Optional[List[ColumnFilter]] = None
    ) -> NegotiationInvoiceList:
        """Per shop and invoice totals of admin card redemptions, issued or not"""
        admin_shop = await self._get_admin_shop()
        limit, offset = get_pagination(page, size)
        rows, total = await negotiation_invoice_crud.get_grouped_for_admin(
            self.db,
            admin_shop_id=admin_shop.id,
            start_date=to_utc(start_date),
            end_date=to_utc(end_date),
            limit=limit,
            offset=offset,
            sort_by=sort_by,
            sort_order=sort_order,
            search_value=search_value,
            column_filters=column_filters
        )
        items = []
        for row in rows:
            total_amount = truncate_amount(row.total_amount)
            total_fees = truncate_amount(row.total_fees or 0)
            items.append(NegotiationInvoiceSummary(
                shop_id=row.shop_id,
                studio_name=row.studio_name,
                total_amount=total_amount,
                total_fees=total_fees,
                total_payout=truncate_amount(total_amount - total_fees),
                iban=row.iban,
                invoice_number=row.invoice_number,
                pdf_url=row.pdf_url,
                invoice_iban=row.invoice_iban,
                invoice_date=row.invoice_date
            ))
        return NegotiationInvoiceList(negotiation_invoices=items, total_count=total)

    async def list_for_shop(
        self,
        shop_id: UUID,
        start_date: datetime,
        end_date: datetime,
        page: Optional[int] = None,
        size: Optional[int] = None,
        sort_by: Optional[str] = None,
        sort_order: SortOrder = SortOrder.DESC,
        search_value: Optional[str] = None,
        column_filters: Optional[List[ColumnFilter]] = None
    ) -> NegotiationInvoiceList:
        """Issued invoices of one shop; shops in demo mode never have any"""
        shop = await self._get_shop(shop_id)
        if shop.studio_mode != StudioMode.LIVE:
            return NegotiationInvoiceList(negotiation_invoices=[], total_count=0)

        limit, offset = get_pagination(page, size)
        rows, total = await negotiation_invoice_crud.get_many_for_shop(
            self.db,
            shop_id=shop.id,
            start_date=to_utc(start_date),
            end_date=to_utc(end_date),
            limit=limit,
            offset=offset,
            sort_by=sort_by,
            sort_order=sort_order,
            search_value=search_value,
            column_filters=column_filters
        )
        items = [invoice_summary(row.NegotiationInvoice, shop) for row in rows]
        return NegotiationInvoiceList(negotiation_invoices=items, total_count=total)

    async def create(self, request: SettlementRequest, **collaborators) -> NegotiationInvoiceSummary:
        """Issue the invoice; ``collaborators`` override blob store, notifier or allocator."""
        workflow = NegotiationInvoiceWorkflow(self.db, **collaborators)
        outcome = await workflow.create(request)
        return invoice_summary(outcome.invoice, outcome.shop)
