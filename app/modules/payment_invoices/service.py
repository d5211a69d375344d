"""
Payment invoices: what a shop owes the platform in fees for gift cards it sold.

Refunds issued in the period reduce the billed purchase volume and carry no
fees.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.common.exceptions import NoPurchasesForPeriod, RedemptionsAlreadyClaimed, ShopNotFound
from app.common.formatting import format_date_german, invoice_timezone, to_utc
from app.common.listing import ColumnFilter, SortOrder
from app.common.money import ZERO, format_euro, to_decimal, truncate_amount
from app.common.schemas import get_pagination
from app.modules.email.notifier import PAYMENT_INVOICE_SUBJECT, PAYMENT_INVOICE_TEMPLATE
from app.modules.files.service import PAYMENT_INVOICE_FOLDER
from app.modules.invoice_numbers.service import InvoiceNumberAllocator
from app.modules.payment_invoices.crud import payment_invoice_crud
from app.modules.payment_invoices.models import PaymentInvoice
from app.modules.payment_invoices.schemas import (
    BilledRecordKind, InvoicePurchase, PaymentInvoiceList,
    PaymentInvoicePdfData, PaymentInvoiceSummary, PdfPurchase, PurchasesOfInvoice
)
from app.modules.purchases.crud import purchase_crud
from app.modules.settlements.documents import date_range_text, fee_line_item, fee_tax_split, invoice_party
from app.modules.settlements.workflow import SettlementRequest, SettlementWorkflow
from app.modules.shops.crud import shop_crud
from app.modules.shops.models import Shop

logger = logging.getLogger(__name__)

FEE_LINE_DESCRIPTION = "Software-Gebühr"


def summarize_purchases(purchase_rows: Sequence, refund_rows: Sequence) -> PurchasesOfInvoice:
    """
    Merge unbilled purchases and refunds, newest first.

    ``total_amount`` is purchases minus refunds, ``total_fees`` only counts
    purchases.
    """
    items: List[InvoicePurchase] = []
    purchased = ZERO
    refunded = ZERO
    total_fees = ZERO
    for row in purchase_rows:
        amount = Decimal(row.total_amount)
        fees = Decimal(row.fees or 0)
        items.append(InvoicePurchase(
            id=row.id,
            kind=BilledRecordKind.PURCHASE,
            invoice_number=row.invoice_number,
            total_amount=amount,
            fees=fees,
            date=row.date
        ))
        purchased += amount
        total_fees += fees
    for row in refund_rows:
        amount = Decimal(row.refund_amount)
        items.append(InvoicePurchase(
            id=row.id,
            kind=BilledRecordKind.REFUND,
            invoice_number=row.invoice_number,
            total_amount=-abs(amount),
            fees=ZERO,
            date=row.date
        ))
        refunded += amount

    items.sort(key=lambda item: to_utc(item.date), reverse=True)
    return PurchasesOfInvoice(
        purchases=items,
        total_amount=truncate_amount(purchased - refunded),
        total_fees=truncate_amount(total_fees)
    )


def invoice_summary(invoice: PaymentInvoice, shop: Shop) -> PaymentInvoiceSummary:
    return PaymentInvoiceSummary(
        shop_id=shop.id,
        studio_name=shop.studio_name or "",
        invoice_number=invoice.invoice_number,
        pdf_url=invoice.pdf_url,
        total_amount=invoice.purchased_amount,
        total_fees=invoice.fee_amount,
        invoice_date=invoice.date
    )


class PaymentInvoiceWorkflow(SettlementWorkflow[PurchasesOfInvoice, PaymentInvoice]):
    """Issues a fee invoice and claims the purchases and refunds it covers"""

    storage_folder = PAYMENT_INVOICE_FOLDER
    empty_period_error = NoPurchasesForPeriod
    notification_flag = "payment_invoice_notifications"
    mail_subject = PAYMENT_INVOICE_SUBJECT
    mail_template = PAYMENT_INVOICE_TEMPLATE

    async def aggregate(self, shop_id, admin_shop_id, start_date, end_date) -> PurchasesOfInvoice:
        purchases = await purchase_crud.find_unbilled_purchases(self.db, shop_id, start_date, end_date)
        refunds = await purchase_crud.find_unbilled_refunds(self.db, shop_id, start_date, end_date)
        return summarize_purchases(purchases, refunds)

    def is_empty(self, aggregate: PurchasesOfInvoice) -> bool:
        return aggregate.is_empty

    async def persist_invoice(self, shop, invoice_number, aggregate, pdf_url, request) -> PaymentInvoice:
        return await payment_invoice_crud.create(
            self.db,
            shop_id=shop.id,
            invoice_number=invoice_number,
            purchased_amount=truncate_amount(aggregate.total_amount),
            fee_amount=truncate_amount(aggregate.total_fees),
            pdf_url=pdf_url,
            date=datetime.now(timezone.utc),
            date_range_start=to_utc(request.start_date),
            date_range_end=to_utc(request.end_date)
        )

    async def link(self, aggregate: PurchasesOfInvoice, invoice: PaymentInvoice) -> None:
        purchase_ids = aggregate.ids_of(BilledRecordKind.PURCHASE)
        refund_ids = aggregate.ids_of(BilledRecordKind.REFUND)
        claimed = await purchase_crud.claim_purchases(self.db, purchase_ids, invoice.id)
        claimed += await purchase_crud.claim_refunds(self.db, refund_ids, invoice.id)
        if claimed != len(purchase_ids) + len(refund_ids):
            logger.warning(f"Purchases for {invoice.invoice_number} were claimed by another invoice")
            raise RedemptionsAlreadyClaimed("Some purchases were invoiced concurrently. Please try again")

    def mail_context(self, invoice: PaymentInvoice, shop: Shop) -> Dict[str, Any]:
        return {
            "invoice_date": format_date_german(invoice.date),
            "invoice_number": invoice.invoice_number,
            "invoice_url": invoice.pdf_url,
            "logo_url": shop.logo_url or "",
            "studio_name": shop.studio_name or "",
            "total_amount": format_euro(invoice.purchased_amount)
        }


class PaymentInvoiceService:
    """Previews, PDF data, listings and creation of payment invoices"""

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

    async def _unbilled_summary(self, shop: Shop, start_date: datetime, end_date: datetime) -> PurchasesOfInvoice:
        start_date, end_date = to_utc(start_date), to_utc(end_date)
        purchases = await purchase_crud.find_unbilled_purchases(self.db, shop.id, start_date, end_date)
        refunds = await purchase_crud.find_unbilled_refunds(self.db, shop.id, start_date, end_date)
        return summarize_purchases(purchases, refunds)

    async def get_purchases_of_invoice(
        self, shop_id: UUID, start_date: datetime, end_date: datetime
    ) -> PurchasesOfInvoice:
        shop = await self._get_shop(shop_id)
        return await self._unbilled_summary(shop, start_date, end_date)

    async def get_invoice_pdf_data(
        self,
        shop_id: UUID,
        start_date: datetime,
        end_date: datetime,
        tz_name: Optional[str] = None,
        allocator: Optional[InvoiceNumberAllocator] = None
    ) -> PaymentInvoicePdfData:
        """
        Data for rendering the fee invoice before it is issued.

        The platform shop sells the software, the partner shop buys it.
        """
        tz_name = invoice_timezone(tz_name).key
        allocator = allocator or InvoiceNumberAllocator(self.db)
        admin_shop, candidate = await allocator.next_candidate()
        shop = await self._get_shop(shop_id)

        summary = await self._unbilled_summary(shop, start_date, end_date)
        split = fee_tax_split(summary.total_fees)

        return PaymentInvoicePdfData(
            invoice_number=candidate.number,
            date=format_date_german(datetime.now(timezone.utc), tz_name),
            date_range=date_range_text(start_date, end_date, tz_name),
            seller=invoice_party(admin_shop),
            buyer=invoice_party(shop),
            invoice_items=[fee_line_item(FEE_LINE_DESCRIPTION, summary.total_fees)],
            purchases=[
                PdfPurchase(
                    id=item.id,
                    kind=item.kind,
                    invoice_number=item.invoice_number,
                    date=format_date_german(item.date, tz_name),
                    total_amount=format_euro(item.total_amount),
                    fees=format_euro(item.fees)
                )
                for item in summary.purchases
            ],
            total_amount=format_euro(summary.total_amount),
            total_fees=format_euro(summary.total_fees),
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
        sort_order: SortOrder = SortOrder.ASC,
        search_value: Optional[str] = None,
        column_filters: Optional[List[ColumnFilter]] = None
    ) -> PaymentInvoiceList:
        """
        Per shop and invoice purchase totals of partner shops, issued or not.

        Refunds are netted against the row of the invoice that claimed them;
        unbilled refunds reduce the unbilled row of their shop.
        """
        admin_shop = await self._get_admin_shop()
        start_date, end_date = to_utc(start_date), to_utc(end_date)
        limit, offset = get_pagination(page, size)
        rows, total = await payment_invoice_crud.get_grouped_for_admin(
            self.db,
            admin_shop_id=admin_shop.id,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
            sort_by=sort_by,
            sort_order=sort_order,
            search_value=search_value,
            column_filters=column_filters
        )
        refunds = await payment_invoice_crud.get_refund_totals(
            self.db, {row.shop_id for row in rows}, start_date, end_date
        )
        items = []
        for row in rows:
            refunded = to_decimal(refunds.get((row.shop_id, row.payment_invoice_id))) or ZERO
            items.append(PaymentInvoiceSummary(
                shop_id=row.shop_id,
                studio_name=row.studio_name,
                invoice_number=row.invoice_number,
                pdf_url=row.pdf_url,
                total_amount=truncate_amount(to_decimal(row.total_amount) - refunded),
                total_fees=truncate_amount(row.total_fees or 0),
                invoice_date=row.invoice_date
            ))
        return PaymentInvoiceList(payment_invoices=items, total_count=total)

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
    ) -> PaymentInvoiceList:
        shop = await self._get_shop(shop_id)
        limit, offset = get_pagination(page, size)
        invoices, total = await payment_invoice_crud.get_many_for_shop(
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
        return PaymentInvoiceList(
            payment_invoices=[invoice_summary(invoice, shop) for invoice in invoices],
            total_count=total
        )

    async def create(self, request: SettlementRequest, **collaborators) -> PaymentInvoiceSummary:
        """Issue the invoice; ``collaborators`` override blob store, notifier or allocator."""
        workflow = PaymentInvoiceWorkflow(self.db, **collaborators)
        outcome = await workflow.create(request)
        return invoice_summary(outcome.invoice, outcome.shop)
