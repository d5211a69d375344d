"""
Pydantic schemas for negotiation (payout) invoices
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel

from app.common.schemas import Money
from app.modules.settlements.schemas import InvoiceLineItem, InvoiceParty


class InvoiceRedemption(BaseModel):
    """One unbilled redemption; ``payout`` is already truncated to cents"""
    id: UUID
    giftcard_code: str
    amount: Money
    fees: Money
    payout: Money
    redeemed_date: datetime


class RedemptionsOfInvoice(BaseModel):
    """
    Unbilled redemptions of a shop for one period.

    ``total_amount`` and ``total_fees`` are the raw sums truncated once.
    ``total_payout`` is the sum of the per-row truncated payouts, so it can
    differ from ``total_amount - total_fees`` by up to a cent per row.
    """
    redemptions: List[InvoiceRedemption]
    total_amount: Money
    total_fees: Money
    total_payout: Money

    @property
    def is_empty(self) -> bool:
        return not self.redemptions


class NegotiationInvoiceSummary(BaseModel):
    shop_id: UUID
    studio_name: Optional[str] = None
    total_amount: Money
    total_fees: Money
    total_payout: Money
    iban: Optional[str] = None  # Current shop IBAN
    invoice_number: Optional[str] = None
    pdf_url: Optional[str] = None
    invoice_iban: Optional[str] = None  # IBAN printed on the invoice
    invoice_date: Optional[datetime] = None


class NegotiationInvoiceList(BaseModel):
    negotiation_invoices: List[NegotiationInvoiceSummary]
    total_count: int


# ===== PDF DATA =====

class PdfRedemption(BaseModel):
    id: UUID
    giftcard_code: str
    redeemed_date: str
    amount: str
    fees: str
    payout: str


class NegotiationInvoicePdfData(BaseModel):
    """Everything the frontend needs to render the payout invoice, preformatted in German"""
    invoice_number: str
    date: str
    date_range: str
    seller: InvoiceParty
    buyer: InvoiceParty
    invoice_items: List[InvoiceLineItem]
    redemptions: List[PdfRedemption]
    total_amount: str
    total_fees: str
    total_payout: str
    net_amount: str
    tax_amount: str
