"""
Pydantic schemas for payment (fee) invoices
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel

from app.common.schemas import Money
from app.modules.settlements.schemas import InvoiceLineItem, InvoiceParty


class BilledRecordKind(str, Enum):
    PURCHASE = "purchase"
    REFUND = "refund"


class InvoicePurchase(BaseModel):
    """A purchase, or a refund with a negative amount and no fees"""
    id: UUID
    kind: BilledRecordKind
    invoice_number: Optional[str] = None
    total_amount: Money
    fees: Money
    date: datetime


class PurchasesOfInvoice(BaseModel):
    purchases: List[InvoicePurchase]
    total_amount: Money
    total_fees: Money

    @property
    def is_empty(self) -> bool:
        return not self.purchases

    def ids_of(self, kind: BilledRecordKind) -> List[UUID]:
        return [item.id for item in self.purchases if item.kind == kind]


class PaymentInvoiceSummary(BaseModel):
    """An issued invoice, or in the admin list the unbilled purchases of a shop"""
    shop_id: UUID
    studio_name: Optional[str] = None
    invoice_number: Optional[str] = None
    pdf_url: Optional[str] = None
    total_amount: Money
    total_fees: Money
    invoice_date: Optional[datetime] = None


class PaymentInvoiceList(BaseModel):
    payment_invoices: List[PaymentInvoiceSummary]
    total_count: int


# ===== PDF DATA =====

class PdfPurchase(BaseModel):
    id: UUID
    kind: BilledRecordKind
    invoice_number: Optional[str] = None
    date: str
    total_amount: str
    fees: str


class PaymentInvoicePdfData(BaseModel):
    """Everything the frontend needs to render the fee invoice, preformatted in German"""
    invoice_number: str
    date: str
    date_range: str
    seller: InvoiceParty
    buyer: InvoiceParty
    invoice_items: List[InvoiceLineItem]
    purchases: List[PdfPurchase]
    total_amount: str
    total_fees: str
    net_amount: str
    tax_amount: str
