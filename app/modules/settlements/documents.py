"""
Preformatted pieces of an invoice PDF.

Amounts and dates are rendered the German way; the frontend prints them as is.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from app.common.formatting import format_date_german
from app.common.money import TaxSplit, format_euro, inclusive_tax_split
from app.core.config import settings
from app.modules.settlements.schemas import InvoiceLineItem, InvoiceParty
from app.modules.shops.models import Shop


def invoice_party(shop: Shop) -> InvoiceParty:
    return InvoiceParty(
        id=shop.id,
        official_name=shop.official_name,
        shop_name=shop.studio_name,
        address=shop.street,
        city=shop.city,
        country=shop.country_name,
        phone=shop.phone,
        email=shop.owner,
        logo_url=shop.logo_url
    )


def fee_line_item(description: str, total_fees: Decimal) -> InvoiceLineItem:
    """The single line an invoice bills: all fees of the period, tax included"""
    fees_text = format_euro(total_fees)
    return InvoiceLineItem(
        description=description,
        quantity=1,
        unit_price=fees_text,
        tax=f"{settings.INVOICE_TAX_RATE}%",
        total_price=fees_text
    )


def fee_tax_split(total_fees: Decimal) -> TaxSplit:
    return inclusive_tax_split(total_fees, settings.INVOICE_TAX_RATE)


def date_range_text(start_date: datetime, end_date: datetime, tz_name: Optional[str] = None) -> str:
    return f"{format_date_german(start_date, tz_name)} - {format_date_german(end_date, tz_name)}"
