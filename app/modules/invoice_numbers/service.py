"""
Sequential settlement invoice numbers.

Numbers look like ``RE-{studio_id}-{year}{counter + 1}`` (no separator
between year and counter). The counter lives on the platform operator shop,
so numbering is shared by every billed shop and by both negotiation and
payment invoices.
"""
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional, Tuple
from zoneinfo import ZoneInfo
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.common.exceptions import (
    ConfigurationError, DuplicateInvoiceNumber, InvoiceNumberMismatch, ShopNotFound
)
from app.core.config import settings
from app.modules.negotiation_invoices.models import NegotiationInvoice
from app.modules.payment_invoices.models import PaymentInvoice
from app.modules.purchases.models import Purchase
from app.modules.shops.crud import shop_crud
from app.modules.shops.models import Shop

logger = logging.getLogger(__name__)

INVOICE_NUMBER_PREFIX = "RE"


@dataclass(frozen=True)
class InvoiceNumberCandidate:
    number: str
    sequence: int  # Counter value consumed by this number


def format_invoice_number(studio_id, year: int, sequence: int) -> str:
    return f"{INVOICE_NUMBER_PREFIX}-{studio_id}-{year:04d}{sequence}"


def today_in_invoice_timezone() -> date:
    return datetime.now(ZoneInfo(settings.INVOICE_TIMEZONE)).date()


class InvoiceNumberAllocator:
    """Derives, verifies and consumes settlement invoice numbers"""

    def __init__(self, db: AsyncSession, today: Callable[[], date] = today_in_invoice_timezone):
        self.db = db
        self.today = today

    def candidate_for(self, admin_shop: Shop) -> InvoiceNumberCandidate:
        """Next number for the admin shop's current counter. Read-only."""
        if admin_shop.invoice_reference_number is None:
            raise ConfigurationError("invoice reference number not defined")
        if admin_shop.studio_id is None:
            raise ConfigurationError("studio id of the platform shop not defined")
        sequence = admin_shop.invoice_reference_number + 1
        number = format_invoice_number(admin_shop.studio_id, self.today().year, sequence)
        return InvoiceNumberCandidate(number=number, sequence=sequence)

    async def load_admin_shop(self, for_update: bool = False) -> Shop:
        admin_shop = await shop_crud.get_admin_shop(self.db, for_update=for_update)
        if not admin_shop:
            raise ShopNotFound("Platform shop not found")
        return admin_shop

    async def next_candidate(self, for_update: bool = False) -> Tuple[Shop, InvoiceNumberCandidate]:
        admin_shop = await self.load_admin_shop(for_update=for_update)
        return admin_shop, self.candidate_for(admin_shop)

    @staticmethod
    def reconcile(candidate: InvoiceNumberCandidate, expected_number: Optional[str]) -> None:
        """The caller must have been shown exactly the number we would issue now."""
        if candidate.number != (expected_number or "").strip():
            logger.warning(
                f"Invoice number mismatch: expected {expected_number!r}, current is {candidate.number!r}"
            )
            raise InvoiceNumberMismatch()

    async def is_unique(self, number: str) -> bool:
        """No live purchase, negotiation or payment invoice carries ``number``."""
        for model in (Purchase, NegotiationInvoice, PaymentInvoice):
            query = select(model.id).where(
                model.invoice_number == number,
                model.not_deleted()
            ).limit(1)
            result = await self.db.execute(query)
            if result.first() is not None:
                return False
        return True

    async def ensure_unique(self, number: str) -> None:
        if not await self.is_unique(number):
            logger.warning(f"Invoice number {number} already in use")
            raise DuplicateInvoiceNumber()

    async def advance(self, admin_shop: Shop, candidate: InvoiceNumberCandidate) -> None:
        """Move the counter to the consumed value; a concurrent advance makes this fail."""
        advanced = await shop_crud.advance_invoice_counter(self.db, admin_shop, candidate.sequence)
        if not advanced:
            logger.warning(f"Invoice counter moved concurrently while issuing {candidate.number}")
            raise DuplicateInvoiceNumber()
