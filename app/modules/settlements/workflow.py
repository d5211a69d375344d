"""
Transactional creation of settlement invoices.

Negotiation invoices (payouts for redemptions) and payment invoices (fees for
purchases) are issued by the same sequence of steps; subclasses only supply
what is aggregated, how the invoice row looks and how the aggregated records
get linked to it:

    validate request                    (before any database access)
    lock admin shop, derive number      ShopNotFound / ConfigurationError
    compare with the caller's number    InvoiceNumberMismatch
    check the number is unused          DuplicateInvoiceNumber
    load billed shop and preferences    ShopNotFound
    aggregate unbilled records          NoRedemptionsForPeriod / NoPurchasesForPeriod
    upload the PDF                      StorageUploadFailed
    insert invoice, link records        RedemptionsAlreadyClaimed
    advance the admin counter           DuplicateInvoiceNumber
    commit
    notify the shop                     failures are logged only

Any failure before the commit rolls the session back, so either all writes
land or none do. An uploaded PDF whose transaction rolled back stays in the
bucket unreferenced.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Generic, Optional, Type, TypeVar
from uuid import UUID
import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.common.exceptions import (
    DateRangeRequired, InternalError, InvoiceFileRequired, NotFoundError, ShopNotFound
)
from app.common.formatting import to_utc
from app.core.config import settings
from app.modules.email.notifier import EmailNotifier, get_notifier
from app.modules.files.service import BlobStorageService, build_object_key, get_blob_storage
from app.modules.invoice_numbers.service import InvoiceNumberAllocator
from app.modules.shops.crud import shop_crud
from app.modules.shops.models import Shop, UserSettings

logger = logging.getLogger(__name__)

AggregateT = TypeVar("AggregateT")
InvoiceT = TypeVar("InvoiceT")


@dataclass
class SettlementRequest:
    shop_id: UUID
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    invoice_number: str
    file_content: Optional[bytes]
    content_type: str = "application/pdf"


@dataclass
class SettlementOutcome(Generic[AggregateT, InvoiceT]):
    invoice: InvoiceT
    shop: Shop
    aggregate: AggregateT
    user_settings: Optional[UserSettings]


class SettlementWorkflow(ABC, Generic[AggregateT, InvoiceT]):
    """Shared issuing steps for settlement invoices"""

    # Object key prefix and file name prefix in the blob store
    storage_folder: str
    empty_period_error: Type[NotFoundError]
    # UserSettings flag that opts the shop into the mail
    notification_flag: str
    mail_subject: str
    mail_template: str

    def __init__(
        self,
        db: AsyncSession,
        blob_store: Optional[BlobStorageService] = None,
        notifier: Optional[EmailNotifier] = None,
        allocator: Optional[InvoiceNumberAllocator] = None,
        timeout: Optional[float] = None
    ):
        self.db = db
        self.blob_store = blob_store or get_blob_storage()
        self.notifier = notifier or get_notifier()
        self.allocator = allocator or InvoiceNumberAllocator(db)
        self.timeout = timeout if timeout is not None else settings.INVOICE_CREATION_TIMEOUT

    # ----- hooks -----

    @abstractmethod
    async def aggregate(self, shop_id: UUID, admin_shop_id: UUID,
                        start_date: datetime, end_date: datetime) -> AggregateT:
        """Unbilled records of the shop for the period, read inside the open transaction"""

    @abstractmethod
    def is_empty(self, aggregate: AggregateT) -> bool:
        ...

    @abstractmethod
    async def persist_invoice(self, shop: Shop, invoice_number: str, aggregate: AggregateT,
                              pdf_url: str, request: SettlementRequest) -> InvoiceT:
        ...

    @abstractmethod
    async def link(self, aggregate: AggregateT, invoice: InvoiceT) -> None:
        """Claim every aggregated record for ``invoice``; raise if any was claimed elsewhere"""

    @abstractmethod
    def mail_context(self, invoice: InvoiceT, shop: Shop) -> Dict[str, Any]:
        ...

    # ----- workflow -----

    def validate(self, request: SettlementRequest) -> None:
        if not request.file_content:
            raise InvoiceFileRequired()
        if request.content_type not in settings.ALLOWED_INVOICE_FILE_TYPES:
            raise InvoiceFileRequired(f"Invoice file must be one of {settings.ALLOWED_INVOICE_FILE_TYPES}")
        if len(request.file_content) > settings.MAX_FILE_SIZE:
            raise InvoiceFileRequired("Invoice file is too large")
        if request.start_date is None or request.end_date is None:
            raise DateRangeRequired()
        if to_utc(request.start_date) > to_utc(request.end_date):
            raise DateRangeRequired("start_date must not be after end_date")

    def file_name(self, invoice_number: str) -> str:
        return f"{self.storage_folder}-{invoice_number}"

    async def create(self, request: SettlementRequest) -> SettlementOutcome[AggregateT, InvoiceT]:
        """Issue the invoice, commit, then notify the shop."""
        self.validate(request)
        try:
            outcome = await asyncio.wait_for(self._issue(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            await self.db.rollback()
            logger.error(f"Creating {self.storage_folder} for shop {request.shop_id} timed out after {self.timeout}s")
            raise InternalError("Invoice creation timed out")
        await self.notify(outcome)
        return outcome

    async def _issue(self, request: SettlementRequest) -> SettlementOutcome[AggregateT, InvoiceT]:
        start_date = to_utc(request.start_date)
        end_date = to_utc(request.end_date)
        try:
            admin_shop, candidate = await self.allocator.next_candidate(for_update=True)
            self.allocator.reconcile(candidate, request.invoice_number)
            await self.allocator.ensure_unique(candidate.number)

            shop = await shop_crud.get_shop(self.db, request.shop_id)
            if not shop:
                raise ShopNotFound()
            user_settings = await shop_crud.get_user_settings(self.db, shop.id)

            aggregate = await self.aggregate(shop.id, admin_shop.id, start_date, end_date)
            if self.is_empty(aggregate):
                raise self.empty_period_error()

            key = build_object_key(self.storage_folder, self.file_name(candidate.number))
            stored = await self.blob_store.upload(request.file_content, key, request.content_type)

            invoice = await self.persist_invoice(shop, candidate.number, aggregate, stored.url, request)
            await self.link(aggregate, invoice)
            await self.allocator.advance(admin_shop, candidate)

            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.warning(f"{self.storage_folder} for shop {request.shop_id} aborted: {e}")
            raise

        logger.info(f"Issued {self.storage_folder} {candidate.number} for shop {shop.id}")
        return SettlementOutcome(invoice=invoice, shop=shop, aggregate=aggregate, user_settings=user_settings)

    async def notify(self, outcome: SettlementOutcome[AggregateT, InvoiceT]) -> None:
        """Best effort; the invoice is committed whatever happens here."""
        if not outcome.user_settings or not getattr(outcome.user_settings, self.notification_flag):
            return
        if not outcome.shop.owner:
            logger.info(f"Shop {outcome.shop.id} has no owner email, skipping invoice mail")
            return
        try:
            body = self.notifier.render(self.mail_template, self.mail_context(outcome.invoice, outcome.shop))
            await self.notifier.send(outcome.shop.owner, self.mail_subject, body)
        except Exception:
            logger.exception(f"Could not send invoice mail to shop {outcome.shop.id}")
