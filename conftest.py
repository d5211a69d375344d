"""
Shared pytest fixtures

Tests run against a throwaway SQLite file through aiosqlite. The environment
is set before any ``app`` import so the engine picks it up.
"""
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional
from uuid import uuid4
import os
import tempfile

_DB_PATH = os.path.join(tempfile.gettempdir(), f"voucher_settlement_test_{os.getpid()}.db")
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "false"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"

import pytest

from app.main import app as api
from app.common.exceptions import StorageUploadFailed
from app.database.database import AsyncSessionLocal, Base, async_engine
from app.modules.email.notifier import EmailNotifier
from app.modules.files.service import StoredObject
from app.modules.giftcards.models import GiftCard, GiftCardMode
from app.modules.invoice_numbers.service import InvoiceNumberAllocator
from app.modules.purchases.models import Purchase, PurchaseMode, Refund, TransactionStatus
from app.modules.redemptions.models import Redemption
from app.modules.shops.models import Shop, StudioMode, UserSettings

INVOICE_DAY = date(2025, 3, 1)
PERIOD_START = datetime(2025, 1, 1, tzinfo=timezone.utc)
PERIOD_END = datetime(2025, 1, 31, 23, 59, 59, tzinfo=timezone.utc)
PDF_BYTES = b"%PDF-1.4 settlement"


def at(day: int, hour: int = 12) -> datetime:
    """A moment inside the January 2025 test period"""
    return datetime(2025, 1, day, hour, tzinfo=timezone.utc)


class FakeBlobStore:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.uploads: List[tuple] = []

    async def upload(self, data: bytes, key: str, content_type: str) -> StoredObject:
        if self.fail:
            raise StorageUploadFailed()
        self.uploads.append((key, data, content_type))
        return StoredObject(key=key, url=f"http://files.test/vouchers/{key}")


class FakeNotifier(EmailNotifier):
    """Renders the real templates but keeps the mails instead of queueing them"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[tuple] = []

    async def send(self, shop_email: str, subject: str, rendered_body: str) -> None:
        if self.fail:
            raise ConnectionError("broker unreachable")
        self.sent.append((shop_email, subject, rendered_body))


class Seed:
    """Inserts and commits fixture rows"""

    def __init__(self, db):
        self.db = db

    async def _save(self, obj):
        self.db.add(obj)
        await self.db.commit()
        await self.db.refresh(obj)
        return obj

    async def admin_shop(self, counter: Optional[int] = 41, studio_id: Optional[int] = 1, **fields) -> Shop:
        defaults = dict(
            studio_name="Voucher Platform",
            official_name="Voucher Platform GmbH",
            owner="billing@platform.test",
            studio_mode=StudioMode.LIVE,
            iban="DE00100100100000000001",
        )
        defaults.update(fields)
        return await self._save(Shop(
            is_platform_admin=True,
            invoice_reference_number=counter,
            studio_id=studio_id,
            **defaults
        ))

    async def shop(self, studio_name: str = "Studio Nord", **fields) -> Shop:
        defaults = dict(
            owner="owner@nord.test",
            studio_mode=StudioMode.LIVE,
            iban="DE00200200200000000002",
            platform_fee=Decimal("2.5"),
            fixed_payment_fee=Decimal("0.25"),
            platform_redeem_fee=Decimal("5"),
            fixed_payment_redeem_fee=Decimal("0"),
        )
        defaults.update(fields)
        return await self._save(Shop(is_platform_admin=False, studio_name=studio_name, **defaults))

    async def user_settings(self, shop: Shop, negotiation: bool = True, payment: bool = True) -> UserSettings:
        return await self._save(UserSettings(
            shop_id=shop.id,
            negotiation_invoice_notifications=negotiation,
            payment_invoice_notifications=payment
        ))

    async def giftcard(self, issuer: Shop, amount="100.00", available=None,
                       mode: GiftCardMode = GiftCardMode.LIVE, code: Optional[str] = None) -> GiftCard:
        return await self._save(GiftCard(
            shop_id=issuer.id,
            code=code or uuid4().hex[:12].upper(),
            amount=Decimal(amount),
            available_amount=Decimal(available if available is not None else amount),
            giftcard_mode=mode
        ))

    async def redemption(self, card: GiftCard, shop: Shop, amount, fees="0", redeemed_date: datetime = None,
                         **fields) -> Redemption:
        return await self._save(Redemption(
            giftcard_id=card.id,
            redeemed_shop_id=shop.id,
            issuer_shop_id=card.shop_id,
            amount=Decimal(amount),
            fees=Decimal(fees),
            redeemed_date=redeemed_date or at(10),
            **fields
        ))

    async def purchase(self, shop: Shop, total_amount, fees="0", date: datetime = None, **fields) -> Purchase:
        defaults = dict(
            transaction_status=TransactionStatus.COMPLETED,
            invoice_mode=PurchaseMode.LIVE,
        )
        defaults.update(fields)
        return await self._save(Purchase(
            shop_id=shop.id,
            total_amount=Decimal(total_amount),
            fees=Decimal(fees),
            date=date or at(10),
            **defaults
        ))

    async def refund(self, shop: Shop, refund_amount, date: datetime = None, **fields) -> Refund:
        return await self._save(Refund(
            shop_id=shop.id,
            refund_amount=Decimal(refund_amount),
            date=date or at(15),
            **fields
        ))


@pytest.fixture
async def db_session():
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSessionLocal() as session:
        yield session
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def seed(db_session):
    return Seed(db_session)


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def allocator(db_session):
    return InvoiceNumberAllocator(db_session, today=lambda: INVOICE_DAY)


@pytest.fixture
def collaborators(blob_store, notifier, allocator):
    return {"blob_store": blob_store, "notifier": notifier, "allocator": allocator}


@pytest.fixture
def fastapi_app():
    return api
