"""
Tests for recording customer purchases
"""
from decimal import Decimal
from uuid import uuid4

import pytest

from app.common.exceptions import ConfigurationError, ShopNotFound
from app.modules.purchases.models import PurchaseMode, TransactionStatus
from app.modules.purchases.service import PurchaseService, purchase_fee
from app.modules.shops.models import Shop
from conftest import at


def test_purchase_fee():
    shop = Shop(platform_fee=Decimal("2.5"), fixed_payment_fee=Decimal("0.25"))
    assert purchase_fee(Decimal("100.00"), shop) == Decimal("2.75")


def test_purchase_fee_needs_a_schedule():
    with pytest.raises(ConfigurationError):
        purchase_fee(Decimal("100.00"), Shop(platform_fee=Decimal("2.5"), fixed_payment_fee=None))


async def test_record_purchase_stores_the_fee(db_session, seed):
    shop = await seed.shop()
    purchase = await PurchaseService(db_session).record_purchase(
        shop.id, Decimal("40.00"), invoice_number="GC-2001", date=at(7)
    )

    assert purchase.fees == Decimal("1.25")
    assert purchase.transaction_status == TransactionStatus.COMPLETED
    assert purchase.invoice_mode == PurchaseMode.LIVE
    assert purchase.payment_invoice_id is None


async def test_record_purchase_for_unknown_shop(db_session):
    with pytest.raises(ShopNotFound):
        await PurchaseService(db_session).record_purchase(uuid4(), Decimal("10"))
