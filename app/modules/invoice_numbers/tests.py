"""
Tests for settlement invoice numbering
"""
from datetime import date

import pytest

from app.common.exceptions import (
    ConfigurationError, DuplicateInvoiceNumber, InvoiceNumberMismatch, ShopNotFound
)
from app.modules.invoice_numbers.service import (
    InvoiceNumberAllocator, InvoiceNumberCandidate, format_invoice_number
)
from app.modules.negotiation_invoices.models import NegotiationInvoice
from app.modules.shops.models import Shop
from conftest import PERIOD_END, PERIOD_START, at


def test_format_has_no_separator_between_year_and_counter():
    assert format_invoice_number("X1", 2025, 42) == "RE-X1-202542"
    assert format_invoice_number(7, 2025, 1) == "RE-7-20251"


def test_candidate_uses_counter_plus_one():
    allocator = InvoiceNumberAllocator(db=None, today=lambda: date(2025, 6, 30))
    candidate = allocator.candidate_for(Shop(studio_id="X1", invoice_reference_number=41))
    assert candidate == InvoiceNumberCandidate(number="RE-X1-202542", sequence=42)


def test_counter_zero_is_a_valid_value():
    allocator = InvoiceNumberAllocator(db=None, today=lambda: date(2025, 1, 1))
    assert allocator.candidate_for(Shop(studio_id=3, invoice_reference_number=0)).number == "RE-3-20251"


@pytest.mark.parametrize("fields", [
    {"studio_id": 1, "invoice_reference_number": None},
    {"studio_id": None, "invoice_reference_number": 5},
])
def test_incomplete_admin_shop_is_a_configuration_error(fields):
    allocator = InvoiceNumberAllocator(db=None, today=lambda: date(2025, 1, 1))
    with pytest.raises(ConfigurationError):
        allocator.candidate_for(Shop(**fields))


def test_reconcile_accepts_surrounding_whitespace():
    candidate = InvoiceNumberCandidate(number="RE-1-202542", sequence=42)
    InvoiceNumberAllocator.reconcile(candidate, "  RE-1-202542 ")


@pytest.mark.parametrize("expected", ["RE-1-202541", "", None])
def test_reconcile_rejects_stale_numbers(expected):
    candidate = InvoiceNumberCandidate(number="RE-1-202542", sequence=42)
    with pytest.raises(InvoiceNumberMismatch) as exc_info:
        InvoiceNumberAllocator.reconcile(candidate, expected)
    assert exc_info.value.status_code == 409


async def test_next_candidate_reads_the_admin_shop(seed, allocator):
    await seed.admin_shop(counter=41, studio_id=1)
    admin_shop, candidate = await allocator.next_candidate()
    assert admin_shop.is_platform_admin
    assert candidate.number == "RE-1-202542"


async def test_candidate_is_stable_until_advanced(seed, allocator):
    await seed.admin_shop(counter=41, studio_id=1)
    _, first = await allocator.next_candidate()
    _, second = await allocator.next_candidate()
    assert first.number == second.number == "RE-1-202542"
    assert first.sequence == second.sequence == 42


async def test_missing_admin_shop(db_session, allocator):
    with pytest.raises(ShopNotFound):
        await allocator.next_candidate()


async def test_number_used_by_an_invoice_is_not_unique(db_session, seed, allocator):
    shop = await seed.shop()
    db_session.add(NegotiationInvoice(
        shop_id=shop.id,
        invoice_number="RE-1-202542",
        redeemed_amount=1,
        fee_amount=0,
        payout_amount=1,
        pdf_url="http://files.test/x",
        date=at(31),
        date_range_start=PERIOD_START,
        date_range_end=PERIOD_END
    ))
    await db_session.commit()

    assert not await allocator.is_unique("RE-1-202542")
    with pytest.raises(DuplicateInvoiceNumber):
        await allocator.ensure_unique("RE-1-202542")


async def test_number_on_a_customer_purchase_is_not_unique(seed, allocator):
    shop = await seed.shop()
    await seed.purchase(shop, "10", invoice_number="RE-1-202542")
    assert not await allocator.is_unique("RE-1-202542")
    assert await allocator.is_unique("RE-1-202543")


async def test_advance_moves_the_counter(db_session, seed, allocator):
    await seed.admin_shop(counter=41)
    admin_shop, candidate = await allocator.next_candidate(for_update=True)
    await allocator.advance(admin_shop, candidate)
    await db_session.commit()

    assert admin_shop.invoice_reference_number == 42
    _, following = await allocator.next_candidate()
    assert following.number == "RE-1-202543"


async def test_advance_fails_when_counter_moved_concurrently(db_session, seed, allocator):
    await seed.admin_shop(counter=41)
    admin_shop, candidate = await allocator.next_candidate()
    # Another transaction already consumed the same number
    await seed.db.execute(
        Shop.__table__.update().where(Shop.id == admin_shop.id).values(invoice_reference_number=42)
    )
    await db_session.commit()

    with pytest.raises(DuplicateInvoiceNumber):
        await allocator.advance(admin_shop, candidate)
