"""
Tests for payment (fee) invoices
"""
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import httpx
import pytest
from sqlalchemy import func, select

from app.common.exceptions import (
    InvoiceNumberMismatch, NoPurchasesForPeriod, RedemptionsAlreadyClaimed, ShopNotFound, ValidationError
)
from app.modules.email.notifier import PAYMENT_INVOICE_SUBJECT
from app.modules.negotiation_invoices.service import NegotiationInvoiceService
from app.modules.payment_invoices.models import PaymentInvoice
from app.modules.payment_invoices.schemas import BilledRecordKind
from app.modules.payment_invoices.service import PaymentInvoiceService, summarize_purchases
from app.modules.purchases.crud import purchase_crud
from app.modules.purchases.models import Purchase, PurchaseMode, Refund, TransactionStatus
from app.modules.settlements.workflow import SettlementRequest
from app.modules.shops.models import Shop
from conftest import PDF_BYTES, PERIOD_END, PERIOD_START, at


def _request(shop_id, invoice_number="RE-1-202542"):
    return SettlementRequest(
        shop_id=shop_id,
        start_date=PERIOD_START,
        end_date=PERIOD_END,
        invoice_number=invoice_number,
        file_content=PDF_BYTES
    )


@pytest.fixture
async def billing(seed):
    admin = await seed.admin_shop(counter=41, studio_id=1)
    shop = await seed.shop("Studio Nord")
    await seed.user_settings(shop)
    first = await seed.purchase(shop, "100.00", "2.75", at(3), invoice_number="GC-1001")
    second = await seed.purchase(shop, "50.00", "1.50", at(18), invoice_number="GC-1002")
    refund = await seed.refund(shop, "20.00", at(25), invoice_number="GC-1001")
    return SimpleNamespace(
        admin=admin, shop=shop, shop_id=shop.id,
        purchase_ids=[first.id, second.id], refund_id=refund.id
    )


class TestSummarizePurchases:

    def test_refunds_reduce_the_amount_but_not_the_fees(self):
        purchases = [
            SimpleNamespace(id=uuid4(), invoice_number="GC-1", total_amount=Decimal("100.00"),
                            fees=Decimal("2.75"), date=at(3)),
        ]
        refunds = [
            SimpleNamespace(id=uuid4(), invoice_number="GC-1", refund_amount=Decimal("20.00"),
                            tax_amount=Decimal("3.19"), date=at(25)),
        ]
        summary = summarize_purchases(purchases, refunds)

        assert summary.total_amount == Decimal("80.00")
        assert summary.total_fees == Decimal("2.75")
        refund_line = summary.purchases[0]
        assert refund_line.kind == BilledRecordKind.REFUND
        assert refund_line.total_amount == Decimal("-20.00")
        assert refund_line.fees == Decimal("0")

    def test_lines_are_newest_first(self):
        rows = [
            SimpleNamespace(id=uuid4(), invoice_number=None, total_amount=Decimal("1"), fees=Decimal("0"), date=at(day))
            for day in (2, 9, 5)
        ]
        summary = summarize_purchases(rows, [])
        assert [line.date.day for line in summary.purchases] == [9, 5, 2]

    def test_empty(self):
        assert summarize_purchases([], []).is_empty


async def test_preview_skips_incomplete_demo_and_billed_purchases(db_session, seed, billing):
    await seed.purchase(billing.shop, "70.00", transaction_status=TransactionStatus.PENDING)
    await seed.purchase(billing.shop, "80.00", invoice_mode=PurchaseMode.DEMO)
    await seed.purchase(billing.shop, "90.00", date=datetime(2024, 12, 31, tzinfo=timezone.utc))

    summary = await PaymentInvoiceService(db_session).get_purchases_of_invoice(
        billing.shop_id, PERIOD_START, PERIOD_END
    )

    assert len(summary.purchases) == 3
    assert summary.total_amount == Decimal("130.00")
    assert summary.total_fees == Decimal("4.25")
    assert summary.ids_of(BilledRecordKind.REFUND) == [billing.refund_id]


async def test_create_claims_purchases_and_refunds(db_session, billing, collaborators, blob_store, notifier):
    summary = await PaymentInvoiceService(db_session).create(_request(billing.shop_id), **collaborators)

    assert summary.invoice_number == "RE-1-202542"
    assert summary.total_amount == Decimal("130.00")
    assert summary.total_fees == Decimal("4.25")
    assert blob_store.uploads[0][0] == "payment-invoice/payment-invoice-RE-1-202542"

    invoice_id = await db_session.scalar(select(PaymentInvoice.id))
    purchase_links = (await db_session.execute(
        select(Purchase.payment_invoice_id).where(Purchase.id.in_(billing.purchase_ids))
    )).scalars().all()
    refund_link = await db_session.scalar(select(Refund.payment_invoice_id).where(Refund.id == billing.refund_id))
    assert purchase_links == [invoice_id, invoice_id]
    assert refund_link == invoice_id

    counter = await db_session.scalar(select(Shop.invoice_reference_number).where(Shop.is_platform_admin.is_(True)))
    assert counter == 42

    to_email, subject, body = notifier.sent[0]
    assert subject == PAYMENT_INVOICE_SUBJECT
    assert "130,00 €" in body


async def test_both_invoice_kinds_share_one_counter(db_session, seed, billing, collaborators):
    admin = billing.admin
    card = await seed.giftcard(admin)
    await seed.redemption(card, billing.shop, "10.00")

    await PaymentInvoiceService(db_session).create(_request(billing.shop_id, "RE-1-202542"), **collaborators)
    with pytest.raises(InvoiceNumberMismatch):
        await NegotiationInvoiceService(db_session).create(_request(billing.shop_id, "RE-1-202542"), **collaborators)
    issued = await NegotiationInvoiceService(db_session).create(
        _request(billing.shop_id, "RE-1-202543"), **collaborators
    )
    assert issued.invoice_number == "RE-1-202543"


async def test_no_purchases(db_session, seed, collaborators):
    await seed.admin_shop(counter=41)
    shop = await seed.shop()
    shop_id = shop.id
    with pytest.raises(NoPurchasesForPeriod):
        await PaymentInvoiceService(db_session).create(_request(shop_id), **collaborators)
    assert await db_session.scalar(select(func.count()).select_from(PaymentInvoice)) == 0


async def test_concurrently_claimed_refund(db_session, billing, collaborators, monkeypatch):
    async def nothing_claimed(db, ids, invoice_id):
        return 0

    monkeypatch.setattr(purchase_crud, "claim_refunds", nothing_claimed)
    with pytest.raises(RedemptionsAlreadyClaimed):
        await PaymentInvoiceService(db_session).create(_request(billing.shop_id), **collaborators)

    assert await db_session.scalar(select(func.count()).select_from(PaymentInvoice)) == 0
    unlinked = (await db_session.execute(
        select(Purchase.payment_invoice_id).where(Purchase.id.in_(billing.purchase_ids))
    )).scalars().all()
    assert unlinked == [None, None]


async def test_shop_list(db_session, billing, collaborators):
    service = PaymentInvoiceService(db_session)
    await service.create(_request(billing.shop_id), **collaborators)

    listing = await service.list_for_shop(billing.shop_id, PERIOD_START, datetime.now(timezone.utc))
    assert listing.total_count == 1
    assert listing.payment_invoices[0].total_fees == Decimal("4.25")

    searched = await service.list_for_shop(
        billing.shop_id, PERIOD_START, datetime.now(timezone.utc), search_value="nothing-like-this"
    )
    assert searched.total_count == 0


# ===== PDF DATA =====

async def test_pdf_data(db_session, billing, allocator):
    data = await PaymentInvoiceService(db_session).get_invoice_pdf_data(
        billing.shop_id, PERIOD_START, PERIOD_END, tz_name="Europe/Berlin", allocator=allocator
    )

    assert data.invoice_number == "RE-1-202542"
    assert data.date_range == "01.01.2025 - 01.02.2025"
    assert data.seller.shop_name == "Voucher Platform"
    assert data.buyer.shop_name == "Studio Nord"
    assert data.invoice_items[0].description == "Software-Gebühr"
    assert data.invoice_items[0].total_price == "4,25 €"
    assert data.total_amount == "130,00 €"
    assert data.total_fees == "4,25 €"
    # 4.25 gross at 19% contains 0.68 tax
    assert data.tax_amount == "0,68 €"
    assert data.net_amount == "3,57 €"
    assert [p.kind for p in data.purchases] == [
        BilledRecordKind.REFUND, BilledRecordKind.PURCHASE, BilledRecordKind.PURCHASE
    ]
    assert data.purchases[0].date == "25.01.2025"
    assert data.purchases[0].total_amount == "-20,00 €"
    assert data.purchases[0].fees == "0,00 €"


async def test_pdf_data_does_not_reserve_the_number(db_session, billing, allocator):
    service = PaymentInvoiceService(db_session)
    await service.get_invoice_pdf_data(billing.shop_id, PERIOD_START, PERIOD_END, allocator=allocator)
    again = await service.get_invoice_pdf_data(billing.shop_id, PERIOD_START, PERIOD_END, allocator=allocator)
    assert again.invoice_number == "RE-1-202542"


async def test_pdf_data_rejects_unknown_timezone(db_session, billing, allocator):
    with pytest.raises(ValidationError):
        await PaymentInvoiceService(db_session).get_invoice_pdf_data(
            billing.shop_id, PERIOD_START, PERIOD_END, tz_name="Mars/Olympus", allocator=allocator
        )


# ===== ADMIN LIST =====

@pytest.fixture
async def partner_shops(seed, billing):
    other = await seed.shop("Studio Ost", owner="owner@ost.test")
    await seed.purchase(other, "40.00", "1.00", at(7))
    await seed.purchase(billing.admin, "500.00", "0", at(7))
    return SimpleNamespace(nord=billing.shop_id, ost=other.id)


async def test_admin_list_groups_unbilled_purchases_per_shop(db_session, partner_shops):
    listing = await PaymentInvoiceService(db_session).list_for_admin(PERIOD_START, PERIOD_END)

    assert listing.total_count == 2
    nord, ost = listing.payment_invoices
    assert (nord.studio_name, ost.studio_name) == ("Studio Nord", "Studio Ost")
    assert nord.invoice_number is None
    assert nord.total_amount == Decimal("130.00")
    assert nord.total_fees == Decimal("4.25")
    assert ost.total_amount == Decimal("40.00")


async def test_admin_list_splits_issued_and_unbilled(db_session, seed, billing, partner_shops, collaborators):
    service = PaymentInvoiceService(db_session)
    await service.create(_request(billing.shop_id), **collaborators)
    await seed.purchase(billing.shop, "10.00", "0.50", at(28))

    listing = await service.list_for_admin(PERIOD_START, PERIOD_END)

    assert listing.total_count == 3
    rows = {row.invoice_number: row for row in listing.payment_invoices if row.shop_id == billing.shop_id}
    assert rows["RE-1-202542"].total_amount == Decimal("130.00")
    assert rows["RE-1-202542"].total_fees == Decimal("4.25")
    assert rows["RE-1-202542"].pdf_url
    assert rows[None].total_amount == Decimal("10.00")

    searched = await service.list_for_admin(PERIOD_START, PERIOD_END, search_value="RE-1-2025")
    assert [row.invoice_number for row in searched.payment_invoices] == ["RE-1-202542"]


async def test_admin_list_needs_the_platform_shop(db_session, seed):
    shop = await seed.shop()
    await seed.purchase(shop, "10.00")
    with pytest.raises(ShopNotFound):
        await PaymentInvoiceService(db_session).list_for_admin(PERIOD_START, PERIOD_END)


# ===== API =====

@pytest.fixture
async def client(fastapi_app, blob_store, notifier, monkeypatch):
    monkeypatch.setattr("app.modules.settlements.workflow.get_blob_storage", lambda: blob_store)
    monkeypatch.setattr("app.modules.settlements.workflow.get_notifier", lambda: notifier)
    transport = httpx.ASGITransport(app=fastapi_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


def _period_params():
    return {"start_date": PERIOD_START.isoformat(), "end_date": PERIOD_END.isoformat()}


async def test_api_issue_flow(client, billing):
    pdf_data = await client.get(f"/payment-invoices/shops/{billing.shop_id}/pdf-data", params=_period_params())
    assert pdf_data.status_code == 200
    invoice_number = pdf_data.json()["invoice_number"]

    response = await client.post(
        "/payment-invoices/",
        data={"shop_id": str(billing.shop_id), "invoice_number": invoice_number, **_period_params()},
        files={"file": ("invoice.pdf", PDF_BYTES, "application/pdf")}
    )
    assert response.status_code == 201
    assert response.json()["total_amount"] == 130.0


async def test_api_pdf_data_unknown_timezone(client, billing):
    params = {**_period_params(), "timezone": "Mars/Olympus"}
    response = await client.get(f"/payment-invoices/shops/{billing.shop_id}/pdf-data", params=params)
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


async def test_api_admin_list(client, partner_shops):
    params = {**_period_params(), "column_filters": '[{"id": "studio_name", "value": "ost"}]'}
    response = await client.get("/payment-invoices/", params=params)
    assert response.status_code == 200
    body = response.json()
    assert body["total_count"] == 1
    assert body["payment_invoices"][0]["total_amount"] == 40.0
