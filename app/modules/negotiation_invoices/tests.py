"""
Tests for negotiation invoices: redemption aggregation, PDF data, listings
and the transactional create workflow.
"""
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4
import asyncio

import httpx
import pytest
from sqlalchemy import func, select

from app.common.exceptions import (
    DateRangeRequired, DuplicateInvoiceNumber, InternalError, InvoiceFileRequired,
    InvoiceNumberMismatch, NoRedemptionsForPeriod, RedemptionsAlreadyClaimed, ShopNotFound,
    StorageUploadFailed, ValidationError
)
from app.common.listing import ColumnFilter
from app.common.money import truncate_amount
from app.modules.email.notifier import NEGOTIATION_INVOICE_SUBJECT
from app.modules.giftcards.models import GiftCardMode
from app.modules.negotiation_invoices.models import NegotiationInvoice
from app.modules.negotiation_invoices.service import NegotiationInvoiceService, summarize_redemptions
from app.modules.redemptions.crud import redemption_crud
from app.modules.redemptions.models import Redemption
from app.modules.settlements.workflow import SettlementRequest
from app.modules.shops.models import Shop, StudioMode
from conftest import FakeBlobStore, FakeNotifier, PDF_BYTES, PERIOD_END, PERIOD_START, at


def _row(amount, fees, day=10):
    return SimpleNamespace(id=uuid4(), code="ABCD1234", amount=Decimal(amount),
                           fees=Decimal(fees), redeemed_date=at(day))


def _request(shop_id, invoice_number="RE-1-202542", **overrides):
    fields = dict(
        shop_id=shop_id,
        start_date=PERIOD_START,
        end_date=PERIOD_END,
        invoice_number=invoice_number,
        file_content=PDF_BYTES,
    )
    fields.update(overrides)
    return SettlementRequest(**fields)


async def _counter(db) -> int:
    return await db.scalar(select(Shop.invoice_reference_number).where(Shop.is_platform_admin.is_(True)))


async def _invoice_count(db) -> int:
    return await db.scalar(select(func.count()).select_from(NegotiationInvoice))


async def _linked_ids(db, redemption_ids):
    result = await db.execute(
        select(Redemption.negotiation_invoice_id).where(Redemption.id.in_(redemption_ids))
    )
    return [value for (value,) in result.all()]


@pytest.fixture
async def billing(seed):
    """Admin shop with counter 41, a LIVE partner shop and two billable redemptions"""
    admin = await seed.admin_shop(counter=41, studio_id=1)
    shop = await seed.shop("Studio Nord")
    await seed.user_settings(shop)
    card = await seed.giftcard(admin, amount="200.00")
    first = await seed.redemption(card, shop, "50.00", "2.50", at(5))
    second = await seed.redemption(card, shop, "30.00", "1.50", at(20))
    return SimpleNamespace(
        admin=admin, shop=shop, card=card,
        shop_id=shop.id, redemption_ids=[first.id, second.id]
    )


# ===== AGGREGATION =====

class TestSummarizeRedemptions:

    def test_totals(self):
        summary = summarize_redemptions([_row("50.00", "2.50"), _row("30.00", "1.50")])
        assert summary.total_amount == Decimal("80.00")
        assert summary.total_fees == Decimal("4.00")
        assert summary.total_payout == Decimal("76.00")
        assert [item.payout for item in summary.redemptions] == [Decimal("47.50"), Decimal("28.50")]

    def test_payout_is_the_sum_of_truncated_row_payouts(self):
        rows = [_row("0.005", "0"), _row("0.005", "0")]
        summary = summarize_redemptions(rows)

        assert summary.total_payout == Decimal("0.02")
        # Truncating the aggregate difference would give one cent less
        assert truncate_amount(summary.total_amount - summary.total_fees) == Decimal("0.01")

    def test_raw_sums_are_truncated_once(self):
        summary = summarize_redemptions([_row("10.00", "0"), _row("10.005", "0.005")])
        assert summary.total_amount == Decimal("20.01")
        assert summary.total_fees == Decimal("0.01")
        assert summary.total_payout == Decimal("20.00")

    def test_empty(self):
        summary = summarize_redemptions([])
        assert summary.is_empty
        assert summary.total_payout == Decimal("0")


# ===== PREVIEW =====

async def test_preview_only_counts_unbilled_live_admin_card_redemptions(db_session, seed, billing):
    other_shop = await seed.shop("Studio Sued", owner="owner@sued.test")
    demo_card = await seed.giftcard(billing.admin, mode=GiftCardMode.DEMO)
    own_card = await seed.giftcard(billing.shop)
    invoiced = await seed.redemption(billing.card, billing.shop, "99.00")
    await seed.redemption(demo_card, billing.shop, "11.00")
    await seed.redemption(own_card, billing.shop, "12.00")
    await seed.redemption(billing.card, other_shop, "13.00")
    await seed.redemption(billing.card, billing.shop, "14.00", redeemed_date=datetime(2025, 2, 1, 12, tzinfo=timezone.utc))
    await seed.redemption(billing.card, billing.shop, "15.00", deleted_at=at(11))
    invoice = NegotiationInvoice(
        shop_id=billing.shop_id, invoice_number="RE-1-202540", redeemed_amount=99, fee_amount=0,
        payout_amount=99, pdf_url="http://files.test/x", date=at(31),
        date_range_start=PERIOD_START, date_range_end=PERIOD_END
    )
    db_session.add(invoice)
    await db_session.flush()
    invoiced.negotiation_invoice_id = invoice.id
    await db_session.commit()

    service = NegotiationInvoiceService(db_session)
    summary = await service.get_redemptions_of_invoice(billing.shop_id, PERIOD_START, PERIOD_END)

    assert {item.id for item in summary.redemptions} == set(billing.redemption_ids)
    # Newest first
    assert [item.amount for item in summary.redemptions] == [Decimal("30.00"), Decimal("50.00")]
    assert summary.total_payout == Decimal("76.00")


async def test_preview_for_unknown_shop(db_session, billing):
    with pytest.raises(ShopNotFound):
        await NegotiationInvoiceService(db_session).get_redemptions_of_invoice(uuid4(), PERIOD_START, PERIOD_END)


async def test_pdf_data(db_session, billing, allocator):
    service = NegotiationInvoiceService(db_session)
    data = await service.get_invoice_pdf_data(
        billing.shop_id, PERIOD_START, PERIOD_END, tz_name="Europe/Berlin", allocator=allocator
    )

    assert data.invoice_number == "RE-1-202542"
    assert data.date_range == "01.01.2025 - 01.02.2025"
    assert data.seller.shop_name == "Voucher Platform"
    assert data.buyer.shop_name == "Studio Nord"
    assert data.total_amount == "80,00 €"
    assert data.total_fees == "4,00 €"
    assert data.total_payout == "76,00 €"
    # 4.00 gross at 19% contains 0.64 tax
    assert data.tax_amount == "0,64 €"
    assert data.net_amount == "3,36 €"
    assert data.invoice_items[0].tax == "19%"
    assert [r.payout for r in data.redemptions] == ["28,50 €", "47,50 €"]


async def test_pdf_data_rejects_unknown_timezone(db_session, billing, allocator):
    service = NegotiationInvoiceService(db_session)
    with pytest.raises(ValidationError):
        await service.get_invoice_pdf_data(
            billing.shop_id, PERIOD_START, PERIOD_END, tz_name="Mars/Olympus", allocator=allocator
        )


# ===== CREATE =====

async def test_create_issues_invoice_and_links_redemptions(db_session, billing, collaborators, blob_store, notifier):
    service = NegotiationInvoiceService(db_session)
    summary = await service.create(_request(billing.shop_id), **collaborators)

    assert summary.invoice_number == "RE-1-202542"
    assert summary.total_amount == Decimal("80.00")
    assert summary.total_fees == Decimal("4.00")
    assert summary.total_payout == Decimal("76.00")
    assert summary.invoice_iban == "DE00200200200000000002"
    assert summary.pdf_url == "http://files.test/vouchers/negotiation-invoice/negotiation-invoice-RE-1-202542"

    assert await _counter(db_session) == 42
    invoice_id = await db_session.scalar(select(NegotiationInvoice.id))
    assert await _linked_ids(db_session, billing.redemption_ids) == [invoice_id, invoice_id]

    key, data, content_type = blob_store.uploads[0]
    assert key == "negotiation-invoice/negotiation-invoice-RE-1-202542"
    assert data == PDF_BYTES
    assert content_type == "application/pdf"

    to_email, subject, body = notifier.sent[0]
    assert to_email == "owner@nord.test"
    assert subject == NEGOTIATION_INVOICE_SUBJECT
    assert "RE-1-202542" in body
    assert "76,00 €" in body


async def test_created_redemptions_are_not_billed_twice(db_session, billing, collaborators):
    service = NegotiationInvoiceService(db_session)
    await service.create(_request(billing.shop_id), **collaborators)

    preview = await service.get_redemptions_of_invoice(billing.shop_id, PERIOD_START, PERIOD_END)
    assert preview.is_empty
    with pytest.raises(NoRedemptionsForPeriod):
        await service.create(_request(billing.shop_id, "RE-1-202543"), **collaborators)
    assert await _counter(db_session) == 42


async def test_stale_invoice_number_is_rejected(db_session, billing, collaborators, blob_store):
    service = NegotiationInvoiceService(db_session)
    with pytest.raises(InvoiceNumberMismatch) as exc_info:
        await service.create(_request(billing.shop_id, "RE-1-202541"), **collaborators)

    assert exc_info.value.status_code == 409
    assert await _counter(db_session) == 41
    assert await _invoice_count(db_session) == 0
    assert blob_store.uploads == []


async def test_no_redemptions_in_period(db_session, billing, collaborators, blob_store):
    service = NegotiationInvoiceService(db_session)
    request = _request(
        billing.shop_id,
        start_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        end_date=datetime(2024, 1, 31, tzinfo=timezone.utc)
    )
    with pytest.raises(NoRedemptionsForPeriod):
        await service.create(request, **collaborators)

    assert await _counter(db_session) == 41
    assert await _invoice_count(db_session) == 0
    assert blob_store.uploads == []


async def test_number_already_used_elsewhere(db_session, seed, billing, collaborators):
    await seed.purchase(billing.shop, "10", invoice_number="RE-1-202542")
    service = NegotiationInvoiceService(db_session)
    with pytest.raises(DuplicateInvoiceNumber):
        await service.create(_request(billing.shop_id), **collaborators)
    assert await _counter(db_session) == 41


async def test_unknown_shop(db_session, billing, collaborators):
    with pytest.raises(ShopNotFound):
        await NegotiationInvoiceService(db_session).create(_request(uuid4()), **collaborators)
    assert await _counter(db_session) == 41


async def test_failed_link_rolls_everything_back(db_session, billing, collaborators, monkeypatch):
    async def broken_claim(db, ids, invoice_id):
        raise RuntimeError("connection lost")

    monkeypatch.setattr(redemption_crud, "claim_for_negotiation_invoice", broken_claim)
    service = NegotiationInvoiceService(db_session)
    with pytest.raises(RuntimeError):
        await service.create(_request(billing.shop_id), **collaborators)

    assert await _counter(db_session) == 41
    assert await _invoice_count(db_session) == 0
    assert await _linked_ids(db_session, billing.redemption_ids) == [None, None]


async def test_concurrently_claimed_redemptions(db_session, billing, collaborators, monkeypatch):
    async def partial_claim(db, ids, invoice_id):
        return len(ids) - 1

    monkeypatch.setattr(redemption_crud, "claim_for_negotiation_invoice", partial_claim)
    with pytest.raises(RedemptionsAlreadyClaimed):
        await NegotiationInvoiceService(db_session).create(_request(billing.shop_id), **collaborators)

    assert await _counter(db_session) == 41
    assert await _invoice_count(db_session) == 0


async def test_upload_failure_writes_nothing(db_session, billing, allocator, notifier):
    service = NegotiationInvoiceService(db_session)
    with pytest.raises(StorageUploadFailed) as exc_info:
        await service.create(
            _request(billing.shop_id), blob_store=FakeBlobStore(fail=True), notifier=notifier, allocator=allocator
        )

    assert exc_info.value.status_code == 502
    assert await _counter(db_session) == 41
    assert await _invoice_count(db_session) == 0
    assert notifier.sent == []


async def test_mail_failure_keeps_the_invoice(db_session, billing, blob_store, allocator):
    service = NegotiationInvoiceService(db_session)
    summary = await service.create(
        _request(billing.shop_id), blob_store=blob_store, notifier=FakeNotifier(fail=True), allocator=allocator
    )

    assert summary.invoice_number == "RE-1-202542"
    assert await _counter(db_session) == 42
    assert await _invoice_count(db_session) == 1


async def test_shops_that_opted_out_get_no_mail(db_session, seed, collaborators, notifier):
    admin = await seed.admin_shop(counter=41)
    shop = await seed.shop()
    await seed.user_settings(shop, negotiation=False)
    card = await seed.giftcard(admin)
    await seed.redemption(card, shop, "20.00")

    await NegotiationInvoiceService(db_session).create(_request(shop.id), **collaborators)
    assert notifier.sent == []


async def test_slow_creation_times_out(db_session, billing, allocator, notifier):
    class SlowBlobStore(FakeBlobStore):
        async def upload(self, data, key, content_type):
            await asyncio.sleep(5)
            return await super().upload(data, key, content_type)

    service = NegotiationInvoiceService(db_session)
    with pytest.raises(InternalError):
        await service.create(
            _request(billing.shop_id),
            blob_store=SlowBlobStore(), notifier=notifier, allocator=allocator, timeout=0.05
        )
    assert await _counter(db_session) == 41
    assert await _invoice_count(db_session) == 0


@pytest.mark.parametrize("overrides, error", [
    ({"file_content": None}, InvoiceFileRequired),
    ({"file_content": b""}, InvoiceFileRequired),
    ({"content_type": "image/png"}, InvoiceFileRequired),
    ({"start_date": None}, DateRangeRequired),
    ({"end_date": None}, DateRangeRequired),
    ({"start_date": PERIOD_END, "end_date": PERIOD_START}, DateRangeRequired),
])
async def test_request_validation(db_session, billing, collaborators, overrides, error):
    with pytest.raises(error) as exc_info:
        await NegotiationInvoiceService(db_session).create(_request(billing.shop_id, **overrides), **collaborators)
    assert exc_info.value.status_code == 422
    assert await _counter(db_session) == 41


# ===== LISTINGS =====

async def test_admin_list_groups_by_shop_and_invoice(db_session, seed, billing, collaborators):
    service = NegotiationInvoiceService(db_session)
    await service.create(_request(billing.shop_id), **collaborators)
    # A new unbilled redemption after the invoice was issued
    await seed.redemption(billing.card, billing.shop, "10.004", "0.50", at(25))

    listing = await service.list_for_admin(PERIOD_START, PERIOD_END)

    assert listing.total_count == 2
    by_number = {item.invoice_number: item for item in listing.negotiation_invoices}
    billed = by_number["RE-1-202542"]
    assert billed.total_amount == Decimal("80.00")
    assert billed.total_payout == Decimal("76.00")
    unbilled = by_number[None]
    assert unbilled.total_amount == Decimal("10.00")
    assert unbilled.total_fees == Decimal("0.50")
    assert unbilled.total_payout == Decimal("9.50")
    assert unbilled.pdf_url is None


async def test_admin_list_search_and_filters(db_session, seed, billing):
    other = await seed.shop("Atelier West", owner="owner@west.test")
    await seed.redemption(billing.card, other, "5.00")
    service = NegotiationInvoiceService(db_session)

    searched = await service.list_for_admin(PERIOD_START, PERIOD_END, search_value="atelier")
    assert [item.studio_name for item in searched.negotiation_invoices] == ["Atelier West"]

    filtered = await service.list_for_admin(
        PERIOD_START, PERIOD_END, column_filters=[ColumnFilter(id="total_amount", value="80")]
    )
    assert [item.studio_name for item in filtered.negotiation_invoices] == ["Studio Nord"]

    ordered = await service.list_for_admin(PERIOD_START, PERIOD_END)
    assert [item.studio_name for item in ordered.negotiation_invoices] == ["Atelier West", "Studio Nord"]


async def test_shop_list(db_session, billing, collaborators):
    service = NegotiationInvoiceService(db_session)
    await service.create(_request(billing.shop_id), **collaborators)

    listing = await service.list_for_shop(billing.shop_id, PERIOD_START, datetime.now(timezone.utc))
    assert listing.total_count == 1
    assert listing.negotiation_invoices[0].invoice_number == "RE-1-202542"
    assert listing.negotiation_invoices[0].studio_name == "Studio Nord"


async def test_demo_shops_have_no_invoices(db_session, seed):
    shop = await seed.shop(studio_mode=StudioMode.DEMO)
    listing = await NegotiationInvoiceService(db_session).list_for_shop(shop.id, PERIOD_START, PERIOD_END)
    assert listing.total_count == 0
    assert listing.negotiation_invoices == []


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


def _form(shop_id, invoice_number):
    return {"shop_id": str(shop_id), "invoice_number": invoice_number, **_period_params()}


async def test_api_issue_flow(client, billing, blob_store):
    pdf_data = await client.get(f"/negotiation-invoices/shops/{billing.shop_id}/pdf-data", params=_period_params())
    assert pdf_data.status_code == 200
    invoice_number = pdf_data.json()["invoice_number"]

    response = await client.post(
        "/negotiation-invoices/",
        data=_form(billing.shop_id, invoice_number),
        files={"file": ("invoice.pdf", PDF_BYTES, "application/pdf")}
    )

    assert response.status_code == 201
    body = response.json()
    assert body["invoice_number"] == invoice_number
    assert body["total_payout"] == 76.0
    assert len(blob_store.uploads) == 1

    preview = await client.get(f"/negotiation-invoices/shops/{billing.shop_id}/redemptions", params=_period_params())
    assert preview.json()["redemptions"] == []


async def test_api_stale_number_error_body(client, billing):
    response = await client.post(
        "/negotiation-invoices/",
        data=_form(billing.shop_id, "RE-1-19990001"),
        files={"file": ("invoice.pdf", PDF_BYTES, "application/pdf")}
    )
    assert response.status_code == 409
    assert response.json() == {
        "message": InvoiceNumberMismatch.default_message,
        "code": "invoice_number_mismatch",
        "error": "InvoiceNumberMismatch",
    }


async def test_api_missing_file(client, billing):
    response = await client.post("/negotiation-invoices/", data=_form(billing.shop_id, "RE-1-20251"))
    assert response.status_code == 422
    assert response.json()["code"] == "invoice_file_required"


async def test_api_list_rejects_unknown_columns(client, billing):
    params = {**_period_params(), "column_filters": '[{"id": "colour", "value": "red"}]'}
    response = await client.get("/negotiation-invoices/", params=params)
    assert response.status_code == 422
    assert response.json()["code"] == "unknown_column"


async def test_api_list_rejects_malformed_filters(client, billing):
    params = {**_period_params(), "column_filters": "studio_name=Nord"}
    response = await client.get("/negotiation-invoices/", params=params)
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


async def test_api_admin_list(client, billing):
    params = {**_period_params(), "column_filters": '[{"id": "studio_name", "value": "nord"}]'}
    response = await client.get("/negotiation-invoices/", params=params)
    assert response.status_code == 200
    body = response.json()
    assert body["total_count"] == 1
    assert body["negotiation_invoices"][0]["total_payout"] == 76.0


async def test_api_pdf_data_unknown_timezone(client, billing):
    params = {**_period_params(), "timezone": "Mars/Olympus"}
    response = await client.get(f"/negotiation-invoices/shops/{billing.shop_id}/pdf-data", params=params)
    assert response.status_code == 422
    assert response.json() == {
        "message": "Unknown timezone: Mars/Olympus",
        "code": "validation_error",
        "error": "ValidationError",
    }
