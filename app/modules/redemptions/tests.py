"""
Tests for redeeming gift cards and correcting redemptions
"""
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from app.common.exceptions import (
    ConfigurationError, GiftCardAmountExceeded, GiftCardModeMismatch, GiftCardNotFound,
    InvalidRedemptionShop, RedemptionAlreadyInvoiced, RedemptionShopChangeNotAllowed
)
from app.common.listing import ColumnFilter
from app.modules.giftcards.models import GiftCard, GiftCardMode
from app.modules.negotiation_invoices.service import NegotiationInvoiceService
from app.modules.redemptions.schemas import RedemptionCreate, RedemptionUpdate
from app.modules.redemptions.service import RedemptionService, redemption_fee
from app.modules.settlements.workflow import SettlementRequest
from app.modules.shops.models import Shop, StudioMode
from conftest import PDF_BYTES, PERIOD_END, PERIOD_START, at


@pytest.fixture
async def network(seed):
    admin = await seed.admin_shop(counter=41)
    nord = await seed.shop("Studio Nord")
    sued = await seed.shop("Studio Sued", owner="owner@sued.test", platform_redeem_fee=Decimal("10"))
    admin_card = await seed.giftcard(admin, amount="100.00", code="ADMINCARD001")
    nord_card = await seed.giftcard(nord, amount="40.00", code="NORDCARD0001")
    return SimpleNamespace(admin=admin, nord=nord, sued=sued, admin_card=admin_card, nord_card=nord_card)


async def _available(db, card_id) -> Decimal:
    return await db.scalar(select(GiftCard.available_amount).where(GiftCard.id == card_id))


def test_fee_is_waived_when_it_would_eat_the_amount():
    shop = Shop(platform_redeem_fee=Decimal("5"), fixed_payment_redeem_fee=Decimal("1.00"))
    assert redemption_fee(Decimal("100"), shop) == Decimal("6.00")
    assert redemption_fee(Decimal("0.50"), shop) == Decimal("0")


def test_fee_needs_a_schedule():
    with pytest.raises(ConfigurationError):
        redemption_fee(Decimal("10"), Shop(platform_redeem_fee=None, fixed_payment_redeem_fee=Decimal("0")))


class TestRedeem:

    async def test_admin_card_is_charged_at_the_redeeming_shop(self, db_session, network):
        service = RedemptionService(db_session)
        redemption = await service.redeem_giftcard(RedemptionCreate(
            giftcard_code="ADMI-NCAR-D001", amount=Decimal("30.00"), redeemed_shop_id=network.sued.id
        ))

        assert redemption.redeemed_shop_id == network.sued.id
        assert redemption.issuer_shop_id == network.admin.id
        assert redemption.fees == Decimal("3.00")
        assert await _available(db_session, network.admin_card.id) == Decimal("70.00")

    async def test_shop_card_is_always_redeemed_at_the_issuer(self, db_session, network):
        service = RedemptionService(db_session)
        redemption = await service.redeem_giftcard(RedemptionCreate(
            giftcard_code="NORDCARD0001", amount=Decimal("15.00"), redeemed_shop_id=network.sued.id
        ))

        assert redemption.redeemed_shop_id == network.nord.id
        assert redemption.fees == Decimal("0")
        assert await _available(db_session, network.nord_card.id) == Decimal("25.00")

    async def test_admin_card_cannot_be_redeemed_at_the_admin(self, db_session, network):
        with pytest.raises(InvalidRedemptionShop):
            await RedemptionService(db_session).redeem_giftcard(RedemptionCreate(
                giftcard_code="ADMINCARD001", amount=Decimal("1"), redeemed_shop_id=network.admin.id
            ))

    async def test_amount_over_balance(self, db_session, network):
        card_id = network.admin_card.id
        with pytest.raises(GiftCardAmountExceeded):
            await RedemptionService(db_session).redeem_giftcard(RedemptionCreate(
                giftcard_code="ADMINCARD001", amount=Decimal("100.01"), redeemed_shop_id=network.nord.id
            ))
        assert await _available(db_session, card_id) == Decimal("100.00")

    async def test_demo_card_of_live_issuer(self, db_session, seed, network):
        await seed.giftcard(network.admin, code="DEMOCARD0001", mode=GiftCardMode.DEMO)
        with pytest.raises(GiftCardModeMismatch):
            await RedemptionService(db_session).redeem_giftcard(RedemptionCreate(
                giftcard_code="DEMOCARD0001", amount=Decimal("1"), redeemed_shop_id=network.nord.id
            ))

    async def test_admin_card_at_demo_shop(self, db_session, seed, network):
        demo_shop = await seed.shop("Demo Studio", owner="demo@studio.test", studio_mode=StudioMode.DEMO)
        with pytest.raises(GiftCardModeMismatch):
            await RedemptionService(db_session).redeem_giftcard(RedemptionCreate(
                giftcard_code="ADMINCARD001", amount=Decimal("1"), redeemed_shop_id=demo_shop.id
            ))

    async def test_unknown_code(self, db_session, network):
        with pytest.raises(GiftCardNotFound):
            await RedemptionService(db_session).redeem_giftcard(RedemptionCreate(
                giftcard_code="NOPE", amount=Decimal("1"), redeemed_shop_id=network.nord.id
            ))


class TestUpdate:

    async def test_amount_change_moves_the_difference_to_the_card(self, db_session, seed, network):
        redemption = await seed.redemption(network.admin_card, network.nord, "30.00", "1.50")
        network.admin_card.available_amount = Decimal("70.00")
        await db_session.commit()

        result = await RedemptionService(db_session).update_redemption(
            redemption.id, RedemptionUpdate(amount=Decimal("20.009"))
        )

        # Edited amounts are floored
        assert result.available_amount == Decimal("80.00")
        stored = await db_session.scalar(select(GiftCard.available_amount).where(GiftCard.id == network.admin_card.id))
        assert stored == Decimal("80.00")
        assert redemption.amount == Decimal("20.00")
        assert redemption.fees == Decimal("1.00")

    async def test_amount_cannot_exceed_the_reset_balance(self, db_session, seed, network):
        redemption = await seed.redemption(network.admin_card, network.nord, "30.00")
        network.admin_card.available_amount = Decimal("70.00")
        await db_session.commit()

        with pytest.raises(GiftCardAmountExceeded):
            await RedemptionService(db_session).update_redemption(
                redemption.id, RedemptionUpdate(amount=Decimal("100.01"))
            )

    async def test_shop_change_recomputes_fees(self, db_session, seed, network):
        redemption = await seed.redemption(network.admin_card, network.nord, "30.00", "1.50")
        await RedemptionService(db_session).update_redemption(
            redemption.id, RedemptionUpdate(redeemed_shop_id=network.sued.id)
        )
        assert redemption.redeemed_shop_id == network.sued.id
        assert redemption.fees == Decimal("3.00")

    async def test_shop_change_only_on_admin_cards(self, db_session, seed, network):
        redemption = await seed.redemption(network.nord_card, network.nord, "10.00")
        with pytest.raises(RedemptionShopChangeNotAllowed):
            await RedemptionService(db_session).update_redemption(
                redemption.id, RedemptionUpdate(redeemed_shop_id=network.sued.id)
            )

    async def test_shop_change_to_admin_is_rejected(self, db_session, seed, network):
        redemption = await seed.redemption(network.admin_card, network.nord, "10.00")
        with pytest.raises(InvalidRedemptionShop):
            await RedemptionService(db_session).update_redemption(
                redemption.id, RedemptionUpdate(redeemed_shop_id=network.admin.id)
            )

    async def test_invoiced_redemption_only_takes_comments(self, db_session, seed, network, collaborators):
        redemption = await seed.redemption(network.admin_card, network.nord, "10.00", "0.50", at(10))
        redemption_id = redemption.id
        await NegotiationInvoiceService(db_session).create(SettlementRequest(
            shop_id=network.nord.id, start_date=PERIOD_START, end_date=PERIOD_END,
            invoice_number="RE-1-202542", file_content=PDF_BYTES
        ), **collaborators)

        service = RedemptionService(db_session)
        with pytest.raises(RedemptionAlreadyInvoiced):
            await service.update_redemption(redemption_id, RedemptionUpdate(amount=Decimal("5.00")))

        await service.update_redemption(redemption_id, RedemptionUpdate(comment="paid out in February"))
        listing = await service.list_redemptions(search_value="ADMINCARD")
        assert listing.redemptions[0].comment == "paid out in February"
        assert listing.redemptions[0].invoice_number == "RE-1-202542"


class TestList:

    async def test_rows_carry_card_and_shop_names(self, db_session, seed, network):
        await seed.redemption(network.admin_card, network.nord, "10.00", redeemed_date=at(3))
        await seed.redemption(network.admin_card, network.sued, "20.00", redeemed_date=at(9))
        await seed.redemption(network.nord_card, network.nord, "5.00", redeemed_date=at(6))

        listing = await RedemptionService(db_session).list_redemptions()

        assert listing.total_redemptions == 3
        assert [item.amount for item in listing.redemptions] == [Decimal("20.00"), Decimal("5.00"), Decimal("10.00")]
        first = listing.redemptions[0]
        assert first.code == "ADMINCARD001"
        assert first.studio_name == "Voucher Platform"
        assert first.redeemed_shop == "Studio Sued"
        assert first.invoice_number is None

    async def test_filters_paging_and_shop_scope(self, db_session, seed, network):
        for day in range(1, 6):
            await seed.redemption(network.admin_card, network.nord, f"{day}.00", redeemed_date=at(day))
        await seed.redemption(network.admin_card, network.sued, "9.00")
        service = RedemptionService(db_session)

        page = await service.list_redemptions(page=2, size=2, shop_id=network.nord.id)
        assert page.total_redemptions == 5
        assert [item.amount for item in page.redemptions] == [Decimal("3.00"), Decimal("2.00")]

        by_shop = await service.list_redemptions(column_filters=[ColumnFilter(id="redeemed_shop", value="sued")])
        assert [item.amount for item in by_shop.redemptions] == [Decimal("9.00")]

        by_amount = await service.list_redemptions(search_value="4")
        assert [item.amount for item in by_amount.redemptions] == [Decimal("4.00")]

        oldest_first = await service.list_redemptions(sort_by="redeemed_date", sort_order="asc", shop_id=network.nord.id)
        assert oldest_first.redemptions[0].amount == Decimal("1.00")
