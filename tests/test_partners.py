import uuid
from decimal import Decimal

import pytest

from shared.errors import NotFound, ValidationError
from raffle_api.services.click_service import ClickService
from raffle_api.services.partner_service import PartnerService, slugify
from raffle_api.services.raffle_service import RaffleService, price_for
from raffle_api.services.sale_service import SaleService
from raffle_api.services.ticket_service import TicketService


def test_slugify():
    assert slugify("João da Silva") == "joao-da-silva"
    assert slugify("  Loja  #1 ") == "loja-1"


async def test_register_partner_generates_unique_slug(session, partner):
    twin = await PartnerService.register_partner(session, "João da Silva", commission_rate="5")

    assert partner.slug == "joao-da-silva"
    assert twin.slug.startswith("joao-da-silva-")
    assert twin.slug != partner.slug
    assert partner.phone == "11912345678"
    assert partner.commission_rate == Decimal("15")


async def test_register_partner_validation(session, partner):
    with pytest.raises(ValidationError):
        await PartnerService.register_partner(session, "Jo")
    with pytest.raises(ValidationError):
        await PartnerService.register_partner(session, "Outro João", commission_rate="101")
    with pytest.raises(ValidationError):
        await PartnerService.register_partner(session, "Outro João", slug=partner.slug)


async def test_deactivate_keeps_history(session, raffle, partner, customer):
    await ClickService.record_click(session, partner.slug, None, None)

    deactivated = await PartnerService.set_active(session, partner.id, False)
    assert deactivated.is_active is False
    assert deactivated.deactivated_at is not None
    assert len(await ClickService.get_clicks_history(session, partner.id)) == 1

    activated = await PartnerService.set_active(session, partner.id, True)
    assert activated.deactivated_at is None


async def test_update_partner(session, partner):
    updated = await PartnerService.update_partner(session, partner.id, {"commission_rate": "12.5", "pix_key": "11912345678"})

    assert updated.commission_rate == Decimal("12.5")
    assert updated.pix_key == "11912345678"

    with pytest.raises(ValidationError):
        await PartnerService.update_partner(session, partner.id, {"slug": "novo"})
    with pytest.raises(NotFound):
        await PartnerService.get_partner(session, uuid.uuid4())


async def test_list_partners_search(session, partner, other_partner):
    assert [p.id for p in await PartnerService.list_partners(session, search="ana")] == [other_partner.id]
    assert len(await PartnerService.list_partners(session)) == 2

    await PartnerService.set_active(session, other_partner.id, False)
    assert [p.id for p in await PartnerService.list_partners(session, only_active=True)] == [partner.id]


async def test_partner_stats(session, raffle, partner, customer):
    for _ in range(4):
        await ClickService.record_click(session, partner.slug, None, None)
    await SaleService.register_sale(session, customer, 10, partner.slug)
    await SaleService.register_sale(session, customer, 1, partner.slug)
    await SaleService.open_sale(session, customer, 1, partner.slug)

    stats = await PartnerService.get_partner_stats(session, partner.id)

    assert stats["total_clicks"] == 4
    assert stats["today_clicks"] == 4
    assert stats["total_sales"] == 2
    assert stats["today_sales"] == 2
    # 9.90 * 15% = 1.49, 1.99 * 15% = 0.30
    assert stats["total_earnings"] == Decimal("1.79")
    assert stats["available_balance"] == Decimal("1.79")
    assert stats["conversion_rate"] == 50.0
    assert stats["average_order_value"] == Decimal("5.95")


async def test_raffle_pricing_and_activation(session, raffle):
    assert price_for(raffle, 9) == Decimal("17.91")
    assert price_for(raffle, 10) == Decimal("9.90")

    other = await RaffleService.create_raffle(session, "Rifa de Natal", activate=True)
    assert (await RaffleService.get_active_raffle(session)).id == other.id

    await RaffleService.activate_raffle(session, raffle.id)
    assert (await RaffleService.get_active_raffle(session)).id == raffle.id


async def test_raffle_range_cannot_shrink_after_sales(session, raffle, customer):
    await SaleService.register_sale(session, customer, 1)
    assert await TicketService.taken_numbers(session, raffle.id)

    with pytest.raises(ValidationError):
        await RaffleService.update_raffle(session, raffle.id, {"number_end": 999})

    with pytest.raises(ValidationError):
        await RaffleService.update_raffle(session, raffle.id, {"number_end": 99999})

    repriced = await RaffleService.update_raffle(session, raffle.id, {"unit_price": "2.50"})
    assert repriced.unit_price == Decimal("2.50")


async def test_reactivating_raffle_loaded_in_session(session, raffle, customer):
    raffle_id = raffle.id
    other = await RaffleService.create_raffle(session, "Rifa de Natal", activate=True)

    activated = await RaffleService.activate_raffle(session, raffle_id)

    assert activated.is_active is True
    assert (await RaffleService.get_active_raffle(session)).id == raffle_id
    assert (await RaffleService.get_raffle(session, other.id)).is_active is False
    outcome = await SaleService.register_sale(session, customer, 1)
    assert outcome["sale"].raffle_id == raffle_id


async def test_set_active_sees_change_from_other_session(session, session_factory, partner):
    partner_id = partner.id
    await session.commit()

    async with session_factory() as other_session:
        await PartnerService.set_active(other_session, partner_id, False)

    reactivated = await PartnerService.set_active(session, partner_id, True)

    assert reactivated.is_active is True
    assert reactivated.deactivated_at is None
    async with session_factory() as check_session:
        assert (await PartnerService.get_partner(check_session, partner_id)).is_active is True


async def test_update_partner_keeps_callers_changes(session, partner):
    changes = {"commission_rate": "12.5", "name": "  João  Silva "}

    await PartnerService.update_partner(session, partner.id, changes)

    assert changes == {"commission_rate": "12.5", "name": "  João  Silva "}
