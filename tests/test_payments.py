from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from shared.database import PixCharge, Sale
from shared.errors import NotFound, UpstreamUnavailable
from shared.statuses import ChargeStatus, SaleStatus
from raffle_api.services.commission_service import CommissionService
from raffle_api.services.payment_service import PaymentService
from raffle_api.services.prize_service import PrizeService


async def test_checkout_opens_pending_sale_and_charge(session, raffle, partner, customer, gateway):
    result = await PaymentService.create_checkout(session, gateway, customer, 5, partner.slug)
    sale, charge = result["sale"], result["charge"]

    assert sale.status == SaleStatus.PENDING
    assert sale.ticket_numbers == []
    assert sale.amount == Decimal("9.95")
    assert sale.partner_id == partner.id
    assert charge.status == ChargeStatus.PENDING
    assert charge.amount == Decimal("9.95")
    assert charge.session_id == "mp-1"
    assert gateway.charges["mp-1"]["metadata"]["sale_id"] == str(sale.id)


async def test_checkout_price_is_computed_on_server(session, raffle, customer, gateway):
    result = await PaymentService.create_checkout(session, gateway, customer, 10)

    # Скидка от 10 номеров
    assert result["charge"].amount == Decimal("9.90")


async def test_confirm_paid_charge_completes_sale(session, raffle, partner, customer, gateway):
    result = await PaymentService.create_checkout(session, gateway, customer, 10, partner.slug)
    session_id = result["charge"].session_id
    gateway.pay(session_id)

    outcome = await PaymentService.confirm_payment(session, gateway, session_id)

    assert outcome["status"] == ChargeStatus.PAID
    sale = outcome["sale"]
    assert sale.status == SaleStatus.COMPLETED
    assert len(sale.ticket_numbers) == 10
    assert sale.commission_amount == Decimal("1.49")
    assert await CommissionService.get_available_balance(session, partner.id) == Decimal("1.49")


async def test_confirm_payment_is_idempotent(session, raffle, partner, customer, gateway):
    result = await PaymentService.create_checkout(session, gateway, customer, 3, partner.slug)
    session_id = result["charge"].session_id
    gateway.pay(session_id)

    first = await PaymentService.confirm_payment(session, gateway, session_id)
    numbers = list(first["sale"].ticket_numbers)
    second = await PaymentService.confirm_payment(session, gateway, session_id)

    assert second["status"] == ChargeStatus.PAID
    assert second["sale"].ticket_numbers == numbers
    assert await CommissionService.get_available_balance(session, partner.id) == first["sale"].commission_amount


async def test_confirm_payment_reports_prize(session, small_raffle, customer, gateway):
    for number in range(10):
        await PrizeService.add_prize(session, small_raffle.id, str(number), f"Prêmio {number}")

    result = await PaymentService.create_checkout(session, gateway, customer, 2)
    session_id = result["charge"].session_id
    gateway.pay(session_id)

    outcome = await PaymentService.confirm_payment(session, gateway, session_id)

    assert len(outcome["prizes"]) == 2
    again = await PaymentService.confirm_payment(session, gateway, session_id)
    assert sorted(p["number"] for p in again["prizes"]) == sorted(outcome["sale"].ticket_numbers)


async def test_unpaid_charge_stays_pending(session, raffle, customer, gateway):
    result = await PaymentService.create_checkout(session, gateway, customer, 1)

    outcome = await PaymentService.confirm_payment(session, gateway, result["charge"].session_id)

    assert outcome["status"] == ChargeStatus.PENDING
    assert outcome["sale"].status == SaleStatus.PENDING
    assert outcome["prizes"] == []


async def test_amount_mismatch_fails_charge_and_flags_sale(session, raffle, customer, gateway):
    result = await PaymentService.create_checkout(session, gateway, customer, 5)
    session_id = result["charge"].session_id
    gateway.pay(session_id, amount="1.00")

    outcome = await PaymentService.confirm_payment(session, gateway, session_id)

    assert outcome["status"] == ChargeStatus.FAILED
    sale = outcome["sale"]
    assert sale.status == SaleStatus.PENDING
    assert sale.needs_review is True
    assert sale.ticket_numbers == []


async def test_rejected_charge_cancels_sale(session, raffle, customer, gateway):
    result = await PaymentService.create_checkout(session, gateway, customer, 2)
    session_id = result["charge"].session_id
    gateway.reject(session_id)

    outcome = await PaymentService.confirm_payment(session, gateway, session_id)

    assert outcome["status"] == ChargeStatus.FAILED
    assert outcome["sale"].status == SaleStatus.CANCELLED


async def test_expire_charge_cancels_pending_sale(session, raffle, customer, gateway):
    result = await PaymentService.create_checkout(session, gateway, customer, 2)
    session_id = result["charge"].session_id
    sale_id = result["sale"].id

    assert await PaymentService.expire_charge(session, session_id) is True
    assert await PaymentService.expire_charge(session, session_id) is False

    charge = await PaymentService.get_charge(session, session_id)
    assert charge.status == ChargeStatus.EXPIRED
    sale = await session.get(Sale, sale_id, populate_existing=True)
    assert sale.status == SaleStatus.CANCELLED


async def test_paid_charge_is_not_expired(session, raffle, customer, gateway):
    result = await PaymentService.create_checkout(session, gateway, customer, 1)
    session_id = result["charge"].session_id
    gateway.pay(session_id)
    await PaymentService.confirm_payment(session, gateway, session_id)

    assert await PaymentService.expire_charge(session, session_id) is False


async def test_gateway_unavailable_rolls_back_checkout(session, raffle, customer, gateway):
    gateway.unavailable = True

    with pytest.raises(UpstreamUnavailable):
        await PaymentService.create_checkout(session, gateway, customer, 1)

    assert (await session.execute(select(Sale))).scalars().all() == []
    assert (await session.execute(select(PixCharge))).scalars().all() == []


async def test_unknown_charge(session, gateway):
    with pytest.raises(NotFound):
        await PaymentService.confirm_payment(session, gateway, "mp-404")


async def test_is_stale(session, raffle, customer, gateway):
    result = await PaymentService.create_checkout(session, gateway, customer, 1)
    charge = result["charge"]

    assert PaymentService.is_stale(charge) is False
    assert PaymentService.is_stale(charge, now=datetime.now() + timedelta(hours=1)) is True
