from datetime import datetime, timedelta

from sqlalchemy import update

from shared.database import PixCharge
from shared.statuses import ChargeStatus, SaleStatus
from raffle_api.services.payment_service import PaymentService
from raffle_api.services.sale_service import SaleService
from worker.charge_watchdog import ChargeWatchdog


async def make_stale(session, session_id):
    await session.execute(
        update(PixCharge)
        .where(PixCharge.session_id == session_id)
        .values(created_at=datetime.now() - timedelta(days=1))
    )
    await session.commit()


async def test_watchdog_confirms_paid_charges(session, session_factory, raffle, customer, gateway):
    result = await PaymentService.create_checkout(session, gateway, customer, 2)
    session_id = result["charge"].session_id
    gateway.pay(session_id)

    watchdog = ChargeWatchdog(gateway=gateway, session_factory=session_factory)
    stats = await watchdog.check_pending_charges()

    assert stats == {"confirmed": 1, "expired": 0, "errors": 0}
    sale = await SaleService.get_sale(session, result["sale"].id)
    assert sale.status == SaleStatus.COMPLETED
    assert len(sale.ticket_numbers) == 2


async def test_watchdog_expires_stale_unpaid_charges(session, session_factory, raffle, customer, gateway):
    fresh = await PaymentService.create_checkout(session, gateway, customer, 1)
    stale = await PaymentService.create_checkout(session, gateway, customer, 1)
    await make_stale(session, stale["charge"].session_id)

    watchdog = ChargeWatchdog(gateway=gateway, session_factory=session_factory)
    stats = await watchdog.check_pending_charges()

    assert stats == {"confirmed": 0, "expired": 1, "errors": 0}
    assert (await PaymentService.get_charge(session, stale["charge"].session_id)).status == ChargeStatus.EXPIRED
    assert (await PaymentService.get_charge(session, fresh["charge"].session_id)).status == ChargeStatus.PENDING
    assert (await SaleService.get_sale(session, stale["sale"].id)).status == SaleStatus.CANCELLED


async def test_watchdog_keeps_going_after_errors(session, session_factory, raffle, customer, gateway):
    broken = await PaymentService.create_checkout(session, gateway, customer, 1)
    paid = await PaymentService.create_checkout(session, gateway, customer, 1)
    # Шлюз не знает этот платёж
    del gateway.charges[broken["charge"].session_id]
    gateway.pay(paid["charge"].session_id)

    watchdog = ChargeWatchdog(gateway=gateway, session_factory=session_factory)
    stats = await watchdog.check_pending_charges()

    assert stats == {"confirmed": 1, "expired": 0, "errors": 1}
    assert (await PaymentService.get_charge(session, broken["charge"].session_id)).status == ChargeStatus.PENDING


async def test_watchdog_with_nothing_pending(session_factory, gateway):
    watchdog = ChargeWatchdog(gateway=gateway, session_factory=session_factory)

    assert await watchdog.check_pending_charges() == {"confirmed": 0, "expired": 0, "errors": 0}
