import asyncio
import random
from uuid import uuid4

import pytest
from sqlalchemy import select

from shared.database import TicketNumber, Sale
from shared.errors import Forbidden, InvalidTransition, NotFound, PoolExhausted, ValidationError
from shared.statuses import SaleKind, SaleStatus
from raffle_api.services import ticket_service
from raffle_api.services.prize_service import PrizeService
from raffle_api.services.sale_service import SaleService
from raffle_api.services.ticket_service import TicketService


class FixedRandom(random.Random):
    """randint всегда возвращает один и тот же номер"""

    def __init__(self, value):
        super().__init__(0)
        self.value = value

    def randint(self, a, b):
        return self.value


async def test_register_sale_allocates_fixed_width_numbers(session, raffle, customer):
    outcome = await SaleService.register_sale(session, customer, 5)
    sale = outcome["sale"]

    assert sale.status == SaleStatus.COMPLETED
    assert len(sale.ticket_numbers) == 5
    assert len(set(sale.ticket_numbers)) == 5
    assert all(len(number) == 4 and number.isdigit() for number in sale.ticket_numbers)
    assert sale.customer_contact == "11987654321"
    assert sale.completed_at is not None


async def test_no_double_allocation_across_sales(session, small_raffle, customer):
    numbers = []
    for quantity in (3, 3, 4):
        outcome = await SaleService.register_sale(session, customer, quantity)
        numbers.extend(outcome["sale"].ticket_numbers)

    assert sorted(numbers) == [str(n) for n in range(10)]

    with pytest.raises(PoolExhausted):
        await SaleService.register_sale(session, customer, 1)


async def test_pool_exhausted_when_not_enough_free_numbers(session, small_raffle, customer):
    await SaleService.register_sale(session, customer, 8)

    with pytest.raises(PoolExhausted) as exc_info:
        await SaleService.register_sale(session, customer, 3)

    assert exc_info.value.context["free"] == 2
    # Неудачная продажа не оставила ни продажи, ни номеров
    result = await session.execute(select(TicketNumber))
    assert len(result.scalars().all()) == 8


@pytest.mark.parametrize("quantity", [0, -1, 101])
async def test_quantity_must_be_within_limit(session, raffle, customer, quantity):
    with pytest.raises(ValidationError):
        await SaleService.register_sale(session, customer, quantity)


async def test_invalid_customer_is_rejected(session, raffle):
    with pytest.raises(ValidationError):
        await SaleService.register_sale(session, {"name": "Jo", "contact": "123"}, 1)


async def test_no_active_raffle(session, customer):
    with pytest.raises(NotFound):
        await SaleService.register_sale(session, customer, 1)


async def test_unknown_partner_slug_registers_direct_sale(session, raffle, customer):
    outcome = await SaleService.register_sale(session, customer, 1, "nao-existe")

    assert outcome["sale"].partner_id is None
    assert outcome["sale"].commission_amount == 0


async def test_redraw_on_collision_with_concurrent_writer(session, small_raffle, customer, monkeypatch):
    first = await SaleService.register_sale(session, customer, 1)
    held = int(first["sale"].ticket_numbers[0])

    # Первая попытка не видит чужой номер, как при параллельной записи
    real_taken = TicketService.taken_numbers
    calls = {"count": 0}

    async def stale_taken(session, raffle_id):
        calls["count"] += 1
        if calls["count"] == 1:
            return set()
        return await real_taken(session, raffle_id)

    monkeypatch.setattr(TicketService, "taken_numbers", staticmethod(stale_taken))
    monkeypatch.setattr(ticket_service, "_rng", FixedRandom(held))

    second = await SaleService.register_sale(session, customer, 1)

    assert calls["count"] == 2
    assert second["sale"].ticket_numbers != first["sale"].ticket_numbers
    result = await session.execute(select(TicketNumber.number))
    assert sorted(result.scalars().all()) == sorted(
        first["sale"].ticket_numbers + second["sale"].ticket_numbers
    )


async def test_prize_number_awarded_once_under_forced_collision(session, raffle, customer, monkeypatch):
    await PrizeService.add_prize(session, raffle.id, "42", "Moto Honda CG 160", value="15000.00")
    monkeypatch.setattr(ticket_service, "_rng", FixedRandom(42))

    first = await SaleService.register_sale(session, customer, 1)
    second = await SaleService.register_sale(session, {**customer, "name": "Pedro Alves"}, 1)

    assert first["sale"].ticket_numbers == ["0042"]
    assert [p["number"] for p in first["prizes"]] == ["0042"]
    assert second["sale"].ticket_numbers != ["0042"]
    assert second["prizes"] == []

    prizes = await PrizeService.list_prizes(session, raffle.id)
    assert prizes[0].status.value == "premiado"
    assert prizes[0].winner_name == "Maria Souza"
    assert prizes[0].sale_id == first["sale"].id


async def test_open_then_complete_is_idempotent(session, raffle, customer):
    sale = await SaleService.open_sale(session, customer, 2)
    assert sale.status == SaleStatus.PENDING
    assert sale.ticket_numbers == []

    first = await SaleService.complete_sale(session, sale.id)
    second = await SaleService.complete_sale(session, sale.id)

    assert first["sale"].ticket_numbers == second["sale"].ticket_numbers
    result = await session.execute(select(TicketNumber).where(TicketNumber.sale_id == sale.id))
    assert len(result.scalars().all()) == 2


async def test_cancel_pending_sale(session, raffle, customer):
    sale = await SaleService.open_sale(session, customer, 2)

    cancelled = await SaleService.cancel_sale(session, sale.id, "PIX expirado")

    assert cancelled.status == SaleStatus.CANCELLED
    with pytest.raises(InvalidTransition):
        await SaleService.complete_sale(session, sale.id)


async def test_refund_releases_numbers(session, small_raffle, customer):
    outcome = await SaleService.register_sale(session, customer, 10)

    refunded = await SaleService.refund_sale(session, outcome["sale"].id, "pedido do cliente")

    assert refunded.status == SaleStatus.REFUNDED
    assert len(refunded.ticket_numbers) == 10
    assert await TicketService.taken_numbers(session, small_raffle.id) == set()

    again = await SaleService.register_sale(session, customer, 10)
    assert sorted(again["sale"].ticket_numbers) == sorted(outcome["sale"].ticket_numbers)

    with pytest.raises(InvalidTransition):
        await SaleService.refund_sale(session, outcome["sale"].id, "de novo")


async def test_find_sales_by_contact(session, raffle, customer):
    held = await SaleService.register_sale(session, customer, 2)
    await SaleService.open_sale(session, customer, 1)

    sales = await SaleService.find_sales_by_contact(session, "11 98765 4321")

    assert [sale.id for sale in sales] == [held["sale"].id]


async def test_partner_cannot_read_foreign_sale(session, raffle, partner, other_partner, customer):
    outcome = await SaleService.register_sale(session, customer, 1, partner.slug)

    sale = await SaleService.get_sale(session, outcome["sale"].id, partner_id=partner.id)
    assert isinstance(sale, Sale)

    with pytest.raises(Forbidden):
        await SaleService.get_sale(session, outcome["sale"].id, partner_id=other_partner.id)


async def test_list_sales_filters(session, small_raffle, customer):
    completed = await SaleService.register_sale(session, customer, 1)
    pending = await SaleService.open_sale(session, customer, 1)
    SaleService.flag_for_review(pending, "Valor pago diverge do cobrado")
    await session.commit()

    assert {s.id for s in await SaleService.list_sales(session)} == {completed["sale"].id, pending.id}
    assert await SaleService.list_sales(session, raffle_id=uuid4()) == []
    only_pending = await SaleService.list_sales(session, raffle_id=small_raffle.id, status=SaleStatus.PENDING)
    assert [s.id for s in only_pending] == [pending.id]
    flagged = await SaleService.list_sales(session, needs_review=True)
    assert [s.id for s in flagged] == [pending.id]
    clean = await SaleService.list_sales(session, needs_review=False, kind=SaleKind.ONLINE)
    assert [s.id for s in clean] == [completed["sale"].id]
    assert len(await SaleService.list_sales(session, limit=1)) == 1


async def test_resolve_review_clears_flag_once(session, raffle, customer):
    sale = await SaleService.open_sale(session, customer, 1)
    sale_id = sale.id
    SaleService.flag_for_review(sale, "Valor pago diverge do cobrado")
    await session.commit()

    with pytest.raises(ValidationError):
        await SaleService.resolve_review(session, sale_id, "  ")

    resolved = await SaleService.resolve_review(session, sale_id, "estorno feito manualmente")

    assert resolved.needs_review is False
    assert resolved.reviewed_at is not None
    assert resolved.review_note == "Valor pago diverge do cobrado\nПроверено: estorno feito manualmente"
    assert await SaleService.list_sales(session, needs_review=True) == []

    with pytest.raises(InvalidTransition):
        await SaleService.resolve_review(session, sale_id, "de novo")


async def test_parallel_sales_never_share_numbers(session, locking_session_factory, small_raffle, customer):
    async def buy(quantity):
        async with locking_session_factory() as own_session:
            outcome = await SaleService.register_sale(own_session, customer, quantity)
            return list(outcome["sale"].ticket_numbers)

    results = await asyncio.gather(*(buy(2) for _ in range(5)))

    numbers = [number for sale_numbers in results for number in sale_numbers]
    assert sorted(numbers) == [str(n) for n in range(10)]
    # Закрываем старую транзакцию тестовой сессии, чтобы увидеть чужие коммиты
    await session.commit()
    taken = await TicketService.taken_numbers(session, small_raffle.id)
    assert sorted(taken) == [str(n) for n in range(10)]
