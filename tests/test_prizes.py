from decimal import Decimal

import pytest

from shared.errors import AlreadyAwarded, InvalidTransition, ValidationError
from shared.statuses import PrizeStatus
from raffle_api.services.prize_service import PrizeService

WINNER = {"name": "Maria Souza", "contact": "11987654321", "city": "Campinas"}


async def test_add_prize_normalizes_number(session, raffle):
    prize = await PrizeService.add_prize(session, raffle.id, "42", "Moto Honda CG 160", value="15000")

    assert prize.number == "0042"
    assert prize.status == PrizeStatus.DISPONIVEL
    assert prize.value == Decimal("15000")


@pytest.mark.parametrize("number", ["10000", "-1", "abc", ""])
async def test_number_must_be_inside_range(session, raffle, number):
    with pytest.raises(ValidationError):
        await PrizeService.add_prize(session, raffle.id, number, "Pix de R$ 100")


async def test_duplicate_number_is_rejected(session, raffle):
    await PrizeService.add_prize(session, raffle.id, "0042", "Moto")

    with pytest.raises(ValidationError):
        await PrizeService.add_prize(session, raffle.id, "42", "Outra moto")


async def test_check_and_award_exactly_once(session, raffle):
    await PrizeService.add_prize(session, raffle.id, "0042", "Moto")

    first = await PrizeService.check_and_award(session, "0042", WINNER, raffle.id)
    second = await PrizeService.check_and_award(session, "0042", {"name": "Pedro"}, raffle.id)
    await session.commit()

    assert first["number"] == "0042"
    assert first["prize"] == "Moto"
    assert second is None

    prize = (await PrizeService.list_prizes(session, raffle.id))[0]
    assert prize.status == PrizeStatus.PREMIADO
    assert prize.winner_name == "Maria Souza"
    assert prize.winner_city == "Campinas"
    assert prize.awarded_at is not None


async def test_non_prize_and_reserved_numbers_do_not_win(session, raffle):
    await PrizeService.add_prize(session, raffle.id, "0007", "Bicicleta", status=PrizeStatus.RESERVADO)

    assert await PrizeService.check_and_award(session, "0007", WINNER, raffle.id) is None
    assert await PrizeService.check_and_award(session, "0008", WINNER, raffle.id) is None


async def test_awarded_prize_is_immutable(session, raffle):
    prize = await PrizeService.add_prize(session, raffle.id, "0042", "Moto")
    await PrizeService.check_and_award(session, "0042", WINNER, raffle.id)
    await session.commit()

    with pytest.raises(AlreadyAwarded):
        await PrizeService.update_prize(session, prize.id, {"prize": "Carro"})
    with pytest.raises(AlreadyAwarded):
        await PrizeService.remove_prize(session, prize.id)


async def test_status_moves_only_forward(session, raffle):
    prize = await PrizeService.add_prize(session, raffle.id, "0042", "Moto")

    reserved = await PrizeService.update_prize(session, prize.id, {"status": "reservado"})
    assert reserved.status == PrizeStatus.RESERVADO

    with pytest.raises(InvalidTransition):
        await PrizeService.update_prize(session, prize.id, {"status": "disponivel"})
    with pytest.raises(ValidationError):
        await PrizeService.update_prize(session, prize.id, {"status": "premiado"})


async def test_update_and_remove_available_prize(session, raffle):
    prize = await PrizeService.add_prize(session, raffle.id, "0042", "Moto")
    await PrizeService.add_prize(session, raffle.id, "0100", "Celular")
    prize_id, raffle_id = prize.id, raffle.id

    updated = await PrizeService.update_prize(session, prize.id, {"number": "43", "value": "9000.00"})
    assert updated.number == "0043"
    assert updated.value == Decimal("9000.00")

    with pytest.raises(ValidationError):
        await PrizeService.update_prize(session, prize.id, {"number": "0100"})
    with pytest.raises(ValidationError):
        await PrizeService.update_prize(session, prize_id, {"winner_name": "Eu"})

    await PrizeService.remove_prize(session, prize_id)
    assert [p.number for p in await PrizeService.list_prizes(session, raffle_id)] == ["0100"]


async def test_recent_winners(session, raffle):
    await PrizeService.add_prize(session, raffle.id, "0001", "Pix R$ 50")
    await PrizeService.add_prize(session, raffle.id, "0002", "Pix R$ 100")
    await PrizeService.check_and_award(session, "0002", WINNER, raffle.id)
    await session.commit()

    winners = await PrizeService.list_recent_winners(session)

    assert [w.number for w in winners] == ["0002"]


async def test_remove_refuses_prize_awarded_after_check(session, raffle, monkeypatch):
    prize = await PrizeService.add_prize(session, raffle.id, "0042", "Moto")
    prize_id, raffle_id = prize.id, raffle.id
    await PrizeService.check_and_award(session, "0042", WINNER, raffle_id)
    await session.commit()

    # Проверка прошла до выигрыша: удаление держится только на условии в запросе
    monkeypatch.setattr(PrizeService, "_ensure_not_awarded", staticmethod(lambda entry: None))

    with pytest.raises(AlreadyAwarded):
        await PrizeService.remove_prize(session, prize_id)

    prizes = await PrizeService.list_prizes(session, raffle_id)
    assert [(p.id, p.status) for p in prizes] == [(prize_id, PrizeStatus.PREMIADO)]


async def test_update_prize_keeps_callers_changes(session, raffle):
    prize = await PrizeService.add_prize(session, raffle.id, "0042", "Moto")
    changes = {"number": "43", "status": "reservado"}

    await PrizeService.update_prize(session, prize.id, changes)

    assert changes == {"number": "43", "status": "reservado"}
