"""
Выдача и освобождение номеров розыгрыша
Уникальность номера гарантируется ограничением (raffle_id, number) в БД
"""
import logging
import random
from uuid import UUID

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import TICKET_DRAW_RETRIES, ALLOCATION_MAX_ATTEMPTS
from shared.database import Raffle, TicketNumber
from shared.errors import PoolExhausted

logger = logging.getLogger(__name__)

_rng = random.SystemRandom()


class TicketService:
    """Сервис пула номеров"""

    @staticmethod
    async def taken_numbers(session: AsyncSession, raffle_id: UUID) -> set[str]:
        """Номера, удерживаемые активными продажами"""
        result = await session.execute(
            select(TicketNumber.number).where(TicketNumber.raffle_id == raffle_id)
        )
        return set(result.scalars().all())

    @staticmethod
    def draw_numbers(raffle: Raffle, quantity: int, taken: set[str], rng=None) -> list[str]:
        """
        Случайные номера без повторов

        Равномерный выбор из диапазона с перевытягиванием при коллизии;
        если за TICKET_DRAW_RETRIES попыток свободный номер не найден,
        выбираем из явного списка оставшихся.
        """
        rng = rng or _rng
        free_count = raffle.pool_size - len(taken)
        if quantity > free_count:
            raise PoolExhausted(
                f"Недостаточно свободных номеров: осталось {free_count}, запрошено {quantity}",
                {"raffle_id": raffle.id, "free": free_count, "requested": quantity}
            )

        chosen: list[str] = []
        used = set(taken)

        for _ in range(quantity):
            for _ in range(TICKET_DRAW_RETRIES):
                candidate = raffle.format_number(rng.randint(raffle.number_start, raffle.number_end))
                if candidate not in used:
                    break
            else:
                remaining = [
                    raffle.format_number(n)
                    for n in range(raffle.number_start, raffle.number_end + 1)
                    if raffle.format_number(n) not in used
                ]
                candidate = rng.choice(remaining)

            chosen.append(candidate)
            used.add(candidate)

        return chosen

    @staticmethod
    async def allocate(
        session: AsyncSession,
        raffle: Raffle,
        sale_id: UUID,
        quantity: int
    ) -> list[str]:
        """
        Выдать продаже quantity номеров

        Не коммитит. Номера пишутся в savepoint: если параллельная продажа
        заняла тот же номер, savepoint откатывается и номера тянутся заново.
        """
        for attempt in range(1, ALLOCATION_MAX_ATTEMPTS + 1):
            taken = await TicketService.taken_numbers(session, raffle.id)
            numbers = TicketService.draw_numbers(raffle, quantity, taken)

            try:
                async with session.begin_nested():
                    session.add_all([
                        TicketNumber(raffle_id=raffle.id, number=number, sale_id=sale_id)
                        for number in numbers
                    ])
            except IntegrityError:
                logger.warning(
                    f"Ticket collision for sale {sale_id} (attempt {attempt}/{ALLOCATION_MAX_ATTEMPTS}), redrawing"
                )
                continue

            logger.info(f"Allocated {len(numbers)} numbers for sale {sale_id} in raffle {raffle.id}")
            return numbers

        raise PoolExhausted(
            "Не удалось выдать номера: слишком много параллельных покупок, попробуйте позже",
            {"raffle_id": raffle.id, "sale_id": sale_id, "attempts": ALLOCATION_MAX_ATTEMPTS}
        )

    @staticmethod
    async def release(session: AsyncSession, sale_id: UUID) -> int:
        """
        Вернуть номера продажи в пул. Не коммитит: освобождение
        фиксируется вместе со сменой статуса продажи.
        """
        result = await session.execute(
            delete(TicketNumber).where(TicketNumber.sale_id == sale_id)
        )
        released = result.rowcount or 0
        logger.info(f"Released {released} numbers of sale {sale_id}")
        return released
