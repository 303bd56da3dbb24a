"""
Сервис призовых номеров (números premiados)
Приз выдаётся ровно одному покупателю за счёт условной записи
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.database import PrizeNumber, Raffle
from shared.errors import AlreadyAwarded, NotFound, ValidationError
from shared.statuses import PrizeStatus, ensure_transition
from shared.validation import validate_amount, to_decimal, sanitize_text
from raffle_api.services.raffle_service import RaffleService

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("number", "prize", "description", "value", "status")


def normalize_number(raffle: Raffle, number) -> str:
    """
    "42" -> "0042" для диапазона 0000-9999
    """
    raw = str(number).strip()
    if not raw.isdigit():
        raise ValidationError("Номер должен состоять из цифр", {"number": number})
    value = int(raw)
    if not raffle.number_start <= value <= raffle.number_end:
        raise ValidationError(
            "Номер вне диапазона розыгрыша",
            {"number": number, "range": f"{raffle.number_start}-{raffle.number_end}"}
        )
    return raffle.format_number(value)


def prize_outcome(prize: PrizeNumber) -> dict:
    """Что показать покупателю при выигрыше"""
    return {
        "prize_id": prize.id,
        "number": prize.number,
        "prize": prize.prize,
        "description": prize.description,
        "value": prize.value,
    }


class PrizeService:
    """Сервис призовых номеров"""

    @staticmethod
    async def check_and_award(
        session: AsyncSession,
        ticket_number: str,
        customer: dict,
        raffle_id: UUID,
        sale_id: Optional[UUID] = None
    ) -> Optional[dict]:
        """
        Проверить номер и, если он призовой и свободен, выдать приз

        Не коммитит: выполняется в транзакции продажи вместе с выдачей номеров.

        Returns:
            Описание приза или None (покупка без выигрыша не ошибка)
        """
        awarded_at = datetime.now()

        result = await session.execute(
            update(PrizeNumber)
            .where(
                PrizeNumber.raffle_id == raffle_id,
                PrizeNumber.number == ticket_number,
                PrizeNumber.status == PrizeStatus.DISPONIVEL
            )
            .values(
                status=PrizeStatus.PREMIADO,
                winner_name=customer.get("name"),
                winner_contact=customer.get("contact"),
                winner_city=customer.get("city"),
                sale_id=sale_id,
                awarded_at=awarded_at,
                updated_at=awarded_at
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            return None

        prize = await PrizeService._find(session, raffle_id, ticket_number)
        logger.info(
            f"🎉 Prize '{prize.prize}' awarded: number={ticket_number}, raffle={raffle_id}, sale={sale_id}"
        )
        return prize_outcome(prize)

    @staticmethod
    async def get_prize(session: AsyncSession, prize_id: UUID) -> PrizeNumber:
        prize = await session.get(PrizeNumber, prize_id, populate_existing=True)
        if not prize:
            raise NotFound("Призовой номер не найден", {"prize_id": prize_id})
        return prize

    @staticmethod
    async def list_prizes(session: AsyncSession, raffle_id: UUID) -> list[PrizeNumber]:
        result = await session.execute(
            select(PrizeNumber)
            .where(PrizeNumber.raffle_id == raffle_id)
            .order_by(PrizeNumber.number)
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_recent_winners(session: AsyncSession, limit: int = 10) -> list[PrizeNumber]:
        """Последние выигрыши для витрины"""
        result = await session.execute(
            select(PrizeNumber)
            .where(PrizeNumber.status == PrizeStatus.PREMIADO)
            .order_by(PrizeNumber.awarded_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    async def add_prize(
        session: AsyncSession,
        raffle_id: UUID,
        number,
        prize: str,
        description: Optional[str] = None,
        value=None,
        status: PrizeStatus = PrizeStatus.DISPONIVEL
    ) -> PrizeNumber:
        """
        Добавить призовой номер
        """
        raffle = await RaffleService.get_raffle(session, raffle_id)
        data = PrizeService._clean(raffle, {
            "number": number,
            "prize": prize,
            "description": description,
            "value": value,
        })

        if status == PrizeStatus.PREMIADO:
            raise ValidationError("Номер становится premiado только при продаже")

        entry = PrizeNumber(raffle_id=raffle.id, status=status, **data)
        session.add(entry)

        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            raise ValidationError(
                f"Номер {data['number']} уже призовой в этом розыгрыше",
                {"number": data["number"]}
            )

        await session.refresh(entry)
        logger.info(f"Added prize number {entry.number} ('{entry.prize}') to raffle {raffle_id}")
        return entry

    @staticmethod
    async def update_prize(session: AsyncSession, prize_id: UUID, changes: dict) -> PrizeNumber:
        """
        Исправить призовой номер. Выигранные номера не редактируются
        """
        changes = dict(changes)
        entry = await PrizeService.get_prize(session, prize_id)
        PrizeService._ensure_not_awarded(entry)

        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Нельзя изменить поля: {', '.join(sorted(unknown))}")

        if "status" in changes:
            target = PrizeStatus(changes["status"])
            if target != entry.status:
                ensure_transition(entry.status, target, "prize_number", entry.id)
                if target == PrizeStatus.PREMIADO:
                    raise ValidationError("Номер становится premiado только при продаже")
            changes["status"] = target

        raffle = await RaffleService.get_raffle(session, entry.raffle_id)
        data = {field: getattr(entry, field) for field in ("number", "prize", "description", "value")}
        data.update({k: v for k, v in changes.items() if k != "status"})
        data = PrizeService._clean(raffle, data)

        # Условная запись: номер могли выиграть между чтением и записью
        try:
            result = await session.execute(
                update(PrizeNumber)
                .where(PrizeNumber.id == prize_id, PrizeNumber.status != PrizeStatus.PREMIADO)
                .values(**data, status=changes.get("status", entry.status), updated_at=datetime.now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                raise AlreadyAwarded("Номер уже выигран, изменение запрещено", {"prize_id": prize_id})
            await session.commit()
        except IntegrityError:
            await session.rollback()
            raise ValidationError(
                f"Номер {data['number']} уже призовой в этом розыгрыше",
                {"number": data["number"]}
            )

        entry = await session.get(PrizeNumber, prize_id, populate_existing=True)
        logger.info(f"Updated prize number {entry.id}: {sorted(changes)}")
        return entry

    @staticmethod
    async def remove_prize(session: AsyncSession, prize_id: UUID):
        """Удалить призовой номер, если он ещё не выигран"""
        entry = await PrizeService.get_prize(session, prize_id)
        PrizeService._ensure_not_awarded(entry)

        number = entry.number

        # Условное удаление: номер могли выиграть после проверки
        result = await session.execute(
            delete(PrizeNumber)
            .where(PrizeNumber.id == prize_id, PrizeNumber.status != PrizeStatus.PREMIADO)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            raise AlreadyAwarded(f"Номер {number} уже выигран, удаление запрещено", {"prize_id": prize_id})
        await session.commit()
        session.expunge(entry)
        logger.info(f"Removed prize number {number} ({prize_id})")

    @staticmethod
    async def _find(session: AsyncSession, raffle_id: UUID, number: str) -> PrizeNumber:
        result = await session.execute(
            select(PrizeNumber)
            .where(PrizeNumber.raffle_id == raffle_id, PrizeNumber.number == number)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    @staticmethod
    def _ensure_not_awarded(entry: PrizeNumber):
        if entry.status == PrizeStatus.PREMIADO:
            raise AlreadyAwarded(
                f"Номер {entry.number} уже выигран, изменение запрещено",
                {"prize_id": entry.id, "winner": entry.winner_name}
            )

    @staticmethod
    def _clean(raffle: Raffle, data: dict) -> dict:
        prize = sanitize_text(data.get("prize"), 255)
        if not prize:
            raise ValidationError("Укажите приз")

        value = data.get("value")
        if value is not None:
            valid, error = validate_amount(value)
            if not valid:
                raise ValidationError(f"Стоимость приза: {error}")
            value = to_decimal(value)

        return {
            "number": normalize_number(raffle, data["number"]),
            "prize": prize,
            "description": sanitize_text(data.get("description"), 2000),
            "value": value,
        }
