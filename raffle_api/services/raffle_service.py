"""
Сервис настроек розыгрыша: диапазон номеров и цены
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import (
    DEFAULT_UNIT_PRICE,
    DEFAULT_DISCOUNT_PRICE,
    DEFAULT_DISCOUNT_MIN_QUANTITY,
    DEFAULT_NUMBER_START,
    DEFAULT_NUMBER_END,
    MAX_TICKETS_PER_SALE
)
from shared.database import Raffle, TicketNumber
from shared.errors import NotFound, ValidationError
from shared.money import to_money
from shared.validation import validate_amount, to_decimal

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "title", "description", "number_start", "number_end", "unit_price",
    "discount_price", "discount_min_quantity", "max_per_sale", "draw_date",
)


def unit_price_for(raffle: Raffle, quantity: int) -> Decimal:
    """
    Цена одного номера: со скидкой, если количество достигло порога
    """
    if (
        raffle.discount_price is not None
        and raffle.discount_min_quantity
        and quantity >= raffle.discount_min_quantity
    ):
        return to_money(raffle.discount_price)
    return to_money(raffle.unit_price)


def price_for(raffle: Raffle, quantity: int) -> Decimal:
    """Итоговая сумма продажи, считается только на сервере"""
    return to_money(unit_price_for(raffle, quantity) * quantity)


class RaffleService:
    """Сервис управления розыгрышами"""

    @staticmethod
    async def get_raffle(session: AsyncSession, raffle_id: UUID) -> Raffle:
        raffle = await session.get(Raffle, raffle_id, populate_existing=True)
        if not raffle:
            raise NotFound("Розыгрыш не найден", {"raffle_id": raffle_id})
        return raffle

    @staticmethod
    async def get_active_raffle(session: AsyncSession) -> Raffle:
        """
        Текущий активный розыгрыш
        """
        result = await session.execute(
            select(Raffle)
            .where(Raffle.is_active.is_(True))
            .order_by(Raffle.created_at.desc())
            .limit(1)
        )
        raffle = result.scalar_one_or_none()
        if not raffle:
            raise NotFound("Нет активного розыгрыша")
        return raffle

    @staticmethod
    async def list_raffles(session: AsyncSession) -> list[Raffle]:
        result = await session.execute(select(Raffle).order_by(Raffle.created_at.desc()))
        return list(result.scalars().all())

    @staticmethod
    async def create_raffle(
        session: AsyncSession,
        title: str,
        number_start: int = DEFAULT_NUMBER_START,
        number_end: int = DEFAULT_NUMBER_END,
        unit_price=DEFAULT_UNIT_PRICE,
        discount_price=DEFAULT_DISCOUNT_PRICE,
        discount_min_quantity: Optional[int] = DEFAULT_DISCOUNT_MIN_QUANTITY,
        max_per_sale: int = MAX_TICKETS_PER_SALE,
        description: Optional[str] = None,
        draw_date: Optional[datetime] = None,
        activate: bool = False
    ) -> Raffle:
        """
        Создать розыгрыш
        """
        data = {
            "title": (title or "").strip(),
            "description": description,
            "number_start": number_start,
            "number_end": number_end,
            "unit_price": unit_price,
            "discount_price": discount_price,
            "discount_min_quantity": discount_min_quantity,
            "max_per_sale": max_per_sale,
            "draw_date": draw_date,
        }
        RaffleService._validate(data)

        raffle = Raffle(**data)
        session.add(raffle)

        try:
            await session.flush()
            if activate:
                await RaffleService._deactivate_others(session, raffle.id)
                raffle.is_active = True
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Error creating raffle '{data['title']}': {e}")
            raise

        await session.refresh(raffle)
        logger.info(
            f"Created raffle {raffle.id}: range={raffle.number_start}-{raffle.number_end}, "
            f"price={raffle.unit_price}, active={raffle.is_active}"
        )
        return raffle

    @staticmethod
    async def update_raffle(session: AsyncSession, raffle_id: UUID, changes: dict) -> Raffle:
        """
        Обновить настройки розыгрыша

        Диапазон нельзя сузить, если номера уже проданы
        """
        raffle = await RaffleService.get_raffle(session, raffle_id)

        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Нельзя изменить поля: {', '.join(sorted(unknown))}")

        data = {field: getattr(raffle, field) for field in EDITABLE_FIELDS}
        data.update(changes)
        RaffleService._validate(data)

        shrinks = data["number_start"] > raffle.number_start or data["number_end"] < raffle.number_end
        # Ширина номера зависит от number_end: "0042" и "00042" разные строки
        changes_width = len(str(data["number_end"])) != raffle.number_width
        if shrinks or changes_width:
            result = await session.execute(
                select(func.count(TicketNumber.id)).where(TicketNumber.raffle_id == raffle.id)
            )
            if (result.scalar() or 0) > 0:
                raise ValidationError(
                    "Нельзя сузить диапазон или изменить ширину номеров: номера уже проданы",
                    {"raffle_id": raffle.id}
                )

        for field in changes:
            setattr(raffle, field, data[field])

        await session.commit()
        await session.refresh(raffle)
        logger.info(f"Updated raffle {raffle.id}: {sorted(changes)}")
        return raffle

    @staticmethod
    async def activate_raffle(session: AsyncSession, raffle_id: UUID) -> Raffle:
        """Сделать розыгрыш активным (активен только один)"""
        await RaffleService.get_raffle(session, raffle_id)
        await RaffleService._deactivate_others(session, raffle_id)
        await session.execute(
            update(Raffle)
            .where(Raffle.id == raffle_id)
            .values(is_active=True)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        logger.info(f"Raffle {raffle_id} activated")
        return await RaffleService.get_raffle(session, raffle_id)

    @staticmethod
    async def _deactivate_others(session: AsyncSession, raffle_id: UUID):
        await session.execute(
            update(Raffle)
            .where(Raffle.id != raffle_id, Raffle.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def _validate(data: dict):
        if not data["title"]:
            raise ValidationError("Укажите название розыгрыша")

        start, end = data["number_start"], data["number_end"]
        if not isinstance(start, int) or not isinstance(end, int) or start < 0 or end <= start:
            raise ValidationError(
                "Некорректный диапазон номеров",
                {"number_start": start, "number_end": end}
            )

        for field in ("unit_price", "discount_price"):
            if field == "discount_price" and data[field] is None:
                continue
            valid, error = validate_amount(data[field])
            if not valid:
                raise ValidationError(f"{field}: {error}")
            data[field] = to_decimal(data[field])

        if data["discount_price"] is not None and data["discount_price"] > data["unit_price"]:
            raise ValidationError("Цена со скидкой не может быть выше обычной")

        if data["discount_min_quantity"] is not None and data["discount_min_quantity"] < 2:
            raise ValidationError("Порог скидки должен быть не меньше 2 номеров")

        if not isinstance(data["max_per_sale"], int) or data["max_per_sale"] <= 0:
            raise ValidationError("Лимит номеров на продажу должен быть больше нуля")
