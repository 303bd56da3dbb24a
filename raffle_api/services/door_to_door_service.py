"""
Продажи "от двери к двери": регистрация агентом, расчёт и отмена

pending_settlement -> settled | cancelled (оба статуса финальные)
"""
import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import MAX_HISTORY_LIMIT
from shared.database import Sale
from shared.errors import AlreadySettled, Forbidden, InvalidTransition, ValidationError
from shared.money import to_money, ZERO
from shared.statuses import SaleKind, SaleStatus, DoorToDoorPaymentMethod
from shared.validation import (
    sanitize_customer, sanitize_text, validate_amount, validate_quantity,
    validate_reason, to_decimal
)
from raffle_api.services.partner_service import PartnerService
from raffle_api.services.raffle_service import RaffleService
from raffle_api.services.sale_service import SaleService
from raffle_api.services.ticket_service import TicketService

logger = logging.getLogger(__name__)

SUMMARY_PERIODS = ("today", "week", "month", "all")


def period_start(period: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Начало периода сводки (None для "all")

    week и month считаются в календарных днях, включая сегодняшний: 7 и 30 дней
    """
    if period not in SUMMARY_PERIODS:
        raise ValidationError(f"Неизвестный период: {period}", {"period": period})

    today = (now or datetime.now()).replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "today":
        return today
    if period == "week":
        return today - timedelta(days=6)
    if period == "month":
        return today - timedelta(days=29)
    return None


class DoorToDoorService:
    """Сервис продаж агентов"""

    @staticmethod
    async def register_sale(
        session: AsyncSession,
        partner_id: UUID,
        customer: dict,
        quantity: int,
        payment_method: DoorToDoorPaymentMethod,
        notes: Optional[str] = None,
        agent_name: Optional[str] = None
    ) -> Sale:
        """
        Зарегистрировать продажу агента

        Номера выдаются сразу и удерживаются до расчёта или отмены.
        Ожидаемая сумма фиксируется в момент регистрации.
        """
        partner = await PartnerService.get_partner(session, partner_id)
        if not partner.is_active:
            raise Forbidden("Неактивный партнёр не может регистрировать продажи", {"partner_id": partner_id})

        snapshot = sanitize_customer(customer)
        payment_method = DoorToDoorPaymentMethod(payment_method)
        raffle = await RaffleService.get_active_raffle(session)

        valid, error = validate_quantity(quantity, raffle.max_per_sale)
        if not valid:
            raise ValidationError(error, {"quantity": quantity})

        sale = SaleService._new_sale(
            raffle, snapshot, quantity, SaleKind.DOOR_TO_DOOR, SaleStatus.PENDING_SETTLEMENT, partner
        )
        sale.expected_amount = sale.amount
        sale.agent_name = sanitize_text(agent_name, 255) or partner.name
        sale.payment_method = payment_method
        sale.notes = sanitize_text(notes, 2000)

        try:
            session.add(sale)
            await session.flush()
            sale.ticket_numbers = await TicketService.allocate(session, raffle, sale.id, quantity)
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Error registering door-to-door sale for partner {partner_id}: {e}")
            raise

        logger.info(
            f"Door-to-door sale {sale.id} registered by partner {partner_id}: "
            f"quantity={quantity}, expected={sale.expected_amount}, method={payment_method.value}"
        )
        return sale

    @staticmethod
    async def settle(
        session: AsyncSession,
        sale_id: UUID,
        amount_paid,
        actor_partner_id: Optional[UUID] = None,
        notes: Optional[str] = None
    ) -> dict:
        """
        Расчёт: агент сдал деньги

        Комиссия считается от ожидаемой суммы, расхождение фиксируется
        и отправляет продажу на проверку. Призы проверяются здесь: это момент,
        когда продажа подтверждена как оплаченная.

        Returns:
            {"sale": Sale, "prizes": [...]}
        """
        valid, error = validate_amount(amount_paid, allow_zero=True)
        if not valid:
            raise ValidationError(error, {"amount_paid": amount_paid})
        amount_paid = to_money(to_decimal(amount_paid))

        sale = await DoorToDoorService._get_scoped(session, sale_id, actor_partner_id)
        DoorToDoorService._ensure_pending(sale)

        settled_at = datetime.now()
        try:
            result = await session.execute(
                update(Sale)
                .where(Sale.id == sale_id, Sale.status == SaleStatus.PENDING_SETTLEMENT)
                .values(
                    status=SaleStatus.SETTLED,
                    amount_paid=amount_paid,
                    settled_at=settled_at,
                    completed_at=settled_at,
                    settlement_notes=sanitize_text(notes, 2000)
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                current = await session.scalar(select(Sale.status).where(Sale.id == sale_id))
                DoorToDoorService._ensure_pending_status(current, sale_id)
                raise InvalidTransition("Продажа изменена параллельно", {"sale_id": sale_id})

            await session.refresh(sale)
            raffle = await RaffleService.get_raffle(session, sale.raffle_id)
            outcome = await SaleService._assign_and_credit(
                session, sale, raffle, sale.expected_amount, allocate=False
            )

            discrepancy = sale.discrepancy
            if discrepancy != 0:
                logger.warning(
                    f"Door-to-door sale {sale_id} settled with discrepancy {discrepancy} "
                    f"(expected={sale.expected_amount}, paid={amount_paid})"
                )
                SaleService.flag_for_review(
                    sale, f"Расхождение при расчёте: {discrepancy} (ожидалось {sale.expected_amount})"
                )

            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Error settling door-to-door sale {sale_id}: {e}")
            raise

        logger.info(
            f"✅ Door-to-door sale {sale_id} settled: paid={amount_paid}, "
            f"commission={outcome['sale'].commission_amount}"
        )
        return outcome

    @staticmethod
    async def cancel(
        session: AsyncSession,
        sale_id: UUID,
        reason: str,
        actor_partner_id: Optional[UUID] = None
    ) -> Sale:
        """
        Отмена продажи агента: статус и освобождение номеров в одной транзакции
        """
        valid, error = validate_reason(reason)
        if not valid:
            raise ValidationError(error)

        sale = await DoorToDoorService._get_scoped(session, sale_id, actor_partner_id)
        if sale.status != SaleStatus.PENDING_SETTLEMENT:
            raise InvalidTransition(
                f"Продажу в статусе {sale.status.value} нельзя отменить",
                {"sale_id": sale_id, "status": sale.status.value}
            )

        try:
            result = await session.execute(
                update(Sale)
                .where(Sale.id == sale_id, Sale.status == SaleStatus.PENDING_SETTLEMENT)
                .values(
                    status=SaleStatus.CANCELLED,
                    cancelled_at=datetime.now(),
                    cancellation_reason=sanitize_text(reason)
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidTransition("Продажа уже рассчитана или отменена", {"sale_id": sale_id})

            await TicketService.release(session, sale_id)
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Error cancelling door-to-door sale {sale_id}: {e}")
            raise

        logger.info(f"Door-to-door sale {sale_id} cancelled: {reason}")
        return await SaleService.get_sale(session, sale_id)

    @staticmethod
    async def list_pending(session: AsyncSession, partner_id: Optional[UUID] = None) -> list[Sale]:
        """Продажи, ожидающие расчёта (все или одного партнёра)"""
        stmt = (
            select(Sale)
            .where(Sale.kind == SaleKind.DOOR_TO_DOOR, Sale.status == SaleStatus.PENDING_SETTLEMENT)
            .order_by(Sale.created_at)
        )
        if partner_id is not None:
            stmt = stmt.where(Sale.partner_id == partner_id)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_sales(session: AsyncSession, partner_id: UUID, limit: int = 50) -> list[Sale]:
        return await SaleService.list_partner_sales(
            session, partner_id, min(limit, MAX_HISTORY_LIMIT), kind=SaleKind.DOOR_TO_DOOR
        )

    @staticmethod
    async def get_summary(session: AsyncSession, partner_id: UUID, period: str = "all") -> dict:
        """
        Сводка агента за период: количество, суммы, разбивка по статусам
        """
        start = period_start(period)

        stmt = (
            select(
                Sale.status,
                func.count(Sale.id),
                func.coalesce(func.sum(Sale.expected_amount), 0),
                func.coalesce(func.sum(Sale.amount_paid), 0),
                func.coalesce(func.sum(Sale.commission_amount), 0),
            )
            .where(Sale.partner_id == partner_id, Sale.kind == SaleKind.DOOR_TO_DOOR)
            .group_by(Sale.status)
        )
        if start is not None:
            stmt = stmt.where(Sale.created_at >= start)

        result = await session.execute(stmt)
        rows = {status: (count, expected, paid, commission) for status, count, expected, paid, commission in result.all()}

        def count_of(status):
            return rows.get(status, (0, 0, 0, 0))[0]

        settled = rows.get(SaleStatus.SETTLED, (0, 0, 0, 0))
        pending = rows.get(SaleStatus.PENDING_SETTLEMENT, (0, 0, 0, 0))

        return {
            "partner_id": partner_id,
            "period": period,
            "total_sales": sum(row[0] for row in rows.values()),
            "settled_count": count_of(SaleStatus.SETTLED),
            "pending_count": count_of(SaleStatus.PENDING_SETTLEMENT),
            "cancelled_count": count_of(SaleStatus.CANCELLED),
            "expected_total": to_money(settled[1]) + to_money(pending[1]),
            "collected_total": to_money(settled[2]),
            "pending_total": to_money(pending[1]),
            "commission_total": to_money(settled[3]),
            "discrepancy_total": to_money(settled[2]) - to_money(settled[1]) if settled[0] else ZERO,
        }

    @staticmethod
    async def _get_scoped(session: AsyncSession, sale_id: UUID, actor_partner_id: Optional[UUID]) -> Sale:
        sale = await SaleService.get_sale(session, sale_id, partner_id=actor_partner_id)
        if sale.kind != SaleKind.DOOR_TO_DOOR:
            raise InvalidTransition("Это не продажа от двери к двери", {"sale_id": sale_id})
        return sale

    @staticmethod
    def _ensure_pending(sale: Sale):
        DoorToDoorService._ensure_pending_status(sale.status, sale.id)

    @staticmethod
    def _ensure_pending_status(status: SaleStatus, sale_id: UUID):
        if status == SaleStatus.SETTLED:
            raise AlreadySettled("Продажа уже рассчитана", {"sale_id": sale_id})
        if status != SaleStatus.PENDING_SETTLEMENT:
            raise InvalidTransition(
                f"Продажу в статусе {status.value} нельзя рассчитать",
                {"sale_id": sale_id, "status": status.value}
            )
