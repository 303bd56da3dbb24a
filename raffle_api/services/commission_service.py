"""
Сервис комиссий партнёров
Баланс всегда пересчитывается из леджера, без кэша
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from shared.database import Partner, Sale, Withdrawal
from shared.money import CENT, ZERO, to_money
from shared.statuses import COMMISSION_BEARING, WithdrawalStatus
from shared.validation import to_decimal

logger = logging.getLogger(__name__)


def compute_commission(sale_amount, commission_rate) -> Decimal:
    """
    Комиссия = сумма × ставка / 100, округление half-up до центавос

    compute_commission(19.90, 15) -> Decimal("2.99")
    """
    amount = to_decimal(sale_amount)
    rate = to_decimal(commission_rate)
    return (amount * rate / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)


class CommissionService:
    """Сервис расчёта комиссий и баланса партнёра"""

    @staticmethod
    def commission_for_sale(
        partner: Optional[Partner],
        base_amount: Decimal
    ) -> tuple[Decimal, Optional[str]]:
        """
        Комиссия для продажи, переходящей в оплаченный статус

        Returns:
            (commission, review_note); review_note не None, если продажу
            нужно отправить админу на ручную проверку
        """
        if partner is None:
            return ZERO, None

        if not partner.is_active:
            logger.warning(
                f"Partner {partner.id} is inactive, commission set to 0 and sale flagged for review"
            )
            return ZERO, f"Партнёр {partner.slug} неактивен: комиссия не начислена"

        if partner.commission_rate is None:
            logger.warning(
                f"Partner {partner.id} has no commission rate, commission set to 0 and sale flagged for review"
            )
            return ZERO, f"У партнёра {partner.slug} не задана ставка комиссии"

        return compute_commission(base_amount, partner.commission_rate), None

    @staticmethod
    async def get_partner_balance(session: AsyncSession, partner_id: UUID) -> dict:
        """
        Баланс партнёра по леджеру

        available = заработано − выведено (approved/processed) − в ожидании (pending)
        """
        result = await session.execute(
            select(func.coalesce(func.sum(Sale.commission_amount), 0)).where(
                Sale.partner_id == partner_id,
                Sale.status.in_(COMMISSION_BEARING)
            )
        )
        total_earned = to_money(result.scalar())

        result = await session.execute(
            select(Withdrawal.status, func.coalesce(func.sum(Withdrawal.amount), 0))
            .where(Withdrawal.partner_id == partner_id)
            .group_by(Withdrawal.status)
        )
        by_status = {status: to_money(total) for status, total in result.all()}

        withdrawn = (
            by_status.get(WithdrawalStatus.APPROVED, ZERO)
            + by_status.get(WithdrawalStatus.PROCESSED, ZERO)
        )
        pending_withdrawal = by_status.get(WithdrawalStatus.PENDING, ZERO)

        return {
            "total_earned": total_earned,
            "withdrawn": withdrawn,
            "pending_withdrawal": pending_withdrawal,
            "available": total_earned - withdrawn - pending_withdrawal,
        }

    @staticmethod
    async def get_available_balance(session: AsyncSession, partner_id: UUID) -> Decimal:
        """Доступный к выводу баланс"""
        balance = await CommissionService.get_partner_balance(session, partner_id)
        return balance["available"]
