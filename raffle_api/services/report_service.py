"""
Финансовая сводка для админки
"""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.database import Sale, Withdrawal
from shared.money import to_money
from shared.statuses import COMMISSION_BEARING, SaleKind, SaleStatus, WithdrawalStatus

logger = logging.getLogger(__name__)


class ReportService:
    """Сводные показатели по леджеру"""

    @staticmethod
    async def get_financial_summary(session: AsyncSession, raffle_id: Optional[UUID] = None) -> dict:
        """
        Выручка, комиссии, выводы в ожидании и несданные деньги агентов

        Выручка агентских продаж считается по фактически сданной сумме.
        Выводы не привязаны к розыгрышу и считаются по всем партнёрам.
        """
        def for_raffle(stmt):
            return stmt.where(Sale.raffle_id == raffle_id) if raffle_id is not None else stmt

        result = await session.execute(for_raffle(
            select(
                Sale.kind,
                func.count(Sale.id),
                func.coalesce(func.sum(Sale.amount), 0),
                func.coalesce(func.sum(Sale.amount_paid), 0),
                func.coalesce(func.sum(Sale.commission_amount), 0),
            )
            .where(Sale.status.in_(COMMISSION_BEARING))
            .group_by(Sale.kind)
        ))
        sales_count = 0
        revenue = to_money(0)
        commissions = to_money(0)
        for kind, count, amount, amount_paid, commission in result.all():
            sales_count += count
            revenue += to_money(amount_paid if kind == SaleKind.DOOR_TO_DOOR else amount)
            commissions += to_money(commission)

        result = await session.execute(for_raffle(
            select(func.count(Sale.id), func.coalesce(func.sum(Sale.expected_amount), 0))
            .where(Sale.status == SaleStatus.PENDING_SETTLEMENT)
        ))
        receipts_count, receipts_total = result.one()

        result = await session.execute(for_raffle(
            select(func.count(Sale.id)).where(Sale.needs_review.is_(True))
        ))
        needs_review_count = result.scalar() or 0

        result = await session.execute(
            select(func.count(Withdrawal.id), func.coalesce(func.sum(Withdrawal.amount), 0))
            .where(Withdrawal.status == WithdrawalStatus.PENDING)
        )
        withdrawals_count, withdrawals_total = result.one()

        return {
            "raffle_id": raffle_id,
            "sales_count": sales_count,
            "total_revenue": revenue,
            "total_commissions": commissions,
            "pending_withdrawals_count": withdrawals_count,
            "pending_withdrawals_total": to_money(withdrawals_total),
            "pending_receipts_count": receipts_count,
            "pending_receipts_total": to_money(receipts_total),
            "needs_review_count": needs_review_count,
        }
