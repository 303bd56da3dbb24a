"""
Сервис заявок партнёров на вывод средств
pending -> approved -> processed, pending -> rejected
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import MAX_HISTORY_LIMIT
from shared.database import Partner, Withdrawal
from shared.errors import Forbidden, InsufficientBalance, InvalidTransition, NotFound, ValidationError
from shared.money import to_money
from shared.statuses import WithdrawalMethod, WithdrawalStatus, ensure_transition
from shared.validation import validate_amount, validate_payment_details, sanitize_text, to_decimal
from raffle_api.services.commission_service import CommissionService

logger = logging.getLogger(__name__)


class WithdrawalService:
    """Сервис вывода средств"""

    @staticmethod
    async def request_withdrawal(
        session: AsyncSession,
        partner_id: UUID,
        amount,
        method: WithdrawalMethod,
        payment_details: dict
    ) -> Withdrawal:
        """
        Заявка на вывод

        АТОМАРНО: строка партнёра блокируется SELECT FOR UPDATE на время
        проверки баланса и записи заявки, параллельные заявки одного
        партнёра выполняются по очереди.
        """
        valid, error = validate_amount(amount)
        if not valid:
            raise ValidationError(error, {"amount": amount})
        amount = to_money(to_decimal(amount))

        try:
            method = WithdrawalMethod(method)
        except ValueError:
            raise ValidationError(f"Неизвестный способ вывода: {method}", {"method": method})

        valid, error = validate_payment_details(method.value, payment_details)
        if not valid:
            raise ValidationError(error, {"method": method.value})

        try:
            result = await session.execute(
                select(Partner)
                .where(Partner.id == partner_id)
                .with_for_update()
            )
            partner = result.scalar_one_or_none()

            if not partner:
                raise NotFound("Партнёр не найден", {"partner_id": partner_id})
            if not partner.is_active:
                raise Forbidden("Неактивный партнёр не может выводить средства", {"partner_id": partner_id})

            available = await CommissionService.get_available_balance(session, partner_id)
            if amount > available:
                logger.warning(
                    f"Insufficient balance for partner {partner_id}: "
                    f"available={available}, requested={amount}"
                )
                raise InsufficientBalance(
                    f"Недостаточно средств: доступно {available}, запрошено {amount}",
                    available=available,
                    requested=amount
                )

            withdrawal = Withdrawal(
                partner_id=partner_id,
                amount=amount,
                method=method,
                payment_details=WithdrawalService._clean_details(payment_details),
                status=WithdrawalStatus.PENDING,
                requested_at=datetime.now()
            )
            session.add(withdrawal)
            await session.commit()

        except Exception as e:
            await session.rollback()
            logger.error(f"Error requesting withdrawal for partner {partner_id}: {e}")
            raise

        logger.info(
            f"Withdrawal {withdrawal.id} requested by partner {partner_id}: "
            f"amount={amount}, method={method.value}, available_before={available}"
        )
        return withdrawal

    @staticmethod
    async def approve(session: AsyncSession, withdrawal_id: UUID) -> Withdrawal:
        """pending -> approved"""
        return await WithdrawalService._transition(
            session, withdrawal_id, WithdrawalStatus.PENDING, WithdrawalStatus.APPROVED,
            decided_at=datetime.now()
        )

    @staticmethod
    async def reject(session: AsyncSession, withdrawal_id: UUID, reason: Optional[str] = None) -> Withdrawal:
        """pending -> rejected, сумма возвращается в доступный баланс"""
        return await WithdrawalService._transition(
            session, withdrawal_id, WithdrawalStatus.PENDING, WithdrawalStatus.REJECTED,
            decided_at=datetime.now(),
            rejection_reason=sanitize_text(reason)
        )

    @staticmethod
    async def mark_processed(session: AsyncSession, withdrawal_id: UUID) -> Withdrawal:
        """approved -> processed (деньги отправлены)"""
        return await WithdrawalService._transition(
            session, withdrawal_id, WithdrawalStatus.APPROVED, WithdrawalStatus.PROCESSED,
            processed_at=datetime.now()
        )

    @staticmethod
    async def get_withdrawal(session: AsyncSession, withdrawal_id: UUID) -> Withdrawal:
        withdrawal = await session.get(Withdrawal, withdrawal_id, populate_existing=True)
        if not withdrawal:
            raise NotFound("Заявка на вывод не найдена", {"withdrawal_id": withdrawal_id})
        return withdrawal

    @staticmethod
    async def get_withdrawal_history(
        session: AsyncSession,
        partner_id: UUID,
        limit: int = 50
    ) -> dict:
        """
        История выводов партнёра

        Returns:
            {"items": [...], "total": int}
        """
        total = await session.scalar(
            select(func.count(Withdrawal.id)).where(Withdrawal.partner_id == partner_id)
        )
        result = await session.execute(
            select(Withdrawal)
            .where(Withdrawal.partner_id == partner_id)
            .order_by(Withdrawal.requested_at.desc())
            .limit(min(limit, MAX_HISTORY_LIMIT))
        )
        return {"items": list(result.scalars().all()), "total": total or 0}

    @staticmethod
    async def list_withdrawals(
        session: AsyncSession,
        status: Optional[WithdrawalStatus] = None,
        limit: int = 100
    ) -> list[Withdrawal]:
        """Заявки для админки, старые сверху"""
        stmt = select(Withdrawal).order_by(Withdrawal.requested_at).limit(min(limit, MAX_HISTORY_LIMIT))
        if status is not None:
            stmt = stmt.where(Withdrawal.status == WithdrawalStatus(status))
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def _transition(
        session: AsyncSession,
        withdrawal_id: UUID,
        expected: WithdrawalStatus,
        target: WithdrawalStatus,
        **values
    ) -> Withdrawal:
        """Условная запись: status = expected -> target"""
        withdrawal = await WithdrawalService.get_withdrawal(session, withdrawal_id)
        ensure_transition(withdrawal.status, target, "withdrawal", withdrawal_id)

        result = await session.execute(
            update(Withdrawal)
            .where(Withdrawal.id == withdrawal_id, Withdrawal.status == expected)
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            raise InvalidTransition(
                f"Заявка уже не в статусе {expected.value}",
                {"withdrawal_id": withdrawal_id, "to": target.value}
            )

        await session.commit()
        logger.info(f"Withdrawal {withdrawal_id}: {expected.value} -> {target.value}")
        return await WithdrawalService.get_withdrawal(session, withdrawal_id)

    @staticmethod
    def _clean_details(details: dict) -> dict:
        return {key: str(value).strip() for key, value in details.items() if value is not None}
