"""
Сервис онлайн-продаж: регистрация, выдача номеров, проверка призов
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import MAX_HISTORY_LIMIT
from shared.database import Partner, PrizeNumber, Raffle, Sale
from shared.errors import InvalidTransition, NotFound, Forbidden, ValidationError
from shared.money import to_money
from shared.statuses import SaleKind, SaleStatus, HOLDS_TICKETS, ensure_transition
from shared.validation import sanitize_customer, validate_quantity, validate_reason, normalize_contact, sanitize_text
from raffle_api.services.click_service import ClickService
from raffle_api.services.commission_service import CommissionService
from raffle_api.services.partner_service import PartnerService
from raffle_api.services.prize_service import PrizeService, prize_outcome
from raffle_api.services.raffle_service import RaffleService, unit_price_for, price_for
from raffle_api.services.ticket_service import TicketService

logger = logging.getLogger(__name__)


def customer_snapshot(sale: Sale) -> dict:
    """Снимок клиента, сохранённый в продаже"""
    return {
        "name": sale.customer_name,
        "contact": sale.customer_contact,
        "email": sale.customer_email,
        "city": sale.customer_city,
    }


class SaleService:
    """Сервис онлайн-продаж"""

    @staticmethod
    async def get_sale(
        session: AsyncSession,
        sale_id: UUID,
        partner_id: Optional[UUID] = None
    ) -> Sale:
        """
        Продажа по id; если передан partner_id, только своя продажа партнёра
        """
        sale = await session.get(Sale, sale_id, populate_existing=True)
        if not sale:
            raise NotFound("Продажа не найдена", {"sale_id": sale_id})
        if partner_id is not None and sale.partner_id != partner_id:
            raise Forbidden("Продажа принадлежит другому партнёру", {"sale_id": sale_id})
        return sale

    @staticmethod
    async def register_sale(
        session: AsyncSession,
        customer: dict,
        quantity: int,
        partner_slug: Optional[str] = None
    ) -> dict:
        """
        Зарегистрировать оплаченную продажу: выдать номера, проверить призы,
        начислить комиссию и привязать клик партнёра. Всё в одной транзакции.

        Returns:
            {"sale": Sale, "prizes": [...]}
        """
        try:
            sale = await SaleService._open(session, customer, quantity, partner_slug)
            outcome = await SaleService._complete(session, sale)
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Error registering sale (quantity={quantity}, partner='{partner_slug}'): {e}")
            raise

        return outcome

    @staticmethod
    async def open_sale(
        session: AsyncSession,
        customer: dict,
        quantity: int,
        partner_slug: Optional[str] = None
    ) -> Sale:
        """
        Открыть продажу в статусе pending (до оплаты, без номеров)
        """
        try:
            sale = await SaleService._open(session, customer, quantity, partner_slug)
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Error opening sale (quantity={quantity}): {e}")
            raise
        return sale

    @staticmethod
    async def complete_sale(session: AsyncSession, sale_id: UUID) -> dict:
        """
        Завершить оплаченную продажу. Повторный вызов для completed ничего не меняет
        """
        try:
            sale = await SaleService.get_sale(session, sale_id)
            outcome = await SaleService._complete(session, sale)
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Error completing sale {sale_id}: {e}")
            raise
        return outcome

    @staticmethod
    async def cancel_sale(
        session: AsyncSession,
        sale_id: UUID,
        reason: str,
        commit: bool = True
    ) -> Sale:
        """
        Отменить неоплаченную онлайн-продажу (pending -> cancelled)

        commit=False: отмена фиксируется вызывающим вместе с его изменениями
        """
        valid, error = validate_reason(reason)
        if not valid:
            raise ValidationError(error)

        sale = await SaleService.get_sale(session, sale_id)
        if sale.kind != SaleKind.ONLINE:
            raise InvalidTransition("Продажи агентов отменяются через сервис door-to-door", {"sale_id": sale_id})
        ensure_transition(sale.status, SaleStatus.CANCELLED, "sale", sale_id)

        result = await session.execute(
            update(Sale)
            .where(Sale.id == sale_id, Sale.status == SaleStatus.PENDING)
            .values(
                status=SaleStatus.CANCELLED,
                cancelled_at=datetime.now(),
                cancellation_reason=sanitize_text(reason)
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            raise InvalidTransition("Продажа уже не в статусе pending", {"sale_id": sale_id})

        if commit:
            await session.commit()
        logger.info(f"Sale {sale_id} cancelled: {reason}")
        return await SaleService.get_sale(session, sale_id)

    @staticmethod
    async def refund_sale(session: AsyncSession, sale_id: UUID, reason: str) -> Sale:
        """
        Возврат оплаченной онлайн-продажи (completed -> refunded)

        Номера возвращаются в пул в той же транзакции, комиссия перестаёт
        учитываться в балансе партнёра.
        """
        valid, error = validate_reason(reason)
        if not valid:
            raise ValidationError(error)

        sale = await SaleService.get_sale(session, sale_id)
        ensure_transition(sale.status, SaleStatus.REFUNDED, "sale", sale_id)
        partner_id = sale.partner_id

        try:
            result = await session.execute(
                update(Sale)
                .where(Sale.id == sale_id, Sale.status == SaleStatus.COMPLETED)
                .values(
                    status=SaleStatus.REFUNDED,
                    cancelled_at=datetime.now(),
                    cancellation_reason=sanitize_text(reason)
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidTransition("Продажа уже не в статусе completed", {"sale_id": sale_id})

            await TicketService.release(session, sale_id)
            await session.commit()
        except Exception:
            await session.rollback()
            raise

        logger.info(f"Sale {sale_id} refunded: {reason}")

        if partner_id:
            available = await CommissionService.get_available_balance(session, partner_id)
            if available < 0:
                logger.warning(
                    f"Partner {partner_id} balance is negative after refund of sale {sale_id}: {available}"
                )

        return await SaleService.get_sale(session, sale_id)

    @staticmethod
    async def list_partner_sales(
        session: AsyncSession,
        partner_id: UUID,
        limit: int = 50,
        kind: Optional[SaleKind] = None
    ) -> list[Sale]:
        """История продаж партнёра"""
        stmt = (
            select(Sale)
            .where(Sale.partner_id == partner_id)
            .order_by(Sale.created_at.desc())
            .limit(min(limit, MAX_HISTORY_LIMIT))
        )
        if kind is not None:
            stmt = stmt.where(Sale.kind == kind)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def find_sales_by_contact(session: AsyncSession, contact: str) -> list[Sale]:
        """
        "Мои номера": продажи клиента по WhatsApp, удерживающие номера
        """
        digits = normalize_contact(contact)
        if not digits:
            raise ValidationError("Укажите WhatsApp")

        result = await session.execute(
            select(Sale)
            .where(Sale.customer_contact == digits, Sale.status.in_(HOLDS_TICKETS))
            .order_by(Sale.created_at.desc())
            .limit(MAX_HISTORY_LIMIT)
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_sales(
        session: AsyncSession,
        raffle_id: Optional[UUID] = None,
        status: Optional[SaleStatus] = None,
        kind: Optional[SaleKind] = None,
        needs_review: Optional[bool] = None,
        limit: int = 100
    ) -> list[Sale]:
        """Продажи для админки: по розыгрышу, статусу, типу, очереди на проверку"""
        stmt = select(Sale).order_by(Sale.created_at.desc()).limit(min(limit, MAX_HISTORY_LIMIT))
        if raffle_id is not None:
            stmt = stmt.where(Sale.raffle_id == raffle_id)
        if status is not None:
            stmt = stmt.where(Sale.status == status)
        if kind is not None:
            stmt = stmt.where(Sale.kind == kind)
        if needs_review is not None:
            stmt = stmt.where(Sale.needs_review.is_(needs_review))
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def resolve_review(session: AsyncSession, sale_id: UUID, note: str) -> Sale:
        """
        Снять отметку ручной проверки. Заметка админа дописывается к review_note
        """
        valid, error = validate_reason(note)
        if not valid:
            raise ValidationError(error)

        sale = await SaleService.get_sale(session, sale_id)
        resolution = f"Проверено: {sanitize_text(note)}"
        review_note = f"{sale.review_note}\n{resolution}" if sale.review_note else resolution

        result = await session.execute(
            update(Sale)
            .where(Sale.id == sale_id, Sale.needs_review.is_(True))
            .values(needs_review=False, reviewed_at=datetime.now(), review_note=review_note)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            raise InvalidTransition("Продажа не ожидает проверки", {"sale_id": sale_id})

        await session.commit()
        logger.info(f"Review of sale {sale_id} resolved: {note}")
        return await SaleService.get_sale(session, sale_id)

    @staticmethod
    async def _open(
        session: AsyncSession,
        customer: dict,
        quantity: int,
        partner_slug: Optional[str]
    ) -> Sale:
        """Создать pending продажу с ценой, посчитанной на сервере. Не коммитит"""
        snapshot = sanitize_customer(customer)
        raffle = await RaffleService.get_active_raffle(session)

        valid, error = validate_quantity(quantity, raffle.max_per_sale)
        if not valid:
            raise ValidationError(error, {"quantity": quantity})

        partner = None
        if partner_slug:
            partner = await PartnerService.get_partner_by_slug(session, partner_slug)
            if not partner:
                logger.warning(f"Unknown partner slug '{partner_slug}', sale registered as direct")

        sale = SaleService._new_sale(
            raffle, snapshot, quantity, SaleKind.ONLINE, SaleStatus.PENDING, partner
        )
        session.add(sale)
        await session.flush()

        logger.info(
            f"Opened sale {sale.id}: quantity={quantity}, amount={sale.amount}, "
            f"partner={sale.partner_id}"
        )
        return sale

    @staticmethod
    async def _complete(session: AsyncSession, sale: Sale) -> dict:
        """
        pending -> completed: номера, призы, комиссия, атрибуция. Не коммитит
        """
        sale_id = sale.id

        if sale.status == SaleStatus.COMPLETED:
            logger.info(f"Sale {sale_id} already completed. Idempotent no-op.")
            return await SaleService._existing_outcome(session, sale)
        ensure_transition(sale.status, SaleStatus.COMPLETED, "sale", sale_id)

        # Захватываем продажу условной записью: завершить её может только один вызов
        completed_at = datetime.now()
        result = await session.execute(
            update(Sale)
            .where(Sale.id == sale_id, Sale.status == SaleStatus.PENDING)
            .values(status=SaleStatus.COMPLETED, completed_at=completed_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            sale = await SaleService.get_sale(session, sale_id)
            if sale.status == SaleStatus.COMPLETED:
                return await SaleService._existing_outcome(session, sale)
            raise InvalidTransition("Продажа уже не в статусе pending", {"sale_id": sale_id})

        await session.refresh(sale)
        raffle = await RaffleService.get_raffle(session, sale.raffle_id)
        outcome = await SaleService._assign_and_credit(session, sale, raffle, sale.amount)

        if sale.partner_id:
            await ClickService.attribute_conversion(session, sale.partner_id, sale)

        return outcome

    @staticmethod
    async def _assign_and_credit(
        session: AsyncSession,
        sale: Sale,
        raffle: Raffle,
        commission_base,
        allocate: bool = True
    ) -> dict:
        """
        Общий шаг для онлайн и агентских продаж:
        номера (если ещё не выданы) + проверка призов + комиссия
        """
        if allocate:
            sale.ticket_numbers = await TicketService.allocate(session, raffle, sale.id, sale.quantity)

        customer = customer_snapshot(sale)
        prizes = []
        for number in sale.ticket_numbers:
            outcome = await PrizeService.check_and_award(session, number, customer, raffle.id, sale.id)
            if outcome:
                prizes.append(outcome)

        partner = await session.get(Partner, sale.partner_id) if sale.partner_id else None
        commission, review_note = CommissionService.commission_for_sale(partner, commission_base)
        sale.commission_amount = commission
        if review_note:
            SaleService.flag_for_review(sale, review_note)

        await session.flush()
        logger.info(
            f"Sale {sale.id} credited: numbers={len(sale.ticket_numbers)}, "
            f"prizes={len(prizes)}, commission={commission}"
        )
        return {"sale": sale, "prizes": prizes}

    @staticmethod
    async def _existing_outcome(session: AsyncSession, sale: Sale) -> dict:
        result = await session.execute(
            select(PrizeNumber).where(PrizeNumber.sale_id == sale.id)
        )
        return {"sale": sale, "prizes": [prize_outcome(p) for p in result.scalars().all()]}

    @staticmethod
    def flag_for_review(sale: Sale, note: str):
        """Отметить продажу для ручной проверки админом"""
        sale.needs_review = True
        sale.reviewed_at = None
        sale.review_note = f"{sale.review_note}\n{note}" if sale.review_note else note
        logger.warning(f"Sale {sale.id} flagged for review: {note}")

    @staticmethod
    def _new_sale(
        raffle: Raffle,
        snapshot: dict,
        quantity: int,
        kind: SaleKind,
        status: SaleStatus,
        partner: Optional[Partner]
    ) -> Sale:
        amount = price_for(raffle, quantity)
        return Sale(
            raffle_id=raffle.id,
            kind=kind,
            status=status,
            partner_id=partner.id if partner else None,
            customer_name=snapshot["name"],
            customer_contact=snapshot["contact"],
            customer_email=snapshot["email"],
            customer_city=snapshot["city"],
            quantity=quantity,
            unit_price=unit_price_for(raffle, quantity),
            amount=amount,
            commission_amount=to_money(0),
            ticket_numbers=[],
            created_at=datetime.now()
        )
