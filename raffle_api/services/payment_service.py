"""
Сервис PIX оплаты онлайн-продаж
Идемпотентное подтверждение платежей (webhook, ручная проверка, воркер)
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import PIX_CHARGE_TTL
from shared.database import PixCharge
from shared.errors import InvalidTransition, NotFound
from shared.money import to_money
from shared.statuses import ChargeStatus, SaleStatus
from raffle_api.services.pix_gateway import PixGateway
from raffle_api.services.sale_service import SaleService

logger = logging.getLogger(__name__)

# Статусы Mercado Pago, после которых платёж уже не будет оплачен
FAILED_GATEWAY_STATUSES = ("rejected", "cancelled", "refunded", "charged_back")


class PaymentService:
    """Сервис управления PIX платежами"""

    @staticmethod
    async def create_checkout(
        session: AsyncSession,
        gateway: PixGateway,
        customer: dict,
        quantity: int,
        partner_slug: Optional[str] = None
    ) -> dict:
        """
        Открыть продажу и создать PIX платёж

        Returns:
            {"sale": Sale, "charge": PixCharge}
        """
        try:
            # 1. Продажа в статусе pending, цена считается на сервере
            sale = await SaleService._open(session, customer, quantity, partner_slug)

            # 2. Платёж в шлюзе
            idempotency_key = uuid.uuid4().hex
            created = await gateway.create_pix_charge(
                sale.amount,
                {
                    "sale_id": sale.id,
                    "quantity": quantity,
                    "description": f"Rifa - {quantity} número(s)",
                },
                idempotency_key
            )

            # 3. Сохраняем платёж
            charge = PixCharge(
                sale_id=sale.id,
                session_id=created["session_id"],
                idempotency_key=idempotency_key,
                amount=sale.amount,
                status=ChargeStatus.PENDING,
                payment_link=created.get("payment_link"),
                qr_code=created.get("qr_code"),
                created_at=datetime.now()
            )
            session.add(charge)
            await session.commit()

        except Exception as e:
            await session.rollback()
            logger.error(f"Error creating checkout (quantity={quantity}, partner='{partner_slug}'): {e}")
            raise

        logger.info(
            f"Created checkout: sale={sale.id}, session_id={charge.session_id}, amount={charge.amount}"
        )
        return {"sale": sale, "charge": charge}

    @staticmethod
    async def get_charge(session: AsyncSession, session_id: str) -> PixCharge:
        result = await session.execute(
            select(PixCharge)
            .where(PixCharge.session_id == str(session_id))
            .execution_options(populate_existing=True)
        )
        charge = result.scalar_one_or_none()
        if not charge:
            raise NotFound("Платёж не найден", {"session_id": session_id})
        return charge

    @staticmethod
    async def confirm_payment(session: AsyncSession, gateway: PixGateway, session_id: str) -> dict:
        """
        Подтвердить платёж после проверки в шлюзе

        Оплаченный платёж с совпадающей суммой завершает продажу в той же
        транзакции. Повторный вызов для обработанного платежа ничего не меняет.

        Returns:
            {"status": ChargeStatus, "sale": Sale, "prizes": [...]}
        """
        charge = await PaymentService.get_charge(session, session_id)

        # Проверка идемпотентности (ИДЕМПОТЕНТНЫЙ NO-OP)
        if charge.processed_at:
            logger.info(
                f"Charge {session_id} already processed at {charge.processed_at}. Idempotent no-op."
            )
            return await PaymentService._result(session, charge)

        verification = await gateway.verify_payment(session_id)
        charge_id = charge.id
        sale_id = charge.sale_id

        if not verification["paid"]:
            if verification.get("status") in FAILED_GATEWAY_STATUSES:
                return await PaymentService._fail(
                    session, charge, verification,
                    f"Платёж отклонён шлюзом: {verification.get('status')}",
                    cancel_sale=True
                )
            logger.info(f"Charge {session_id} not paid yet (gateway status={verification.get('status')})")
            return await PaymentService._result(session, charge)

        # Метаданным доверяем только после подтверждения оплаты
        metadata_sale = verification.get("metadata", {}).get("sale_id")
        if metadata_sale and str(metadata_sale) != str(sale_id):
            logger.warning(
                f"Charge {session_id} metadata sale_id={metadata_sale} differs from stored sale {sale_id}"
            )

        paid_amount = to_money(verification["amount"])
        if paid_amount != charge.amount:
            logger.error(
                f"Charge {session_id} amount mismatch: expected={charge.amount}, paid={paid_amount}"
            )
            return await PaymentService._fail(
                session, charge, verification,
                f"Сумма оплаты {paid_amount} не совпадает с ожидаемой {charge.amount}",
                cancel_sale=False
            )

        try:
            result = await session.execute(
                update(PixCharge)
                .where(PixCharge.id == charge_id, PixCharge.status == ChargeStatus.PENDING)
                .values(
                    status=ChargeStatus.PAID,
                    processed_at=datetime.now(),
                    raw_payload=verification.get("raw")
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # Параллельный вызов успел обработать платёж
                await session.rollback()
                charge = await PaymentService.get_charge(session, session_id)
                return await PaymentService._result(session, charge)

            sale = await SaleService.get_sale(session, sale_id)
            outcome = await SaleService._complete(session, sale)
            await session.commit()

        except Exception as e:
            await session.rollback()
            logger.error(f"Error confirming charge {session_id}: {e}", exc_info=True)
            raise

        logger.info(
            f"✅ Charge {session_id} paid. Sale {sale_id} completed with "
            f"{len(outcome['sale'].ticket_numbers)} numbers"
        )
        return {"status": ChargeStatus.PAID, **outcome}

    @staticmethod
    async def expire_charge(session: AsyncSession, session_id: str) -> bool:
        """
        Просроченный неоплаченный платёж: charge -> expired, продажа -> cancelled

        Returns:
            True если платёж был просрочен этим вызовом
        """
        charge = await PaymentService.get_charge(session, session_id)
        charge_id = charge.id
        sale_id = charge.sale_id

        try:
            result = await session.execute(
                update(PixCharge)
                .where(PixCharge.id == charge_id, PixCharge.status == ChargeStatus.PENDING)
                .values(status=ChargeStatus.EXPIRED, processed_at=datetime.now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                return False

            await SaleService.cancel_sale(session, sale_id, "PIX não pago no prazo", commit=False)
            await session.commit()
        except InvalidTransition:
            # Продажа уже не pending: платёж не трогаем
            await session.rollback()
            logger.warning(f"Sale {sale_id} of charge {session_id} is not pending, skipping expiry")
            return False
        except Exception as e:
            await session.rollback()
            logger.error(f"Error expiring charge {session_id}: {e}")
            raise

        logger.info(f"⏰ Charge {session_id} expired, sale {sale_id} cancelled")
        return True

    @staticmethod
    async def list_pending_charges(session: AsyncSession, limit: int = 100) -> list[PixCharge]:
        """Неподтверждённые платежи для воркера, старые сверху"""
        result = await session.execute(
            select(PixCharge)
            .where(PixCharge.status == ChargeStatus.PENDING)
            .order_by(PixCharge.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    def is_stale(charge: PixCharge, now: Optional[datetime] = None) -> bool:
        """Платёж старше PIX_CHARGE_TTL"""
        now = now or datetime.now()
        return charge.created_at < now - timedelta(seconds=PIX_CHARGE_TTL)

    @staticmethod
    async def _fail(
        session: AsyncSession,
        charge: PixCharge,
        verification: dict,
        note: str,
        cancel_sale: bool
    ) -> dict:
        """charge -> failed; продажа отменяется или остаётся pending на проверку"""
        charge_id = charge.id
        sale_id = charge.sale_id
        session_id = charge.session_id

        try:
            result = await session.execute(
                update(PixCharge)
                .where(PixCharge.id == charge_id, PixCharge.status == ChargeStatus.PENDING)
                .values(
                    status=ChargeStatus.FAILED,
                    processed_at=datetime.now(),
                    raw_payload=verification.get("raw")
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                if cancel_sale:
                    await SaleService.cancel_sale(session, sale_id, note, commit=False)
                else:
                    sale = await SaleService.get_sale(session, sale_id)
                    SaleService.flag_for_review(sale, note)
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Error failing charge {session_id}: {e}")
            raise

        charge = await PaymentService.get_charge(session, session_id)
        return await PaymentService._result(session, charge)

    @staticmethod
    async def _result(session: AsyncSession, charge: PixCharge) -> dict:
        sale = await SaleService.get_sale(session, charge.sale_id)
        if sale.status == SaleStatus.COMPLETED:
            outcome = await SaleService._existing_outcome(session, sale)
            return {"status": charge.status, **outcome}
        return {"status": charge.status, "sale": sale, "prizes": []}
