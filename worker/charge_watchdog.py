"""
Watchdog для неподтверждённых PIX платежей
Проверяет платежи в статусе 'pending' через шлюз и просрочивает старые
"""
import asyncio
import logging
from datetime import datetime
from typing import Optional

from shared.database import AsyncSessionLocal
from shared.config import CHARGE_POLL_INTERVAL, PIX_CHARGE_TTL
from shared.errors import LedgerError
from raffle_api.services.payment_service import PaymentService
from raffle_api.services.pix_gateway import PixGateway, get_gateway

logger = logging.getLogger(__name__)


class ChargeWatchdog:
    """
    Подстраховка для потерянных webhook: оплаченные платежи подтверждаются,
    неоплаченные старше PIX_CHARGE_TTL просрочиваются, продажа отменяется
    """

    def __init__(
        self,
        check_interval: int = CHARGE_POLL_INTERVAL,
        gateway: Optional[PixGateway] = None,
        session_factory=AsyncSessionLocal
    ):
        """
        Args:
            check_interval: Интервал проверки в секундах
            gateway: Платёжный шлюз (по умолчанию Mercado Pago)
            session_factory: Фабрика сессий БД
        """
        self.check_interval = check_interval
        self.gateway = gateway
        self.session_factory = session_factory
        self.running = False

    async def start(self):
        """Запуск watchdog"""
        self.running = True
        logger.info("🐕 Charge watchdog started")

        while self.running:
            try:
                await self.check_pending_charges()
            except Exception as e:
                logger.error(f"Error in charge watchdog loop: {e}", exc_info=True)
            await asyncio.sleep(self.check_interval)

    def stop(self):
        """Остановка watchdog"""
        self.running = False
        logger.info("🐕 Charge watchdog stopped")

    async def check_pending_charges(self) -> dict:
        """
        Один проход по pending платежам

        Returns:
            {"confirmed": int, "expired": int, "errors": int}
        """
        gateway = self.gateway or get_gateway()
        stats = {"confirmed": 0, "expired": 0, "errors": 0}

        async with self.session_factory() as session:
            charges = await PaymentService.list_pending_charges(session)
            session_ids = [(charge.session_id, PaymentService.is_stale(charge)) for charge in charges]

        if not session_ids:
            return stats

        logger.info(f"Checking {len(session_ids)} pending charges")

        for session_id, stale in session_ids:
            # Отдельная сессия на платёж: ошибка одного не ломает остальные
            async with self.session_factory() as session:
                try:
                    await self.handle_charge(session, gateway, session_id, stale, stats)
                except LedgerError as e:
                    stats["errors"] += 1
                    logger.warning(f"Charge {session_id} not handled: {e.kind}: {e.message}")
                except Exception as e:
                    stats["errors"] += 1
                    logger.error(f"Error handling charge {session_id}: {e}", exc_info=True)

        if stats["confirmed"] or stats["expired"] or stats["errors"]:
            logger.info(
                f"Charge watchdog pass at {datetime.now():%H:%M:%S}: "
                f"confirmed={stats['confirmed']}, expired={stats['expired']}, errors={stats['errors']}"
            )
        return stats

    async def handle_charge(self, session, gateway: PixGateway, session_id: str, stale: bool, stats: dict):
        """
        Проверить один платёж и, если он не оплачен за PIX_CHARGE_TTL, просрочить
        """
        result = await PaymentService.confirm_payment(session, gateway, session_id)
        status = result["status"].value

        if status == "paid":
            stats["confirmed"] += 1
            return

        if status == "pending" and stale:
            logger.warning(f"Charge {session_id} unpaid for more than {PIX_CHARGE_TTL}s, expiring")
            if await PaymentService.expire_charge(session, session_id):
                stats["expired"] += 1
