"""
Worker для фоновой проверки PIX платежей
"""
import asyncio
import logging

from shared.database import init_db, close_db
from shared.config import LOG_LEVEL, LOG_FORMAT, DATA_DIR, CHARGE_POLL_INTERVAL
from worker.charge_watchdog import ChargeWatchdog

# Настройка логирования
logging.basicConfig(
    level=LOG_LEVEL,
    format=LOG_FORMAT,
    handlers=[
        logging.FileHandler(DATA_DIR / "logs" / "worker.log"),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)


class Worker:
    """Worker с watchdog платежей"""

    def __init__(self):
        self.watchdog = ChargeWatchdog(check_interval=CHARGE_POLL_INTERVAL)

    async def start(self):
        """Запуск worker"""
        logger.info("🚀 Worker started")

        # Инициализация БД
        await init_db()
        logger.info("✅ Database initialized")

        try:
            await self.watchdog.start()
        finally:
            await self.cleanup()

    async def cleanup(self):
        """Очистка ресурсов"""
        logger.info("🧹 Cleaning up...")
        self.watchdog.stop()
        await close_db()
        logger.info("✅ Worker stopped")

    def stop(self):
        """Остановка worker"""
        self.watchdog.stop()


async def run():
    worker = Worker()

    try:
        await worker.start()
    except asyncio.CancelledError:
        logger.info("Shutting down worker...")
        worker.stop()


def main():
    """Главная функция"""
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")


if __name__ == "__main__":
    main()
