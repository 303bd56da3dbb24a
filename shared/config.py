"""
Конфигурация приложения
"""
import os
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

# Подхватываем .env, если он есть
load_dotenv()

# Базовые пути
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))

# PostgreSQL
DATABASE_URL = os.getenv("DATABASE_URL", "postgresql://localhost/rifa_ledger")
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "20"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "40"))

# Mercado Pago (PIX)
MERCADOPAGO_ACCESS_TOKEN = os.getenv("MERCADOPAGO_ACCESS_TOKEN", "")
MERCADOPAGO_WEBHOOK_URL = os.getenv("MERCADOPAGO_WEBHOOK_URL", "")  # https://your-domain.com/webhook/mercadopago
PIX_PAYER_EMAIL = os.getenv("PIX_PAYER_EMAIL", "cliente@rifa.com.br")

# Цены по умолчанию для нового розыгрыша (в реалах)
DEFAULT_UNIT_PRICE = Decimal(os.getenv("DEFAULT_UNIT_PRICE", "1.99"))
DEFAULT_DISCOUNT_PRICE = Decimal(os.getenv("DEFAULT_DISCOUNT_PRICE", "0.99"))
DEFAULT_DISCOUNT_MIN_QUANTITY = int(os.getenv("DEFAULT_DISCOUNT_MIN_QUANTITY", "10"))

# Диапазон номеров по умолчанию: 0000 - 9999
DEFAULT_NUMBER_START = int(os.getenv("DEFAULT_NUMBER_START", "0"))
DEFAULT_NUMBER_END = int(os.getenv("DEFAULT_NUMBER_END", "9999"))

# Лимиты
MAX_TICKETS_PER_SALE = int(os.getenv("MAX_TICKETS_PER_SALE", "100"))
TICKET_DRAW_RETRIES = 50  # повторных вытягиваний на один номер при коллизии
ALLOCATION_MAX_ATTEMPTS = 3  # попыток записи номеров при конфликте уникальности
MAX_REASON_LENGTH = 500
MAX_HISTORY_LIMIT = 200

# PIX платежи
PIX_CHARGE_TTL = int(os.getenv("PIX_CHARGE_TTL", "1800"))  # 30 минут на оплату
CHARGE_POLL_INTERVAL = int(os.getenv("CHARGE_POLL_INTERVAL", "60"))

# API Server
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("PORT", "8080"))

# Логирование
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Создание директорий
DATA_DIR.mkdir(parents=True, exist_ok=True)
(DATA_DIR / "logs").mkdir(exist_ok=True)
