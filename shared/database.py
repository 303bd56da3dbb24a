"""
SQLAlchemy модели базы данных
"""
from datetime import datetime
import uuid

from sqlalchemy import (
    JSON, BigInteger, Boolean, Column, DateTime, Integer,
    Numeric, String, Text, ForeignKey, UniqueConstraint,
    Index, Uuid
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from shared.config import DATABASE_URL, DB_POOL_SIZE, DB_MAX_OVERFLOW
from shared.statuses import (
    SaleKind, SaleStatus, DoorToDoorPaymentMethod, WithdrawalStatus,
    WithdrawalMethod, PrizeStatus, ChargeStatus
)

# Создаем базовый класс
Base = declarative_base()

# JSONB в PostgreSQL, обычный JSON в SQLite (тесты)
JSONType = JSON().with_variant(JSONB(), "postgresql")
# SQLite умеет автоинкремент только для INTEGER PRIMARY KEY
BigIntegerType = BigInteger().with_variant(Integer(), "sqlite")
Money = Numeric(10, 2)


def async_database_url(url: str) -> str:
    """postgresql:// -> postgresql+asyncpg://"""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def _engine_kwargs(url: str) -> dict:
    kwargs = {"echo": False, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        kwargs.update(pool_size=DB_POOL_SIZE, max_overflow=DB_MAX_OVERFLOW)
    return kwargs


# Создаем async engine
engine = create_async_engine(
    async_database_url(DATABASE_URL),
    **_engine_kwargs(DATABASE_URL)
)

# Создаем session maker
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


# ========== Модели ==========

class Raffle(Base):
    """Розыгрыши (sorteios)"""
    __tablename__ = "raffles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    number_start = Column(Integer, nullable=False, default=0)
    number_end = Column(Integer, nullable=False)
    unit_price = Column(Money, nullable=False)
    discount_price = Column(Money, nullable=True)
    discount_min_quantity = Column(Integer, nullable=True)
    max_per_sale = Column(Integer, nullable=False, default=100)
    is_active = Column(Boolean, default=False, nullable=False)
    draw_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        Index('idx_raffle_active', 'is_active'),
    )

    @property
    def number_width(self) -> int:
        """Ширина номера: 9999 -> 4 знака"""
        return len(str(self.number_end))

    @property
    def pool_size(self) -> int:
        return self.number_end - self.number_start + 1

    def format_number(self, value: int) -> str:
        return str(value).zfill(self.number_width)


class Partner(Base):
    """Партнёры (аффилиаты)"""
    __tablename__ = "partners"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    pix_key = Column(String(255), nullable=True)
    commission_rate = Column(Numeric(5, 2), nullable=True)  # проценты
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
    deactivated_at = Column(DateTime, nullable=True)


class ReferralClick(Base):
    """Клики по реферальным ссылкам (append-only лог)"""
    __tablename__ = "referral_clicks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    partner_id = Column(Uuid, ForeignKey("partners.id"), nullable=False, index=True)
    referrer = Column(Text, nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    converted = Column(Boolean, default=False, nullable=False)
    conversion_date = Column(DateTime, nullable=True)
    sale_id = Column(Uuid, ForeignKey("sales.id"), nullable=True)

    __table_args__ = (
        Index('idx_click_partner_converted', 'partner_id', 'converted', 'created_at'),
    )


class Sale(Base):
    """Продажи (онлайн и от двери к двери)"""
    __tablename__ = "sales"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    raffle_id = Column(Uuid, ForeignKey("raffles.id"), nullable=False, index=True)
    kind = Column(SQLEnum(SaleKind), nullable=False)
    status = Column(SQLEnum(SaleStatus), nullable=False)
    partner_id = Column(Uuid, ForeignKey("partners.id"), nullable=True, index=True)

    # Снимок клиента на момент продажи
    customer_name = Column(String(255), nullable=False)
    customer_contact = Column(String(50), nullable=False)  # WhatsApp
    customer_email = Column(String(255), nullable=True)
    customer_city = Column(String(255), nullable=True)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Money, nullable=False)
    amount = Column(Money, nullable=False)
    commission_amount = Column(Money, nullable=False, default=0)
    ticket_numbers = Column(JSONType, nullable=False, default=list)

    needs_review = Column(Boolean, default=False, nullable=False)
    review_note = Column(Text, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.now, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    # От двери к двери
    expected_amount = Column(Money, nullable=True)
    agent_name = Column(String(255), nullable=True)
    payment_method = Column(SQLEnum(DoorToDoorPaymentMethod), nullable=True)
    notes = Column(Text, nullable=True)
    amount_paid = Column(Money, nullable=True)
    settled_at = Column(DateTime, nullable=True)
    settlement_notes = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    __table_args__ = (
        Index('idx_sale_partner_status', 'partner_id', 'status'),
        Index('idx_sale_contact', 'customer_contact'),
        Index('idx_sale_created_at', 'created_at'),
        Index('idx_sale_needs_review', 'needs_review'),
    )

    @property
    def discrepancy(self):
        """Разница между сданной и ожидаемой суммой"""
        if self.amount_paid is None or self.expected_amount is None:
            return None
        return self.amount_paid - self.expected_amount


class TicketNumber(Base):
    """Занятые номера. Строка существует, пока продажа удерживает номер"""
    __tablename__ = "ticket_numbers"

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    raffle_id = Column(Uuid, ForeignKey("raffles.id"), nullable=False)
    number = Column(String(20), nullable=False)
    sale_id = Column(Uuid, ForeignKey("sales.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.now)

    __table_args__ = (
        UniqueConstraint('raffle_id', 'number', name='uq_ticket_raffle_number'),
    )


class Withdrawal(Base):
    """Заявки партнёров на вывод средств"""
    __tablename__ = "withdrawals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    partner_id = Column(Uuid, ForeignKey("partners.id"), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    method = Column(SQLEnum(WithdrawalMethod), nullable=False)
    payment_details = Column(JSONType, nullable=True)
    status = Column(SQLEnum(WithdrawalStatus), default=WithdrawalStatus.PENDING, nullable=False)
    requested_at = Column(DateTime, default=datetime.now, nullable=False)
    decided_at = Column(DateTime, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    __table_args__ = (
        Index('idx_withdrawal_partner_status', 'partner_id', 'status'),
    )


class PrizeNumber(Base):
    """Призовые номера (numeros premiados)"""
    __tablename__ = "prize_numbers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    raffle_id = Column(Uuid, ForeignKey("raffles.id"), nullable=False, index=True)
    number = Column(String(20), nullable=False)
    prize = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    value = Column(Money, nullable=True)
    status = Column(SQLEnum(PrizeStatus), default=PrizeStatus.DISPONIVEL, nullable=False)

    winner_name = Column(String(255), nullable=True)
    winner_contact = Column(String(50), nullable=True)
    winner_city = Column(String(255), nullable=True)
    sale_id = Column(Uuid, ForeignKey("sales.id"), nullable=True)
    awarded_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        UniqueConstraint('raffle_id', 'number', name='uq_prize_raffle_number'),
        Index('idx_prize_status', 'status'),
    )


class PixCharge(Base):
    """PIX платежи Mercado Pago"""
    __tablename__ = "pix_charges"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    sale_id = Column(Uuid, ForeignKey("sales.id"), nullable=False, index=True)
    session_id = Column(String(255), unique=True, nullable=False, index=True)
    idempotency_key = Column(String(64), nullable=False)
    amount = Column(Money, nullable=False)
    status = Column(SQLEnum(ChargeStatus), default=ChargeStatus.PENDING, nullable=False)
    payment_link = Column(Text, nullable=True)
    qr_code = Column(Text, nullable=True)
    raw_payload = Column(JSONType, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    processed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('idx_charge_status', 'status'),
    )


# ========== Функции для работы с БД ==========

async def init_db():
    """Инициализация базы данных"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncSession:
    """Получить сессию БД"""
    async with AsyncSessionLocal() as session:
        yield session


async def close_db():
    """Закрыть соединение с БД"""
    await engine.dispose()
