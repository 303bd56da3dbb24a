import os
import tempfile
from decimal import Decimal

# Окружение задаём до импорта shared.config: он читает его при импорте
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="rifa-ledger-"))
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["MERCADOPAGO_ACCESS_TOKEN"] = ""

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from shared.database import Base, get_session
from shared.errors import UpstreamUnavailable
from raffle_api.services.partner_service import PartnerService
from raffle_api.services.pix_gateway import get_gateway
from raffle_api.services.raffle_service import RaffleService

CUSTOMER = {
    "name": "Maria Souza",
    "contact": "(11) 98765-4321",
    "email": "maria@example.com",
    "city": "Campinas",
}


class FakeGateway:
    """Шлюз PIX в памяти: платежи оплачиваются вызовом pay()"""

    def __init__(self):
        self.charges = {}
        self.unavailable = False

    async def create_pix_charge(self, amount, metadata, idempotency_key):
        if self.unavailable:
            raise UpstreamUnavailable("Mercado Pago недоступен")
        session_id = f"mp-{len(self.charges) + 1}"
        self.charges[session_id] = {
            "status": "pending",
            "amount": Decimal(amount),
            "metadata": {key: str(value) for key, value in metadata.items()},
            "idempotency_key": idempotency_key,
        }
        return {
            "session_id": session_id,
            "payment_link": f"https://pix.example/{session_id}",
            "qr_code": f"00020126-{session_id}",
            "raw": {"id": session_id},
        }

    async def verify_payment(self, session_id):
        if self.unavailable:
            raise UpstreamUnavailable("Mercado Pago недоступен")
        charge = self.charges[session_id]
        return {
            "paid": charge["status"] == "approved",
            "status": charge["status"],
            "amount": charge["amount"],
            "metadata": charge["metadata"],
            "raw": {"id": session_id, "status": charge["status"]},
        }

    def pay(self, session_id, amount=None):
        self.charges[session_id]["status"] = "approved"
        if amount is not None:
            self.charges[session_id]["amount"] = Decimal(amount)

    def reject(self, session_id):
        self.charges[session_id]["status"] = "rejected"


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Создает тестовый движок: отдельный SQLite файл на каждый тест"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.sqlite3'}", poolclass=NullPool)

    # SAVEPOINT в SQLite работает только с явным BEGIN.
    # WAL: открытая транзакция тестовой сессии не блокирует запись из API и воркера
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    # Создаем все таблицы
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    """Фабрика сессий, как AsyncSessionLocal"""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def locking_session_factory(test_engine):
    """
    Сессии для параллельных тестов на том же файле БД

    SQLite не знает SELECT FOR UPDATE: BEGIN IMMEDIATE берёт блокировку
    записи на всю транзакцию, остальные ждут её в busy timeout.
    """
    engine = create_async_engine(test_engine.url, poolclass=NullPool)

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_factory):
    """Создает тестовую сессию базы данных"""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def raffle(session):
    """Активный розыгрыш 0000-9999 по 1.99 (0.99 от 10 номеров)"""
    return await RaffleService.create_raffle(
        session,
        "Rifa do Carro 0km",
        number_start=0,
        number_end=9999,
        unit_price="1.99",
        discount_price="0.99",
        discount_min_quantity=10,
        max_per_sale=100,
        activate=True
    )


@pytest_asyncio.fixture
async def small_raffle(session):
    """Активный розыгрыш на 10 номеров 0-9"""
    return await RaffleService.create_raffle(
        session,
        "Rifa relâmpago",
        number_start=0,
        number_end=9,
        unit_price="5.00",
        discount_price=None,
        discount_min_quantity=None,
        max_per_sale=10,
        activate=True
    )


@pytest_asyncio.fixture
async def partner(session):
    """Активный партнёр со ставкой 15%"""
    return await PartnerService.register_partner(
        session,
        "João da Silva",
        email="joao@example.com",
        phone="11 91234-5678",
        pix_key="joao@example.com",
        commission_rate="15"
    )


@pytest_asyncio.fixture
async def other_partner(session):
    return await PartnerService.register_partner(session, "Ana Pereira", commission_rate="10")


@pytest.fixture
def customer():
    return dict(CUSTOMER)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest_asyncio.fixture
async def client(session_factory, gateway):
    """HTTP клиент к приложению с тестовой БД и фейковым шлюзом"""
    from httpx import ASGITransport, AsyncClient
    from raffle_api.main import app

    async def _get_test_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _get_test_session
    app.dependency_overrides[get_gateway] = lambda: gateway

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def partner_headers():
    """Заголовки прокси авторизации для партнёра"""
    def _headers(partner_id) -> dict:
        return {"X-Principal-Id": str(partner_id), "X-Principal-Role": "partner"}
    return _headers


@pytest.fixture
def admin_headers():
    return {"X-Principal-Id": "00000000-0000-0000-0000-000000000001", "X-Principal-Role": "admin"}
