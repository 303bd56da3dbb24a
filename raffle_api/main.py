"""
FastAPI приложение леджера партнёров розыгрыша
Публичный API, кабинет партнёра, админка и webhook Mercado Pago
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shared.database import init_db, close_db
from shared.config import LOG_LEVEL, LOG_FORMAT, DATA_DIR
from shared.errors import LedgerError
from raffle_api.health import router as health_router
from raffle_api.routers.public import router as public_router
from raffle_api.routers.partner import router as partner_router
from raffle_api.routers.admin import router as admin_router
from raffle_api.webhooks.mercadopago import router as mercadopago_router

# Настройка логирования
logging.basicConfig(
    level=LOG_LEVEL,
    format=LOG_FORMAT,
    handlers=[
        logging.FileHandler(DATA_DIR / "logs" / "raffle_api.log"),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

# Коды ответа для доменных ошибок
ERROR_STATUS_CODES = {
    "validation_error": 422,
    "not_found": 404,
    "forbidden": 403,
    "invalid_transition": 409,
    "insufficient_balance": 400,
    "pool_exhausted": 409,
    "already_awarded": 409,
    "already_settled": 409,
    "upstream_unavailable": 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifecycle manager для FastAPI
    """
    # Startup
    logger.info("🚀 Starting Rifa Ledger API...")

    # Инициализация БД
    await init_db()
    logger.info("✅ Database initialized")

    yield

    # Shutdown
    logger.info("🛑 Shutting down Rifa Ledger API...")
    await close_db()
    logger.info("✅ Rifa Ledger API stopped")


# Создание FastAPI приложения
app = FastAPI(
    title="Rifa Ledger API",
    description="Partner commission, door-to-door settlement and prize ledger for raffles",
    version="1.0.0",
    lifespan=lifespan
)


# Подключение роутеров
app.include_router(health_router)
app.include_router(public_router)
app.include_router(partner_router)
app.include_router(admin_router)
app.include_router(mercadopago_router)


@app.get("/")
async def root():
    return {
        "status": "ok",
        "service": "Rifa Ledger API",
        "version": "1.0.0"
    }


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    """
    Доменные ошибки -> HTTP код + {"error", "detail", "context"}
    """
    status_code = ERROR_STATUS_CODES.get(exc.kind, 400)
    if status_code >= 500:
        logger.error(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Глобальный обработчик ошибок
    """
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "detail": "Internal server error", "context": {}}
    )


def main():
    import uvicorn
    from shared.config import API_HOST, API_PORT

    uvicorn.run(
        "raffle_api.main:app",
        host=API_HOST,
        port=API_PORT,
        reload=False,
        log_level=LOG_LEVEL.lower()
    )


if __name__ == "__main__":
    main()
