"""
Health check endpoints
"""
import logging

from fastapi import APIRouter, Response
from sqlalchemy import func, select

from shared.config import MERCADOPAGO_ACCESS_TOKEN
from shared.database import AsyncSessionLocal, PixCharge, Raffle
from shared.statuses import ChargeStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health_check():
    return {"status": "healthy", "service": "Rifa Ledger API"}


@router.get("/db")
async def health_check_db(response: Response):
    """
    Доступность БД + есть ли активный розыгрыш и сколько платежей ждут оплаты
    """
    try:
        async with AsyncSessionLocal() as session:
            active_raffles = await session.scalar(
                select(func.count(Raffle.id)).where(Raffle.is_active.is_(True))
            )
            pending_charges = await session.scalar(
                select(func.count(PixCharge.id)).where(PixCharge.status == ChargeStatus.PENDING)
            )
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        response.status_code = 503
        return {"status": "unhealthy", "service": "database"}

    return {
        "status": "healthy",
        "service": "database",
        "active_raffle": bool(active_raffles),
        "pending_charges": pending_charges or 0,
    }


@router.get("/payments")
async def health_check_payments(response: Response):
    """Настроен ли доступ к Mercado Pago (без запроса к шлюзу)"""
    if not MERCADOPAGO_ACCESS_TOKEN:
        logger.warning("MERCADOPAGO_ACCESS_TOKEN is not configured")
        response.status_code = 503
        return {"status": "unhealthy", "service": "mercadopago", "reason": "access token not configured"}
    return {"status": "healthy", "service": "mercadopago"}
