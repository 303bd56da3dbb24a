"""
Webhook обработчик для Mercado Pago
Идемпотентная обработка уведомлений о платежах
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Request, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shared.database import get_session
from shared.errors import NotFound
from raffle_api.services.payment_service import PaymentService
from raffle_api.services.pix_gateway import PixGateway, get_gateway

logger = logging.getLogger(__name__)

router = APIRouter()


def extract_payment_id(payload: dict, query: dict) -> Optional[str]:
    """
    id платежа из тела ({"type": "payment", "data": {"id": ...}})
    или из query (?type=payment&data.id=... / ?topic=payment&id=...)
    """
    event_type = payload.get("type") or payload.get("topic") or query.get("type") or query.get("topic")
    if event_type != "payment":
        return None

    payment_id = (
        (payload.get("data") or {}).get("id")
        or query.get("data.id")
        or query.get("id")
    )
    return str(payment_id) if payment_id else None


@router.post("/webhook/mercadopago")
async def mercadopago_webhook(
    request: Request,
    session: AsyncSession = Depends(get_session),
    gateway: PixGateway = Depends(get_gateway)
):
    """
    Обработка webhook от Mercado Pago

    Уведомлению не доверяем: статус и сумма всегда перепроверяются через API шлюза
    """
    payment_id = None
    try:
        body = await request.body()
        payload = json.loads(body) if body else {}
        if not isinstance(payload, dict):
            payload = {}

        payment_id = extract_payment_id(payload, dict(request.query_params))
        logger.info(f"Received Mercado Pago webhook: action={payload.get('action')}, payment_id={payment_id}")

        if not payment_id:
            logger.info("Ignoring non-payment notification")
            return {"status": "ok"}

        result = await PaymentService.confirm_payment(session, gateway, payment_id)
        logger.info(f"Webhook for payment {payment_id} handled: status={result['status'].value}")

        # ВСЕГДА возвращаем HTTP 200 (идемпотентность)
        return {"status": "ok"}

    except NotFound:
        logger.warning(f"Webhook for unknown payment {payment_id}")
        return {"status": "ok", "message": "unknown_payment"}

    except Exception as e:
        logger.error(f"Error processing Mercado Pago webhook: {e}", exc_info=True)
        # ВСЕГДА возвращаем HTTP 200, даже при ошибке: воркер перепроверит платёж
        return {"status": "ok"}
