"""
Шлюз PIX платежей (Mercado Pago)
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, Protocol

import mercadopago
from mercadopago.config import RequestOptions

from shared.config import (
    MERCADOPAGO_ACCESS_TOKEN,
    MERCADOPAGO_WEBHOOK_URL,
    PIX_PAYER_EMAIL,
    PIX_CHARGE_TTL
)
from shared.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


class PixGateway(Protocol):
    """Интерфейс платёжного шлюза"""

    async def create_pix_charge(self, amount: Decimal, metadata: dict, idempotency_key: str) -> dict:
        """
        Returns:
            {"session_id", "payment_link", "qr_code", "raw"}
        """
        ...

    async def verify_payment(self, session_id: str) -> dict:
        """
        Returns:
            {"paid": bool, "status": str, "amount": Decimal, "metadata": dict, "raw": dict}
        """
        ...


class MercadoPagoGateway:
    """PIX через Mercado Pago SDK"""

    def __init__(self, access_token: str = MERCADOPAGO_ACCESS_TOKEN):
        if not access_token:
            raise UpstreamUnavailable("MERCADOPAGO_ACCESS_TOKEN не задан")
        self.sdk = mercadopago.SDK(access_token)

    async def create_pix_charge(self, amount: Decimal, metadata: dict, idempotency_key: str) -> dict:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=PIX_CHARGE_TTL)
        payment_data = {
            "transaction_amount": float(amount),
            "description": metadata.get("description", "Rifa"),
            "payment_method_id": "pix",
            "payer": {"email": PIX_PAYER_EMAIL},
            "external_reference": str(metadata.get("sale_id", "")),
            "metadata": {key: str(value) for key, value in metadata.items()},
            "date_of_expiration": expires_at.strftime("%Y-%m-%dT%H:%M:%S.000+00:00"),
        }
        if MERCADOPAGO_WEBHOOK_URL:
            payment_data["notification_url"] = MERCADOPAGO_WEBHOOK_URL

        request_options = RequestOptions(custom_headers={"x-idempotency-key": idempotency_key})
        response = await self._call(self.sdk.payment().create, payment_data, request_options)

        if response.get("status") != 201:
            logger.error(f"Mercado Pago rejected PIX charge: {response}")
            raise UpstreamUnavailable(
                "Mercado Pago не создал платёж",
                {"status": response.get("status")}
            )

        payment = response["response"]
        transaction_data = payment.get("point_of_interaction", {}).get("transaction_data", {})
        logger.info(f"Created Mercado Pago PIX payment {payment['id']} for {amount}")

        return {
            "session_id": str(payment["id"]),
            "payment_link": transaction_data.get("ticket_url"),
            "qr_code": transaction_data.get("qr_code"),
            "raw": payment,
        }

    async def verify_payment(self, session_id: str) -> dict:
        response = await self._call(self.sdk.payment().get, session_id)

        if response.get("status") != 200:
            logger.error(f"Mercado Pago lookup failed for {session_id}: {response.get('status')}")
            raise UpstreamUnavailable(
                "Не удалось проверить платёж в Mercado Pago",
                {"session_id": session_id, "status": response.get("status")}
            )

        payment = response["response"]
        return {
            "paid": payment.get("status") == "approved",
            "status": payment.get("status"),
            "amount": Decimal(str(payment.get("transaction_amount", 0))),
            "metadata": payment.get("metadata") or {},
            "raw": payment,
        }

    @staticmethod
    async def _call(method, *args) -> dict:
        # SDK синхронный, не блокируем event loop
        try:
            return await asyncio.to_thread(method, *args)
        except Exception as e:
            logger.error(f"Mercado Pago request failed: {e}")
            raise UpstreamUnavailable("Mercado Pago недоступен", {"reason": type(e).__name__}) from e


_gateway: Optional[PixGateway] = None


def get_gateway() -> PixGateway:
    """Шлюз для зависимостей FastAPI и воркера"""
    global _gateway
    if _gateway is None:
        _gateway = MercadoPagoGateway()
    return _gateway
