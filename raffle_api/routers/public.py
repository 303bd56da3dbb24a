"""
Публичные endpoints: клики, оплата, витрина розыгрыша
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shared.database import get_session
from raffle_api.schemas import (
    ClickCreate, CheckoutCreate, CheckoutOut, PaymentStatusOut, RaffleOut,
    MyNumbersOut, WinnerOut
)
from raffle_api.services.click_service import ClickService
from raffle_api.services.payment_service import PaymentService
from raffle_api.services.pix_gateway import PixGateway, get_gateway
from raffle_api.services.prize_service import PrizeService
from raffle_api.services.raffle_service import RaffleService
from raffle_api.services.sale_service import SaleService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["public"])


@router.post("/clicks")
async def track_click(
    payload: ClickCreate,
    user_agent: Optional[str] = Header(None),
    session: AsyncSession = Depends(get_session)
):
    """Клик по реферальной ссылке. Неизвестный slug не ошибка"""
    click = await ClickService.record_click(session, payload.partner_slug, payload.referrer, user_agent)
    return {"tracked": click is not None, "click_id": click.id if click else None}


@router.post("/checkout", response_model=CheckoutOut, status_code=201)
async def create_checkout(
    payload: CheckoutCreate,
    session: AsyncSession = Depends(get_session),
    gateway: PixGateway = Depends(get_gateway)
):
    result = await PaymentService.create_checkout(
        session,
        gateway,
        payload.customer.model_dump(),
        payload.quantity,
        payload.partner_slug
    )
    charge = result["charge"]
    return CheckoutOut(
        sale_id=charge.sale_id,
        session_id=charge.session_id,
        amount=charge.amount,
        payment_link=charge.payment_link,
        qr_code=charge.qr_code
    )


@router.post("/checkout/{session_id}/verify", response_model=PaymentStatusOut)
async def verify_checkout(
    session_id: str,
    session: AsyncSession = Depends(get_session),
    gateway: PixGateway = Depends(get_gateway)
):
    """Ручная проверка оплаты со страницы покупателя"""
    result = await PaymentService.confirm_payment(session, gateway, session_id)
    return PaymentStatusOut.model_validate(result, from_attributes=True)


@router.get("/raffle", response_model=RaffleOut)
async def active_raffle(session: AsyncSession = Depends(get_session)):
    raffle = await RaffleService.get_active_raffle(session)
    return RaffleOut.model_validate(raffle)


@router.get("/my-numbers", response_model=list[MyNumbersOut])
async def my_numbers(
    contact: str = Query(..., description="WhatsApp покупателя"),
    session: AsyncSession = Depends(get_session)
):
    sales = await SaleService.find_sales_by_contact(session, contact)
    return [MyNumbersOut.model_validate(sale) for sale in sales]


@router.get("/winners", response_model=list[WinnerOut])
async def recent_winners(
    limit: int = Query(10, ge=1, le=50),
    session: AsyncSession = Depends(get_session)
):
    winners = await PrizeService.list_recent_winners(session, limit)
    return [WinnerOut.model_validate(prize) for prize in winners]
