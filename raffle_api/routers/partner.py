"""
Кабинет партнёра: баланс, статистика, продажи агентов, выводы
Все операции ограничены собственным id партнёра
"""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shared.database import get_session
from raffle_api.dependencies import Principal, require_partner
from raffle_api.schemas import (
    BalanceOut, PartnerStatsOut, ClickOut, SaleOut, DoorToDoorCreate, DoorToDoorSaleOut,
    DoorToDoorSummaryOut, Settlement, SettlementResult, Cancellation, WithdrawalCreate,
    WithdrawalOut, WithdrawalHistoryOut
)
from raffle_api.services.click_service import ClickService
from raffle_api.services.commission_service import CommissionService
from raffle_api.services.door_to_door_service import DoorToDoorService
from raffle_api.services.partner_service import PartnerService
from raffle_api.services.sale_service import SaleService
from raffle_api.services.withdrawal_service import WithdrawalService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/partner", tags=["partner"])


@router.get("/balance", response_model=BalanceOut)
async def balance(
    principal: Principal = Depends(require_partner),
    session: AsyncSession = Depends(get_session)
):
    await PartnerService.get_partner(session, principal.id)
    return await CommissionService.get_partner_balance(session, principal.id)


@router.get("/stats", response_model=PartnerStatsOut)
async def stats(
    principal: Principal = Depends(require_partner),
    session: AsyncSession = Depends(get_session)
):
    return await PartnerService.get_partner_stats(session, principal.id)


@router.get("/clicks", response_model=list[ClickOut])
async def clicks(
    limit: int = Query(50, ge=1),
    principal: Principal = Depends(require_partner),
    session: AsyncSession = Depends(get_session)
):
    items = await ClickService.get_clicks_history(session, principal.id, limit)
    return [ClickOut.model_validate(click) for click in items]


@router.get("/sales", response_model=list[SaleOut])
async def sales(
    limit: int = Query(50, ge=1),
    principal: Principal = Depends(require_partner),
    session: AsyncSession = Depends(get_session)
):
    items = await SaleService.list_partner_sales(session, principal.id, limit)
    return [SaleOut.model_validate(sale) for sale in items]


# ========== От двери к двери ==========

@router.post("/door-to-door", response_model=DoorToDoorSaleOut, status_code=201)
async def register_door_to_door(
    payload: DoorToDoorCreate,
    principal: Principal = Depends(require_partner),
    session: AsyncSession = Depends(get_session)
):
    sale = await DoorToDoorService.register_sale(
        session,
        principal.id,
        payload.customer.model_dump(),
        payload.quantity,
        payload.payment_method,
        notes=payload.notes,
        agent_name=payload.agent_name
    )
    return DoorToDoorSaleOut.model_validate(sale)


@router.get("/door-to-door", response_model=list[DoorToDoorSaleOut])
async def list_door_to_door(
    limit: int = Query(50, ge=1),
    principal: Principal = Depends(require_partner),
    session: AsyncSession = Depends(get_session)
):
    items = await DoorToDoorService.list_sales(session, principal.id, limit)
    return [DoorToDoorSaleOut.model_validate(sale) for sale in items]


@router.get("/door-to-door/pending", response_model=list[DoorToDoorSaleOut])
async def pending_door_to_door(
    principal: Principal = Depends(require_partner),
    session: AsyncSession = Depends(get_session)
):
    items = await DoorToDoorService.list_pending(session, principal.id)
    return [DoorToDoorSaleOut.model_validate(sale) for sale in items]


@router.get("/door-to-door/summary", response_model=DoorToDoorSummaryOut)
async def door_to_door_summary(
    period: str = Query("all"),
    principal: Principal = Depends(require_partner),
    session: AsyncSession = Depends(get_session)
):
    return await DoorToDoorService.get_summary(session, principal.id, period)


@router.post("/door-to-door/{sale_id}/settle", response_model=SettlementResult)
async def settle_door_to_door(
    sale_id: UUID,
    payload: Settlement,
    principal: Principal = Depends(require_partner),
    session: AsyncSession = Depends(get_session)
):
    result = await DoorToDoorService.settle(
        session, sale_id, payload.amount_paid, actor_partner_id=principal.id, notes=payload.notes
    )
    return SettlementResult.model_validate(result, from_attributes=True)


@router.post("/door-to-door/{sale_id}/cancel", response_model=DoorToDoorSaleOut)
async def cancel_door_to_door(
    sale_id: UUID,
    payload: Cancellation,
    principal: Principal = Depends(require_partner),
    session: AsyncSession = Depends(get_session)
):
    sale = await DoorToDoorService.cancel(session, sale_id, payload.reason, actor_partner_id=principal.id)
    return DoorToDoorSaleOut.model_validate(sale)


# ========== Вывод средств ==========

@router.post("/withdrawals", response_model=WithdrawalOut, status_code=201)
async def request_withdrawal(
    payload: WithdrawalCreate,
    principal: Principal = Depends(require_partner),
    session: AsyncSession = Depends(get_session)
):
    withdrawal = await WithdrawalService.request_withdrawal(
        session, principal.id, payload.amount, payload.method, payload.payment_details
    )
    return WithdrawalOut.model_validate(withdrawal)


@router.get("/withdrawals", response_model=WithdrawalHistoryOut)
async def withdrawal_history(
    limit: int = Query(50, ge=1),
    principal: Principal = Depends(require_partner),
    session: AsyncSession = Depends(get_session)
):
    history = await WithdrawalService.get_withdrawal_history(session, principal.id, limit)
    return WithdrawalHistoryOut.model_validate(history, from_attributes=True)
