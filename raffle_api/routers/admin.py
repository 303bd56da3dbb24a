"""
Админка: партнёры, расчёты агентов, выводы, призовые номера, розыгрыши
"""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shared.database import get_session
from shared.statuses import SaleKind, SaleStatus, WithdrawalStatus
from raffle_api.dependencies import Principal, require_admin
from raffle_api.schemas import (
    PartnerCreate, PartnerUpdate, PartnerOut, PartnerStatsOut, DoorToDoorSaleOut,
    Settlement, SettlementResult, Cancellation, WithdrawalOut, Rejection,
    PrizeCreate, PrizeUpdate, PrizeOut, RaffleCreate, RaffleUpdate, RaffleOut, SaleOut,
    ReviewResolution, FinancialSummaryOut
)
from raffle_api.services.door_to_door_service import DoorToDoorService
from raffle_api.services.partner_service import PartnerService
from raffle_api.services.prize_service import PrizeService
from raffle_api.services.raffle_service import RaffleService
from raffle_api.services.report_service import ReportService
from raffle_api.services.sale_service import SaleService
from raffle_api.services.withdrawal_service import WithdrawalService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# ========== Партнёры ==========

@router.get("/partners", response_model=list[PartnerOut])
async def list_partners(
    search: Optional[str] = None,
    only_active: bool = False,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    session: AsyncSession = Depends(get_session)
):
    partners = await PartnerService.list_partners(session, search, only_active, skip, limit)
    return [PartnerOut.model_validate(partner) for partner in partners]


@router.post("/partners", response_model=PartnerOut, status_code=201)
async def create_partner(payload: PartnerCreate, session: AsyncSession = Depends(get_session)):
    partner = await PartnerService.register_partner(session, **payload.model_dump())
    return PartnerOut.model_validate(partner)


@router.get("/partners/{partner_id}", response_model=PartnerOut)
async def get_partner(partner_id: UUID, session: AsyncSession = Depends(get_session)):
    return PartnerOut.model_validate(await PartnerService.get_partner(session, partner_id))


@router.patch("/partners/{partner_id}", response_model=PartnerOut)
async def update_partner(
    partner_id: UUID,
    payload: PartnerUpdate,
    session: AsyncSession = Depends(get_session)
):
    partner = await PartnerService.update_partner(session, partner_id, payload.model_dump(exclude_unset=True))
    return PartnerOut.model_validate(partner)


@router.post("/partners/{partner_id}/activate", response_model=PartnerOut)
async def activate_partner(partner_id: UUID, session: AsyncSession = Depends(get_session)):
    return PartnerOut.model_validate(await PartnerService.set_active(session, partner_id, True))


@router.post("/partners/{partner_id}/deactivate", response_model=PartnerOut)
async def deactivate_partner(partner_id: UUID, session: AsyncSession = Depends(get_session)):
    return PartnerOut.model_validate(await PartnerService.set_active(session, partner_id, False))


@router.get("/partners/{partner_id}/stats", response_model=PartnerStatsOut)
async def partner_stats(partner_id: UUID, session: AsyncSession = Depends(get_session)):
    return await PartnerService.get_partner_stats(session, partner_id)


# ========== От двери к двери ==========

@router.get("/door-to-door/pending", response_model=list[DoorToDoorSaleOut])
async def pending_door_to_door(
    partner_id: Optional[UUID] = None,
    session: AsyncSession = Depends(get_session)
):
    items = await DoorToDoorService.list_pending(session, partner_id)
    return [DoorToDoorSaleOut.model_validate(sale) for sale in items]


@router.post("/door-to-door/{sale_id}/settle", response_model=SettlementResult)
async def settle_door_to_door(
    sale_id: UUID,
    payload: Settlement,
    session: AsyncSession = Depends(get_session)
):
    result = await DoorToDoorService.settle(session, sale_id, payload.amount_paid, notes=payload.notes)
    return SettlementResult.model_validate(result, from_attributes=True)


@router.post("/door-to-door/{sale_id}/cancel", response_model=DoorToDoorSaleOut)
async def cancel_door_to_door(
    sale_id: UUID,
    payload: Cancellation,
    session: AsyncSession = Depends(get_session)
):
    sale = await DoorToDoorService.cancel(session, sale_id, payload.reason)
    return DoorToDoorSaleOut.model_validate(sale)


# ========== Продажи ==========

@router.get("/sales", response_model=list[SaleOut])
async def list_sales(
    raffle_id: Optional[UUID] = None,
    status: Optional[SaleStatus] = None,
    kind: Optional[SaleKind] = None,
    needs_review: Optional[bool] = None,
    limit: int = Query(100, ge=1, le=500),
    session: AsyncSession = Depends(get_session)
):
    sales = await SaleService.list_sales(session, raffle_id, status, kind, needs_review, limit)
    return [SaleOut.model_validate(sale) for sale in sales]


@router.post("/sales/{sale_id}/resolve-review", response_model=SaleOut)
async def resolve_review(
    sale_id: UUID,
    payload: ReviewResolution,
    principal: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_session)
):
    logger.info(f"Admin {principal.id} resolves review of sale {sale_id}")
    sale = await SaleService.resolve_review(session, sale_id, payload.note)
    return SaleOut.model_validate(sale)


@router.get("/summary", response_model=FinancialSummaryOut)
async def financial_summary(raffle_id: Optional[UUID] = None, session: AsyncSession = Depends(get_session)):
    return await ReportService.get_financial_summary(session, raffle_id)


@router.post("/sales/{sale_id}/refund", response_model=SaleOut)
async def refund_sale(
    sale_id: UUID,
    payload: Cancellation,
    principal: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_session)
):
    logger.info(f"Admin {principal.id} refunds sale {sale_id}")
    sale = await SaleService.refund_sale(session, sale_id, payload.reason)
    return SaleOut.model_validate(sale)


# ========== Вывод средств ==========

@router.get("/withdrawals", response_model=list[WithdrawalOut])
async def list_withdrawals(
    status: Optional[WithdrawalStatus] = None,
    limit: int = Query(100, ge=1, le=200),
    session: AsyncSession = Depends(get_session)
):
    items = await WithdrawalService.list_withdrawals(session, status, limit)
    return [WithdrawalOut.model_validate(item) for item in items]


@router.post("/withdrawals/{withdrawal_id}/approve", response_model=WithdrawalOut)
async def approve_withdrawal(withdrawal_id: UUID, session: AsyncSession = Depends(get_session)):
    return WithdrawalOut.model_validate(await WithdrawalService.approve(session, withdrawal_id))


@router.post("/withdrawals/{withdrawal_id}/reject", response_model=WithdrawalOut)
async def reject_withdrawal(
    withdrawal_id: UUID,
    payload: Rejection,
    session: AsyncSession = Depends(get_session)
):
    withdrawal = await WithdrawalService.reject(session, withdrawal_id, payload.reason)
    return WithdrawalOut.model_validate(withdrawal)


@router.post("/withdrawals/{withdrawal_id}/process", response_model=WithdrawalOut)
async def process_withdrawal(withdrawal_id: UUID, session: AsyncSession = Depends(get_session)):
    return WithdrawalOut.model_validate(await WithdrawalService.mark_processed(session, withdrawal_id))


# ========== Призовые номера ==========

@router.get("/prizes", response_model=list[PrizeOut])
async def list_prizes(raffle_id: UUID, session: AsyncSession = Depends(get_session)):
    prizes = await PrizeService.list_prizes(session, raffle_id)
    return [PrizeOut.model_validate(prize) for prize in prizes]


@router.post("/prizes", response_model=PrizeOut, status_code=201)
async def add_prize(payload: PrizeCreate, session: AsyncSession = Depends(get_session)):
    prize = await PrizeService.add_prize(session, **payload.model_dump())
    return PrizeOut.model_validate(prize)


@router.patch("/prizes/{prize_id}", response_model=PrizeOut)
async def update_prize(
    prize_id: UUID,
    payload: PrizeUpdate,
    session: AsyncSession = Depends(get_session)
):
    prize = await PrizeService.update_prize(session, prize_id, payload.model_dump(exclude_unset=True))
    return PrizeOut.model_validate(prize)


@router.delete("/prizes/{prize_id}", status_code=204)
async def remove_prize(prize_id: UUID, session: AsyncSession = Depends(get_session)):
    await PrizeService.remove_prize(session, prize_id)


# ========== Розыгрыши ==========

@router.get("/raffles", response_model=list[RaffleOut])
async def list_raffles(session: AsyncSession = Depends(get_session)):
    return [RaffleOut.model_validate(raffle) for raffle in await RaffleService.list_raffles(session)]


@router.post("/raffles", response_model=RaffleOut, status_code=201)
async def create_raffle(payload: RaffleCreate, session: AsyncSession = Depends(get_session)):
    raffle = await RaffleService.create_raffle(session, **payload.model_dump(exclude_none=True))
    return RaffleOut.model_validate(raffle)


@router.patch("/raffles/{raffle_id}", response_model=RaffleOut)
async def update_raffle(
    raffle_id: UUID,
    payload: RaffleUpdate,
    session: AsyncSession = Depends(get_session)
):
    raffle = await RaffleService.update_raffle(session, raffle_id, payload.model_dump(exclude_unset=True))
    return RaffleOut.model_validate(raffle)


@router.post("/raffles/{raffle_id}/activate", response_model=RaffleOut)
async def activate_raffle(raffle_id: UUID, session: AsyncSession = Depends(get_session)):
    return RaffleOut.model_validate(await RaffleService.activate_raffle(session, raffle_id))
