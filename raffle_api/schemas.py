"""
Pydantic схемы запросов и ответов API
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from shared.statuses import (
    SaleKind, SaleStatus, DoorToDoorPaymentMethod, WithdrawalMethod,
    WithdrawalStatus, PrizeStatus, ChargeStatus
)


class ORMSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ========== Запросы ==========

class Customer(BaseModel):
    """Снимок клиента"""
    name: str = Field(..., description="Имя клиента")
    contact: str = Field(..., description="WhatsApp")
    email: Optional[str] = None
    city: Optional[str] = None


class ClickCreate(BaseModel):
    partner_slug: str = Field(..., description="Slug из реферальной ссылки")
    referrer: Optional[str] = None


class CheckoutCreate(BaseModel):
    """Сумма не принимается от клиента: цена считается на сервере"""
    customer: Customer
    quantity: int
    partner_slug: Optional[str] = None


class DoorToDoorCreate(BaseModel):
    customer: Customer
    quantity: int
    payment_method: DoorToDoorPaymentMethod
    notes: Optional[str] = None
    agent_name: Optional[str] = None


class Settlement(BaseModel):
    amount_paid: Decimal = Field(..., ge=0, decimal_places=2, description="Сданная агентом сумма")
    notes: Optional[str] = None


class Cancellation(BaseModel):
    reason: str = Field(..., description="Причина отмены")


class WithdrawalCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Сумма вывода")
    method: WithdrawalMethod
    payment_details: dict = Field(default_factory=dict)


class Rejection(BaseModel):
    reason: Optional[str] = None


class ReviewResolution(BaseModel):
    note: str = Field(..., description="Итог ручной проверки")


class PartnerCreate(BaseModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    pix_key: Optional[str] = None
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=100, description="Проценты, например 15")
    slug: Optional[str] = None
    partner_id: Optional[UUID] = Field(None, description="id пользователя у провайдера идентификации")


class PartnerUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    pix_key: Optional[str] = None
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=100)


class PrizeCreate(BaseModel):
    raffle_id: UUID
    number: str
    prize: str
    description: Optional[str] = None
    value: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    status: PrizeStatus = PrizeStatus.DISPONIVEL


class PrizeUpdate(BaseModel):
    number: Optional[str] = None
    prize: Optional[str] = None
    description: Optional[str] = None
    value: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    status: Optional[PrizeStatus] = None


class RaffleCreate(BaseModel):
    title: str
    number_start: int = 0
    number_end: int = 9999
    unit_price: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    discount_price: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    discount_min_quantity: Optional[int] = None
    max_per_sale: Optional[int] = None
    description: Optional[str] = None
    draw_date: Optional[datetime] = None
    activate: bool = False


class RaffleUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    number_start: Optional[int] = None
    number_end: Optional[int] = None
    unit_price: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    discount_price: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    discount_min_quantity: Optional[int] = None
    max_per_sale: Optional[int] = None
    draw_date: Optional[datetime] = None


# ========== Ответы ==========

class RaffleOut(ORMSchema):
    id: UUID
    title: str
    description: Optional[str] = None
    number_start: int
    number_end: int
    unit_price: Decimal
    discount_price: Optional[Decimal] = None
    discount_min_quantity: Optional[int] = None
    max_per_sale: int
    is_active: bool
    draw_date: Optional[datetime] = None


class PartnerOut(ORMSchema):
    id: UUID
    name: str
    slug: str
    email: Optional[str] = None
    phone: Optional[str] = None
    pix_key: Optional[str] = None
    commission_rate: Optional[Decimal] = None
    is_active: bool
    created_at: datetime
    deactivated_at: Optional[datetime] = None


class ClickOut(ORMSchema):
    id: UUID
    partner_id: UUID
    referrer: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime
    converted: bool
    conversion_date: Optional[datetime] = None
    sale_id: Optional[UUID] = None


class SaleOut(ORMSchema):
    id: UUID
    raffle_id: UUID
    kind: SaleKind
    status: SaleStatus
    partner_id: Optional[UUID] = None
    customer_name: str
    customer_contact: str
    customer_city: Optional[str] = None
    quantity: int
    unit_price: Decimal
    amount: Decimal
    commission_amount: Decimal
    ticket_numbers: list[str]
    needs_review: bool
    review_note: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class DoorToDoorSaleOut(SaleOut):
    expected_amount: Optional[Decimal] = None
    agent_name: Optional[str] = None
    payment_method: Optional[DoorToDoorPaymentMethod] = None
    notes: Optional[str] = None
    amount_paid: Optional[Decimal] = None
    discrepancy: Optional[Decimal] = None
    settled_at: Optional[datetime] = None
    settlement_notes: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None


class PrizeOutcome(BaseModel):
    """Выигрыш, показываемый покупателю"""
    prize_id: UUID
    number: str
    prize: str
    description: Optional[str] = None
    value: Optional[Decimal] = None


class SettlementResult(BaseModel):
    sale: DoorToDoorSaleOut
    prizes: list[PrizeOutcome] = []


class CheckoutOut(BaseModel):
    sale_id: UUID
    session_id: str
    amount: Decimal
    payment_link: Optional[str] = None
    qr_code: Optional[str] = None


class PaymentStatusOut(BaseModel):
    status: ChargeStatus
    sale: SaleOut
    prizes: list[PrizeOutcome] = []


class BalanceOut(BaseModel):
    total_earned: Decimal
    withdrawn: Decimal
    pending_withdrawal: Decimal
    available: Decimal


class PartnerStatsOut(BaseModel):
    partner_id: UUID
    partner_name: str
    partner_slug: str
    total_clicks: int
    today_clicks: int
    total_sales: int
    today_sales: int
    total_earnings: Decimal
    today_earnings: Decimal
    available_balance: Decimal
    withdrawn_amount: Decimal
    pending_withdrawal: Decimal
    conversion_rate: float
    average_order_value: Decimal
    last_updated: datetime


class DoorToDoorSummaryOut(BaseModel):
    partner_id: UUID
    period: str
    total_sales: int
    settled_count: int
    pending_count: int
    cancelled_count: int
    expected_total: Decimal
    collected_total: Decimal
    pending_total: Decimal
    commission_total: Decimal
    discrepancy_total: Decimal


class FinancialSummaryOut(BaseModel):
    raffle_id: Optional[UUID] = None
    sales_count: int
    total_revenue: Decimal
    total_commissions: Decimal
    pending_withdrawals_count: int
    pending_withdrawals_total: Decimal
    pending_receipts_count: int
    pending_receipts_total: Decimal
    needs_review_count: int


class WithdrawalOut(ORMSchema):
    id: UUID
    partner_id: UUID
    amount: Decimal
    method: WithdrawalMethod
    payment_details: Optional[dict] = None
    status: WithdrawalStatus
    requested_at: datetime
    decided_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None


class WithdrawalHistoryOut(BaseModel):
    items: list[WithdrawalOut]
    total: int


class PrizeOut(ORMSchema):
    id: UUID
    raffle_id: UUID
    number: str
    prize: str
    description: Optional[str] = None
    value: Optional[Decimal] = None
    status: PrizeStatus
    winner_name: Optional[str] = None
    winner_city: Optional[str] = None
    awarded_at: Optional[datetime] = None


class WinnerOut(ORMSchema):
    """Публичная витрина: без контакта победителя"""
    number: str
    prize: str
    winner_name: Optional[str] = None
    winner_city: Optional[str] = None
    awarded_at: Optional[datetime] = None


class MyNumbersOut(ORMSchema):
    sale_id: UUID = Field(validation_alias="id")
    status: SaleStatus
    quantity: int
    ticket_numbers: list[str]
    created_at: datetime
