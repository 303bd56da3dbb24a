"""
Статусы сущностей леджера и допустимые переходы между ними
"""
import enum

from shared.errors import InvalidTransition


class SaleKind(str, enum.Enum):
    """Тип продажи"""
    ONLINE = "online"  # Оплата через PIX на сайте
    DOOR_TO_DOOR = "door_to_door"  # Продажа "от двери к двери"


class SaleStatus(str, enum.Enum):
    """Статусы продажи"""
    PENDING = "pending"  # Ожидает оплаты PIX
    COMPLETED = "completed"  # Оплачена, номера выданы
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    PENDING_SETTLEMENT = "pending_settlement"  # Продажа агента, деньги ещё не сданы
    SETTLED = "settled"  # Агент сдал деньги


class DoorToDoorPaymentMethod(str, enum.Enum):
    """Как клиент заплатил агенту"""
    MONEY = "money"
    PIX = "pix"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"


class WithdrawalStatus(str, enum.Enum):
    """Статусы заявки на вывод"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSED = "processed"  # Деньги фактически отправлены


class WithdrawalMethod(str, enum.Enum):
    PIX = "pix"
    BANK_TRANSFER = "bank_transfer"


class PrizeStatus(str, enum.Enum):
    """Статусы призового номера"""
    DISPONIVEL = "disponivel"
    RESERVADO = "reservado"
    PREMIADO = "premiado"


class ChargeStatus(str, enum.Enum):
    """Статусы PIX платежа"""
    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"
    FAILED = "failed"


SALE_TRANSITIONS = {
    SaleStatus.PENDING: {SaleStatus.COMPLETED, SaleStatus.CANCELLED},
    SaleStatus.COMPLETED: {SaleStatus.REFUNDED},
    SaleStatus.PENDING_SETTLEMENT: {SaleStatus.SETTLED, SaleStatus.CANCELLED},
    SaleStatus.SETTLED: set(),
    SaleStatus.CANCELLED: set(),
    SaleStatus.REFUNDED: set(),
}

WITHDRAWAL_TRANSITIONS = {
    WithdrawalStatus.PENDING: {WithdrawalStatus.APPROVED, WithdrawalStatus.REJECTED},
    WithdrawalStatus.APPROVED: {WithdrawalStatus.PROCESSED},
    WithdrawalStatus.REJECTED: set(),
    WithdrawalStatus.PROCESSED: set(),
}

PRIZE_TRANSITIONS = {
    PrizeStatus.DISPONIVEL: {PrizeStatus.RESERVADO, PrizeStatus.PREMIADO},
    PrizeStatus.RESERVADO: {PrizeStatus.PREMIADO},
    PrizeStatus.PREMIADO: set(),
}

CHARGE_TRANSITIONS = {
    ChargeStatus.PENDING: {ChargeStatus.PAID, ChargeStatus.EXPIRED, ChargeStatus.FAILED},
    ChargeStatus.PAID: set(),
    ChargeStatus.EXPIRED: set(),
    ChargeStatus.FAILED: set(),
}

# Статусы, по которым партнёру начисляется комиссия
COMMISSION_BEARING = (SaleStatus.COMPLETED, SaleStatus.SETTLED)

# Статусы, в которых продажа удерживает номера
HOLDS_TICKETS = (SaleStatus.COMPLETED, SaleStatus.PENDING_SETTLEMENT, SaleStatus.SETTLED)

_TABLES = {
    SaleStatus: SALE_TRANSITIONS,
    WithdrawalStatus: WITHDRAWAL_TRANSITIONS,
    PrizeStatus: PRIZE_TRANSITIONS,
    ChargeStatus: CHARGE_TRANSITIONS,
}


def can_transition(current: enum.Enum, target: enum.Enum) -> bool:
    """Разрешён ли переход current -> target"""
    table = _TABLES[type(current)]
    return target in table[current]


def ensure_transition(current: enum.Enum, target: enum.Enum, entity: str, entity_id=None):
    """
    Проверить переход, иначе InvalidTransition
    """
    if not can_transition(current, target):
        raise InvalidTransition(
            f"{entity}: переход {current.value} -> {target.value} недопустим",
            {"entity": entity, "id": entity_id, "from": current.value, "to": target.value},
        )
