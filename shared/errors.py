"""
Типизированные ошибки леджера
"""
from typing import Any, Optional


class LedgerError(Exception):
    """Базовая ошибка доменных операций"""

    kind = "ledger_error"

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict:
        return {
            "error": self.kind,
            "detail": self.message,
            "context": {k: str(v) for k, v in self.context.items()},
        }


class ValidationError(LedgerError):
    """Некорректные входные данные"""
    kind = "validation_error"


class NotFound(LedgerError):
    """Сущность не найдена"""
    kind = "not_found"


class Forbidden(LedgerError):
    """Сущность принадлежит другому партнёру"""
    kind = "forbidden"


class InvalidTransition(LedgerError):
    """Недопустимый переход статуса"""
    kind = "invalid_transition"


class InsufficientBalance(LedgerError):
    """Сумма вывода превышает доступный баланс"""
    kind = "insufficient_balance"

    def __init__(self, message: str, available, requested):
        super().__init__(message, {"available": available, "requested": requested})
        self.available = available
        self.requested = requested


class PoolExhausted(LedgerError):
    """Свободные номера розыгрыша закончились"""
    kind = "pool_exhausted"


class AlreadyAwarded(LedgerError):
    """Призовой номер уже выигран"""
    kind = "already_awarded"


class AlreadySettled(LedgerError):
    """Продажа уже рассчитана"""
    kind = "already_settled"


class UpstreamUnavailable(LedgerError):
    """Платёжный шлюз или хранилище недоступны"""
    kind = "upstream_unavailable"
