"""
Утилиты для валидации входных данных
"""
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple

from shared.config import MAX_REASON_LENGTH
from shared.errors import ValidationError

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 3
MAX_NAME_LENGTH = 255
BANK_DETAILS_FIELDS = ("bank", "agency", "account", "holder")


def validate_customer(customer: dict) -> Tuple[bool, str]:
    """
    Валидация снимка клиента

    Args:
        customer: {"name", "contact", "email"?, "city"?}

    Returns:
        (valid, error_message)
    """
    if not isinstance(customer, dict):
        return False, "Данные клиента не переданы"

    name = (customer.get("name") or "").strip()
    if len(name) < MIN_NAME_LENGTH:
        return False, f"Имя клиента должно содержать минимум {MIN_NAME_LENGTH} символа"
    if len(name) > MAX_NAME_LENGTH:
        return False, "Имя клиента слишком длинное"

    contact = normalize_contact(customer.get("contact") or "")
    if not 10 <= len(contact) <= 13:
        return False, "Некорректный WhatsApp клиента"

    email = customer.get("email")
    if email and "@" not in email:
        return False, "Некорректный email клиента"

    return True, ""


def validate_quantity(quantity: int, max_quantity: int) -> Tuple[bool, str]:
    """Количество номеров в продаже: 1..max_quantity"""
    if not isinstance(quantity, int) or isinstance(quantity, bool):
        return False, "Количество должно быть целым числом"
    if quantity <= 0:
        return False, "Количество должно быть больше нуля"
    if quantity > max_quantity:
        return False, f"Максимум {max_quantity} номеров за одну продажу (запрошено {quantity})"
    return True, ""


def validate_amount(amount, allow_zero: bool = False) -> Tuple[bool, str]:
    """Денежная сумма: число с не более чем 2 знаками после запятой"""
    try:
        value = to_decimal(amount)
    except ValidationError as e:
        return False, e.message

    if not value.is_finite():
        return False, "Сумма должна быть числом"
    if value < 0 or (value == 0 and not allow_zero):
        return False, "Сумма должна быть больше нуля"
    if value != value.quantize(Decimal("0.01")):
        return False, "Сумма не может содержать больше двух знаков после запятой"
    return True, ""


def validate_reason(reason: Optional[str]) -> Tuple[bool, str]:
    """Причина отмены обязательна"""
    if not reason or not reason.strip():
        return False, "Укажите причину отмены"
    if len(reason) > MAX_REASON_LENGTH:
        return False, f"Причина слишком длинная (максимум {MAX_REASON_LENGTH} символов)"
    return True, ""


def validate_payment_details(method: str, details: Optional[dict]) -> Tuple[bool, str]:
    """
    Реквизиты вывода зависят от способа

    pix: {"pix_key"}; bank_transfer: {"bank", "agency", "account", "holder"}
    """
    if not isinstance(details, dict):
        return False, "Реквизиты для вывода не переданы"

    if method == "pix":
        if not (details.get("pix_key") or "").strip():
            return False, "Укажите PIX ключ"
        return True, ""

    if method == "bank_transfer":
        missing = [f for f in BANK_DETAILS_FIELDS if not str(details.get(f) or "").strip()]
        if missing:
            return False, f"Не заполнены банковские реквизиты: {', '.join(missing)}"
        return True, ""

    return False, f"Неизвестный способ вывода: {method}"


def to_decimal(value) -> Decimal:
    """float/str/int -> Decimal без артефактов двоичной арифметики"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValidationError("Сумма должна быть числом", {"value": value})
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValidationError("Сумма должна быть числом", {"value": value})


def normalize_contact(contact: str) -> str:
    """(11) 98765-4321 -> 11987654321"""
    return re.sub(r"\D", "", contact or "")


def sanitize_text(text: Optional[str], max_length: int = MAX_REASON_LENGTH) -> Optional[str]:
    """
    Очистка текста от управляющих символов и лишних пробелов
    """
    if text is None:
        return None
    sanitized = "".join(char for char in text if char.isprintable() or char.isspace())
    sanitized = " ".join(sanitized.split())
    return sanitized[:max_length].strip() or None


def sanitize_customer(customer: dict) -> dict:
    """Проверенный и очищенный снимок клиента"""
    valid, error = validate_customer(customer)
    if not valid:
        raise ValidationError(error)
    return {
        "name": sanitize_text(customer["name"], MAX_NAME_LENGTH),
        "contact": normalize_contact(customer["contact"]),
        "email": (customer.get("email") or "").strip().lower() or None,
        "city": sanitize_text(customer.get("city"), MAX_NAME_LENGTH),
    }
