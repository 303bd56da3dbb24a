"""
Зависимости FastAPI: идентификация по заголовкам прокси авторизации
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

logger = logging.getLogger(__name__)

ROLES = ("admin", "partner", "customer")


@dataclass
class Principal:
    """Пользователь, подтверждённый провайдером идентификации"""
    id: Optional[uuid.UUID]
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


async def get_principal(
    x_principal_id: Optional[str] = Header(None),
    x_principal_role: Optional[str] = Header(None)
) -> Principal:
    """
    X-Principal-Id / X-Principal-Role выставляет прокси авторизации.
    Без заголовков запрос считается анонимным покупателем.
    """
    role = (x_principal_role or "customer").strip().lower()
    if role not in ROLES:
        logger.warning(f"Unknown principal role '{x_principal_role}'")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown role")

    principal_id = None
    if x_principal_id:
        try:
            principal_id = uuid.UUID(x_principal_id)
        except ValueError:
            logger.warning(f"Invalid principal id: {x_principal_id}")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid principal id")

    return Principal(id=principal_id, role=role)


async def require_partner(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.role != "partner" or principal.id is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Partner access required")
    return principal


async def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return principal
