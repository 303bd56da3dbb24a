"""
Сервис партнёров: регистрация, активация, статистика
"""
import logging
import random
import re
import string
import unicodedata
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from shared.database import Partner, ReferralClick, Sale
from shared.errors import NotFound, ValidationError
from shared.money import to_money, ZERO
from shared.statuses import COMMISSION_BEARING
from shared.validation import sanitize_text, normalize_contact, to_decimal
from raffle_api.services.commission_service import CommissionService

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "email", "phone", "pix_key", "commission_rate")
SLUG_MAX_LENGTH = 60


def slugify(name: str) -> str:
    """
    "João da Silva" -> "joao-da-silva"
    """
    ascii_name = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode()
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_name.lower()).strip("-")
    return slug[:SLUG_MAX_LENGTH].strip("-")


class PartnerService:
    """Сервис для работы с партнёрами"""

    @staticmethod
    async def generate_slug(session: AsyncSession, name: str) -> str:
        """
        Уникальный slug для реферальной ссылки: имя + случайный суффикс при коллизии
        """
        base = slugify(name) or "parceiro"
        slug = base

        while True:
            result = await session.execute(select(Partner.id).where(Partner.slug == slug))
            if not result.scalar_one_or_none():
                return slug
            suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=4))
            slug = f"{base}-{suffix}"

    @staticmethod
    async def register_partner(
        session: AsyncSession,
        name: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        pix_key: Optional[str] = None,
        commission_rate=None,
        slug: Optional[str] = None,
        partner_id: Optional[UUID] = None
    ) -> Partner:
        """
        Регистрация партнёра

        partner_id можно передать от провайдера идентификации,
        чтобы партнёр совпадал с аутентифицированным пользователем
        """
        name = sanitize_text(name) or ""
        if len(name) < 3:
            raise ValidationError("Имя партнёра должно содержать минимум 3 символа")

        rate = PartnerService._validate_rate(commission_rate)

        if slug:
            slug = slugify(slug)
            if not slug:
                raise ValidationError("Некорректный slug")
            result = await session.execute(select(Partner.id).where(Partner.slug == slug))
            if result.scalar_one_or_none():
                raise ValidationError(f"Slug '{slug}' уже занят", {"slug": slug})
        else:
            slug = await PartnerService.generate_slug(session, name)

        partner = Partner(
            name=name,
            slug=slug,
            email=(email or "").strip().lower() or None,
            phone=normalize_contact(phone) or None,
            pix_key=(pix_key or "").strip() or None,
            commission_rate=rate,
            is_active=True
        )
        if partner_id:
            partner.id = partner_id
        session.add(partner)

        try:
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Error registering partner '{slug}': {e}")
            raise

        await session.refresh(partner)
        logger.info(f"Registered partner {partner.id} with slug '{partner.slug}' (rate={partner.commission_rate})")
        return partner

    @staticmethod
    async def get_partner(session: AsyncSession, partner_id: UUID) -> Partner:
        partner = await session.get(Partner, partner_id, populate_existing=True)
        if not partner:
            raise NotFound("Партнёр не найден", {"partner_id": partner_id})
        return partner

    @staticmethod
    async def get_partner_by_slug(session: AsyncSession, slug: str) -> Optional[Partner]:
        """Партнёр по slug реферальной ссылки (или None)"""
        if not slug:
            return None
        result = await session.execute(select(Partner).where(Partner.slug == slug.strip().lower()))
        return result.scalar_one_or_none()

    @staticmethod
    async def list_partners(
        session: AsyncSession,
        search: Optional[str] = None,
        only_active: bool = False,
        skip: int = 0,
        limit: int = 50
    ) -> list[Partner]:
        """Список партнёров с поиском по имени/slug/email"""
        stmt = select(Partner).order_by(Partner.created_at.desc()).offset(skip).limit(limit)
        if only_active:
            stmt = stmt.where(Partner.is_active.is_(True))
        if search:
            like = f"%{search.strip().lower()}%"
            stmt = stmt.where(
                func.lower(Partner.name).like(like)
                | Partner.slug.like(like)
                | func.lower(Partner.email).like(like)
            )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def set_active(session: AsyncSession, partner_id: UUID, active: bool) -> Partner:
        """
        Активировать/деактивировать партнёра (партнёры не удаляются)
        """
        partner = await PartnerService.get_partner(session, partner_id)

        if partner.is_active == active:
            return partner

        partner.is_active = active
        partner.deactivated_at = None if active else datetime.now()
        await session.commit()
        await session.refresh(partner)

        logger.info(f"Partner {partner.id} {'activated' if active else 'deactivated'}")
        return partner

    @staticmethod
    async def update_partner(session: AsyncSession, partner_id: UUID, changes: dict) -> Partner:
        """Обновить контакты, PIX ключ или ставку комиссии"""
        changes = dict(changes)
        partner = await PartnerService.get_partner(session, partner_id)

        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Нельзя изменить поля: {', '.join(sorted(unknown))}")

        if "commission_rate" in changes:
            changes["commission_rate"] = PartnerService._validate_rate(changes["commission_rate"])
        if "name" in changes:
            name = sanitize_text(changes["name"]) or ""
            if len(name) < 3:
                raise ValidationError("Имя партнёра должно содержать минимум 3 символа")
            changes["name"] = name
        if "phone" in changes:
            changes["phone"] = normalize_contact(changes["phone"]) or None

        old_rate = partner.commission_rate
        for field, value in changes.items():
            setattr(partner, field, value)

        await session.commit()
        await session.refresh(partner)

        if "commission_rate" in changes and old_rate != partner.commission_rate:
            logger.info(f"Partner {partner.id} commission rate changed: {old_rate} -> {partner.commission_rate}")
        return partner

    @staticmethod
    async def get_partner_stats(session: AsyncSession, partner_id: UUID) -> dict:
        """
        Статистика партнёра для личного кабинета
        """
        partner = await PartnerService.get_partner(session, partner_id)
        today_start = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)

        result = await session.execute(
            select(
                func.count(ReferralClick.id),
                func.count(ReferralClick.id).filter(ReferralClick.created_at >= today_start),
                func.count(ReferralClick.id).filter(ReferralClick.converted.is_(True)),
            ).where(ReferralClick.partner_id == partner_id)
        )
        total_clicks, today_clicks, converted_clicks = result.one()

        earning_sales = (Sale.partner_id == partner_id, Sale.status.in_(COMMISSION_BEARING))
        result = await session.execute(
            select(
                func.count(Sale.id),
                func.coalesce(func.sum(Sale.amount), 0),
                func.coalesce(func.sum(Sale.commission_amount), 0),
            ).where(*earning_sales)
        )
        total_sales, total_amount, total_earnings = result.one()

        result = await session.execute(
            select(
                func.count(Sale.id),
                func.coalesce(func.sum(Sale.commission_amount), 0),
            ).where(*earning_sales, Sale.completed_at >= today_start)
        )
        today_sales, today_earnings = result.one()

        balance = await CommissionService.get_partner_balance(session, partner_id)

        conversion_rate = (
            round(converted_clicks / total_clicks * 100, 2) if total_clicks else 0.0
        )
        average_order_value = (
            to_money(to_money(total_amount) / total_sales) if total_sales else ZERO
        )

        return {
            "partner_id": partner.id,
            "partner_name": partner.name,
            "partner_slug": partner.slug,
            "total_clicks": total_clicks,
            "today_clicks": today_clicks,
            "total_sales": total_sales,
            "today_sales": today_sales,
            "total_earnings": to_money(total_earnings),
            "today_earnings": to_money(today_earnings),
            "available_balance": balance["available"],
            "withdrawn_amount": balance["withdrawn"],
            "pending_withdrawal": balance["pending_withdrawal"],
            "conversion_rate": conversion_rate,
            "average_order_value": average_order_value,
            "last_updated": datetime.now(),
        }

    @staticmethod
    def _validate_rate(rate) -> Optional[Decimal]:
        if rate is None:
            return None
        value = to_decimal(rate)
        if not value.is_finite() or value < 0 or value > 100:
            raise ValidationError("Ставка комиссии должна быть от 0 до 100%", {"commission_rate": rate})
        return value
