"""
Трекинг кликов по реферальным ссылкам и атрибуция конверсий
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import MAX_HISTORY_LIMIT
from shared.database import ReferralClick, Sale
from raffle_api.services.partner_service import PartnerService

logger = logging.getLogger(__name__)

MAX_USER_AGENT_LENGTH = 500
MAX_REFERRER_LENGTH = 2000


class ClickService:
    """Сервис кликов партнёров"""

    @staticmethod
    async def record_click(
        session: AsyncSession,
        partner_slug: str,
        referrer: Optional[str],
        user_agent: Optional[str]
    ) -> Optional[ReferralClick]:
        """
        Записать клик по ссылке партнёра

        Это сырой лог: повторные клики не дедуплицируются.
        Для неизвестного или неактивного партнёра клик не пишется.

        Returns:
            ReferralClick или None, если клик не отслеживается
        """
        partner = await PartnerService.get_partner_by_slug(session, partner_slug)

        if not partner:
            logger.warning(f"Click for unknown partner slug '{partner_slug}' ignored")
            return None

        if not partner.is_active:
            logger.info(f"Click for inactive partner {partner.id} ignored")
            return None

        click = ReferralClick(
            partner_id=partner.id,
            referrer=(referrer or "")[:MAX_REFERRER_LENGTH] or None,
            user_agent=(user_agent or "")[:MAX_USER_AGENT_LENGTH] or None,
            created_at=datetime.now(),
            converted=False
        )
        session.add(click)

        try:
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Error recording click for partner '{partner_slug}': {e}")
            raise

        logger.debug(f"Recorded click {click.id} for partner {partner.id}")
        return click

    @staticmethod
    async def attribute_conversion(
        session: AsyncSession,
        partner_id: UUID,
        sale: Sale
    ) -> Optional[ReferralClick]:
        """
        Привязать продажу к последнему неконвертированному клику партнёра (last-touch)

        Клик должен быть строго раньше продажи. Не коммитит: вызывается
        внутри транзакции завершения продажи.

        Returns:
            Конвертированный клик или None, если подходящего клика нет
        """
        conversion_date = datetime.now()

        # Условная запись: если клик успели конвертировать параллельно, берём следующий
        for _ in range(3):
            result = await session.execute(
                select(ReferralClick.id)
                .where(
                    ReferralClick.partner_id == partner_id,
                    ReferralClick.converted.is_(False),
                    ReferralClick.created_at < sale.created_at
                )
                .order_by(ReferralClick.created_at.desc())
                .limit(1)
            )
            click_id = result.scalar_one_or_none()

            if click_id is None:
                logger.info(f"Sale {sale.id} has no eligible click for partner {partner_id}")
                return None

            result = await session.execute(
                update(ReferralClick)
                .where(ReferralClick.id == click_id, ReferralClick.converted.is_(False))
                .values(converted=True, conversion_date=conversion_date, sale_id=sale.id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                logger.info(f"Sale {sale.id} attributed to click {click_id}")
                return await session.get(ReferralClick, click_id, populate_existing=True)

        logger.warning(f"Could not attribute sale {sale.id}: clicks converted concurrently")
        return None

    @staticmethod
    async def get_clicks_history(
        session: AsyncSession,
        partner_id: UUID,
        limit: int = 50
    ) -> list[ReferralClick]:
        """История кликов партнёра, новые сверху"""
        result = await session.execute(
            select(ReferralClick)
            .where(ReferralClick.partner_id == partner_id)
            .order_by(ReferralClick.created_at.desc())
            .limit(min(limit, MAX_HISTORY_LIMIT))
        )
        return list(result.scalars().all())
