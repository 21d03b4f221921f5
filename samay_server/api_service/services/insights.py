import uuid
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from samay_server.api_service.core.models import DailyInsight
from samay_server.api_service.core.settings import settings
from samay_server.shared.utils import previous_day


async def get_daily_insight(db: AsyncSession, user_id: uuid.UUID, target_day: Optional[date] = None) -> Optional[DailyInsight]:
    """
    The stored insight for a day. Without a day, yesterday in the reference
    timezone, since the nightly job reports on the day that just ended.
    """
    target_day = target_day or previous_day(settings.REFERENCE_TZ)
    result = await db.execute(
        select(DailyInsight).where(DailyInsight.user_id == user_id, DailyInsight.day == target_day)
    )
    return result.scalar_one_or_none()
