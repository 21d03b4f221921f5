from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from samay_server.api_service.auth import get_current_active_user
from samay_server.api_service.core.database import get_db
from samay_server.api_service.core.errors import NotFoundError
from samay_server.api_service.core.models import User
from samay_server.api_service.services.insights import get_daily_insight
from samay_server.api_service import schemas

router = APIRouter()


@router.get("", response_model=schemas.DataResponse[schemas.DailyInsight])
async def read_daily_insight(
    day: Optional[date] = Query(None, alias="date", description="YYYY-MM-DD, defaults to yesterday"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    insight = await get_daily_insight(db, current_user.id, day)
    if insight is None:
        raise NotFoundError("No insights found for this date", "INSIGHT_NOT_FOUND")
    return schemas.DataResponse(data=schemas.DailyInsight.model_validate(insight))
