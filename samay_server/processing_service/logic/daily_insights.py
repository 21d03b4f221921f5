# samay_server/processing_service/logic/daily_insights.py
"""
Daily insight module for the Samay processing service.
For every user, summarises the previous day's top activities with the LLM
and stores the result as that day's DailyInsight.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from samay_server.api_service.core.database import AsyncSessionLocal, get_db_session_async
from samay_server.api_service.core.models import Activity, DailyInsight, User
from samay_server.api_service.core.settings import settings
from samay_server.processing_service.logic.llm_processing import LLMError, StructuredLLMClient
from samay_server.processing_service.logic.prompts import (
    ACTIVITY_SUMMARY_SYSTEM_PROMPT,
    ACTIVITY_SUMMARY_USER_PROMPT,
)
from samay_server.shared.utils import day_bounds, format_local_time, next_day_start, previous_day, to_iso_utc

log = logging.getLogger(__name__)

NO_ACTIVITY_INSIGHT = "No activities recorded for yesterday."
NO_ACTIVITY_PLAN = "Ensure your activity tracker is running to get insights."
ERROR_INSIGHT = "Error generating insights."

# Shown to callers but never persisted
PLACEHOLDER_INSIGHTS = {NO_ACTIVITY_INSIGHT, ERROR_INSIGHT}


class ActivitySummary(BaseModel):
    daily_insights: List[str] = Field(
        min_length=4,
        max_length=10,
        description="Summary of what the user was doing yesterday, usable in a daily standup or to resume work",
    )
    improvement_plan: List[str] = Field(
        min_length=4,
        max_length=10,
        description="How the user can be more productive today based on yesterday's data",
    )


@dataclass
class InsightResult:
    daily_insights: List[str]
    improvement_plan: List[str]

    @property
    def is_storable(self) -> bool:
        return bool(self.daily_insights) and not any(line in PLACEHOLDER_INSIGHTS for line in self.daily_insights)


@dataclass
class InsightActivity:
    app: str
    title: str
    duration: int
    tag: str
    merged_timestamp: Optional[str] = None


def display_tz_label(tz_name: str) -> str:
    """Short zone name such as "IST"."""
    return datetime.now(ZoneInfo(tz_name)).tzname() or tz_name


async def get_top_activities_for_insights(
    db: AsyncSession,
    user_id: uuid.UUID,
    start_ts: str,
    before_ts: str,
    excluded_apps: Sequence[str] = (),
    limit: int = 100,
) -> List[InsightActivity]:
    total = func.sum(Activity.duration).label("duration")
    query = select(
        Activity.app, Activity.title, Activity.auto_tags, Activity.merged_timestamp, total
    ).where(
        Activity.user_id == user_id,
        Activity.timestamp >= start_ts,
        Activity.timestamp < before_ts,
    )
    if excluded_apps:
        query = query.where(Activity.app.not_in(list(excluded_apps)))
    result = await db.execute(
        query.group_by(Activity.app, Activity.title, Activity.auto_tags, Activity.merged_timestamp)
        .order_by(total.desc())
        .limit(limit)
    )
    return [
        InsightActivity(
            app=row.app,
            title=row.title,
            duration=int(row.duration or 0),
            tag=row.auto_tags or "",
            merged_timestamp=row.merged_timestamp or None,
        )
        for row in result
    ]


def _format_timestamps(merged_timestamp: str, tz_name: str, max_timestamps: int) -> str:
    parts = [part for part in merged_timestamp.split(",") if part.strip()]
    formatted = []
    for part in parts[:max_timestamps]:
        ts, _, dur = part.partition("|")
        if ts:
            formatted.append(f"{format_local_time(ts, tz_name)} ({dur}s)")
    more = "..." if len(parts) > max_timestamps else ""
    return f"\n   Timestamps ({display_tz_label(tz_name)}): {', '.join(formatted)}{more}"


def format_activities_for_prompt(
    activities: Sequence[InsightActivity],
    tz_name: str,
    max_timestamps: int = 20,
) -> str:
    total_duration = sum(a.duration for a in activities)
    blocks = []
    for index, activity in enumerate(activities, start=1):
        minutes = round(activity.duration / 60)
        hours = round(activity.duration / 3600, 1)
        percentage = round(activity.duration / total_duration * 100) if total_duration else 0
        tag = f"[{activity.tag}]" if activity.tag else "[Untagged]"
        timestamps = ""
        if activity.merged_timestamp:
            timestamps = _format_timestamps(activity.merged_timestamp, tz_name, max_timestamps)
        blocks.append(
            f'{index}. {activity.app} → "{activity.title}" {tag}\n'
            f"   Duration: {hours:g}h ({minutes}min) | {percentage}% of time{timestamps}"
        )
    return "\n\n".join(blocks)


def build_insight_prompt(activities: Sequence[InsightActivity], start_ts: str, end_ts: str, tz_name: str) -> str:
    total_duration = sum(a.duration for a in activities)
    return ACTIVITY_SUMMARY_USER_PROMPT.format(
        start=start_ts,
        end=end_ts,
        total_minutes=round(total_duration / 60),
        activities_block=format_activities_for_prompt(activities, tz_name, settings.INSIGHTS_MAX_TIMESTAMPS),
        display_tz_label=display_tz_label(tz_name),
    )


async def generate_user_insights(
    llm: StructuredLLMClient,
    activities: Sequence[InsightActivity],
    start_ts: str,
    end_ts: str,
    tz_name: str,
) -> InsightResult:
    """Placeholder content when there is nothing to summarise or the LLM call fails."""
    if not activities:
        return InsightResult(daily_insights=[NO_ACTIVITY_INSIGHT], improvement_plan=[NO_ACTIVITY_PLAN])

    try:
        summary = await llm.generate(
            model=settings.INSIGHTS_MODEL_NAME,
            system_prompt=ACTIVITY_SUMMARY_SYSTEM_PROMPT.format(display_tz_label=display_tz_label(tz_name)),
            user_prompt=build_insight_prompt(activities, start_ts, end_ts, tz_name),
            response_model=ActivitySummary,
            temperature=0.5,
        )
    except LLMError as e:
        log.error(f"Failed to generate activity summary: {e}")
        return InsightResult(daily_insights=[ERROR_INSIGHT], improvement_plan=[])
    return InsightResult(daily_insights=summary.daily_insights, improvement_plan=summary.improvement_plan)


async def upsert_daily_insight(db: AsyncSession, user_id: uuid.UUID, day: date, result: InsightResult) -> DailyInsight:
    """Overwrites the insight for (user, day); other days are untouched."""
    existing = await db.execute(
        select(DailyInsight).where(DailyInsight.user_id == user_id, DailyInsight.day == day)
    )
    insight = existing.scalar_one_or_none()
    if insight is None:
        insight = DailyInsight(user_id=user_id, day=day)
        db.add(insight)
    insight.daily_insights = list(result.daily_insights)
    insight.improvement_plan = list(result.improvement_plan)
    await db.flush()
    return insight


async def run_daily_insights(
    llm: StructuredLLMClient,
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    tz_name: str = settings.REFERENCE_TZ,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """
    Generates yesterday's insight for every user. One user's failure is logged
    and does not stop the others.
    """
    target_day = previous_day(tz_name, now or datetime.now(timezone.utc))
    first, last = day_bounds(target_day, tz_name)
    start_ts, end_ts = to_iso_utc(first), to_iso_utc(last)
    before_ts = to_iso_utc(next_day_start(target_day, tz_name))
    log.info(f"Generating insights for {target_day} ({start_ts} to {end_ts})")

    try:
        async with get_db_session_async(session_factory) as db:
            result = await db.execute(select(User.id, User.email).order_by(User.created_at))
            users = result.all()
    except Exception as e:
        log.error(f"Daily insights failed while loading users: {e}", exc_info=True)
        raise
    log.info(f"Found {len(users)} users to process")

    stats = {"users": len(users), "stored": 0, "skipped": 0, "failed": 0}
    for user in users:
        try:
            async with get_db_session_async(session_factory) as db:
                activities = await get_top_activities_for_insights(
                    db,
                    user.id,
                    start_ts,
                    before_ts,
                    excluded_apps=settings.EXCLUDED_APPS,
                    limit=settings.INSIGHTS_TOP_ACTIVITIES_LIMIT,
                )
            summary = await generate_user_insights(llm, activities, start_ts, end_ts, tz_name)
            if not summary.is_storable:
                stats["skipped"] += 1
                log.info(f"No insight stored for user {user.id}")
                continue
            async with get_db_session_async(session_factory) as db:
                await upsert_daily_insight(db, user.id, target_day, summary)
            stats["stored"] += 1
        except Exception as e:
            stats["failed"] += 1
            log.error(f"Error processing insights for user {user.id}: {e}", exc_info=True)

    log.info(f"Daily insights finished: {stats}")
    return stats
