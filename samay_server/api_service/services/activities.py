import logging
import uuid
from collections import OrderedDict
from datetime import date
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from samay_server.api_service import schemas
from samay_server.api_service.core.errors import AuthorizationError, NotFoundError, ValidationError
from samay_server.api_service.core.models import Activity, Project, ProjectUser, User, UserRole
from samay_server.api_service.core.settings import settings
from samay_server.api_service.services.tag_resolver import TagResolver
from samay_server.shared.utils import day_bounds, local_date_string, next_day_start, parse_timestamp, to_iso_utc

log = logging.getLogger(__name__)

TOP_APPS_LIMIT = 5


class TimestampWindow(NamedTuple):
    start: Optional[str]
    end: Optional[str]
    # Bare end dates become the following midnight, which is excluded
    end_exclusive: bool = False

    def apply(self, query, column=Activity.timestamp):
        if self.start:
            query = query.where(column >= self.start)
        if self.end:
            query = query.where(column < self.end if self.end_exclusive else column <= self.end)
        return query


def _is_date_only(value: str) -> bool:
    return len(value) == 10 and value[4] == "-" and value[7] == "-"


def _parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid date: {value}")


def _parse_bound(value: str) -> str:
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValidationError(f"Invalid timestamp: {value}")
    return to_iso_utc(parsed)


def timestamp_bounds(start: Optional[str], end: Optional[str]) -> TimestampWindow:
    """
    Normalizes query bounds to the UTC ISO strings activities are stored with, so
    they can be compared against the timestamp column directly. A bare date
    covers the whole day in the reference timezone: the window runs up to the
    next midnight, so second-precision timestamps late in the day still match.
    """
    start_ts = end_ts = None
    end_exclusive = False
    if start:
        if _is_date_only(start):
            start_ts = to_iso_utc(day_bounds(_parse_day(start), settings.REFERENCE_TZ)[0])
        else:
            start_ts = _parse_bound(start)
    if end:
        if _is_date_only(end):
            end_ts = to_iso_utc(next_day_start(_parse_day(end), settings.REFERENCE_TZ))
            end_exclusive = True
        else:
            end_ts = _parse_bound(end)
    return TimestampWindow(start_ts, end_ts, end_exclusive)


def _in_window(query, start: Optional[str], end: Optional[str]):
    return timestamp_bounds(start, end).apply(query)


# --- Ingest ---

async def ingest_activities(
    db: AsyncSession,
    resolver: TagResolver,
    user_id: uuid.UUID,
    events: Iterable[schemas.ActivityCreate],
    excluded_apps: Optional[List[str]] = None,
) -> int:
    """
    Stores a tracker batch. Excluded system apps and non-positive durations are
    dropped; the rest are tagged from the cached rules and inserted in a single
    statement, so the batch lands completely or not at all.
    """
    excluded = set(settings.EXCLUDED_APPS if excluded_apps is None else excluded_apps)
    rows = []
    for event in events:
        duration = int(round(event.duration))
        if event.data.app in excluded or duration <= 0:
            continue
        tag = await resolver.resolve(db, event.data.app, event.data.title)
        rows.append({
            "user_id": user_id,
            "app": event.data.app,
            "title": event.data.title,
            "url": event.data.url,
            "timestamp": event.timestamp,
            "duration": duration,
            "selected": False,
            "merged": False,
            "auto_tags": tag,
            "is_auto_tagged": bool(tag),
        })

    if rows:
        await db.execute(insert(Activity), rows)
    log.info(f"Stored {len(rows)} activities for user {user_id}")
    return len(rows)


# --- CRUD ---

async def get_owned_activity(db: AsyncSession, activity_id: uuid.UUID, user_id: uuid.UUID) -> Activity:
    result = await db.execute(
        select(Activity).where(Activity.id == activity_id, Activity.user_id == user_id)
    )
    activity = result.scalar_one_or_none()
    if not activity:
        raise NotFoundError("Activity not found", "ACTIVITY_NOT_FOUND")
    return activity


async def get_activities(
    db: AsyncSession,
    user_id: uuid.UUID,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    selected: Optional[bool] = None,
) -> List[Activity]:
    query = _in_window(select(Activity).where(Activity.user_id == user_id), start_date, end_date)
    if selected is not None:
        query = query.where(Activity.selected == selected)
    result = await db.execute(query.order_by(Activity.created_at.desc(), Activity.timestamp.desc()))
    return list(result.scalars().all())


async def update_activity(
    db: AsyncSession,
    activity_id: uuid.UUID,
    activity_in: schemas.ActivityUpdate,
    user_id: uuid.UUID,
) -> Activity:
    activity = await get_owned_activity(db, activity_id, user_id)
    if activity_in.data is not None:
        activity.app = activity_in.data.app
        activity.title = activity_in.data.title
        activity.url = activity_in.data.url
    if activity_in.timestamp is not None:
        activity.timestamp = activity_in.timestamp
    if activity_in.duration is not None:
        activity.duration = int(round(activity_in.duration))
    if activity_in.description is not None:
        activity.description = activity_in.description
    await db.flush()
    await db.refresh(activity)
    return activity


async def delete_activity(db: AsyncSession, activity_id: uuid.UUID, user_id: uuid.UUID) -> None:
    activity = await get_owned_activity(db, activity_id, user_id)
    await db.delete(activity)
    await db.flush()


async def select_activities(
    db: AsyncSession,
    activity_ids: List[uuid.UUID],
    user_id: uuid.UUID,
    selected: bool,
) -> int:
    if not activity_ids:
        return 0
    result = await db.execute(
        update(Activity)
        .where(Activity.id.in_(activity_ids), Activity.user_id == user_id)
        .values(selected=selected)
    )
    return result.rowcount


async def add_activities_to_project(
    db: AsyncSession,
    activity_ids: List[uuid.UUID],
    project_id: int,
    user: User,
) -> int:
    project = await db.get(Project, project_id)
    if not project:
        raise ValidationError("Project not found", "PROJECT_NOT_FOUND")

    if user.role != UserRole.ADMIN:
        membership = await db.execute(
            select(ProjectUser.user_id).where(
                ProjectUser.project_id == project_id,
                ProjectUser.user_id == user.id,
                ProjectUser.active.is_(True),
            )
        )
        if membership.scalar_one_or_none() is None:
            raise AuthorizationError("You are not a member of this project")

    if not activity_ids:
        return 0
    result = await db.execute(
        update(Activity)
        .where(Activity.id.in_(activity_ids), Activity.user_id == user.id)
        .values(project_id=project_id)
    )
    return result.rowcount


# --- Reporting ---

async def get_activity_stats(db: AsyncSession, user_id: uuid.UUID) -> schemas.ActivityStats:
    total_activities = await db.scalar(select(func.count(Activity.id)).where(Activity.user_id == user_id))
    total_duration = await db.scalar(select(func.sum(Activity.duration)).where(Activity.user_id == user_id))

    app_count = func.count(Activity.id).label("count")
    top_apps = await db.execute(
        select(Activity.app, app_count)
        .where(Activity.user_id == user_id)
        .group_by(Activity.app)
        .order_by(app_count.desc())
        .limit(TOP_APPS_LIMIT)
    )
    recent = await db.execute(
        select(Activity).where(Activity.user_id == user_id).order_by(Activity.created_at.desc()).limit(1)
    )
    recent_activity = recent.scalar_one_or_none()

    return schemas.ActivityStats(
        total_activities=total_activities or 0,
        total_duration=total_duration or 0,
        top_apps=[schemas.AppCount(app=row.app, count=row.count) for row in top_apps],
        recent_activity=schemas.Activity.model_validate(recent_activity) if recent_activity else None,
    )


async def get_top_apps(
    db: AsyncSession,
    user_id: uuid.UUID,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> List[schemas.TopApp]:
    total = func.sum(Activity.duration).label("duration")
    query = _in_window(
        select(Activity.app, total).where(Activity.user_id == user_id), start_date, end_date
    )
    result = await db.execute(query.group_by(Activity.app).order_by(total.desc()))
    return [schemas.TopApp(app=row.app, duration=row.duration or 0) for row in result]


async def get_top_activities(
    db: AsyncSession,
    user_id: uuid.UUID,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    excluded_apps: Optional[List[str]] = None,
    limit: Optional[int] = None,
) -> List[schemas.TopActivity]:
    total = func.sum(Activity.duration).label("duration")
    tag = func.max(Activity.auto_tags).label("tag")
    query = _in_window(
        select(Activity.app, Activity.title, tag, total).where(Activity.user_id == user_id),
        start_date,
        end_date,
    )
    if excluded_apps:
        query = query.where(Activity.app.not_in(excluded_apps))
    query = query.group_by(Activity.app, Activity.title).order_by(total.desc())
    if limit:
        query = query.limit(limit)
    result = await db.execute(query)
    return [
        schemas.TopActivity(app=row.app, title=row.title, duration=row.duration or 0, tag=row.tag or "")
        for row in result
    ]


async def activities_for_selection(
    db: AsyncSession,
    user_id: uuid.UUID,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> List[schemas.SelectionGroup]:
    """
    Buckets raw and merged activities by (app, title). Each bucket carries the
    summed duration and the ids it was built from, so the client can select or
    assign the whole bucket at once. Largest buckets first.
    """
    query = _in_window(select(Activity).where(Activity.user_id == user_id), start_date, end_date)
    result = await db.execute(query.order_by(Activity.timestamp))

    groups: "OrderedDict[Tuple[str, str], dict]" = OrderedDict()
    for activity in result.scalars():
        key = (activity.app, activity.title)
        group = groups.get(key)
        if group is None:
            group = groups[key] = {
                "app": activity.app,
                "title": activity.title,
                "tag": "",
                "duration": 0,
                "activity_ids": [],
                "selected": True,
                "project_id": activity.project_id,
            }
        group["duration"] += activity.duration or 0
        group["activity_ids"].append(activity.id)
        group["selected"] = group["selected"] and activity.selected
        group["tag"] = group["tag"] or activity.auto_tags or ""
        if group["project_id"] != activity.project_id:
            group["project_id"] = None

    ordered = sorted(groups.values(), key=lambda g: g["duration"], reverse=True)
    return [schemas.SelectionGroup(**group) for group in ordered]


async def get_user_select_data(
    db: AsyncSession,
    user_id: uuid.UUID,
    start_date: str,
    end_date: str,
) -> List[schemas.UserSelectDay]:
    """
    Daily duration per tag over the user's selected activities. Days are
    calendar days in the reference timezone, matching the query bounds.
    """
    query = _in_window(
        select(Activity.timestamp, Activity.auto_tags, Activity.duration).where(
            Activity.user_id == user_id, Activity.selected.is_(True)
        ),
        start_date,
        end_date,
    )
    result = await db.execute(query)

    totals: Dict[Tuple[str, str], int] = {}
    for row in result:
        key = (local_date_string(row.timestamp, settings.REFERENCE_TZ), row.auto_tags or "Untagged")
        totals[key] = totals.get(key, 0) + (row.duration or 0)

    ordered = sorted(totals.items(), key=lambda item: (item[0][0], -item[1]))
    return [schemas.UserSelectDay(day=day, tag=tag, duration=duration) for (day, tag), duration in ordered]
