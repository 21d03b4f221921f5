# samay_server/processing_service/logic/events_merge.py
"""
Events merge module for the Samay processing service.
Collapses raw tracker events into one row per user, app, title, selection flag
and calendar day in the reference timezone, keeping a `timestamp|duration`
log of the events each merged row was built from.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence

import polars as pl
from sqlalchemy import delete, insert, select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from samay_server.api_service.core.database import AsyncSessionLocal, get_db_session_async
from samay_server.api_service.core.models import Activity
from samay_server.api_service.core.settings import settings
from samay_server.shared.utils import local_date_string

log = logging.getLogger(__name__)

GROUP_KEY = ["user_id", "app", "title", "selected", "day"]

MERGE_SCHEMA = {
    "id": pl.Utf8,
    "user_id": pl.Utf8,
    "app": pl.Utf8,
    "title": pl.Utf8,
    "selected": pl.Boolean,
    "day": pl.Utf8,
    "url": pl.Utf8,
    "timestamp": pl.Utf8,
    "duration": pl.Int64,
    "project_id": pl.Int64,
    "auto_tags": pl.Utf8,
    "is_auto_tagged": pl.Boolean,
    "token": pl.Utf8,
}


@dataclass
class MergePlan:
    """Rows to insert and the source ids they replace."""
    aggregates: List[Dict[str, Any]] = field(default_factory=list)
    source_ids: List[uuid.UUID] = field(default_factory=list)
    skipped: int = 0


def _chunks(items: Sequence, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


def merge_activities(rows: Sequence[Mapping[str, Any]], tz_name: str) -> MergePlan:
    """
    Groups unmerged activity rows.

    Rows without a user, app or title are left out of the plan entirely, so
    they are neither merged nor deleted. Groups where no row has both a
    timestamp and a duration are left alone the same way, so merged rows
    always carry a timestamp log. An unparsable timestamp groups under an
    empty day.
    """
    plan = MergePlan()
    records = []
    for row in rows:
        if not row["user_id"] or not row["app"] or not row["title"]:
            plan.skipped += 1
            continue
        timestamp = row["timestamp"] or ""
        duration = row["duration"] or 0
        records.append({
            "id": str(row["id"]),
            "user_id": str(row["user_id"]),
            "app": row["app"],
            "title": row["title"],
            "selected": bool(row["selected"]),
            "day": local_date_string(timestamp, tz_name),
            "url": row.get("url") or "",
            "timestamp": timestamp,
            "duration": duration,
            "project_id": row["project_id"],
            "auto_tags": row["auto_tags"] or "",
            "is_auto_tagged": bool(row["is_auto_tagged"]),
            "token": f"{timestamp}|{duration}" if timestamp and duration else None,
        })

    if not records:
        return plan

    df = pl.DataFrame(records, schema=MERGE_SCHEMA)
    grouped = df.group_by(GROUP_KEY, maintain_order=True).agg(
        pl.col("id").alias("source_ids"),
        pl.col("duration").sum(),
        pl.col("timestamp").first(),
        pl.col("project_id").first(),
        pl.col("url").filter(pl.col("url") != "").alias("urls"),
        pl.col("token").drop_nulls().alias("tokens"),
        pl.col("auto_tags").filter(pl.col("auto_tags") != "").first(),
        pl.col("is_auto_tagged").any(),
    )

    for group in grouped.iter_rows(named=True):
        if not group["tokens"]:
            plan.skipped += len(group["source_ids"])
            continue
        plan.aggregates.append({
            "user_id": uuid.UUID(group["user_id"]),
            "app": group["app"],
            "title": group["title"],
            "selected": group["selected"],
            "duration": int(group["duration"]),
            "timestamp": group["timestamp"],
            "url": ",".join(group["urls"]),
            "project_id": group["project_id"],
            "merged": True,
            "merged_timestamp": ",".join(group["tokens"]),
            "auto_tags": group["auto_tags"] or "",
            "is_auto_tagged": bool(group["is_auto_tagged"]),
        })
        plan.source_ids.extend(uuid.UUID(source_id) for source_id in group["source_ids"])

    return plan


async def _extend_timeouts(session: AsyncSession) -> None:
    """Large merges outlive the default Postgres statement and lock timeouts."""
    connection = await session.connection()
    if connection.dialect.name != "postgresql":
        return
    await session.execute(text(f"SET LOCAL statement_timeout = {int(settings.MERGE_STATEMENT_TIMEOUT_MS)}"))
    await session.execute(text(f"SET LOCAL lock_timeout = {int(settings.MERGE_LOCK_TIMEOUT_MS)}"))


async def run_events_merge(
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    tz_name: str = settings.REFERENCE_TZ,
    batch_size: int = settings.MERGE_BATCH_SIZE,
) -> Dict[str, int]:
    """
    Replaces every unmerged activity with its merged aggregate in a single
    transaction. Any failure rolls back the whole run and is re-raised.
    """
    log.info("Starting events merge")
    try:
        async with get_db_session_async(session_factory) as session:
            result = await session.execute(
                select(
                    Activity.id,
                    Activity.user_id,
                    Activity.app,
                    Activity.title,
                    Activity.url,
                    Activity.selected,
                    Activity.timestamp,
                    Activity.duration,
                    Activity.project_id,
                    Activity.auto_tags,
                    Activity.is_auto_tagged,
                )
                .where(Activity.merged.is_(False))
                .order_by(Activity.timestamp, Activity.created_at)
            )
            rows = result.mappings().all()
            if not rows:
                log.info("No unmerged activities found")
                return {"source_rows": 0, "merged_rows": 0, "skipped_rows": 0}

            plan = merge_activities(rows, tz_name)
            if plan.skipped:
                log.warning(f"Skipped {plan.skipped} activities missing user, app, title or timing")

            await _extend_timeouts(session)
            for batch in _chunks(plan.aggregates, batch_size):
                await session.execute(insert(Activity), batch)
            for batch in _chunks(plan.source_ids, batch_size):
                await session.execute(
                    delete(Activity)
                    .where(Activity.id.in_(batch))
                    .execution_options(synchronize_session=False)
                )
    except Exception as e:
        log.error(f"Events merge failed: {e}", exc_info=True)
        raise

    log.info(f"Merged {len(plan.source_ids)} activities into {len(plan.aggregates)} rows")
    return {
        "source_rows": len(plan.source_ids),
        "merged_rows": len(plan.aggregates),
        "skipped_rows": plan.skipped,
    }
