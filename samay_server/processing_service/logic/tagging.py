# samay_server/processing_service/logic/tagging.py
"""
Auto-tagging module for the Samay processing service.
Asks the LLM to categorise (app, title) pairs that no tag rule covers yet,
stores the answers as new rules and back-fills matching untagged activities.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from pydantic import BaseModel, Field
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from samay_server.api_service.core.database import AsyncSessionLocal, get_db_session_async
from samay_server.api_service.core.models import Activity, Tag, TagCategory, WILDCARD_TITLE
from samay_server.api_service.core.settings import settings
from samay_server.api_service.services.tag_resolver import build_rule_index, match_rule
from samay_server.processing_service.logic.llm_processing import LLMError, StructuredLLMClient
from samay_server.processing_service.logic.prompts import TAGGING_SYSTEM_PROMPT, TAGGING_USER_PROMPT

log = logging.getLogger(__name__)


# --- LLM response schema ---

class TagItem(BaseModel):
    app: str
    title: str
    tag: TagCategory = Field(description="Category of the activity")


class TagBatch(BaseModel):
    tags: List[TagItem]


@dataclass(frozen=True)
class Candidate:
    app: str
    title: str
    url: str


def build_tagging_prompt(batch: Sequence[Candidate]) -> str:
    lines = "\n".join(f"{i + 1}. {c.app} - {c.title} - {c.url}" for i, c in enumerate(batch))
    return TAGGING_USER_PROMPT.format(activity_lines=lines)


def _system_prompt() -> str:
    return TAGGING_SYSTEM_PROMPT.format(categories=", ".join(c.value for c in TagCategory))


async def find_untagged_candidates(db: AsyncSession) -> List[Candidate]:
    """
    Distinct (app, title, url) among untagged activities that no existing rule
    covers. Each (app, title) pair is kept once.
    """
    result = await db.execute(
        select(Activity.app, Activity.title, Activity.url)
        .where(Activity.is_auto_tagged.is_(False))
        .distinct()
        .order_by(Activity.app, Activity.title, Activity.url)
    )
    combos = result.all()
    if not combos:
        return []

    apps = {row.app for row in combos}
    rules = await db.execute(
        select(Tag.app, Tag.title, Tag.tag)
        .where(Tag.app.in_(apps))
        .order_by(Tag.created_at.desc(), Tag.id.desc())
    )
    index = build_rule_index(rules.all())

    candidates: Dict[Tuple[str, str], Candidate] = {}
    for row in combos:
        key = (row.app, row.title)
        if key in candidates or match_rule(index, row.app, row.title):
            continue
        candidates[key] = Candidate(app=row.app, title=row.title, url=row.url or "")
    return list(candidates.values())


async def classify_batch(llm: StructuredLLMClient, batch: Sequence[Candidate]) -> List[Tuple[Candidate, str]]:
    """
    One LLM round trip. Answers are matched to the input by position; inputs
    the model left unanswered are logged and dropped.
    """
    response = await llm.generate(
        model=settings.TAGGING_MODEL_NAME,
        system_prompt=_system_prompt(),
        user_prompt=build_tagging_prompt(batch),
        response_model=TagBatch,
    )
    tagged = []
    for i, candidate in enumerate(batch):
        if i >= len(response.tags):
            log.warning(f"No tag returned for '{candidate.app} - {candidate.title}'")
            continue
        tagged.append((candidate, response.tags[i].tag.value))
    return tagged


async def persist_tags(db: AsyncSession, tagged: Sequence[Tuple[Candidate, str]]) -> List[Tag]:
    """Adds the rules whose (app, title) is not stored yet and returns them."""
    if not tagged:
        return []
    apps = {candidate.app for candidate, _ in tagged}
    existing = await db.execute(select(Tag.app, Tag.title).where(Tag.app.in_(apps)))
    seen = {(row.app, row.title) for row in existing}

    created = []
    for candidate, tag in tagged:
        key = (candidate.app, candidate.title)
        if key in seen:
            continue
        seen.add(key)
        created.append(Tag(app=candidate.app, title=candidate.title, tag=tag))
    db.add_all(created)
    await db.flush()
    return created


async def apply_tag(session_factory: async_sessionmaker[AsyncSession], app: str, title: str, tag: str) -> int:
    """Tags the untagged activities a single rule matches, in its own transaction."""
    query = update(Activity).where(
        Activity.app == app,
        or_(
            Activity.is_auto_tagged.is_(False),
            Activity.auto_tags.is_(None),
            Activity.auto_tags == "",
        ),
    )
    if title != WILDCARD_TITLE:
        query = query.where(Activity.title == title)
    async with get_db_session_async(session_factory) as db:
        result = await db.execute(
            query.values(auto_tags=tag, is_auto_tagged=True).execution_options(synchronize_session=False)
        )
        return result.rowcount


async def run_auto_tagging(
    llm: StructuredLLMClient,
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    batch_size: int = settings.TAGGING_BATCH_SIZE,
) -> Dict[str, int]:
    log.info("Starting auto-tagging")
    try:
        async with get_db_session_async(session_factory) as db:
            candidates = await find_untagged_candidates(db)
    except Exception as e:
        log.error(f"Auto-tagging failed while loading candidates: {e}", exc_info=True)
        raise

    stats = {"candidates": len(candidates), "tags_created": 0, "activities_updated": 0, "failed_batches": 0}
    if not candidates:
        log.info("No untagged activities need classification")
        return stats

    tagged: List[Tuple[Candidate, str]] = []
    for start in range(0, len(candidates), batch_size):
        batch = candidates[start:start + batch_size]
        try:
            tagged.extend(await classify_batch(llm, batch))
        except LLMError as e:
            stats["failed_batches"] += 1
            log.error(f"Tagging batch starting at {start} failed: {e}")

    async with get_db_session_async(session_factory) as db:
        created = await persist_tags(db, tagged)
        new_rules = [(tag.app, tag.title, tag.tag) for tag in created]
    stats["tags_created"] = len(new_rules)

    counts = await asyncio.gather(
        *(apply_tag(session_factory, app, title, tag) for app, title, tag in new_rules)
    )
    stats["activities_updated"] = sum(counts)
    log.info(
        f"Auto-tagging created {stats['tags_created']} tags and updated "
        f"{stats['activities_updated']} activities ({stats['failed_batches']} failed batches)"
    )
    return stats
