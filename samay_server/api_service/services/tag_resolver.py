"""
Tag resolution for incoming activities.

Tag rules are shared reference data, read far more often than they are written,
so they are held in a TagCache that reloads the whole table once its TTL has
passed. New rules therefore reach ingest within at most one TTL window.
"""

import logging
import time
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from samay_server.api_service.core.models import Tag, WILDCARD_TITLE

log = logging.getLogger(__name__)

RuleIndex = Dict[Tuple[str, str], str]


def build_rule_index(rules) -> RuleIndex:
    """Index (app, title) -> tag. Rules are expected newest first; the first occurrence wins."""
    index: RuleIndex = {}
    for app, title, tag in rules:
        index.setdefault((app, title), tag)
    return index


def match_rule(index: RuleIndex, app: str, title: str) -> Optional[str]:
    """Exact (app, title) beats the app's wildcard rule."""
    exact = index.get((app, title))
    if exact is not None:
        return exact
    return index.get((app, WILDCARD_TITLE))


async def load_rule_index(db: AsyncSession) -> RuleIndex:
    result = await db.execute(
        select(Tag.app, Tag.title, Tag.tag).order_by(Tag.created_at.desc(), Tag.id.desc())
    )
    return build_rule_index(result.all())


class TagCache:
    """Process-wide snapshot of the tag table with a fixed time-to-live. An empty snapshot is never fresh."""

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._index: Optional[RuleIndex] = None
        self._loaded_at = 0.0

    def is_fresh(self) -> bool:
        return bool(self._index) and (self._clock() - self._loaded_at) < self.ttl_seconds

    async def get_index(self, db: AsyncSession) -> RuleIndex:
        if not self.is_fresh():
            self._index = await load_rule_index(db)
            self._loaded_at = self._clock()
            log.debug(f"Tag cache reloaded with {len(self._index)} rules")
        return self._index

    def invalidate(self) -> None:
        self._index = None


class TagResolver:
    """Maps (app, title) to a category tag, or "" when no rule applies."""

    def __init__(self, cache: TagCache):
        self.cache = cache

    async def resolve(self, db: AsyncSession, app: str, title: str) -> str:
        index = await self.cache.get_index(db)
        return match_rule(index, app, title) or ""
