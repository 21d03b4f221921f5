import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from samay_server.api_service.core.database import AsyncSessionLocal
from samay_server.api_service.core.settings import settings
from samay_server.processing_service.logic.daily_insights import run_daily_insights
from samay_server.processing_service.logic.events_merge import run_events_merge
from samay_server.processing_service.logic.llm_processing import StructuredLLMClient
from samay_server.processing_service.logic.tagging import run_auto_tagging

log = logging.getLogger(__name__)

JOB_NAMES = ("merge", "tagging", "insights")


class UnknownJobError(KeyError):
    pass


class JobRunner:
    """Runs the named background jobs against one session factory and LLM client."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
        llm: Optional[StructuredLLMClient] = None,
    ):
        self.session_factory = session_factory
        self.llm = llm or StructuredLLMClient(api_key=settings.GEMINI_API_KEY)
        self._jobs: Dict[str, Callable[[], Awaitable[Dict[str, Any]]]] = {
            "merge": lambda: run_events_merge(self.session_factory),
            "tagging": lambda: run_auto_tagging(self.llm, self.session_factory),
            "insights": lambda: run_daily_insights(self.llm, self.session_factory),
        }

    async def run(self, name: str) -> Dict[str, Any]:
        job = self._jobs.get(name)
        if job is None:
            raise UnknownJobError(name)
        log.info(f"JOB_START: {name}")
        try:
            result = await job()
        except Exception:
            log.error(f"JOB_FAILURE: {name}", exc_info=True)
            raise
        log.info(f"JOB_SUCCESS: {name}")
        return result
