import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from apscheduler.triggers.cron import CronTrigger

from samay_server.processing_service import batch_processor
from samay_server.processing_service.runner import JOB_NAMES, JobRunner, UnknownJobError
from samay_server.processing_service.scheduler import build_scheduler


def test_runner_dispatches_by_name(session_factory, mock_llm):
    runner = JobRunner(session_factory, llm=mock_llm)
    with patch("samay_server.processing_service.runner.run_events_merge", new=AsyncMock(return_value={"merged_rows": 0})) as merge:
        assert asyncio.run(runner.run("merge")) == {"merged_rows": 0}
        merge.assert_awaited_once_with(session_factory)


def test_runner_passes_llm_to_tagging(session_factory, mock_llm):
    runner = JobRunner(session_factory, llm=mock_llm)
    with patch("samay_server.processing_service.runner.run_auto_tagging", new=AsyncMock(return_value={})) as tagging:
        asyncio.run(runner.run("tagging"))
        tagging.assert_awaited_once_with(mock_llm, session_factory)


def test_runner_reraises_job_failures(session_factory, mock_llm):
    runner = JobRunner(session_factory, llm=mock_llm)
    with patch("samay_server.processing_service.runner.run_daily_insights", new=AsyncMock(side_effect=RuntimeError("db down"))):
        with pytest.raises(RuntimeError, match="db down"):
            asyncio.run(runner.run("insights"))


def test_runner_rejects_unknown_jobs(session_factory, mock_llm):
    with pytest.raises(UnknownJobError):
        asyncio.run(JobRunner(session_factory, llm=mock_llm).run("vacuum"))


def test_scheduler_registers_every_job(session_factory, mock_llm):
    scheduler = build_scheduler(JobRunner(session_factory, llm=mock_llm))
    jobs = {job.id: job for job in scheduler.get_jobs()}

    assert set(jobs) == set(JOB_NAMES)
    for name, job in jobs.items():
        assert isinstance(job.trigger, CronTrigger)
        assert job.args == (name,)
        assert job.max_instances == 1


def test_cli_requires_a_known_job():
    with pytest.raises(SystemExit):
        batch_processor.main(["--job", "vacuum"])


def test_cli_runs_the_job():
    with patch.object(batch_processor, "run_job", new=AsyncMock(return_value=0)) as run_job:
        assert batch_processor.main(["--job", "merge"]) == 0
        run_job.assert_awaited_once_with("merge")
