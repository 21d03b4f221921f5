import asyncio
from datetime import date, datetime, timezone

import pytest
from pydantic import ValidationError

from samay_server.api_service.core.models import DailyInsight
from samay_server.processing_service.logic.daily_insights import (
    ERROR_INSIGHT,
    NO_ACTIVITY_INSIGHT,
    ActivitySummary,
    InsightActivity,
    InsightResult,
    format_activities_for_prompt,
    generate_user_insights,
    run_daily_insights,
)
from samay_server.processing_service.logic.llm_processing import LLMError

TZ = "Asia/Kolkata"
# 11:30 on Jan 2 in India, so the job reports on Jan 1
NOW = datetime(2024, 1, 2, 6, 0, tzinfo=timezone.utc)


def _summary(prefix="insight"):
    return ActivitySummary(
        daily_insights=[f"{prefix} {i}" for i in range(4)],
        improvement_plan=[f"plan {i}" for i in range(4)],
    )


def test_format_activities_for_prompt():
    activities = [
        InsightActivity("VSCode", "main.py", 5400, "Code", "2024-01-01T03:30:00Z|1800,2024-01-01T04:30:00Z|3600"),
        InsightActivity("Chrome", "Gmail", 600, ""),
    ]
    assert format_activities_for_prompt(activities, TZ) == (
        '1. VSCode → "main.py" [Code]\n'
        "   Duration: 1.5h (90min) | 90% of time\n"
        "   Timestamps (IST): 09:00 AM (1800s), 10:00 AM (3600s)\n"
        "\n"
        '2. Chrome → "Gmail" [Untagged]\n'
        "   Duration: 0.2h (10min) | 10% of time"
    )


def test_format_caps_sampled_timestamps():
    log = ",".join(f"2024-01-01T04:{m:02d}:00Z|60" for m in range(25))
    block = format_activities_for_prompt([InsightActivity("VSCode", "main.py", 1500, "Code", log)], TZ, 20)
    assert block.count("(60s)") == 20
    assert block.endswith("...")


def test_summary_schema_bounds():
    with pytest.raises(ValidationError):
        ActivitySummary(daily_insights=["one"], improvement_plan=["a", "b", "c", "d"])
    with pytest.raises(ValidationError):
        ActivitySummary(daily_insights=[str(i) for i in range(11)], improvement_plan=["a", "b", "c", "d"])


def test_placeholders_are_not_storable(mock_llm):
    empty = asyncio.run(generate_user_insights(mock_llm, [], "start", "end", TZ))
    assert empty.daily_insights == [NO_ACTIVITY_INSIGHT]
    assert not empty.is_storable
    mock_llm.generate.assert_not_called()

    mock_llm.generate.side_effect = LLMError("timeout")
    failed = asyncio.run(generate_user_insights(
        mock_llm, [InsightActivity("VSCode", "main.py", 60, "")], "start", "end", TZ
    ))
    assert failed == InsightResult(daily_insights=[ERROR_INSIGHT], improvement_plan=[])
    assert not failed.is_storable


def test_run_daily_insights_stores_yesterday(session_factory, make_user, add_activities, fetch_all, mock_llm):
    user_id = make_user()
    add_activities(
        user_id,
        {"app": "VSCode", "title": "main.py", "duration": 3600, "timestamp": "2024-01-01T08:00:00Z"},
        {"app": "dock", "title": "Dock", "duration": 600, "timestamp": "2024-01-01T08:10:00Z"},
        {"app": "Chrome", "title": "Netflix", "duration": 600, "timestamp": "2024-01-03T08:00:00Z"},
    )
    mock_llm.generate.return_value = _summary()

    stats = asyncio.run(run_daily_insights(mock_llm, session_factory, TZ, now=NOW))

    assert stats == {"users": 1, "stored": 1, "skipped": 0, "failed": 0}
    prompt = mock_llm.generate.call_args.kwargs["user_prompt"]
    assert "Date range: 2023-12-31T18:30:00.000Z -> 2024-01-01T18:29:59.999Z" in prompt
    assert "Total duration tracked: 60 minutes" in prompt
    assert "VSCode" in prompt and "dock" not in prompt and "Netflix" not in prompt

    insights = fetch_all(DailyInsight)
    assert len(insights) == 1
    assert insights[0].day == date(2024, 1, 1)
    assert insights[0].daily_insights == _summary().daily_insights


def test_rerun_overwrites_only_that_day(session_factory, make_user, add_activities, fetch_all, mock_llm):
    user_id = make_user()
    add_activities(user_id, {"timestamp": "2024-01-01T08:00:00Z"})

    async def seed_previous_day():
        async with session_factory() as db:
            db.add(DailyInsight(user_id=user_id, day=date(2023, 12, 31), daily_insights=["old"], improvement_plan=["old"]))
            await db.commit()
    asyncio.run(seed_previous_day())

    mock_llm.generate.return_value = _summary("first")
    asyncio.run(run_daily_insights(mock_llm, session_factory, TZ, now=NOW))
    mock_llm.generate.return_value = _summary("second")
    asyncio.run(run_daily_insights(mock_llm, session_factory, TZ, now=NOW))

    by_day = {i.day: i for i in fetch_all(DailyInsight)}
    assert set(by_day) == {date(2023, 12, 31), date(2024, 1, 1)}
    assert by_day[date(2024, 1, 1)].daily_insights == _summary("second").daily_insights
    assert by_day[date(2023, 12, 31)].daily_insights == ["old"]


def test_placeholders_never_reach_the_database(session_factory, make_user, add_activities, fetch_all, mock_llm):
    make_user(email="idle@example.com")
    busy_id = make_user(email="busy@example.com")
    add_activities(busy_id, {"timestamp": "2024-01-01T08:00:00Z"})
    mock_llm.generate.side_effect = LLMError("service unavailable")

    stats = asyncio.run(run_daily_insights(mock_llm, session_factory, TZ, now=NOW))

    assert stats == {"users": 2, "stored": 0, "skipped": 2, "failed": 0}
    assert fetch_all(DailyInsight) == []


def test_one_user_failing_does_not_block_others(session_factory, make_user, add_activities, fetch_all, mock_llm):
    broken_id = make_user(email="broken@example.com")
    healthy_id = make_user(email="healthy@example.com")
    add_activities(broken_id, {"app": "BrokenApp", "timestamp": "2024-01-01T08:00:00Z"})
    add_activities(healthy_id, {"app": "VSCode", "timestamp": "2024-01-01T08:00:00Z"})

    async def generate(**kwargs):
        if "BrokenApp" in kwargs["user_prompt"]:
            raise RuntimeError("unexpected response")
        return _summary()

    mock_llm.generate.side_effect = generate
    stats = asyncio.run(run_daily_insights(mock_llm, session_factory, TZ, now=NOW))

    assert stats == {"users": 2, "stored": 1, "skipped": 0, "failed": 1}
    assert [i.user_id for i in fetch_all(DailyInsight)] == [healthy_id]


def test_window_includes_the_last_second_of_yesterday(session_factory, make_user, add_activities, mock_llm):
    user_id = make_user()
    add_activities(
        user_id,
        # 23:59:59 on Jan 1 in India, then midnight on Jan 2
        {"app": "VSCode", "title": "late.py", "duration": 60, "timestamp": "2024-01-01T18:29:59Z"},
        {"app": "Chrome", "title": "Tomorrow", "duration": 60, "timestamp": "2024-01-01T18:30:00Z"},
    )
    mock_llm.generate.return_value = _summary()

    asyncio.run(run_daily_insights(mock_llm, session_factory, TZ, now=NOW))

    prompt = mock_llm.generate.call_args.kwargs["user_prompt"]
    assert "late.py" in prompt
    assert "Tomorrow" not in prompt
