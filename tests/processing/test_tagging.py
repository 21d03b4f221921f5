import asyncio

from samay_server.api_service.core.models import Activity, Tag, TagCategory
from samay_server.processing_service.logic.llm_processing import LLMError
from samay_server.processing_service.logic.tagging import (
    Candidate,
    TagBatch,
    TagItem,
    apply_tag,
    build_tagging_prompt,
    run_auto_tagging,
)


def _batch(*items):
    return TagBatch(tags=[TagItem(app=app, title=title, tag=tag) for app, title, tag in items])


def _seed(make_user, add_activities):
    user_id = make_user()
    add_activities(
        user_id,
        {"app": "Chrome", "title": "Gmail", "url": "https://mail.google.com"},
        {"app": "Chrome", "title": "Gmail", "url": "https://mail.google.com/inbox"},
        {"app": "VSCode", "title": "main.py"},
        {"app": "Slack", "title": "general"},
        {"app": "Figma", "title": "Mockups", "auto_tags": "Design", "is_auto_tagged": True},
    )
    return user_id


def test_prompt_lists_numbered_activities():
    prompt = build_tagging_prompt([
        Candidate("Chrome", "Gmail", "https://mail.google.com"),
        Candidate("VSCode", "main.py", ""),
    ])
    assert "1. Chrome - Gmail - https://mail.google.com" in prompt
    assert "2. VSCode - main.py - " in prompt


def test_auto_tagging_creates_rules_and_tags_activities(
    session_factory, make_user, add_activities, add_tags, fetch_all, mock_llm
):
    _seed(make_user, add_activities)
    add_tags(("Slack", "any", "Discussion"))
    mock_llm.generate.return_value = _batch(
        ("Chrome", "Gmail", TagCategory.MAIL),
        ("VSCode", "main.py", TagCategory.CODE),
    )

    stats = asyncio.run(run_auto_tagging(mock_llm, session_factory))

    assert stats == {"candidates": 2, "tags_created": 2, "activities_updated": 3, "failed_batches": 0}
    prompt = mock_llm.generate.call_args.kwargs["user_prompt"]
    assert "Slack" not in prompt and "Figma" not in prompt

    rules = {(t.app, t.title): t.tag for t in fetch_all(Tag)}
    assert rules[("Chrome", "Gmail")] == "Mail"
    assert rules[("VSCode", "main.py")] == "Code"

    tags = {(a.app, a.url): (a.auto_tags, a.is_auto_tagged) for a in fetch_all(Activity)}
    assert tags[("Chrome", "https://mail.google.com")] == ("Mail", True)
    assert tags[("Chrome", "https://mail.google.com/inbox")] == ("Mail", True)
    assert tags[("VSCode", "")] == ("Code", True)
    assert tags[("Slack", "")] == ("", False)
    assert tags[("Figma", "")] == ("Design", True)


def test_missing_answers_are_skipped(session_factory, make_user, add_activities, fetch_all, mock_llm):
    _seed(make_user, add_activities)
    mock_llm.generate.return_value = _batch(("Chrome", "Gmail", TagCategory.MAIL))

    stats = asyncio.run(run_auto_tagging(mock_llm, session_factory))

    assert stats["candidates"] == 3
    assert stats["tags_created"] == 1
    assert [(t.app, t.title) for t in fetch_all(Tag)] == [("Chrome", "Gmail")]


def test_failed_batch_does_not_stop_the_run(session_factory, make_user, add_activities, fetch_all, mock_llm):
    _seed(make_user, add_activities)
    mock_llm.generate.side_effect = [
        LLMError("quota exceeded"),
        _batch(("Slack", "general", TagCategory.DISCUSSION)),
        _batch(("VSCode", "main.py", TagCategory.CODE)),
    ]

    stats = asyncio.run(run_auto_tagging(mock_llm, session_factory, batch_size=1))

    assert mock_llm.generate.call_count == 3
    assert stats["failed_batches"] == 1
    assert stats["tags_created"] == 2
    assert {(t.app, t.tag) for t in fetch_all(Tag)} == {("Slack", "Discussion"), ("VSCode", "Code")}


def test_nothing_to_tag(session_factory, mock_llm):
    stats = asyncio.run(run_auto_tagging(mock_llm, session_factory))
    assert stats["candidates"] == 0
    mock_llm.generate.assert_not_called()


def test_existing_rule_is_not_duplicated(session_factory, make_user, add_activities, fetch_all, mock_llm):
    user_id = make_user()
    add_activities(user_id, {"app": "VSCode", "title": "main.py"})

    async def classify_then_race(**kwargs):
        # Another run stored the same rule while this one waited on the model
        async with session_factory() as db:
            db.add(Tag(app="VSCode", title="main.py", tag="Code"))
            await db.commit()
        return _batch(("VSCode", "main.py", TagCategory.LEARNING))

    mock_llm.generate.side_effect = classify_then_race
    stats = asyncio.run(run_auto_tagging(mock_llm, session_factory))

    assert stats["tags_created"] == 0
    assert [t.tag for t in fetch_all(Tag)] == ["Code"]


def test_wildcard_rule_updates_every_title(session_factory, make_user, add_activities, fetch_all):
    user_id = make_user()
    add_activities(
        user_id,
        {"app": "Slack", "title": "general"},
        {"app": "Slack", "title": "random"},
        {"app": "Slack", "title": "design", "auto_tags": "Design", "is_auto_tagged": True},
        {"app": "Teams", "title": "general"},
    )

    updated = asyncio.run(apply_tag(session_factory, "Slack", "any", "Discussion"))

    assert updated == 2
    tags = {(a.app, a.title): a.auto_tags for a in fetch_all(Activity)}
    assert tags == {
        ("Slack", "general"): "Discussion",
        ("Slack", "random"): "Discussion",
        ("Slack", "design"): "Design",
        ("Teams", "general"): "",
    }
