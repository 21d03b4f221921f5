import asyncio
import os

# Must be set before the package reads its settings
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["GEMINI_API_KEY"] = ""
os.environ["SECRET_KEY"] = "test-secret"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from unittest.mock import AsyncMock, MagicMock

from samay_server.api_service.auth import get_password_hash
from samay_server.api_service.core.database import get_db, init_db
from samay_server.api_service.core.models import Activity, Tag, User, UserRole
from samay_server.api_service.main import app
from samay_server.api_service.services.tag_resolver import TagCache, TagResolver
from samay_server.processing_service.runner import JobRunner

ACTIVITY_DEFAULTS = {
    "app": "VSCode",
    "title": "main.py",
    "url": "",
    "timestamp": "2024-01-01T08:00:00Z",
    "duration": 60,
    "selected": False,
    "merged": False,
    "auto_tags": "",
    "is_auto_tagged": False,
}


@pytest.fixture
def session_factory(tmp_path):
    """A fresh file-backed SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    asyncio.run(init_db(engine))
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    asyncio.run(engine.dispose())


@pytest.fixture
def mock_llm():
    llm = MagicMock()
    llm.generate = AsyncMock()
    return llm


@pytest.fixture
def make_user(session_factory):
    def _make(email="user@example.com", role=UserRole.USER, name="Test User"):
        async def _create():
            async with session_factory() as db:
                user = User(email=email, name=name, hashed_password=get_password_hash("Password1"), role=role)
                db.add(user)
                await db.commit()
                return user.id
        return asyncio.run(_create())
    return _make


@pytest.fixture
def add_activities(session_factory):
    def _add(user_id, *rows):
        async def _insert():
            async with session_factory() as db:
                activities = [Activity(user_id=user_id, **{**ACTIVITY_DEFAULTS, **row}) for row in rows]
                db.add_all(activities)
                await db.commit()
                return [a.id for a in activities]
        return asyncio.run(_insert())
    return _add


@pytest.fixture
def add_tags(session_factory):
    def _add(*rules):
        async def _insert():
            async with session_factory() as db:
                db.add_all([Tag(app=app_name, title=title, tag=tag) for app_name, title, tag in rules])
                await db.commit()
        asyncio.run(_insert())
    return _add


@pytest.fixture
def fetch_all(session_factory):
    """Every row of a model, in insertion-independent order."""
    def _fetch(model, *order_by):
        async def _query():
            async with session_factory() as db:
                result = await db.execute(select(model).order_by(*order_by))
                return list(result.scalars().all())
        return asyncio.run(_query())
    return _fetch


@pytest.fixture
def client(session_factory, mock_llm):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.tag_resolver = TagResolver(TagCache(ttl_seconds=0))
    app.state.job_runner = JobRunner(session_factory, llm=mock_llm)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def register_user(client):
    """Registers through the API and returns (user_id, auth headers)."""
    def _register(email="user@example.com", password="Password1", name="Test User"):
        response = client.post(
            "/api/v1/auth/register",
            json={"email": email, "password": password, "name": name},
        )
        assert response.status_code == 201, response.text
        data = response.json()["data"]
        return data["user"]["id"], {"Authorization": f"Bearer {data['token']}"}
    return _register


@pytest.fixture
def promote_admin(session_factory):
    def _promote(email):
        async def _update():
            async with session_factory() as db:
                result = await db.execute(select(User).where(User.email == email))
                result.scalar_one().role = UserRole.ADMIN
                await db.commit()
        asyncio.run(_update())
    return _promote
