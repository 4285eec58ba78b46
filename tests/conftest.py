"""Shared test fixtures for the task service tests."""
import os
from datetime import date, datetime

# Deterministic secrets before any app module reads settings
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-unit-tests")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("OPENAI_API_KEY", "")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models import Task
from app.recurrence import RecurrenceRule, serialize_rule

# Monday
NOW = datetime(2026, 1, 5, 9, 0)


@pytest.fixture
def now():
    return NOW


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def add_task(session_factory):
    """Insert a task row and return it (detached, attributes loaded)."""

    async def _add(**fields) -> Task:
        rule = fields.pop("rule", None)
        if rule is not None:
            fields.setdefault("is_recurring", True)
            fields["recurring_rule"] = rule if isinstance(rule, str) else serialize_rule(rule)
        fields.setdefault("user_id", "user-1")
        fields.setdefault("title", "测试任务")
        fields.setdefault("created_at", NOW)
        task = Task(**fields)
        async with session_factory() as db:
            db.add(task)
            await db.commit()
            await db.refresh(task)
        return task

    return _add


@pytest.fixture
def daily_rule():
    return RecurrenceRule.daily()


@pytest.fixture
def monday():
    return date(2026, 1, 5)
