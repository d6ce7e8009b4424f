"""Shared fixtures for the test suite."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.db import create_tables, get_session
from app.main import app
from app.sensors.tables import SensorEvent

USER = "user-1"


# ---------------------------------------------------------------------------
# In-memory SQLite (no real Postgres needed)
# ---------------------------------------------------------------------------


@pytest.fixture()
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture()
def override_session(session_factory):
    """Override the FastAPI dependency so requests hit the in-memory database."""

    async def _override():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _override
    yield session_factory
    app.dependency_overrides.clear()


@pytest.fixture()
async def client(override_session):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Event helpers
# ---------------------------------------------------------------------------


def make_event(
    ts: datetime,
    data: dict[str, Any],
    data_type: str = "weight",
    event_type: str = "measurement",
    user_id: str = USER,
) -> SensorEvent:
    """Helper to build an unsaved sensor_events row."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return SensorEvent(
        user_id=user_id,
        event_type=event_type,
        data_type=data_type,
        timestamp=ts,
        data=data,
        meta={"source": "test"},
    )


def weight_event(ts: datetime, kg: float, **kwargs) -> SensorEvent:
    return make_event(ts, {"weight": kg}, **kwargs)


def activity_event(ts: datetime, **data) -> SensorEvent:
    return make_event(ts, data, data_type="activity", event_type="activity")


def sleep_event(ts: datetime, seconds: float) -> SensorEvent:
    return make_event(ts, {"sleep_duration": seconds}, data_type="sleep")


async def add_events(session: AsyncSession, events: list[SensorEvent]) -> None:
    session.add_all(events)
    await session.commit()
