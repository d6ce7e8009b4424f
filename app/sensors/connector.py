"""Database connector — async access to sensors, sensor_events and sensor_aggregates.

Reads return detached snapshots (EventRecord) or ORM rows that callers only
read. Datetimes are written as UTC; SQLite (used in tests) drops the offset on
storage, so values read back are normalised with `as_utc`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.sensors.models import PeriodKind
from app.sensors.periods import PeriodBucket
from app.sensors.tables import Sensor, SensorAggregate, SensorEvent, utcnow

UPSERT_KEYS = ("user_id", "period", "period_key")

_EVENT_COLUMNS = (
    SensorEvent.id,
    SensorEvent.user_id,
    SensorEvent.event_type,
    SensorEvent.data_type,
    SensorEvent.timestamp,
    SensorEvent.data,
)


@dataclass(frozen=True, slots=True)
class EventRecord:
    id: str
    user_id: str
    event_type: str
    data_type: str
    timestamp: datetime
    data: dict[str, Any] = field(default_factory=dict)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _insert_for(session: AsyncSession):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise RuntimeError(f"Upsert not supported for dialect {dialect!r}")


def _record(row: Any) -> EventRecord:
    return EventRecord(
        id=row.id,
        user_id=row.user_id,
        event_type=row.event_type,
        data_type=row.data_type,
        timestamp=as_utc(row.timestamp),
        data=row.data if isinstance(row.data, dict) else {},
    )


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


async def fetch_events(session: AsyncSession, user_id: str) -> list[EventRecord]:
    """Every event for the user, oldest first."""
    result = await session.execute(
        select(*_EVENT_COLUMNS).where(SensorEvent.user_id == user_id).order_by(SensorEvent.timestamp)
    )
    return [_record(r) for r in result.all()]


async def fetch_raw_events(
    session: AsyncSession,
    user_id: str,
    data_types: Sequence[str] | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int | None = 100,
    ascending: bool = False,
) -> list[EventRecord]:
    """Events filtered by data type and time range; newest first unless `ascending`."""
    query = select(*_EVENT_COLUMNS).where(SensorEvent.user_id == user_id)
    if data_types:
        query = query.where(SensorEvent.data_type.in_(list(data_types)))
    if start is not None:
        query = query.where(SensorEvent.timestamp >= as_utc(start))
    if end is not None:
        query = query.where(SensorEvent.timestamp <= as_utc(end))
    order = SensorEvent.timestamp.asc() if ascending else SensorEvent.timestamp.desc()
    query = query.order_by(order)
    if limit is not None:
        query = query.limit(limit)

    result = await session.execute(query)
    return [_record(r) for r in result.all()]


async def insert_events(session: AsyncSession, rows: Iterable[dict[str, Any]]) -> int:
    """Add parsed events and flush; commit is left to the caller."""
    count = 0
    for row in rows:
        session.add(
            SensorEvent(
                user_id=row["user_id"],
                sensor_id=row.get("sensor_id"),
                event_type=row["event_type"],
                data_type=row["data_type"],
                timestamp=as_utc(row["timestamp"]),
                data=row.get("data") or {},
                meta=row.get("metadata") or {},
            )
        )
        count += 1
    await session.flush()
    return count


async def fetch_event_timestamps(
    session: AsyncSession,
    user_id: str,
    data_type: str,
    since: datetime,
) -> set[datetime]:
    result = await session.execute(
        select(SensorEvent.timestamp).where(
            SensorEvent.user_id == user_id,
            SensorEvent.data_type == data_type,
            SensorEvent.timestamp >= as_utc(since),
        )
    )
    return {as_utc(ts) for ts in result.scalars().all()}


async def delete_events_at(
    session: AsyncSession,
    user_id: str,
    data_type: str,
    timestamps: Iterable[datetime],
) -> int:
    stamps = [as_utc(ts) for ts in timestamps]
    if not stamps:
        return 0
    result = await session.execute(
        delete(SensorEvent).where(
            SensorEvent.user_id == user_id,
            SensorEvent.data_type == data_type,
            SensorEvent.timestamp.in_(stamps),
        )
    )
    return result.rowcount or 0


async def delete_events(session: AsyncSession, user_id: str, data_type: str | None = None) -> int:
    stmt = delete(SensorEvent).where(SensorEvent.user_id == user_id)
    if data_type is not None:
        stmt = stmt.where(SensorEvent.data_type == data_type)
    result = await session.execute(stmt)
    return result.rowcount or 0


async def delete_workouts_by_sport(session: AsyncSession, user_id: str, sport_types: Sequence[str]) -> int:
    """Delete workout events whose data.sport_type is one of `sport_types`."""
    # JSON operators differ between PostgreSQL and SQLite; match in Python.
    workouts = await fetch_raw_events(session, user_id, ["workout"], limit=None)
    ids = [w.id for w in workouts if w.data.get("sport_type") in sport_types]
    if not ids:
        return 0
    result = await session.execute(delete(SensorEvent).where(SensorEvent.id.in_(ids)))
    return result.rowcount or 0


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


async def upsert_aggregate(
    session: AsyncSession,
    user_id: str,
    bucket: PeriodBucket,
    metrics: dict[str, Any],
    event_count: int,
) -> None:
    """Insert or overwrite the row for (user, period, period_key) and commit.

    On conflict only metrics, event_count and updated_at change; created_at stays.
    """
    insert = _insert_for(session)
    now = utcnow()
    stmt = insert(SensorAggregate).values(
        user_id=user_id,
        period=bucket.kind.value,
        period_key=bucket.key,
        year=bucket.year,
        start_date=as_utc(bucket.start),
        end_date=as_utc(bucket.end),
        metrics=metrics,
        event_count=event_count,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=list(UPSERT_KEYS),
        set_={
            "metrics": stmt.excluded.metrics,
            "event_count": stmt.excluded.event_count,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    await session.execute(stmt)
    await session.commit()


async def delete_aggregates(
    session: AsyncSession,
    user_id: str,
    period: PeriodKind | None = None,
    keep_keys: Iterable[str] | None = None,
) -> int:
    """Delete aggregates for a user, optionally of one kind, sparing `keep_keys`."""
    stmt = delete(SensorAggregate).where(SensorAggregate.user_id == user_id)
    if period is not None:
        stmt = stmt.where(SensorAggregate.period == PeriodKind(period).value)
    if keep_keys is not None:
        keep = list(keep_keys)
        if keep:
            stmt = stmt.where(SensorAggregate.period_key.not_in(keep))
    result = await session.execute(stmt)
    return result.rowcount or 0


async def fetch_aggregates(
    session: AsyncSession,
    user_id: str,
    period: PeriodKind,
    limit: int | None = None,
) -> list[SensorAggregate]:
    """Aggregates of one kind, newest period first."""
    query = (
        select(SensorAggregate)
        .where(SensorAggregate.user_id == user_id, SensorAggregate.period == PeriodKind(period).value)
        .order_by(SensorAggregate.year.desc(), SensorAggregate.period_key.desc())
        .execution_options(populate_existing=True)
    )
    if limit is not None:
        query = query.limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())


async def fetch_aggregate(
    session: AsyncSession,
    user_id: str,
    period: PeriodKind,
    period_key: str,
) -> SensorAggregate | None:
    result = await session.execute(
        select(SensorAggregate).where(
            SensorAggregate.user_id == user_id,
            SensorAggregate.period == PeriodKind(period).value,
            SensorAggregate.period_key == period_key,
        ).execution_options(populate_existing=True)
    )
    return result.scalars().first()


# ---------------------------------------------------------------------------
# Sensors
# ---------------------------------------------------------------------------


async def fetch_active_sensor(session: AsyncSession, user_id: str, provider: str) -> Sensor | None:
    result = await session.execute(
        select(Sensor).where(
            Sensor.user_id == user_id,
            Sensor.provider == provider,
            Sensor.is_active.is_(True),
        )
    )
    return result.scalars().first()
