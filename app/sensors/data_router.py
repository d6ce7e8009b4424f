"""Data access endpoints — aggregates, trends, raw events."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from enum import Enum

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import verify_api_key
from app.config import settings
from app.db import get_session
from app.sensors import connector
from app.sensors.models import AggregateMetrics, AggregateOut, EventOut, PeriodKind, TrendPoint
from app.sensors.tables import SensorAggregate

router = APIRouter(prefix="/sensors", tags=["data"])

RAW_EVENTS_DEFAULT_DAYS = 90


class MetricFilter(str, Enum):
    weight = "weight"
    steps = "steps"
    intense_minutes = "intense_minutes"
    sleep = "sleep"
    heartrate = "heartrate"
    workouts = "workouts"
    all = "all"


# Which stored data types carry each metric
METRIC_DATA_TYPES: dict[MetricFilter, list[str]] = {
    MetricFilter.weight: ["weight"],
    MetricFilter.steps: ["activity"],
    MetricFilter.intense_minutes: ["activity"],
    MetricFilter.sleep: ["sleep"],
    MetricFilter.heartrate: ["sleep"],
    MetricFilter.workouts: ["workout"],
}


def _aggregate_out(row: SensorAggregate) -> AggregateOut:
    return AggregateOut(
        user_id=row.user_id,
        period=PeriodKind(row.period),
        period_key=row.period_key,
        year=row.year,
        start_date=connector.as_utc(row.start_date),
        end_date=connector.as_utc(row.end_date),
        metrics=AggregateMetrics.model_validate(row.metrics or {}),
        event_count=row.event_count,
        created_at=connector.as_utc(row.created_at),
        updated_at=connector.as_utc(row.updated_at),
    )


def _trend_point(row: SensorAggregate) -> TrendPoint:
    m = AggregateMetrics.model_validate(row.metrics or {})
    return TrendPoint(
        period_key=row.period_key,
        weight=m.weight.avg if m.weight else None,
        weight_change=m.weight.change if m.weight else None,
        steps=m.steps.avg if m.steps else None,
        sleep=m.sleep.avg if m.sleep else None,
        intense_minutes=m.intense_minutes.sum if m.intense_minutes else None,
        event_count=row.event_count,
    )


@router.get("/aggregates/latest", response_model=AggregateOut)
async def get_latest_aggregate(
    session: AsyncSession = Depends(get_session),
    _: str = Depends(verify_api_key),
    user_id: str | None = Query(default=None),
) -> AggregateOut:
    """Most recent weekly aggregate."""
    rows = await connector.fetch_aggregates(session, user_id or settings.default_user_id, PeriodKind.week, limit=1)
    if not rows:
        raise HTTPException(status_code=404, detail="No sensor data found. Sync Withings data first.")
    return _aggregate_out(rows[0])


@router.get("/aggregates/{period}", response_model=list[TrendPoint])
async def get_trend(
    period: PeriodKind,
    session: AsyncSession = Depends(get_session),
    _: str = Depends(verify_api_key),
    user_id: str | None = Query(default=None),
    limit: int = Query(default=12, ge=1, le=500),
) -> list[TrendPoint]:
    """Headline numbers for the last `limit` periods, newest first."""
    rows = await connector.fetch_aggregates(session, user_id or settings.default_user_id, period, limit=limit)
    return [_trend_point(r) for r in rows]


@router.get("/aggregates/{period}/{period_key}", response_model=AggregateOut)
async def get_period_summary(
    period: PeriodKind,
    period_key: str,
    session: AsyncSession = Depends(get_session),
    _: str = Depends(verify_api_key),
    user_id: str | None = Query(default=None),
) -> AggregateOut:
    row = await connector.fetch_aggregate(session, user_id or settings.default_user_id, period, period_key)
    if row is None:
        raise HTTPException(status_code=404, detail=f"No data found for {period_key}")
    return _aggregate_out(row)


@router.get("/events", response_model=list[EventOut])
async def get_raw_events(
    session: AsyncSession = Depends(get_session),
    _: str = Depends(verify_api_key),
    user_id: str | None = Query(default=None),
    metric: MetricFilter = Query(default=MetricFilter.all),
    start: datetime | None = Query(default=None, description="ISO timestamp, inclusive"),
    end: datetime | None = Query(default=None, description="ISO timestamp, inclusive"),
    limit: int = Query(default=100, ge=1, le=1000),
) -> list[EventOut]:
    """Raw readings, newest first. Without a range, the last 90 days."""
    if start is None and end is None:
        start = datetime.now(timezone.utc) - timedelta(days=RAW_EVENTS_DEFAULT_DAYS)

    events = await connector.fetch_raw_events(
        session,
        user_id or settings.default_user_id,
        data_types=METRIC_DATA_TYPES.get(metric),
        start=start,
        end=end,
        limit=limit,
    )
    return [
        EventOut(id=e.id, timestamp=e.timestamp, event_type=e.event_type, data_type=e.data_type, data=e.data)
        for e in events
    ]


@router.get("/workouts/running", response_model=list[EventOut])
async def get_running_workouts(
    session: AsyncSession = Depends(get_session),
    _: str = Depends(verify_api_key),
    user_id: str | None = Query(default=None),
    years: int = Query(default=5, ge=1, le=20),
) -> list[EventOut]:
    """Running workouts since Jan 1 of (current year - years + 1), oldest first."""
    since = datetime.combine(
        date(datetime.now(timezone.utc).year - (years - 1), 1, 1), datetime.min.time(), tzinfo=timezone.utc
    )
    workouts = await connector.fetch_raw_events(
        session,
        user_id or settings.default_user_id,
        data_types=["workout"],
        start=since,
        limit=None,
        ascending=True,
    )
    return [
        EventOut(id=w.id, timestamp=w.timestamp, event_type=w.event_type, data_type=w.data_type, data=w.data)
        for w in workouts
        if w.data.get("sport_type") in ("running", "indoor_running")
    ]
