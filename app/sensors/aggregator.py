"""Aggregator — rolls raw sensor events up into week / month / year rows.

For each bucket from the period generator: filter the user's events to
[start, end], skip the bucket when nothing matches, reduce the rest into the
metrics map and upsert one sensor_aggregates row keyed by
(user_id, period, period_key).

Buckets are processed one at a time and each upsert commits on its own, so a
storage error aborts the sweep with earlier buckets already written. Re-running
is safe: the same events always produce the same rows.
"""

from __future__ import annotations

import logging
import time
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.sensors import connector, reducers
from app.sensors.connector import EventRecord
from app.sensors.models import PeriodKind
from app.sensors.periods import PeriodBucket, generate_periods

logger = logging.getLogger(__name__)


def events_in_bucket(events: Sequence[EventRecord], bucket: PeriodBucket) -> list[EventRecord]:
    """Events with start <= timestamp <= end, order preserved."""
    return [e for e in events if bucket.contains(e.timestamp)]


async def aggregate_period(
    session: AsyncSession,
    user_id: str,
    kind: PeriodKind,
    buckets: Sequence[PeriodBucket] | None = None,
    events: Sequence[EventRecord] | None = None,
    prune_stale: bool = False,
) -> int:
    """Aggregate one period kind for a user. Returns the number of rows written.

    `events` must be oldest first; fetched from the event store when omitted.
    With `prune_stale`, rows of this kind whose bucket has no events any more
    are deleted after the sweep.
    """
    kind = PeriodKind(kind)
    periods = list(buckets) if buckets is not None else generate_periods(kind)
    if events is None:
        events = await connector.fetch_events(session, user_id)

    logger.info(
        "Processing %d %s buckets with %d total events for user %s",
        len(periods), kind.value, len(events), user_id,
    )

    written: list[str] = []
    for bucket in periods:
        matched = events_in_bucket(events, bucket)
        if not matched:
            continue

        metrics = reducers.build_metrics(matched)
        await connector.upsert_aggregate(session, user_id, bucket, metrics.to_json(), len(matched))
        written.append(bucket.key)

    if prune_stale:
        removed = await connector.delete_aggregates(session, user_id, kind, keep_keys=written)
        await session.commit()
        if removed:
            logger.info("Pruned %d stale %s aggregates for user %s", removed, kind.value, user_id)

    return len(written)


async def aggregate_weekly_data(
    session: AsyncSession,
    user_id: str,
    weeks: Sequence[PeriodBucket] | None = None,
    prune_stale: bool = False,
) -> int:
    return await aggregate_period(session, user_id, PeriodKind.week, weeks, prune_stale=prune_stale)


async def aggregate_monthly_data(
    session: AsyncSession,
    user_id: str,
    months: Sequence[PeriodBucket] | None = None,
    prune_stale: bool = False,
) -> int:
    return await aggregate_period(session, user_id, PeriodKind.month, months, prune_stale=prune_stale)


async def aggregate_yearly_data(
    session: AsyncSession,
    user_id: str,
    years: Sequence[PeriodBucket] | None = None,
    prune_stale: bool = False,
) -> int:
    return await aggregate_period(session, user_id, PeriodKind.year, years, prune_stale=prune_stale)


async def aggregate_all_periods(
    session: AsyncSession,
    user_id: str,
    prune_stale: bool | None = None,
) -> dict[str, int]:
    """Week, month and year passes over one fetch of the user's event history.

    Returns rows written per period kind. The first storage error propagates.
    """
    if prune_stale is None:
        prune_stale = settings.aggregation_prune_stale

    started = time.monotonic()
    events = await connector.fetch_events(session, user_id)

    written: dict[str, int] = {}
    for kind in (PeriodKind.week, PeriodKind.month, PeriodKind.year):
        kind_started = time.monotonic()
        written[kind.value] = await aggregate_period(
            session, user_id, kind, events=events, prune_stale=prune_stale
        )
        logger.info(
            "%s aggregation completed in %.1fs (%d rows)",
            kind.value.capitalize(), time.monotonic() - kind_started, written[kind.value],
        )

    logger.info("All aggregations for user %s completed in %.1fs", user_id, time.monotonic() - started)
    return written
