"""Withings -> sensor_events ingestion.

Incremental syncs start from the sensor's last_sync; a full sync re-fetches
from settings.withings_full_sync_start and replaces the user's events and
aggregates in the same transaction as the insert. Readings already stored are
skipped, except daily activity rows, which Withings keeps updating during the
day and which replace the stored row for the same day.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.sensors import connector
from app.sensors.models import DataType, EventType, SyncCounts
from app.sensors.tables import Sensor, utcnow
from app.sensors.withings import (
    MEASURE_WEIGHT,
    WithingsClient,
    WithingsError,
    parse_activities,
    parse_sleep_series,
    parse_weight_groups,
    parse_workouts,
)

logger = logging.getLogger(__name__)

PROVIDER = "withings"
NOISE_SPORT_TYPES = ("walking", "indoor_walking", "no_activity")

# data_type -> event_type stored alongside it
_EVENT_TYPES = {
    DataType.weight: EventType.measurement,
    DataType.activity: EventType.activity,
    DataType.sleep: EventType.measurement,
    DataType.workout: EventType.activity,
}


class SensorNotFound(Exception):
    pass


async def get_withings_sensor(session: AsyncSession, user_id: str) -> Sensor | None:
    return await connector.fetch_active_sensor(session, user_id, PROVIDER)


async def get_valid_access_token(
    session: AsyncSession,
    sensor: Sensor,
    client: WithingsClient,
    now: int | None = None,
) -> str:
    """Stored access token, refreshed first when it expires within the margin."""
    credentials = dict(sensor.credentials or {})
    now = now if now is not None else int(time.time())
    expires_at = credentials.get("expires_at")

    if not expires_at or now < expires_at - settings.withings_token_refresh_margin:
        return credentials["access_token"]

    try:
        body = await client.refresh_access_token(credentials["refresh_token"])
    except WithingsError as exc:
        raise WithingsError("Failed to refresh Withings token", exc.status) from exc

    new_expires_at = now + int(body["expires_in"])
    sensor.credentials = {
        "access_token": body["access_token"],
        "refresh_token": body["refresh_token"],
        "expires_at": new_expires_at,
    }
    sensor.config = {**(sensor.config or {}), "expires_at": new_expires_at}
    sensor.updated_at = utcnow()
    await session.commit()
    logger.info("Refreshed Withings token for sensor %s", sensor.id)
    return body["access_token"]


def _ymd(value: datetime | date) -> str:
    return value.strftime("%Y-%m-%d")


def _start_points(last_sync: datetime | None, full: bool) -> tuple[int | None, str]:
    """(epoch start for measures, YYYY-MM-DD start for daily endpoints)."""
    if full:
        start = date.fromisoformat(settings.withings_full_sync_start)
        epoch = int(datetime.combine(start, datetime.min.time(), tzinfo=timezone.utc).timestamp())
        return epoch, _ymd(start)
    if last_sync is not None:
        last = connector.as_utc(last_sync)
        return int(last.timestamp()), _ymd(last)
    return None, settings.withings_activity_start


async def fetch_weight(client: WithingsClient, token: str, startdate: int | None) -> list[dict[str, Any]]:
    groups = await client.fetch_all(
        token, {"action": "getmeas", "meastype": MEASURE_WEIGHT, "category": 1, "startdate": startdate}
    )
    return parse_weight_groups(groups)


async def fetch_activity(client: WithingsClient, token: str, start_ymd: str, end_ymd: str) -> list[dict[str, Any]]:
    activities = await client.fetch_all(
        token, {"action": "getactivity", "startdateymd": start_ymd, "enddateymd": end_ymd}
    )
    return parse_activities(activities)


async def fetch_sleep(client: WithingsClient, token: str, start_ymd: str, end_ymd: str) -> list[dict[str, Any]]:
    series = await client.fetch_all(
        token, {"action": "getsummary", "startdateymd": start_ymd, "enddateymd": end_ymd}
    )
    return parse_sleep_series(series)


async def fetch_workouts(client: WithingsClient, token: str, start_ymd: str, end_ymd: str) -> list[dict[str, Any]]:
    series = await client.fetch_all(
        token, {"action": "getworkouts", "startdateymd": start_ymd, "enddateymd": end_ymd}
    )
    return parse_workouts(series)


async def store_events(
    session: AsyncSession,
    user_id: str,
    sensor_id: str | None,
    data_type: DataType,
    parsed: list[dict[str, Any]],
) -> int:
    """Insert parsed readings of one data type, returning how many were written."""
    if not parsed:
        return 0

    since = min(connector.as_utc(p["timestamp"]) for p in parsed)
    existing = await connector.fetch_event_timestamps(session, user_id, data_type.value, since)
    if data_type == DataType.activity:
        await connector.delete_events_at(
            session, user_id, data_type.value,
            [p["timestamp"] for p in parsed if connector.as_utc(p["timestamp"]) in existing],
        )
        fresh = parsed
    else:
        fresh = [p for p in parsed if connector.as_utc(p["timestamp"]) not in existing]

    rows = [
        {
            "user_id": user_id,
            "sensor_id": sensor_id,
            "event_type": _EVENT_TYPES[data_type].value,
            "data_type": data_type.value,
            "timestamp": p["timestamp"],
            "data": p["data"],
            "metadata": {"source": PROVIDER, **p.get("metadata", {})},
        }
        for p in fresh
    ]
    return await connector.insert_events(session, rows)


async def sync_all_withings_data(
    session: AsyncSession,
    user_id: str,
    client: WithingsClient,
    full: bool = False,
) -> SyncCounts:
    """Pull weight, activity, sleep and workouts for the user and store them."""
    sensor = await get_withings_sensor(session, user_id)
    if sensor is None:
        raise SensorNotFound("No active Withings sensor found")

    token = await get_valid_access_token(session, sensor, client)
    startdate, start_ymd = _start_points(sensor.last_sync, full)
    end_ymd = _ymd(datetime.now(timezone.utc))

    weight, activity, sleep, workouts = await asyncio.gather(
        fetch_weight(client, token, startdate),
        fetch_activity(client, token, start_ymd, end_ymd),
        fetch_sleep(client, token, start_ymd, end_ymd),
        fetch_workouts(client, token, start_ymd, end_ymd),
    )

    if full:
        # Not committed until the re-fetched rows are stored.
        removed_events = await connector.delete_events(session, user_id)
        removed_aggs = await connector.delete_aggregates(session, user_id)
        logger.info(
            "Full sync for user %s: removing %d events and %d aggregates",
            user_id, removed_events, removed_aggs,
        )

    counts = SyncCounts(
        weight=await store_events(session, user_id, sensor.id, DataType.weight, weight),
        activity=await store_events(session, user_id, sensor.id, DataType.activity, activity),
        sleep=await store_events(session, user_id, sensor.id, DataType.sleep, sleep),
        workout=await store_events(session, user_id, sensor.id, DataType.workout, workouts),
    )

    now = utcnow()
    sensor.last_sync = now
    sensor.updated_at = now
    await session.commit()

    logger.info(
        "Synced %d weight, %d activity, %d sleep, %d workout records for user %s",
        counts.weight, counts.activity, counts.sleep, counts.workout, user_id,
    )
    return counts


async def cleanup_noise_workouts(session: AsyncSession, user_id: str) -> int:
    """Delete walking / indoor walking / no-activity workouts."""
    removed = await connector.delete_workouts_by_sport(session, user_id, NOISE_SPORT_TYPES)
    await session.commit()
    logger.info("Deleted %d noise workouts for user %s", removed, user_id)
    return removed
