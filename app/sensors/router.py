"""Sensor HTTP router — aggregation and Withings sync triggers."""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import verify_api_key
from app.config import settings
from app.db import get_session
from app.sensors import aggregator, sync
from app.sensors.models import SensorStatus
from app.sensors.scheduler import SyncRunner
from app.sensors.withings import WithingsError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sensors", tags=["sensors"])


def get_sync_runner(request: Request) -> SyncRunner:
    return request.app.state.sync_runner


def _user(user_id: str | None) -> str:
    return user_id or settings.default_user_id


# ---------------------------------------------------------------------------
# /sensors/aggregate
# ---------------------------------------------------------------------------


@router.post("/aggregate")
async def trigger_aggregation(
    session: AsyncSession = Depends(get_session),
    _: str = Depends(verify_api_key),
    user_id: str | None = Query(default=None),
) -> dict:
    try:
        written = await aggregator.aggregate_all_periods(session, _user(user_id))
    except Exception:
        logger.exception("Aggregation error")
        raise HTTPException(status_code=500, detail="Failed to aggregate sensor data")
    return {"success": True, "message": "Aggregation completed", "aggregates": written}


# ---------------------------------------------------------------------------
# /sensors/withings
# ---------------------------------------------------------------------------


async def _run_sync(runner: SyncRunner, full: bool) -> dict:
    try:
        counts = await runner.run(full=full, aggregate=full)
    except sync.SensorNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except WithingsError:
        logger.exception("Withings sync error")
        raise HTTPException(status_code=502, detail="Withings API request failed")
    except Exception:
        logger.exception("Withings sync error")
        raise HTTPException(status_code=500, detail="Sync failed")

    if counts is None:
        raise HTTPException(status_code=409, detail="A sync is already running")

    message = (
        f"Synced {counts.weight} weight, {counts.activity} activity, "
        f"{counts.sleep} sleep, {counts.workout} workout records"
    )
    if full:
        message = f"Full sync completed from {settings.withings_full_sync_start}. {message}"
    return {"success": True, "synced": counts.model_dump(), "message": message}


@router.post("/withings/sync")
async def withings_sync(
    runner: SyncRunner = Depends(get_sync_runner),
    _: str = Depends(verify_api_key),
) -> dict:
    return await _run_sync(runner, full=False)


@router.post("/withings/full-sync")
async def withings_full_sync(
    runner: SyncRunner = Depends(get_sync_runner),
    _: str = Depends(verify_api_key),
) -> dict:
    """Delete all events and aggregates, re-fetch everything, then aggregate."""
    return await _run_sync(runner, full=True)


@router.get("/withings/status")
async def withings_status(
    session: AsyncSession = Depends(get_session),
    _: str = Depends(verify_api_key),
    user_id: str | None = Query(default=None),
) -> dict:
    sensor = await sync.get_withings_sensor(session, _user(user_id))
    if sensor is None:
        return {"connected": False, "sensor": None}

    expires_at = (sensor.config or {}).get("expires_at")
    status = SensorStatus(
        id=sensor.id,
        name=sensor.name,
        provider=sensor.provider,
        type=sensor.type,
        last_sync=sensor.last_sync,
        is_expired=bool(expires_at) and time.time() > expires_at,
        created_at=sensor.created_at,
    )
    return {"connected": True, "sensor": status.model_dump(mode="json")}


# ---------------------------------------------------------------------------
# /sensors/admin
# ---------------------------------------------------------------------------


@router.post("/admin/cleanup-workouts")
async def cleanup_workouts(
    session: AsyncSession = Depends(get_session),
    _: str = Depends(verify_api_key),
    user_id: str | None = Query(default=None),
) -> dict:
    """Drop walking / no-activity workouts and rebuild aggregates without them."""
    uid = _user(user_id)
    try:
        removed = await sync.cleanup_noise_workouts(session, uid)
        await aggregator.aggregate_all_periods(session, uid, prune_stale=True)
    except Exception:
        logger.exception("Workout cleanup failed")
        raise HTTPException(status_code=500, detail="Failed to clean up workouts")
    return {"success": True, "deleted": removed, "message": "Walking workouts deleted successfully"}
