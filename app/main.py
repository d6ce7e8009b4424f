import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.config import settings
from app.db import create_tables
from app.sensors.data_router import router as data_router
from app.sensors.router import router as sensors_router
from app.sensors.scheduler import SensorScheduler, SyncRunner

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_tables()
    if settings.scheduler_enabled:
        app.state.scheduler.start()
    yield
    app.state.scheduler.stop()


app = FastAPI(title="SensorKernel", version="0.1.0", lifespan=lifespan)
app.state.sync_runner = SyncRunner()
app.state.scheduler = SensorScheduler(app.state.sync_runner)
app.include_router(sensors_router)
app.include_router(data_router)


@app.get("/")
async def root() -> dict:
    return {
        "status": "ok",
        "docs": "/docs",
        "health": "/health",
        "sensors": {
            "aggregate": "/sensors/aggregate",
            "aggregates_latest": "/sensors/aggregates/latest",
            "aggregates_trend": "/sensors/aggregates/{period}",
            "aggregates_period": "/sensors/aggregates/{period}/{period_key}",
            "events": "/sensors/events",
            "running_workouts": "/sensors/workouts/running",
            "withings_sync": "/sensors/withings/sync",
            "withings_full_sync": "/sensors/withings/full-sync",
            "withings_status": "/sensors/withings/status",
        },
    }


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
