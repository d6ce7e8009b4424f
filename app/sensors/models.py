"""Sensor aggregate contract — Pydantic v2 models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class PeriodKind(str, Enum):
    week = "week"
    month = "month"
    year = "year"


class EventType(str, Enum):
    measurement = "measurement"
    activity = "activity"


class DataType(str, Enum):
    weight = "weight"
    activity = "activity"
    sleep = "sleep"
    workout = "workout"


# ---------------------------------------------------------------------------
# Per-metric shapes stored in sensor_aggregates.metrics
# ---------------------------------------------------------------------------


class WeightStats(BaseModel):
    avg: float
    min: float
    max: float
    latest: float
    change: float


class StepStats(BaseModel):
    sum: float
    avg: float
    max: float


class SleepStats(BaseModel):
    """Hours, converted from the stored seconds."""

    avg: float
    min: float
    max: float


class TotalStats(BaseModel):
    sum: float
    avg: float


class AggregateMetrics(BaseModel):
    weight: WeightStats | None = None
    steps: StepStats | None = None
    sleep: SleepStats | None = None
    calories: TotalStats | None = None
    distance: TotalStats | None = None
    intense_minutes: TotalStats | None = None

    def to_json(self) -> dict[str, Any]:
        """Persisted form: metrics without contributing events are left out."""
        return self.model_dump(mode="json", exclude_none=True)


# ---------------------------------------------------------------------------
# API shapes
# ---------------------------------------------------------------------------


class AggregateOut(BaseModel):
    user_id: str
    period: PeriodKind
    period_key: str
    year: int
    start_date: datetime
    end_date: datetime
    metrics: AggregateMetrics = Field(default_factory=AggregateMetrics)
    event_count: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class TrendPoint(BaseModel):
    period_key: str
    weight: float | None = None
    weight_change: float | None = None
    steps: float | None = None
    sleep: float | None = None
    intense_minutes: float | None = None
    event_count: int = 0


class EventOut(BaseModel):
    id: str
    timestamp: datetime
    event_type: EventType
    data_type: DataType
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = {"from_attributes": True}


class SyncCounts(BaseModel):
    weight: int = 0
    activity: int = 0
    sleep: int = 0
    workout: int = 0

    @property
    def total(self) -> int:
        return self.weight + self.activity + self.sleep + self.workout


class SensorStatus(BaseModel):
    id: str
    name: str
    provider: str
    type: str
    last_sync: datetime | None = None
    is_expired: bool = False
    created_at: datetime | None = None
