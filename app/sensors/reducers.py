"""Pure stateless reducers — math only, never raises.

Every reducer drops None entries first and returns None when nothing is left.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from app.sensors.extractor import EventLike, extract_series, intense_minutes_series
from app.sensors.models import AggregateMetrics, SleepStats, StepStats, TotalStats, WeightStats

SECONDS_PER_HOUR = 3600.0


def _present(values: Iterable[float | None]) -> list[float]:
    return [v for v in values if v is not None]


def avg(values: Iterable[float | None]) -> float | None:
    valid = _present(values)
    if not valid:
        return None
    return sum(valid) / len(valid)


def total(values: Iterable[float | None]) -> float | None:
    valid = _present(values)
    if not valid:
        return None
    return sum(valid)


def minimum(values: Iterable[float | None]) -> float | None:
    valid = _present(values)
    return min(valid) if valid else None


def maximum(values: Iterable[float | None]) -> float | None:
    valid = _present(values)
    return max(valid) if valid else None


def latest(values: Sequence[float | None]) -> float | None:
    """Last non-None entry in the given order (pass values oldest first)."""
    for value in reversed(values):
        if value is not None:
            return value
    return None


def change(values: Sequence[float | None]) -> float | None:
    """latest - first over the present values; 0 with a single value."""
    valid = _present(values)
    if not valid:
        return None
    if len(valid) < 2:
        return 0.0
    return valid[-1] - valid[0]


# ---------------------------------------------------------------------------
# Per-metric stats
# ---------------------------------------------------------------------------


def weight_stats(values: Sequence[float]) -> WeightStats | None:
    if not values:
        return None
    return WeightStats(
        avg=avg(values),
        min=minimum(values),
        max=maximum(values),
        latest=latest(values),
        change=change(values),
    )


def step_stats(values: Sequence[float]) -> StepStats | None:
    if not values:
        return None
    return StepStats(sum=total(values), avg=avg(values), max=maximum(values))


def sleep_stats(seconds: Sequence[float]) -> SleepStats | None:
    if not seconds:
        return None
    hours = [s / SECONDS_PER_HOUR for s in seconds]
    return SleepStats(avg=avg(hours), min=minimum(hours), max=maximum(hours))


def total_stats(values: Sequence[float]) -> TotalStats | None:
    if not values:
        return None
    return TotalStats(sum=total(values), avg=avg(values))


def build_metrics(events: Sequence[EventLike]) -> AggregateMetrics:
    """Metrics for one bucket. `events` must be ordered oldest first."""
    return AggregateMetrics(
        weight=weight_stats(extract_series(events, "weight")),
        steps=step_stats(extract_series(events, "steps")),
        sleep=sleep_stats(extract_series(events, "sleep_duration")),
        calories=total_stats(extract_series(events, "calories")),
        distance=total_stats(extract_series(events, "distance")),
        intense_minutes=total_stats(intense_minutes_series(events)),
    )
