"""Pull numeric fields out of sensor_events.data payloads."""

from __future__ import annotations

from typing import Any, Iterable, Protocol


class EventLike(Protocol):
    event_type: str
    data: Any


def _as_number(raw: Any) -> float | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    # Try to parse string-encoded numbers
    if isinstance(raw, str):
        try:
            return float(raw)
        except ValueError:
            return None
    return None


def extract_number(data: Any, key: str) -> float | None:
    """Numeric value of the top-level `key` in a payload.

    Missing keys, non-dict payloads and non-numeric values give None — never raises.
    """
    if not isinstance(data, dict):
        return None
    value = _as_number(data.get(key))
    if value is None or value != value:  # NaN
        return None
    return value


def extract_series(events: Iterable[EventLike], key: str) -> list[float]:
    """Values of `key` across events, in event order, skipping events without it."""
    values: list[float] = []
    for event in events:
        value = extract_number(event.data, key)
        if value is not None:
            values.append(value)
    return values


def intense_minutes_series(events: Iterable[EventLike]) -> list[float]:
    """intense + moderate per activity event; zero totals do not contribute."""
    values: list[float] = []
    for event in events:
        if event.event_type != "activity":
            continue
        total = (extract_number(event.data, "intense") or 0.0) + (extract_number(event.data, "moderate") or 0.0)
        if total > 0:
            values.append(total)
    return values
