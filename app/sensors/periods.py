"""Calendar buckets (ISO week / month / year) used as aggregation keys.

Pure functions. Every generator walks from `start_year` up to the bucket that
contains `now`, includes that partially elapsed bucket, and returns the list
newest first. Bucket boundaries are local midnights in the configured
timezone; `end` is the next bucket's start minus one tick.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from app.config import settings
from app.sensors.models import PeriodKind

TICK = timedelta(microseconds=1)


@dataclass(frozen=True, slots=True)
class PeriodBucket:
    kind: PeriodKind
    key: str
    year: int
    start: datetime
    end: datetime
    week: int | None = None
    month: int | None = None

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts <= self.end


def _tz(tz_name: str | None) -> ZoneInfo:
    return ZoneInfo(tz_name or settings.default_tz)


def _now(now: datetime | None, tz: ZoneInfo) -> datetime:
    if now is None:
        return datetime.now(tz)
    if now.tzinfo is None:
        return now.replace(tzinfo=tz)
    return now.astimezone(tz)


def _midnight(d: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(d, time.min, tzinfo=tz)


def week_key(year: int, week: int) -> str:
    return f"{year}W{week:02d}"


def month_key(year: int, month: int) -> str:
    return f"{year}M{month:02d}"


def year_key(year: int) -> str:
    return str(year)


def iso_week_start(year: int, week: int) -> date:
    """Monday starting ISO week `week` of `year`.

    Anchors on Jan 1 + (week - 1) * 7 days, then moves to a Monday: anchors
    falling Sunday..Thursday go to the Monday of their own week (Sunday counts
    as the first day, so it moves forward one day), Friday/Saturday go forward
    to the next Monday.
    """
    anchor = date(year, 1, 1) + timedelta(days=(week - 1) * 7)
    dow = (anchor.weekday() + 1) % 7  # Sunday=0 .. Saturday=6
    if dow <= 4:
        return anchor - timedelta(days=dow - 1)
    return anchor + timedelta(days=8 - dow)


def iso_weeks_in_year(year: int) -> int:
    # Dec 28 always falls in the last ISO week of its year.
    return date(year, 12, 28).isocalendar()[1]


def generate_weeks(
    start_year: int | None = None,
    now: datetime | None = None,
    tz_name: str | None = None,
) -> list[PeriodBucket]:
    tz = _tz(tz_name)
    current = _now(now, tz)
    first = start_year if start_year is not None else settings.aggregation_start_year

    weeks: list[PeriodBucket] = []
    # ISO year of `now`; Dec 29-31 can already belong to next year's week 1.
    for year in range(first, current.isocalendar()[0] + 1):
        for week in range(1, iso_weeks_in_year(year) + 1):
            start_day = iso_week_start(year, week)
            start = _midnight(start_day, tz)
            if start > current:
                break
            end = _midnight(start_day + timedelta(days=7), tz) - TICK
            weeks.append(
                PeriodBucket(
                    kind=PeriodKind.week,
                    key=week_key(year, week),
                    year=year,
                    start=start,
                    end=end,
                    week=week,
                )
            )
    weeks.reverse()
    return weeks


def generate_months(
    start_year: int | None = None,
    now: datetime | None = None,
    tz_name: str | None = None,
) -> list[PeriodBucket]:
    tz = _tz(tz_name)
    current = _now(now, tz)
    first = start_year if start_year is not None else settings.aggregation_start_year

    months: list[PeriodBucket] = []
    for year in range(first, current.year + 1):
        last_month = current.month if year == current.year else 12
        for month in range(1, last_month + 1):
            next_first = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
            months.append(
                PeriodBucket(
                    kind=PeriodKind.month,
                    key=month_key(year, month),
                    year=year,
                    start=_midnight(date(year, month, 1), tz),
                    end=_midnight(next_first, tz) - TICK,
                    month=month,
                )
            )
    months.reverse()
    return months


def generate_years(
    start_year: int | None = None,
    now: datetime | None = None,
    tz_name: str | None = None,
) -> list[PeriodBucket]:
    tz = _tz(tz_name)
    current = _now(now, tz)
    first = start_year if start_year is not None else settings.aggregation_start_year

    years = [
        PeriodBucket(
            kind=PeriodKind.year,
            key=year_key(year),
            year=year,
            start=_midnight(date(year, 1, 1), tz),
            end=_midnight(date(year + 1, 1, 1), tz) - TICK,
        )
        for year in range(first, current.year + 1)
    ]
    years.reverse()
    return years


_GENERATORS = {
    PeriodKind.week: generate_weeks,
    PeriodKind.month: generate_months,
    PeriodKind.year: generate_years,
}


def generate_periods(
    kind: PeriodKind,
    start_year: int | None = None,
    now: datetime | None = None,
    tz_name: str | None = None,
) -> list[PeriodBucket]:
    return _GENERATORS[PeriodKind(kind)](start_year, now, tz_name)
