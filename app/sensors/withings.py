"""Withings API client and payload parsers.

Every Withings response is a JSON envelope `{"status": int, "body": {...},
"error": str?}`; any status other than 0 is raised as WithingsError. List
endpoints page with `more` / `offset` in the body.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from typing import Any
from zoneinfo import ZoneInfo

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

MEASURE_WEIGHT = 1
MEASURE_FAT_MASS = 6
MEASURE_MUSCLE_MASS = 76

# Withings workout category -> sport_type tag
WORKOUT_CATEGORIES: dict[int, str] = {
    1: "walking",
    2: "running",
    3: "hiking",
    6: "cycling",
    7: "swimming",
    16: "weights",
    28: "yoga",
    34: "skiing",
    36: "other",
    128: "no_activity",
    187: "rowing",
    306: "indoor_walking",
    307: "indoor_running",
    308: "indoor_cycling",
}

_DATA_KEYS = {
    "getmeas": "measuregrps",
    "getactivity": "activities",
    "getworkouts": "series",
    "getsummary": "series",
}


class WithingsError(Exception):
    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


def _http_timeout() -> httpx.Timeout:
    return httpx.Timeout(settings.withings_timeout_seconds, connect=10.0)


class WithingsClient:
    def __init__(
        self,
        base_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        http: httpx.AsyncClient | None = None,
        max_pages: int | None = None,
    ):
        self.client_id = client_id if client_id is not None else settings.withings_client_id
        self.client_secret = client_secret if client_secret is not None else settings.withings_client_secret
        self.max_pages = max_pages or settings.withings_max_pages
        self._http = http or httpx.AsyncClient(
            base_url=base_url or settings.withings_api_url,
            timeout=_http_timeout(),
        )

    async def __aenter__(self) -> "WithingsClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _post(self, path: str, form: dict[str, Any], access_token: str | None = None) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}
        clean = {k: str(v) for k, v in form.items() if v is not None}
        try:
            response = await self._http.post(path, data=clean, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise WithingsError(
                f"Withings HTTP error {exc.response.status_code} on {path}", exc.response.status_code
            ) from exc
        except httpx.HTTPError as exc:
            raise WithingsError(f"Withings request failed on {path}: {exc}") from exc
        payload = response.json()
        status = payload.get("status")
        if status != 0:
            raise WithingsError(f"Withings API error: {payload.get('error') or 'Unknown error'}", status)
        return payload.get("body") or {}

    async def refresh_access_token(self, refresh_token: str) -> dict[str, Any]:
        """Exchange a refresh token; body has access_token, refresh_token, expires_in."""
        return await self._post(
            "/v2/oauth2",
            {
                "action": "requesttoken",
                "grant_type": "refresh_token",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
            },
        )

    async def fetch_measurements(self, access_token: str, params: dict[str, Any]) -> dict[str, Any]:
        action = params["action"]
        path = "/measure" if action == "getmeas" else "/v2/measure"
        return await self._post(path, params, access_token)

    async def fetch_sleep(self, access_token: str, params: dict[str, Any]) -> dict[str, Any]:
        return await self._post("/v2/sleep", params, access_token)

    async def fetch_all(self, access_token: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Follow `more`/`offset` pagination, stopping at `max_pages`."""
        action = params["action"]
        fetch = self.fetch_sleep if action == "getsummary" else self.fetch_measurements
        data_key = _DATA_KEYS.get(action, "series")

        items: list[dict[str, Any]] = []
        offset = 0
        page = 0
        while True:
            page += 1
            body = await fetch(access_token, {**params, "offset": offset})
            batch = body.get(data_key) or []
            if isinstance(batch, list):
                items.extend(batch)

            if not body.get("more"):
                break
            offset = body.get("offset") or 0
            if page >= self.max_pages:
                logger.warning("Withings %s stopped at %d pages", action, page)
                break
        return items


# ---------------------------------------------------------------------------
# Parsers -> event rows (timestamp, data, metadata)
# ---------------------------------------------------------------------------


def _scaled(measures: list[dict[str, Any]], measure_type: int) -> float | None:
    for m in measures:
        if m.get("type") == measure_type:
            return m["value"] * 10 ** m.get("unit", 0)
    return None


def _from_epoch(seconds: int | float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


def parse_weight_groups(groups: list[dict[str, Any]]) -> list[dict[str, Any]]:
    parsed = []
    for grp in groups:
        measures = grp.get("measures") or []
        weight = _scaled(measures, MEASURE_WEIGHT)
        if weight is None:
            continue
        parsed.append(
            {
                "timestamp": _from_epoch(grp["date"]),
                "data": _compact(
                    {
                        "weight": weight,
                        "fat_mass": _scaled(measures, MEASURE_FAT_MASS),
                        "muscle_mass": _scaled(measures, MEASURE_MUSCLE_MASS),
                    }
                ),
                "metadata": {"grpid": grp.get("grpid"), "deviceid": grp.get("deviceid")},
            }
        )
    return parsed


def parse_activities(activities: list[dict[str, Any]], tz_name: str | None = None) -> list[dict[str, Any]]:
    """Daily activity rows; `date` is a local YYYY-MM-DD, stamped at local midnight."""
    tz = ZoneInfo(tz_name or settings.default_tz)
    parsed = []
    for activity in activities:
        day = date.fromisoformat(activity["date"])
        parsed.append(
            {
                "timestamp": datetime.combine(day, time.min, tzinfo=tz),
                "data": _compact(
                    {
                        "steps": activity.get("steps"),
                        "distance": activity.get("distance"),
                        "calories": activity.get("calories"),
                        "elevation": activity.get("elevation"),
                        "soft": activity.get("soft"),
                        "moderate": activity.get("moderate"),
                        "intense": activity.get("intense"),
                        "hr_average": activity.get("hr_average"),
                        "hr_min": activity.get("hr_min"),
                        "hr_max": activity.get("hr_max"),
                    }
                ),
                "metadata": {"modified": activity.get("modified")},
            }
        )
    return parsed


def parse_sleep_series(series: list[dict[str, Any]]) -> list[dict[str, Any]]:
    parsed = []
    for sleep in series:
        data = sleep.get("data") or {}
        parsed.append(
            {
                "timestamp": _from_epoch(sleep["startdate"]),
                "data": _compact(
                    {
                        "sleep_duration": data.get("total_sleep_time"),
                        "sleep_deep": data.get("deepsleepduration"),
                        "sleep_light": data.get("lightsleepduration"),
                        "sleep_rem": data.get("remsleepduration"),
                        "wakeup_duration": data.get("wakeupduration"),
                        "sleep_score": data.get("sleep_score"),
                        "hr_average": data.get("hr_average"),
                        "rr_average": data.get("rr_average"),
                    }
                ),
                "metadata": {
                    "enddate": sleep.get("enddate"),
                    "modified": sleep.get("modified"),
                    "model": sleep.get("model"),
                },
            }
        )
    return parsed


def parse_workouts(series: list[dict[str, Any]]) -> list[dict[str, Any]]:
    parsed = []
    for workout in series:
        data = workout.get("data") or {}
        start, end = workout["startdate"], workout.get("enddate")
        parsed.append(
            {
                "timestamp": _from_epoch(start),
                "data": _compact(
                    {
                        "sport_type": WORKOUT_CATEGORIES.get(workout.get("category"), "other"),
                        "duration": (end - start) if end is not None else None,
                        "calories": data.get("calories"),
                        "distance": data.get("distance"),
                        "elevation": data.get("elevation"),
                        "intensity": data.get("intensity"),
                        "hr_average": data.get("hr_average"),
                        "hr_min": data.get("hr_min"),
                        "hr_max": data.get("hr_max"),
                    }
                ),
                "metadata": {"category": workout.get("category"), "modified": workout.get("modified")},
            }
        )
    return parsed
