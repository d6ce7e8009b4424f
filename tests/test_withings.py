"""Withings client (against httpx.MockTransport) and payload parser tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from app.sensors.withings import (
    WithingsClient,
    WithingsError,
    parse_activities,
    parse_sleep_series,
    parse_weight_groups,
    parse_workouts,
)


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


def _client(handler, max_pages: int = 100) -> WithingsClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://withings.test")
    return WithingsClient(client_id="cid", client_secret="secret", http=http, max_pages=max_pages)


class TestClient:
    @pytest.mark.asyncio
    async def test_getmeas_uses_v1_path_and_bearer(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"status": 0, "body": {"measuregrps": [{"grpid": 1}], "more": 0}})

        async with _client(handler) as client:
            groups = await client.fetch_all("tok", {"action": "getmeas", "meastype": 1, "startdate": None})

        assert groups == [{"grpid": 1}]
        assert seen[0].url.path == "/measure"
        assert seen[0].headers["Authorization"] == "Bearer tok"
        form = _form(seen[0])
        assert form["action"] == "getmeas"
        assert form["offset"] == "0"
        assert "startdate" not in form

    @pytest.mark.asyncio
    async def test_paths_per_action(self):
        paths = {}

        def handler(request):
            paths[_form(request)["action"]] = request.url.path
            return httpx.Response(200, json={"status": 0, "body": {"series": []}})

        async with _client(handler) as client:
            await client.fetch_all("tok", {"action": "getactivity"})
            await client.fetch_all("tok", {"action": "getworkouts"})
            await client.fetch_all("tok", {"action": "getsummary"})

        assert paths == {"getactivity": "/v2/measure", "getworkouts": "/v2/measure", "getsummary": "/v2/sleep"}

    @pytest.mark.asyncio
    async def test_follows_pagination(self):
        pages = {
            "0": {"series": [{"id": 1}, {"id": 2}], "more": True, "offset": 2},
            "2": {"series": [{"id": 3}], "more": False},
        }

        def handler(request):
            return httpx.Response(200, json={"status": 0, "body": pages[_form(request)["offset"]]})

        async with _client(handler) as client:
            items = await client.fetch_all("tok", {"action": "getworkouts"})
        assert [i["id"] for i in items] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_stops_at_page_cap(self):
        calls = []

        def handler(request):
            calls.append(request)
            offset = int(_form(request)["offset"])
            return httpx.Response(
                200, json={"status": 0, "body": {"series": [{"o": offset}], "more": 1, "offset": offset + 1}}
            )

        async with _client(handler, max_pages=3) as client:
            items = await client.fetch_all("tok", {"action": "getworkouts"})
        assert len(calls) == 3
        assert [i["o"] for i in items] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_nonzero_status_raises(self):
        def handler(request):
            return httpx.Response(200, json={"status": 401, "error": "invalid_token"})

        async with _client(handler) as client:
            with pytest.raises(WithingsError) as exc_info:
                await client.fetch_all("tok", {"action": "getactivity"})
        assert exc_info.value.status == 401
        assert "invalid_token" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_http_error_wrapped(self):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        async with _client(handler) as client:
            with pytest.raises(WithingsError) as exc_info:
                await client.fetch_all("tok", {"action": "getactivity"})
        assert exc_info.value.status == 503
        assert isinstance(exc_info.value.__cause__, httpx.HTTPStatusError)

    @pytest.mark.asyncio
    async def test_transport_error_wrapped(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        async with _client(handler) as client:
            with pytest.raises(WithingsError) as exc_info:
                await client.refresh_access_token("r1")
        assert exc_info.value.status is None
        assert isinstance(exc_info.value.__cause__, httpx.TransportError)

    @pytest.mark.asyncio
    async def test_refresh_token_form(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(
                200,
                json={"status": 0, "body": {"access_token": "a2", "refresh_token": "r2", "expires_in": 10800}},
            )

        async with _client(handler) as client:
            body = await client.refresh_access_token("r1")

        assert body["access_token"] == "a2"
        assert seen[0].url.path == "/v2/oauth2"
        assert "Authorization" not in seen[0].headers
        form = _form(seen[0])
        assert form["action"] == "requesttoken"
        assert form["grant_type"] == "refresh_token"
        assert form["client_id"] == "cid"
        assert form["refresh_token"] == "r1"


class TestParsers:
    def test_weight_scaled_by_unit(self):
        groups = [
            {
                "grpid": 7,
                "date": 1761030000,
                "measures": [
                    {"type": 1, "value": 70250, "unit": -3},
                    {"type": 6, "value": 1510, "unit": -2},
                ],
            }
        ]
        [row] = parse_weight_groups(groups)
        assert row["timestamp"] == datetime.fromtimestamp(1761030000, tz=timezone.utc)
        assert row["data"]["weight"] == pytest.approx(70.25)
        assert row["data"]["fat_mass"] == pytest.approx(15.1)
        assert "muscle_mass" not in row["data"]
        assert row["metadata"]["grpid"] == 7

    def test_groups_without_weight_skipped(self):
        assert parse_weight_groups([{"date": 1, "measures": [{"type": 6, "value": 1, "unit": 0}]}]) == []

    def test_activity_local_midnight(self):
        [row] = parse_activities(
            [{"date": "2025-10-20", "steps": 8000, "intense": 12, "moderate": 20, "distance": None}],
            tz_name="Europe/Oslo",
        )
        assert row["timestamp"].hour == 0
        assert row["timestamp"].utcoffset() == timedelta(hours=2)
        assert row["data"] == {"steps": 8000, "intense": 12, "moderate": 20}

    def test_sleep_duration_in_seconds(self):
        [row] = parse_sleep_series(
            [{"startdate": 1761000000, "enddate": 1761030000, "data": {"total_sleep_time": 27000, "sleep_score": 80}}]
        )
        assert row["data"]["sleep_duration"] == 27000
        assert row["data"]["sleep_score"] == 80
        assert row["metadata"]["enddate"] == 1761030000

    def test_workout_sport_type_and_duration(self):
        rows = parse_workouts(
            [
                {"category": 2, "startdate": 1000, "enddate": 2800, "data": {"calories": 300, "distance": 5000}},
                {"category": 306, "startdate": 5000},
                {"category": 9999, "startdate": 6000, "enddate": 6060},
            ]
        )
        assert rows[0]["data"] == {"sport_type": "running", "duration": 1800, "calories": 300, "distance": 5000}
        assert rows[1]["data"] == {"sport_type": "indoor_walking"}
        assert rows[2]["data"]["sport_type"] == "other"
