# -*- coding: utf-8 -*-
"""Location: ./tests/unit/toolchest/routers/test_analytics_router.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

HTTP tests for the analytics admin endpoints.
"""

# Standard
from datetime import datetime, timedelta, timezone

# Third-Party
from fastapi.testclient import TestClient
import pytest


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def catalog(factory):
    now = datetime.now(timezone.utc)
    drill = factory.tool("Drill")
    level = factory.tool("Level")
    power = factory.tag("Power")
    factory.assign(drill, power)
    factory.usage(drill, [now - timedelta(days=1), now - timedelta(days=2)])
    factory.usage(level, [now - timedelta(hours=3)])
    return {"drill": drill, "level": level, "power": power}


def test_summary_default_window(client, catalog):
    response = client.get("/admin/analytics/summary")

    assert response.status_code == 200
    body = response.json()
    assert body["totalUsage"] == 3
    assert body["totalTools"] == 2
    assert [b["toolName"] for b in body["toolBreakdown"]] == ["Drill", "Level"]
    assert body["timeRange"]["period"] == "day"


def test_summary_with_explicit_range(client, catalog):
    end = datetime.now(timezone.utc)
    params = {"start": (end - timedelta(days=14)).isoformat(), "end": end.isoformat(), "period": "week"}

    body = client.get("/admin/analytics/summary", params=params).json()

    assert body["timeRange"]["period"] == "week"
    assert sum(point["value"] for point in body["series"]) == 3


def test_inverted_range_is_422(client):
    params = {"start": "2025-02-01T00:00:00Z", "end": "2025-01-01T00:00:00Z"}

    response = client.get("/admin/analytics/summary", params=params)

    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert body["details"][0]["field"] == "time_range"


def test_unknown_period_is_422(client):
    assert client.get("/admin/analytics/summary", params={"period": "fortnight"}).status_code == 422


def test_assignment_changes_refresh_cached_analytics(client, catalog):
    params = {"tag_ids": [catalog["power"].id]}
    before = client.get("/admin/analytics/summary", params=params).json()

    operation = {"type": "assign", "toolIds": [catalog["level"].id], "tagIds": [catalog["power"].id]}
    assert client.post("/admin/relationships/execute", json=operation).status_code == 200
    after = client.get("/admin/analytics/summary", params=params).json()

    assert before["totalTools"] == 1
    assert after["totalTools"] == 2
    assert after["totalUsage"] == 3


def test_charts(client, catalog):
    charts = client.get("/admin/analytics/charts").json()
    assert [chart["id"] for chart in charts] == ["usage_over_time", "top_tools", "usage_by_tag"]
    pie = charts[2]
    assert [(p["label"], p["value"]) for p in pie["data"]] == [("Power", 2), ("Untagged", 1)]


def test_tool_usage(client, catalog):
    usage = client.get("/admin/analytics/usage", params={"tool_ids": [catalog["level"].id]}).json()
    assert len(usage) == 1
    assert usage[0]["toolSlug"] == "level"
    assert usage[0]["usageCount"] == 1
    assert set(usage[0]["growthRates"]) == {"dailyGrowth", "weeklyGrowth", "monthlyGrowth", "unbounded"}


def test_system_metrics(client):
    response = client.get("/admin/analytics/system")
    assert response.status_code == 200
    assert response.json()["status"] in ("healthy", "degraded", "unhealthy")


def test_export(client, catalog):
    response = client.post("/admin/analytics/export", json={"includeCharts": False, "includeSystemMetrics": False})

    assert response.status_code == 200
    body = response.json()
    assert body["metadata"]["format"] == "json"
    assert body["summary"]["totalUsage"] == 3
    assert body["charts"] == []
    assert body["systemMetrics"] is None
    assert len(body["toolUsage"]) == 2


def test_export_without_body_uses_defaults(client, catalog):
    body = client.post("/admin/analytics/export").json()
    assert len(body["charts"]) == 3


@pytest.mark.parametrize(
    "start,end,period",
    [
        ("0500-01-01T00:00:00Z", "2025-01-01T00:00:00Z", "year"),
        ("9999-12-30T00:00:00Z", "9999-12-31T00:00:00Z", "day"),
    ],
)
def test_summary_at_the_edges_of_the_calendar(client, catalog, start, end, period):
    response = client.get("/admin/analytics/summary", params={"start": start, "end": end, "period": period})

    assert response.status_code == 200
    assert response.json()["periodComparison"]["previousPeriodUsage"] == 0


def test_range_outside_utc_is_422(client):
    params = {"start": "0001-01-01T00:00:00+05:00", "end": "2025-01-01T00:00:00Z"}

    response = client.get("/admin/analytics/summary", params=params)

    assert response.status_code == 422
    assert response.json()["success"] is False


def test_status(client, catalog):
    response = client.get("/admin/analytics/status")

    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
    body = response.json()
    assert body["status"] == "healthy"
    assert (body["healthyServices"], body["totalServices"]) == (4, 4)
    assert body["checks"] == []


def test_status_detailed_and_degraded(client, app, catalog, monkeypatch):
    async def broken_charts(db, analytics_filter=None):
        raise RuntimeError("renderer missing")

    monkeypatch.setattr(app.state.analytics_service, "generate_charts", broken_charts)

    response = client.get("/admin/analytics/status", params={"detailed": True})

    assert response.status_code == 206
    body = response.json()
    assert body["status"] == "degraded"
    assert body["availability"] == 75.0
    assert {check["name"]: check["status"] for check in body["checks"]}["charts"] == "unhealthy"
    assert body["health"]["overallStatus"] in ("healthy", "degraded", "unhealthy")


def test_status_unhealthy_is_503(client, app, catalog, monkeypatch):
    async def broken_summary(db, analytics_filter=None):
        raise RuntimeError("store down")

    monkeypatch.setattr(app.state.analytics_service, "get_analytics_summary", broken_summary)

    response = client.get("/admin/analytics/status")

    assert response.status_code == 503
    assert response.json()["healthyServices"] == 1
