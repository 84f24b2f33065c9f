# -*- coding: utf-8 -*-
"""Location: ./tests/unit/toolchest/routers/test_monitoring_router.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

HTTP tests for the monitoring endpoints, health probe and error handling.
"""

# Standard
import asyncio
from datetime import datetime, timedelta, timezone

# Third-Party
from fastapi.testclient import TestClient
import pytest

# First-Party
from toolchest.routers.relationships import get_relationship_service
from toolchest.services.base_service import StorageError


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def analytics(app):
    return app.state.analytics_service


def test_health(client, app):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] in ("healthy", "degraded")
    assert "version" in body


def test_requests_are_timed(client, app):
    client.get("/health")
    client.get("/health")
    _, _, _, total = app.state.performance_service.get_request_metrics()
    assert total == 2


def test_dashboard(client):
    response = client.get("/admin/monitoring/dashboard")

    assert response.status_code == 200
    body = response.json()
    assert body["overallStatus"] in ("healthy", "degraded", "unhealthy")
    assert [check["name"] for check in body["healthChecks"]] == ["database", "memory", "api"]


def test_metrics_limit_is_validated(client):
    response = client.get("/admin/monitoring/metrics", params={"limit": 0})
    assert response.status_code == 422
    assert response.json()["success"] is False


def test_metrics_history(client):
    assert client.get("/admin/monitoring/metrics").json() == []


def test_current_metrics_are_sampled_not_recorded(client):
    response = client.get("/admin/monitoring/metrics", params={"current": True})

    assert response.status_code == 200
    [snapshot] = response.json()
    assert "memoryUsagePercent" in snapshot
    assert client.get("/admin/monitoring/metrics").json() == []


def test_metrics_history_time_filters(client, analytics, test_db):
    asyncio.run(analytics.collect_metrics(test_db))
    later = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()

    assert client.get("/admin/monitoring/metrics", params={"from": later}).json() == []
    assert len(client.get("/admin/monitoring/metrics", params={"to": later}).json()) == 1


def test_alert_lifecycle(client, analytics):
    alert = analytics.raise_alert("disk_usage", 85, 95)

    listed = client.get("/admin/monitoring/alerts").json()
    acknowledged = client.patch(f"/admin/monitoring/alerts/{alert.id}", json={"action": "acknowledge", "acknowledgedBy": "ops"}).json()
    resolved = client.patch(f"/admin/monitoring/alerts/{alert.id}", json={"action": "resolve"}).json()

    assert [a["id"] for a in listed] == [alert.id]
    assert acknowledged["status"] == "acknowledged"
    assert acknowledged["acknowledgedBy"] == "ops"
    assert resolved["status"] == "resolved"
    assert client.get("/admin/monitoring/alerts").json() == []
    assert len(client.get("/admin/monitoring/alerts", params={"include_resolved": True}).json()) == 1


def test_alert_severity_filter(client, analytics):
    analytics.raise_alert("disk_usage", 85, 200)
    analytics.raise_alert("memory_usage", 80, 82)

    critical = client.get("/admin/monitoring/alerts", params={"severity": "critical"}).json()

    assert [a["metricName"] for a in critical] == ["disk_usage"]


def test_unknown_alert_is_404(client):
    response = client.patch("/admin/monitoring/alerts/missing", json={"action": "resolve"})
    assert response.status_code == 404
    assert response.json()["details"] == {"ids": ["missing"]}


def test_invalid_alert_action_is_422(client, analytics):
    alert = analytics.raise_alert("disk_usage", 85, 95)
    assert client.patch(f"/admin/monitoring/alerts/{alert.id}", json={"action": "snooze"}).status_code == 422


def test_error_log_endpoints(client, analytics):
    warning = analytics.log_error("Slow import", level="warning")
    analytics.log_error("Import crashed", level="critical")

    warnings = client.get("/admin/monitoring/errors", params={"levels": ["warning"]}).json()
    resolved = client.patch(f"/admin/monitoring/errors/{warning.id}/resolve").json()
    unresolved = client.get("/admin/monitoring/errors", params={"resolved": False}).json()

    assert [e["message"] for e in warnings] == ["Slow import"]
    assert resolved["resolved"] is True
    assert [e["message"] for e in unresolved] == ["Import crashed"]
    assert client.patch("/admin/monitoring/errors/missing/resolve").status_code == 404


def test_server_errors_are_recorded(client, app, analytics):
    class FailingService:
        async def find_orphaned_entities(self, db):
            raise StorageError("Store unavailable", context="find orphaned entities")

    app.dependency_overrides[get_relationship_service] = lambda: FailingService()

    response = client.get("/admin/relationships/orphans")

    assert response.status_code == 503
    assert response.json() == {"message": "Store unavailable", "success": False}
    errors = client.get("/admin/monitoring/errors").json()
    assert errors[0]["message"] == "Store unavailable"
    assert errors[0]["context"]["path"] == "/admin/relationships/orphans"
