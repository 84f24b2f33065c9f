# -*- coding: utf-8 -*-
"""Location: ./tests/unit/toolchest/routers/test_relationships_router.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

HTTP tests for the relationship admin endpoints.
"""

# Third-Party
from fastapi.testclient import TestClient
import pytest


@pytest.fixture
def client(app):
    # No context manager: the lifespan would initialise the file database
    return TestClient(app)


@pytest.fixture
def catalog(factory):
    hammer = factory.tool("Hammer")
    saw = factory.tool("Saw")
    wood = factory.tag("Wood")
    metal = factory.tag("Metal")
    factory.assign(hammer, metal)
    factory.assign(saw, wood)
    return {"hammer": hammer, "saw": saw, "wood": wood, "metal": metal}


def test_list_relationships(client, catalog):
    response = client.get("/admin/relationships/", params={"sort_field": "tool_name", "sort_direction": "desc"})

    assert response.status_code == 200
    body = response.json()
    assert [(r["toolName"], r["tagName"]) for r in body] == [("Saw", "Wood"), ("Hammer", "Metal")]


def test_list_relationships_filters(client, catalog):
    response = client.get("/admin/relationships/", params={"search": "met"})
    assert [r["toolId"] for r in response.json()] == [catalog["hammer"].id]


def test_tool_assignments(client, catalog):
    response = client.get(f"/admin/relationships/assignments/{catalog['hammer'].id}")

    assert response.status_code == 200
    body = response.json()
    assert body["currentTagIds"] == [catalog["metal"].id]
    assert body["availableTagIds"] == [catalog["metal"].id, catalog["wood"].id]


def test_unknown_tool_is_404(client, catalog):
    response = client.get("/admin/relationships/assignments/missing")

    assert response.status_code == 404
    assert response.json() == {"message": "Tool not found: missing", "success": False, "details": {"ids": ["missing"]}}


def test_preview_does_not_write(client, catalog):
    operation = {"type": "assign", "toolIds": [catalog["hammer"].id, "ghost"], "tagIds": [catalog["wood"].id]}

    response = client.post("/admin/relationships/preview", json=operation)

    assert response.status_code == 200
    body = response.json()
    assert body["summary"]["newRelationships"] == 1
    assert body["unknownToolIds"] == ["ghost"]
    assert len(client.get("/admin/relationships/").json()) == 2


def test_execute_assign(client, catalog):
    operation = {"type": "assign", "toolIds": [catalog["hammer"].id, catalog["saw"].id], "tagIds": [catalog["wood"].id, catalog["metal"].id]}

    response = client.post("/admin/relationships/execute", json=operation)

    assert response.status_code == 200
    assert response.json()["totalChanges"] == 2
    assert len(client.get("/admin/relationships/").json()) == 4


def test_execute_requires_confirmation_for_untagging(client, catalog):
    operation = {"type": "remove", "toolIds": [catalog["hammer"].id], "tagIds": [catalog["metal"].id]}

    refused = client.post("/admin/relationships/execute", json=operation)
    confirmed = client.post("/admin/relationships/execute", json={**operation, "requiresConfirmation": True})

    assert refused.status_code == 400
    assert refused.json()["success"] is False
    assert any("no tags" in warning for warning in refused.json()["details"]["warnings"])
    assert confirmed.status_code == 200
    assert confirmed.json()["totalChanges"] == 1


def test_execute_with_missing_ids_is_400(client, catalog):
    response = client.post("/admin/relationships/execute", json={"type": "assign", "toolIds": [], "tagIds": [catalog["wood"].id]})

    assert response.status_code == 400
    assert response.json()["details"]["missing_fields"] == ["tool_ids"]


def test_execute_with_unknown_type_is_422(client):
    response = client.post("/admin/relationships/execute", json={"type": "rename", "toolIds": ["a"], "tagIds": ["b"]})

    assert response.status_code == 422
    assert response.json()["success"] is False


def test_orphans_with_protected_tag_block_cleanup(client, catalog, factory):
    factory.tool("Loose Bolt")
    factory.tag("Unused")
    factory.tag("Core", is_system=True)

    orphans = client.get("/admin/relationships/orphans").json()
    resolved = client.post("/admin/relationships/auto-resolve").json()

    assert [t["name"] for t in orphans["orphanedTools"]] == ["Loose Bolt"]
    assert [t["name"] for t in orphans["orphanedTags"]] == ["Core", "Unused"]
    assert orphans["canAutoResolve"] is False
    assert resolved["tagsRemoved"] == 0
    assert len(resolved["skippedTags"]) == 2


def test_auto_resolve_removes_unused_tags(client, catalog, factory):
    unused = factory.tag("Unused")

    resolved = client.post("/admin/relationships/auto-resolve").json()

    assert resolved["removedTagIds"] == [unused.id]
    assert client.get("/admin/relationships/orphans").json()["orphanedTags"] == []


def test_tag_stats(client, catalog):
    response = client.get("/admin/relationships/tag-stats", params={"tag_id": catalog["wood"].id})

    assert response.status_code == 200
    [stats] = response.json()
    assert stats["tagName"] == "Wood"
    assert stats["totalTools"] == 1
    assert stats["usagePercentage"] == 50.0


def test_tag_stats_unknown_tag_is_404(client):
    assert client.get("/admin/relationships/tag-stats", params={"tag_id": "missing"}).status_code == 404


def test_validation_report(client, catalog):
    response = client.get("/admin/relationships/validation")
    assert response.status_code == 200
    assert response.json()["isValid"] is True
