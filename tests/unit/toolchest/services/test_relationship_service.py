# -*- coding: utf-8 -*-
"""Location: ./tests/unit/toolchest/services/test_relationship_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

Unit tests for RelationshipService against an in-memory SQLite store.
"""

# Standard
from datetime import datetime, timedelta, timezone

# Third-Party
import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# First-Party
from toolchest.cache import TTLCache
import toolchest.db as db_mod
from toolchest.db import Tag, Tool, ToolTag
from toolchest.schemas import BulkTagOperation, RelationshipFilters, RelationshipSortOptions
from toolchest.services.base_service import ConfirmationRequiredError, NotFoundError, ServiceValidationError, StorageError
from toolchest.services.relationship_service import RelationshipService


@pytest.fixture
def service():
    return RelationshipService(cache=TTLCache(default_ttl=300), confirmation_threshold=50)


@pytest.fixture
def catalog(factory):
    """Three tools and three tags.

    hammer: [hand-tools, steel]; drill: [power-tools]; saw: untagged (inactive);
    tag "unused" has no tools.
    """
    hammer = factory.tool("Hammer", display_order=2)
    drill = factory.tool("Drill", display_order=1)
    saw = factory.tool("Saw", is_active=False, display_order=3)
    hand = factory.tag("Hand Tools", color="#ff0000")
    power = factory.tag("Power Tools")
    steel = factory.tag("Steel")
    unused = factory.tag("Unused")
    factory.assign(hammer, hand)
    factory.assign(hammer, steel)
    factory.assign(drill, power)
    return {"hammer": hammer, "drill": drill, "saw": saw, "hand": hand, "power": power, "steel": steel, "unused": unused}


def count_assignments(db) -> int:
    return db.execute(select(func.count()).select_from(ToolTag)).scalar_one()


def pairs(db):
    return set(db.execute(select(ToolTag.tool_id, ToolTag.tag_id)).all())


class TestListing:
    @pytest.mark.asyncio
    async def test_default_sort_is_tool_name_ascending(self, service, test_db, catalog):
        rows = await service.get_all_relationships(test_db)

        assert [r.tool_name for r in rows] == ["Drill", "Hammer", "Hammer"]
        hammer_rows = [r for r in rows if r.tool_id == catalog["hammer"].id]
        assert all(r.assignment_count == 2 for r in hammer_rows)
        assert hammer_rows[0].assigned_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_search_matches_tool_or_tag_name_case_insensitive(self, service, test_db, catalog):
        by_tag = await service.get_all_relationships(test_db, RelationshipFilters(search="POWER"))
        by_tool = await service.get_all_relationships(test_db, RelationshipFilters(search="ham"))

        assert [(r.tool_name, r.tag_name) for r in by_tag] == [("Drill", "Power Tools")]
        assert {r.tag_name for r in by_tool} == {"Hand Tools", "Steel"}

    @pytest.mark.asyncio
    async def test_search_treats_wildcards_literally(self, service, test_db, catalog):
        assert await service.get_all_relationships(test_db, RelationshipFilters(search="%")) == []

    @pytest.mark.asyncio
    async def test_filters_by_ids_and_active_state(self, service, test_db, catalog, factory):
        factory.assign(catalog["saw"], catalog["steel"])

        inactive = await service.get_all_relationships(test_db, RelationshipFilters(tool_is_active=False))
        by_tag = await service.get_all_relationships(test_db, RelationshipFilters(tag_ids=[catalog["steel"].id]))

        assert [r.tool_name for r in inactive] == ["Saw"]
        assert sorted(r.tool_name for r in by_tag) == ["Hammer", "Saw"]

    @pytest.mark.asyncio
    async def test_sort_descending_by_tag_name(self, service, test_db, catalog):
        rows = await service.get_all_relationships(test_db, sort=RelationshipSortOptions(field="tag_name", direction="desc"))
        assert [r.tag_name for r in rows] == ["Steel", "Power Tools", "Hand Tools"]

    @pytest.mark.asyncio
    async def test_listing_is_cached_until_a_write(self, service, test_db, catalog, factory):
        first = await service.get_all_relationships(test_db)
        # Written behind the service's back: not visible until invalidation
        factory.assign(catalog["saw"], catalog["hand"])
        assert len(await service.get_all_relationships(test_db)) == len(first)

        await service.execute_bulk_operation(test_db, BulkTagOperation(type="assign", tool_ids=[catalog["drill"].id], tag_ids=[catalog["steel"].id]))

        assert len(await service.get_all_relationships(test_db)) == len(first) + 2


class TestToolAssignments:
    @pytest.mark.asyncio
    async def test_returns_current_and_available_tags(self, service, test_db, catalog):
        data = await service.get_tool_tag_assignments(test_db, catalog["hammer"].id)

        assert set(data.current_tag_ids) == {catalog["hand"].id, catalog["steel"].id}
        assert len(data.available_tag_ids) == 4
        assert data.tool_name == "Hammer"

    @pytest.mark.asyncio
    async def test_unknown_tool_raises_not_found(self, service, test_db, catalog):
        with pytest.raises(NotFoundError) as exc_info:
            await service.get_tool_tag_assignments(test_db, "missing")
        assert exc_info.value.details["ids"] == ["missing"]


class TestPreview:
    @pytest.mark.asyncio
    async def test_preview_does_not_write(self, service, test_db, catalog):
        before = pairs(test_db)
        operation = BulkTagOperation(type="assign", tool_ids=[catalog["drill"].id, catalog["saw"].id], tag_ids=[catalog["steel"].id])

        preview = await service.preview_bulk_operation(test_db, operation)

        assert pairs(test_db) == before
        assert preview.summary.new_relationships == 2
        assert preview.summary.total_tools == 2
        drill_change = next(c for c in preview.tools_to_update if c.tool_id == catalog["drill"].id)
        assert drill_change.added_tags == [catalog["steel"].id]
        assert drill_change.new_tags == [catalog["power"].id, catalog["steel"].id]

    @pytest.mark.asyncio
    async def test_unknown_tag_is_reported_and_skipped(self, service, test_db, catalog):
        operation = BulkTagOperation(type="assign", tool_ids=[catalog["drill"].id], tag_ids=["ghost", catalog["steel"].id])

        preview = await service.preview_bulk_operation(test_db, operation)

        assert preview.unknown_tag_ids == ["ghost"]
        assert any("1 tag(s) not found" in w and "ghost" in w for w in preview.warnings)
        assert preview.summary.new_relationships == 1

    @pytest.mark.asyncio
    async def test_unknown_tool_is_reported(self, service, test_db, catalog):
        preview = await service.preview_bulk_operation(test_db, BulkTagOperation(type="assign", tool_ids=["nope"], tag_ids=[catalog["steel"].id]))

        assert preview.unknown_tool_ids == ["nope"]
        assert preview.tools_to_update == []
        assert "This operation will not change any assignments" in preview.warnings

    @pytest.mark.asyncio
    async def test_removing_last_tag_requires_confirmation(self, service, test_db, catalog):
        operation = BulkTagOperation(type="remove", tool_ids=[catalog["drill"].id], tag_ids=[catalog["power"].id])

        preview = await service.preview_bulk_operation(test_db, operation)

        assert preview.requires_confirmation is True
        assert "1 tool(s) will have no tags after this operation" in preview.warnings

    @pytest.mark.asyncio
    async def test_large_operation_requires_confirmation(self, test_db, catalog):
        service = RelationshipService(cache=TTLCache(), confirmation_threshold=2)
        operation = BulkTagOperation(
            type="assign",
            tool_ids=[catalog["drill"].id, catalog["saw"].id],
            tag_ids=[catalog["hand"].id, catalog["unused"].id],
        )

        preview = await service.preview_bulk_operation(test_db, operation)

        assert preview.summary.total_tag_changes == 4
        assert preview.requires_confirmation is True
        assert any("large number of changes (4)" in w for w in preview.warnings)

    @pytest.mark.asyncio
    async def test_missing_ids_are_rejected(self, service, test_db, catalog):
        with pytest.raises(ServiceValidationError) as exc_info:
            await service.preview_bulk_operation(test_db, BulkTagOperation(type="assign", tool_ids=[], tag_ids=[catalog["steel"].id]))
        assert exc_info.value.details["missing_fields"] == ["tool_ids"]


class TestExecute:
    @pytest.mark.asyncio
    async def test_assign_is_idempotent(self, service, test_db, catalog):
        operation = BulkTagOperation(type="assign", tool_ids=[catalog["drill"].id, catalog["saw"].id], tag_ids=[catalog["steel"].id])

        first = await service.execute_bulk_operation(test_db, operation)
        after_first = pairs(test_db)
        second = await service.execute_bulk_operation(test_db, operation)

        assert first.success and first.total_changes == 2
        assert first.tools_affected == 2 and first.tags_affected == 1
        assert second.success and second.total_changes == 0
        assert pairs(test_db) == after_first
        assert (catalog["saw"].id, catalog["steel"].id) in after_first

    @pytest.mark.asyncio
    async def test_removing_absent_pairs_changes_nothing(self, service, test_db, catalog):
        before = pairs(test_db)

        result = await service.bulk_remove_tags(test_db, [catalog["hammer"].id], [catalog["power"].id])

        assert result.success is True
        assert result.total_changes == 0
        assert pairs(test_db) == before

    @pytest.mark.asyncio
    async def test_unconfirmed_destructive_operation_is_refused(self, service, test_db, catalog):
        before = pairs(test_db)
        operation = BulkTagOperation(type="remove", tool_ids=[catalog["drill"].id], tag_ids=[catalog["power"].id])

        with pytest.raises(ConfirmationRequiredError) as exc_info:
            await service.execute_bulk_operation(test_db, operation)

        assert exc_info.value.details["warnings"]
        assert pairs(test_db) == before

    @pytest.mark.asyncio
    async def test_confirmed_destructive_operation_runs(self, service, test_db, catalog):
        result = await service.bulk_remove_tags(test_db, [catalog["drill"].id], [catalog["power"].id])

        assert result.total_changes == 1
        assert (catalog["drill"].id, catalog["power"].id) not in pairs(test_db)

    @pytest.mark.asyncio
    async def test_bulk_assign_with_confirmation_flag(self, test_db, catalog):
        service = RelationshipService(cache=TTLCache(), confirmation_threshold=1)
        tool_ids = [catalog["drill"].id, catalog["saw"].id]

        with pytest.raises(ConfirmationRequiredError):
            await service.bulk_assign_tags(test_db, tool_ids, [catalog["unused"].id])
        result = await service.bulk_assign_tags(test_db, tool_ids, [catalog["unused"].id], confirmed=True)

        assert result.total_changes == 2

    @pytest.mark.asyncio
    async def test_failed_commit_rolls_back_everything(self, service, test_db, catalog, monkeypatch):
        before = count_assignments(test_db)

        def failing_commit():
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(test_db, "commit", failing_commit)
        operation = BulkTagOperation(type="assign", tool_ids=[catalog["drill"].id, catalog["saw"].id], tag_ids=[catalog["steel"].id])

        with pytest.raises(StorageError) as exc_info:
            await service.execute_bulk_operation(test_db, operation)
        monkeypatch.undo()

        assert exc_info.value.details["committed_changes"] == 0
        assert count_assignments(test_db) == before

    @pytest.mark.asyncio
    async def test_execute_invalidates_tag_statistics(self, service, test_db, catalog):
        stats = await service.get_tag_usage_statistics(test_db, catalog["unused"].id)
        assert stats[0].total_tools == 0

        await service.bulk_assign_tags(test_db, [catalog["drill"].id], [catalog["unused"].id])

        stats = await service.get_tag_usage_statistics(test_db, catalog["unused"].id)
        assert stats[0].total_tools == 1


class TestOrphans:
    @pytest.mark.asyncio
    async def test_finds_untagged_tools_and_unused_tags(self, service, test_db, catalog):
        check = await service.find_orphaned_entities(test_db)

        assert [t.name for t in check.orphaned_tools] == ["Saw"]
        assert [t.name for t in check.orphaned_tags] == ["Unused"]
        assert check.can_auto_resolve is True
        assert check.suggested_actions

    @pytest.mark.asyncio
    async def test_unused_system_tag_blocks_auto_resolve(self, service, test_db, catalog, factory):
        factory.tag("Featured", is_system=True)

        check = await service.find_orphaned_entities(test_db)

        assert check.can_auto_resolve is False
        assert any("protected" in action for action in check.suggested_actions)

    @pytest.mark.asyncio
    async def test_auto_resolve_deletes_unused_tags_only(self, service, test_db, catalog):
        result = await service.auto_resolve_orphans(test_db)

        assert result.tags_removed == 1
        assert result.removed_tag_ids == [catalog["unused"].id]
        assert result.tools_reviewed == 1
        assert test_db.get(Tag, catalog["unused"].id) is None
        # Untagged tools are never modified
        assert test_db.get(Tool, catalog["saw"].id) is not None
        assert len(pairs(test_db)) == 3

        after = await service.find_orphaned_entities(test_db)
        assert after.orphaned_tags == []
        assert [t.name for t in after.orphaned_tools] == ["Saw"]
        assert after.can_auto_resolve is False

    @pytest.mark.asyncio
    async def test_auto_resolve_skips_when_system_tag_unused(self, service, test_db, catalog, factory):
        featured = factory.tag("Featured", is_system=True)

        result = await service.auto_resolve_orphans(test_db)

        assert result.tags_removed == 0
        reasons = {s.tag_id: s.reason for s in result.skipped_tags}
        assert reasons[featured.id] == "protected system tag"
        assert reasons[catalog["unused"].id] == "cleanup blocked by protected unused tags"
        assert test_db.get(Tag, catalog["unused"].id) is not None

    @pytest.mark.asyncio
    async def test_auto_resolve_with_nothing_to_do(self, service, test_db, factory):
        tool = factory.tool("Solo")
        tag = factory.tag("Only")
        factory.assign(tool, tag)

        result = await service.auto_resolve_orphans(test_db)

        assert result.tags_removed == 0
        assert result.skipped_tags == []

    @pytest.mark.asyncio
    async def test_failed_cleanup_commits_nothing(self, service, test_db, catalog, monkeypatch):
        def failing_commit():
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(test_db, "commit", failing_commit)

        with pytest.raises(StorageError) as exc_info:
            await service.auto_resolve_orphans(test_db)
        monkeypatch.undo()

        assert "rolled back" in exc_info.value.message
        assert test_db.execute(select(func.count()).select_from(Tag)).scalar_one() == 4
        assert test_db.get(Tag, catalog["unused"].id) is not None
        assert [t.name for t in (await service.find_orphaned_entities(test_db)).orphaned_tags] == ["Unused"]


class TestTagStatistics:
    @pytest.mark.asyncio
    async def test_rank_and_percentage(self, service, test_db, catalog):
        stats = await service.get_tag_usage_statistics(test_db)

        assert [(s.tag_name, s.popularity_rank) for s in stats] == [("Hand Tools", 1), ("Power Tools", 2), ("Steel", 3), ("Unused", 4)]
        hand = stats[0]
        assert hand.total_tools == 1
        assert hand.usage_percentage == pytest.approx(33.33)
        assert hand.tag_color == "#ff0000"
        assert [t.name for t in hand.tools] == ["Hammer"]

    @pytest.mark.asyncio
    async def test_single_tag_keeps_global_rank(self, service, test_db, catalog, factory):
        factory.assign(catalog["saw"], catalog["steel"])

        stats = await service.get_tag_usage_statistics(test_db, catalog["steel"].id)

        assert len(stats) == 1
        assert stats[0].popularity_rank == 1
        assert stats[0].active_tools == 1
        assert stats[0].inactive_tools == 1

    @pytest.mark.asyncio
    async def test_recent_usage_windows(self, service, test_db, factory):
        now = datetime.now(timezone.utc)
        tag = factory.tag("Recent")
        for name, age in (("A", 2), ("B", 20), ("C", 60)):
            factory.assign(factory.tool(name), tag, assigned_at=now - timedelta(days=age))

        stats = await service.get_tag_usage_statistics(test_db, tag.id)

        recent = stats[0].recent_usage
        assert recent.tools_added_this_week == 1
        assert recent.tools_added_this_month == 2
        assert recent.last_assigned_at > now - timedelta(days=3)

    @pytest.mark.asyncio
    async def test_unknown_tag_raises_not_found(self, service, test_db, catalog):
        with pytest.raises(NotFoundError):
            await service.get_tag_usage_statistics(test_db, "missing")

    @pytest.mark.asyncio
    async def test_empty_catalog(self, service, test_db):
        assert await service.get_tag_usage_statistics(test_db) == []


class TestValidation:
    @pytest.mark.asyncio
    async def test_reports_warnings_and_suggestions(self, service, test_db, catalog, factory):
        factory.assign(catalog["saw"], catalog["steel"])
        lonely = factory.tool("Lonely")

        result = await service.validate_relationships(test_db)

        assert result.is_valid is True
        warnings = {issue.code: issue.affected_ids for issue in result.warnings}
        assert warnings["UNTAGGED_TOOLS"] == [lonely.id]
        assert warnings["UNUSED_TAGS"] == [catalog["unused"].id]
        assert result.suggestions[0].code == "INACTIVE_TAGGED_TOOLS"
        assert result.suggestions[0].affected_ids == [catalog["saw"].id]

    @pytest.mark.asyncio
    async def test_unknown_ids_are_errors(self, service, test_db, catalog):
        result = await service.validate_relationships(test_db, tool_ids=[catalog["drill"].id, "ghost-tool"], tag_ids=["ghost-tag"])

        assert result.is_valid is False
        codes = {issue.code: issue.affected_ids for issue in result.errors}
        assert codes["TOOL_NOT_FOUND"] == ["ghost-tool"]
        assert codes["TAG_NOT_FOUND"] == ["ghost-tag"]

    @pytest.mark.asyncio
    async def test_dangling_assignment_is_an_error(self, service):
        # Foreign keys are off on this engine so a broken row can be stored
        engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool)
        db_mod.Base.metadata.create_all(bind=engine)
        db = sessionmaker(bind=engine, expire_on_commit=False)()
        try:
            db.add(ToolTag(tool_id="gone-tool", tag_id="gone-tag", assigned_at=datetime.now(timezone.utc)))
            db.commit()

            result = await service.validate_relationships(db)
        finally:
            db.close()
            engine.dispose()

        assert result.is_valid is False
        assert result.errors[0].code == "DANGLING_ASSIGNMENT"
        assert result.errors[0].affected_ids == ["gone-tool:gone-tag"]


class TestStorageFailures:
    @pytest.fixture
    def broken_db(self, test_db, monkeypatch):
        def failing_execute(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(test_db, "execute", failing_execute)
        return test_db

    @pytest.mark.asyncio
    async def test_listing_failure_is_storage_error(self, service, broken_db):
        with pytest.raises(StorageError) as exc_info:
            await service.get_all_relationships(broken_db)

        assert exc_info.value.status_code == 503
        assert isinstance(exc_info.value.__cause__, OperationalError)

    @pytest.mark.asyncio
    async def test_failed_read_is_not_cached(self, service, broken_db, monkeypatch):
        with pytest.raises(StorageError):
            await service.get_all_relationships(broken_db)
        monkeypatch.undo()

        assert await service.get_all_relationships(broken_db) == []

    @pytest.mark.asyncio
    async def test_orphan_scan_and_statistics_failures(self, service, broken_db):
        with pytest.raises(StorageError):
            await service.find_orphaned_entities(broken_db)
        with pytest.raises(StorageError):
            await service.get_tag_usage_statistics(broken_db)
