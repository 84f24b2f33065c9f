# -*- coding: utf-8 -*-
"""Location: ./toolchest/services/relationship_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

Relationship Service Implementation.
This module manages the many-to-many relation between catalog tools and tags:
- Listing assignments with filtering and stable sorting
- Previewing and executing bulk assign/remove operations in one transaction
- Detecting untagged tools and unused tags, and cleaning up unused tags
- Tag usage statistics and relationship consistency checks

Listings and statistics are cached; every write invalidates the cached views.
"""

# Standard
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

# Third-Party
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

# First-Party
from toolchest.cache import TTLCache
from toolchest.config import settings
from toolchest.db import as_utc, Tag, Tool, ToolTag, utc_now
from toolchest.schemas import (
    BulkOperationPreview,
    BulkOperationResult,
    BulkOperationSummary,
    BulkTagOperation,
    OrphanedEntityCheck,
    OrphanedTag,
    OrphanedTool,
    OrphanResolutionResult,
    RecentTagUsage,
    RelationshipFilters,
    RelationshipSortOptions,
    RelationshipValidationIssue,
    RelationshipValidationResult,
    SkippedTag,
    TaggedToolSummary,
    TagUsageStatistics,
    ToolChangePreview,
    ToolTagAssignmentData,
    ToolTagRelationship,
)
from toolchest.services.base_service import BaseService, ConfirmationRequiredError, NotFoundError, StorageError
from toolchest.services.logging_service import LoggingService

# Initialize logging service first
logging_service = LoggingService()
logger = logging_service.get_logger(__name__)

RELATIONSHIPS_CACHE_PREFIX = "relationships"
TAG_USAGE_CACHE_PREFIX = "tag_usage"
# Analytics views (charts by tag) depend on assignments as well
ANALYTICS_CACHE_PREFIX = "analytics"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_SORT_KEYS: Dict[str, Callable[[ToolTagRelationship], Any]] = {
    "tool_name": lambda r: r.tool_name.casefold(),
    "tag_name": lambda r: r.tag_name.casefold(),
    "tool_display_order": lambda r: r.tool_display_order,
    "assignment_count": lambda r: r.assignment_count,
    "last_modified": lambda r: r.last_modified or _EPOCH,
}


def sort_relationships(relationships: Sequence[ToolTagRelationship], sort: RelationshipSortOptions) -> List[ToolTagRelationship]:
    """Order relationships by the requested field.

    Equal keys keep the (tool id, tag id) ascending order in both directions.

    Args:
        relationships: Rows to order.
        sort: Field and direction.

    Returns:
        List[ToolTagRelationship]: A new, ordered list.

    Examples:
        >>> rows = [
        ...     ToolTagRelationship(tool_id="t2", tag_id="g1", tool_name="Beta", tag_name="x", tool_slug="b", tag_slug="x", tool_is_active=True, assignment_count=1),
        ...     ToolTagRelationship(tool_id="t1", tag_id="g2", tool_name="Alpha", tag_name="y", tool_slug="a", tag_slug="y", tool_is_active=True, assignment_count=1),
        ...     ToolTagRelationship(tool_id="t1", tag_id="g1", tool_name="Alpha", tag_name="x", tool_slug="a", tag_slug="x", tool_is_active=True, assignment_count=1),
        ... ]
        >>> [(r.tool_id, r.tag_id) for r in sort_relationships(rows, RelationshipSortOptions(field="assignment_count", direction="desc"))]
        [('t1', 'g1'), ('t1', 'g2'), ('t2', 'g1')]
        >>> [r.tool_name for r in sort_relationships(rows, RelationshipSortOptions(field="tool_name", direction="desc"))]
        ['Beta', 'Alpha', 'Alpha']
    """
    ordered = sorted(relationships, key=lambda r: (r.tool_id, r.tag_id))
    # list.sort is stable for reverse=True too, so ties stay in id order
    ordered.sort(key=_SORT_KEYS[sort.field], reverse=sort.direction == "desc")
    return ordered


class RelationshipService(BaseService):
    """Service for managing tool/tag assignments.

    Construct one per application and pass the request's session to each
    call::

        service = RelationshipService()
        preview = await service.preview_bulk_operation(db, operation)
    """

    def __init__(self, cache: Optional[TTLCache] = None, cache_ttl: Optional[float] = None, confirmation_threshold: Optional[int] = None) -> None:
        """Initialize the relationship service.

        Args:
            cache: Optional shared cache.
            cache_ttl: TTL for listings and statistics.
            confirmation_threshold: Change count above which bulk operations need confirmation.
        """
        super().__init__(cache=cache, cache_ttl=settings.relationship_cache_ttl if cache_ttl is None else cache_ttl)
        self.confirmation_threshold = settings.bulk_confirmation_threshold if confirmation_threshold is None else confirmation_threshold

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def get_all_relationships(
        self,
        db: Session,
        filters: Optional[RelationshipFilters] = None,
        sort: Optional[RelationshipSortOptions] = None,
    ) -> List[ToolTagRelationship]:
        """List tool/tag assignments.

        Args:
            db: Database session.
            filters: Optional search, id and active-state filters.
            sort: Optional sort field and direction (default tool name ascending).

        Returns:
            List[ToolTagRelationship]: Matching assignments.

        Raises:
            StorageError: If the store cannot be read.
        """
        filters = filters or RelationshipFilters()
        sort = sort or RelationshipSortOptions()
        key = self.cache_key(RELATIONSHIPS_CACHE_PREFIX, filters, sort)
        try:
            return await self.get_cached(key, lambda: self._load_relationships(db, filters, sort))
        except SQLAlchemyError as e:
            self.handle_error(e, "list relationships")

    def _load_relationships(self, db: Session, filters: RelationshipFilters, sort: RelationshipSortOptions) -> List[ToolTagRelationship]:
        tag_counts = select(ToolTag.tool_id, func.count().label("tag_count")).group_by(ToolTag.tool_id).subquery()
        stmt = (
            select(ToolTag.assigned_at, Tool, Tag, tag_counts.c.tag_count)
            .select_from(ToolTag)
            .join(Tool, Tool.id == ToolTag.tool_id)
            .join(Tag, Tag.id == ToolTag.tag_id)
            .join(tag_counts, tag_counts.c.tool_id == ToolTag.tool_id)
        )
        if filters.search:
            needle = filters.search.lower()
            stmt = stmt.where(func.lower(Tool.name).contains(needle, autoescape=True) | func.lower(Tag.name).contains(needle, autoescape=True))
        if filters.tool_ids is not None:
            stmt = stmt.where(Tool.id.in_(filters.tool_ids))
        if filters.tag_ids is not None:
            stmt = stmt.where(Tag.id.in_(filters.tag_ids))
        if filters.tool_is_active is not None:
            stmt = stmt.where(Tool.is_active == filters.tool_is_active)

        relationships = [
            ToolTagRelationship(
                tool_id=tool.id,
                tag_id=tag.id,
                tool_name=tool.name,
                tag_name=tag.name,
                tool_slug=tool.slug,
                tag_slug=tag.slug,
                tool_is_active=tool.is_active,
                tag_color=tag.color,
                tool_display_order=tool.display_order,
                assignment_count=tag_count,
                assigned_at=as_utc(assigned_at),
                last_modified=as_utc(tool.updated_at),
            )
            for assigned_at, tool, tag, tag_count in db.execute(stmt).all()
        ]
        return sort_relationships(relationships, sort)

    async def get_tool_tag_assignments(self, db: Session, tool_id: str) -> ToolTagAssignmentData:
        """Return the tags of one tool together with every assignable tag.

        Args:
            db: Database session.
            tool_id: Tool id.

        Returns:
            ToolTagAssignmentData: Current and available tag ids.

        Raises:
            NotFoundError: If the tool does not exist.
            StorageError: If the store cannot be read.
        """
        try:
            tool = db.get(Tool, tool_id)
            if tool is None:
                raise NotFoundError(f"Tool not found: {tool_id}", context="get_tool_tag_assignments", details={"ids": [tool_id]})
            current = db.execute(select(ToolTag.tag_id).where(ToolTag.tool_id == tool_id).order_by(ToolTag.assigned_at, ToolTag.tag_id)).scalars().all()
            available = db.execute(select(Tag.id).order_by(Tag.display_order, Tag.name, Tag.id)).scalars().all()
        except SQLAlchemyError as e:
            self.handle_error(e, "load tool tag assignments")

        return ToolTagAssignmentData(
            tool_id=tool.id,
            tool_name=tool.name,
            tool_slug=tool.slug,
            is_active=tool.is_active,
            display_order=tool.display_order,
            current_tag_ids=list(current),
            available_tag_ids=list(available),
            last_modified=as_utc(tool.updated_at),
        )

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    def _validate_operation(self, operation: BulkTagOperation) -> None:
        self.validate_required(
            {"type": operation.type, "tool_ids": operation.tool_ids, "tag_ids": operation.tag_ids},
            ["type", "tool_ids", "tag_ids"],
        )

    def _plan_operation(self, db: Session, operation: BulkTagOperation) -> BulkOperationPreview:
        """Compute the per-tool delta of ``operation`` against the current store.

        Args:
            db: Database session.
            operation: Validated bulk command.

        Returns:
            BulkOperationPreview: The plan, including warnings and confirmation need.
        """
        tools = {tool.id: tool for tool in db.execute(select(Tool).where(Tool.id.in_(operation.tool_ids))).scalars()}
        known_tag_ids = set(db.execute(select(Tag.id).where(Tag.id.in_(operation.tag_ids))).scalars())

        unknown_tool_ids = [tool_id for tool_id in operation.tool_ids if tool_id not in tools]
        unknown_tag_ids = [tag_id for tag_id in operation.tag_ids if tag_id not in known_tag_ids]
        requested_tags = [tag_id for tag_id in operation.tag_ids if tag_id in known_tag_ids]

        current_tags: Dict[str, List[str]] = defaultdict(list)
        if tools:
            rows = db.execute(select(ToolTag.tool_id, ToolTag.tag_id).where(ToolTag.tool_id.in_(list(tools))).order_by(ToolTag.assigned_at, ToolTag.tag_id))
            for tool_id, tag_id in rows:
                current_tags[tool_id].append(tag_id)

        changes: List[ToolChangePreview] = []
        becoming_untagged = 0
        for tool_id in operation.tool_ids:
            tool = tools.get(tool_id)
            if tool is None:
                continue
            current = current_tags[tool_id]
            current_set = set(current)
            if operation.type == "assign":
                added = [tag_id for tag_id in requested_tags if tag_id not in current_set]
                removed: List[str] = []
                new = current + added
            else:
                added = []
                removed = [tag_id for tag_id in requested_tags if tag_id in current_set]
                removed_set = set(removed)
                new = [tag_id for tag_id in current if tag_id not in removed_set]
            if current and not new:
                becoming_untagged += 1
            changes.append(ToolChangePreview(tool_id=tool_id, tool_name=tool.name, current_tags=current, new_tags=new, added_tags=added, removed_tags=removed))

        new_relationships = sum(len(change.added_tags) for change in changes)
        removed_relationships = sum(len(change.removed_tags) for change in changes)
        summary = BulkOperationSummary(
            total_tools=len(changes),
            total_tag_changes=new_relationships + removed_relationships,
            new_relationships=new_relationships,
            removed_relationships=removed_relationships,
        )

        warnings: List[str] = []
        requires_confirmation = False
        if unknown_tool_ids:
            warnings.append(f"{len(unknown_tool_ids)} tool(s) not found and will be skipped: {', '.join(unknown_tool_ids)}")
        if unknown_tag_ids:
            warnings.append(f"{len(unknown_tag_ids)} tag(s) not found and will be skipped: {', '.join(unknown_tag_ids)}")
        if summary.total_tag_changes == 0:
            warnings.append("This operation will not change any assignments")
        if becoming_untagged:
            warnings.append(f"{becoming_untagged} tool(s) will have no tags after this operation")
            requires_confirmation = True
        if summary.total_tag_changes > self.confirmation_threshold:
            warnings.append(f"This operation will make a large number of changes ({summary.total_tag_changes})")
            requires_confirmation = True

        return BulkOperationPreview(
            operation=operation,
            tools_to_update=changes,
            summary=summary,
            warnings=warnings,
            requires_confirmation=requires_confirmation,
            unknown_tool_ids=unknown_tool_ids,
            unknown_tag_ids=unknown_tag_ids,
        )

    async def preview_bulk_operation(self, db: Session, operation: BulkTagOperation) -> BulkOperationPreview:
        """Plan a bulk operation without writing anything.

        Args:
            db: Database session.
            operation: Bulk command.

        Returns:
            BulkOperationPreview: Per-tool changes, totals and warnings.

        Raises:
            ServiceValidationError: If the type or either id list is missing.
            StorageError: If the store cannot be read.
        """
        self._validate_operation(operation)
        try:
            return self._plan_operation(db, operation)
        except SQLAlchemyError as e:
            self.handle_error(e, "preview bulk operation")

    async def execute_bulk_operation(self, db: Session, operation: BulkTagOperation) -> BulkOperationResult:
        """Apply a bulk operation atomically.

        Pairs that already exist are skipped on assign and absent pairs are
        ignored on remove, so repeating an operation changes nothing.

        Args:
            db: Database session.
            operation: Bulk command.

        Returns:
            BulkOperationResult: Counts of committed changes plus warnings.

        Raises:
            ServiceValidationError: If the type or either id list is missing.
            ConfirmationRequiredError: If the plan needs confirmation the command does not carry.
            StorageError: If the transaction fails; nothing is committed.
        """
        self._validate_operation(operation)
        try:
            plan = self._plan_operation(db, operation)
        except SQLAlchemyError as e:
            self.handle_error(e, "plan bulk operation")

        if plan.requires_confirmation and not operation.requires_confirmation:
            raise ConfirmationRequiredError(
                "Bulk operation requires confirmation: " + "; ".join(plan.warnings),
                context="execute_bulk_operation",
                details={"warnings": plan.warnings},
            )

        changed = [change for change in plan.tools_to_update if change.added_tags or change.removed_tags]
        if not changed:
            logger.info(f"Bulk {operation.type} operation made no changes")
            return BulkOperationResult(success=True, warnings=plan.warnings)

        now = utc_now()
        try:
            for change in changed:
                if change.added_tags:
                    db.add_all([ToolTag(tool_id=change.tool_id, tag_id=tag_id, assigned_at=now) for tag_id in change.added_tags])
                if change.removed_tags:
                    db.execute(delete(ToolTag).where(ToolTag.tool_id == change.tool_id, ToolTag.tag_id.in_(change.removed_tags)))
            db.execute(update(Tool).where(Tool.id.in_([change.tool_id for change in changed])).values(updated_at=now))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Bulk {operation.type} operation failed, rolled back: {e}")
            raise StorageError(
                f"Bulk operation failed and was rolled back (0 changes committed): {str(e)}",
                context="execute_bulk_operation",
                details={"committed_changes": 0},
            ) from e

        self._invalidate_relationship_views()
        touched_tags: Set[str] = {tag_id for change in changed for tag_id in change.added_tags + change.removed_tags}
        result = BulkOperationResult(
            success=True,
            total_changes=plan.summary.total_tag_changes,
            tools_affected=len(changed),
            tags_affected=len(touched_tags),
            warnings=plan.warnings,
        )
        logger.info(f"Bulk {operation.type} operation committed {result.total_changes} change(s) on {result.tools_affected} tool(s)")
        return result

    async def bulk_assign_tags(self, db: Session, tool_ids: List[str], tag_ids: List[str], confirmed: bool = False) -> BulkOperationResult:
        """Assign every tag in ``tag_ids`` to every tool in ``tool_ids``.

        Args:
            db: Database session.
            tool_ids: Target tools.
            tag_ids: Tags to assign.
            confirmed: Whether a large operation may proceed.

        Returns:
            BulkOperationResult: Outcome.
        """
        operation = BulkTagOperation(type="assign", tool_ids=tool_ids, tag_ids=tag_ids, requires_confirmation=confirmed)
        return await self.execute_bulk_operation(db, operation)

    async def bulk_remove_tags(self, db: Session, tool_ids: List[str], tag_ids: List[str]) -> BulkOperationResult:
        """Remove every tag in ``tag_ids`` from every tool in ``tool_ids``.

        An explicit removal request counts as confirmed.

        Args:
            db: Database session.
            tool_ids: Target tools.
            tag_ids: Tags to remove.

        Returns:
            BulkOperationResult: Outcome.
        """
        operation = BulkTagOperation(type="remove", tool_ids=tool_ids, tag_ids=tag_ids, requires_confirmation=True)
        return await self.execute_bulk_operation(db, operation)

    # ------------------------------------------------------------------
    # Orphans
    # ------------------------------------------------------------------

    async def find_orphaned_entities(self, db: Session) -> OrphanedEntityCheck:
        """Find tools without tags and tags without tools.

        Args:
            db: Database session.

        Returns:
            OrphanedEntityCheck: Orphans, whether cleanup may run, and suggestions.

        Raises:
            StorageError: If the store cannot be read.
        """
        try:
            tools = db.execute(select(Tool).where(~Tool.tag_links.any()).order_by(Tool.name, Tool.id)).scalars().all()
            tags = db.execute(select(Tag).where(~Tag.tool_links.any()).order_by(Tag.name, Tag.id)).scalars().all()
        except SQLAlchemyError as e:
            self.handle_error(e, "find orphaned entities")

        orphaned_tools = [OrphanedTool(id=t.id, name=t.name, slug=t.slug, is_active=t.is_active) for t in tools]
        orphaned_tags = [OrphanedTag(id=t.id, name=t.name, slug=t.slug, is_system=t.is_system) for t in tags]
        protected = [t for t in orphaned_tags if t.is_system]

        suggested_actions: List[str] = []
        if orphaned_tools:
            suggested_actions.append(f"Assign tags to {len(orphaned_tools)} untagged tool(s)")
        if len(orphaned_tags) > len(protected):
            suggested_actions.append(f"Review {len(orphaned_tags) - len(protected)} unused tag(s) for removal or assignment")
        if protected:
            suggested_actions.append(f"{len(protected)} unused system tag(s) are protected and need manual review")

        return OrphanedEntityCheck(
            orphaned_tools=orphaned_tools,
            orphaned_tags=orphaned_tags,
            can_auto_resolve=bool(orphaned_tags) and not protected,
            suggested_actions=suggested_actions,
        )

    async def auto_resolve_orphans(self, db: Session) -> OrphanResolutionResult:
        """Delete unused tags when cleanup is allowed.

        Untagged tools are only reviewed, never modified. Each candidate tag is
        re-checked inside the transaction and skipped if it gained an
        assignment since the scan.

        Args:
            db: Database session.

        Returns:
            OrphanResolutionResult: Reviewed, removed and skipped entities.

        Raises:
            StorageError: If the deletion fails; nothing is committed.
        """
        check = await self.find_orphaned_entities(db)
        result = OrphanResolutionResult(tools_reviewed=len(check.orphaned_tools))
        if check.orphaned_tools:
            result.warnings.append(f"{len(check.orphaned_tools)} untagged tool(s) need manual tag assignment")
        if not check.orphaned_tags:
            return result

        if not check.can_auto_resolve:
            for tag in check.orphaned_tags:
                reason = "protected system tag" if tag.is_system else "cleanup blocked by protected unused tags"
                result.skipped_tags.append(SkippedTag(tag_id=tag.id, reason=reason))
            result.warnings.append("Automatic cleanup skipped because protected tags are unused")
            return result

        candidate_ids = [tag.id for tag in check.orphaned_tags]
        try:
            still_unused = set(db.execute(select(Tag.id).where(Tag.id.in_(candidate_ids), ~Tag.tool_links.any())).scalars())
            removable = [tag_id for tag_id in candidate_ids if tag_id in still_unused]
            if removable:
                db.execute(delete(Tag).where(Tag.id.in_(removable)))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Orphan cleanup failed, rolled back: {e}")
            raise StorageError(f"Orphan cleanup failed and was rolled back: {str(e)}", context="auto_resolve_orphans") from e

        result.removed_tag_ids = removable
        result.tags_removed = len(removable)
        result.skipped_tags.extend(SkippedTag(tag_id=tag_id, reason="tag gained an assignment since the check") for tag_id in candidate_ids if tag_id not in still_unused)
        if removable:
            self._invalidate_relationship_views()
            logger.info(f"Removed {len(removable)} unused tag(s)")
        return result

    # ------------------------------------------------------------------
    # Statistics and validation
    # ------------------------------------------------------------------

    async def get_tag_usage_statistics(self, db: Session, tag_id: Optional[str] = None) -> List[TagUsageStatistics]:
        """Usage statistics for one tag or for all tags.

        Popularity ranks are computed over all tags (most tools first, then
        name ascending) even when a single tag is requested.

        Args:
            db: Database session.
            tag_id: Optional tag to restrict the result to.

        Returns:
            List[TagUsageStatistics]: Statistics ordered by popularity rank.

        Raises:
            NotFoundError: If ``tag_id`` does not exist.
            StorageError: If the store cannot be read.
        """
        key = self.cache_key(TAG_USAGE_CACHE_PREFIX, tag_id)
        try:
            return await self.get_cached(key, lambda: self._compute_tag_usage(db, tag_id, utc_now()))
        except SQLAlchemyError as e:
            self.handle_error(e, "compute tag usage statistics")

    def _compute_tag_usage(self, db: Session, tag_id: Optional[str], now: datetime) -> List[TagUsageStatistics]:
        if tag_id is not None and db.get(Tag, tag_id) is None:
            raise NotFoundError(f"Tag not found: {tag_id}", context="get_tag_usage_statistics", details={"ids": [tag_id]})

        total_tools = db.execute(select(func.count(Tool.id))).scalar_one()
        tags = db.execute(select(Tag)).scalars().all()
        assignments: Dict[str, List[Tuple[Tool, Optional[datetime]]]] = defaultdict(list)
        for assigned_tag_id, assigned_at, tool in db.execute(select(ToolTag.tag_id, ToolTag.assigned_at, Tool).select_from(ToolTag).join(Tool, Tool.id == ToolTag.tool_id)):
            assignments[assigned_tag_id].append((tool, as_utc(assigned_at)))

        ranked = sorted(tags, key=lambda t: (-len(assignments[t.id]), t.name.casefold(), t.id))
        week_ago = now - timedelta(days=7)
        month_ago = now - timedelta(days=30)

        statistics: List[TagUsageStatistics] = []
        for rank, tag in enumerate(ranked, start=1):
            if tag_id is not None and tag.id != tag_id:
                continue
            entries = assignments[tag.id]
            active = sum(1 for tool, _ in entries if tool.is_active)
            assigned_times = [assigned_at for _, assigned_at in entries if assigned_at is not None]
            statistics.append(
                TagUsageStatistics(
                    tag_id=tag.id,
                    tag_name=tag.name,
                    tag_slug=tag.slug,
                    tag_color=tag.color,
                    total_tools=len(entries),
                    active_tools=active,
                    inactive_tools=len(entries) - active,
                    usage_percentage=round(len(entries) / total_tools * 100, 2) if total_tools else 0.0,
                    popularity_rank=rank,
                    recent_usage=RecentTagUsage(
                        tools_added_this_week=sum(1 for t in assigned_times if t >= week_ago),
                        tools_added_this_month=sum(1 for t in assigned_times if t >= month_ago),
                        last_assigned_at=max(assigned_times) if assigned_times else None,
                    ),
                    tools=[
                        TaggedToolSummary(id=tool.id, name=tool.name, slug=tool.slug, is_active=tool.is_active, assigned_at=assigned_at)
                        for tool, assigned_at in sorted(entries, key=lambda entry: (entry[0].name.casefold(), entry[0].id))
                    ],
                )
            )
        return statistics

    async def validate_relationships(self, db: Session, tool_ids: Optional[List[str]] = None, tag_ids: Optional[List[str]] = None) -> RelationshipValidationResult:
        """Check the consistency of assignments.

        Errors: unknown tool or tag ids, and assignments that reference a
        missing tool or tag. Warnings: untagged tools and unused tags.
        Suggestions: inactive tools that still carry tags.

        Args:
            db: Database session.
            tool_ids: Restrict tool checks to these ids (all tools when omitted).
            tag_ids: Restrict tag checks to these ids (all tags when omitted).

        Returns:
            RelationshipValidationResult: Findings; valid iff there are no errors.

        Raises:
            StorageError: If the store cannot be read.
        """
        try:
            return self._validate(db, tool_ids, tag_ids)
        except SQLAlchemyError as e:
            self.handle_error(e, "validate relationships")

    def _validate(self, db: Session, tool_ids: Optional[List[str]], tag_ids: Optional[List[str]]) -> RelationshipValidationResult:
        errors: List[RelationshipValidationIssue] = []
        warnings: List[RelationshipValidationIssue] = []
        suggestions: List[RelationshipValidationIssue] = []

        tool_stmt = select(Tool)
        if tool_ids:
            tool_stmt = tool_stmt.where(Tool.id.in_(tool_ids))
        tools = db.execute(tool_stmt.order_by(Tool.id)).scalars().all()
        tag_stmt = select(Tag)
        if tag_ids:
            tag_stmt = tag_stmt.where(Tag.id.in_(tag_ids))
        tags = db.execute(tag_stmt.order_by(Tag.id)).scalars().all()

        if tool_ids:
            known = {tool.id for tool in tools}
            missing = [tool_id for tool_id in dict.fromkeys(tool_ids) if tool_id not in known]
            if missing:
                errors.append(RelationshipValidationIssue(type="error", code="TOOL_NOT_FOUND", message=f"{len(missing)} tool(s) do not exist", affected_ids=missing))
        if tag_ids:
            known = {tag.id for tag in tags}
            missing = [tag_id for tag_id in dict.fromkeys(tag_ids) if tag_id not in known]
            if missing:
                errors.append(RelationshipValidationIssue(type="error", code="TAG_NOT_FOUND", message=f"{len(missing)} tag(s) do not exist", affected_ids=missing))

        dangling = db.execute(
            select(ToolTag.tool_id, ToolTag.tag_id)
            .select_from(ToolTag)
            .outerjoin(Tool, Tool.id == ToolTag.tool_id)
            .outerjoin(Tag, Tag.id == ToolTag.tag_id)
            .where(Tool.id.is_(None) | Tag.id.is_(None))
            .order_by(ToolTag.tool_id, ToolTag.tag_id)
        ).all()
        if dangling:
            errors.append(
                RelationshipValidationIssue(
                    type="error",
                    code="DANGLING_ASSIGNMENT",
                    message=f"{len(dangling)} assignment(s) reference a missing tool or tag",
                    affected_ids=[f"{tool_id}:{tag_id}" for tool_id, tag_id in dangling],
                )
            )

        tagged_tool_ids = set(db.execute(select(ToolTag.tool_id).distinct()).scalars())
        used_tag_ids = set(db.execute(select(ToolTag.tag_id).distinct()).scalars())

        untagged = [tool.id for tool in tools if tool.id not in tagged_tool_ids]
        if untagged:
            warnings.append(RelationshipValidationIssue(type="warning", code="UNTAGGED_TOOLS", message=f"{len(untagged)} tool(s) have no tags", affected_ids=untagged))
        unused = [tag.id for tag in tags if tag.id not in used_tag_ids]
        if unused:
            warnings.append(RelationshipValidationIssue(type="warning", code="UNUSED_TAGS", message=f"{len(unused)} tag(s) are not assigned to any tool", affected_ids=unused))
        inactive_tagged = [tool.id for tool in tools if not tool.is_active and tool.id in tagged_tool_ids]
        if inactive_tagged:
            suggestions.append(
                RelationshipValidationIssue(
                    type="suggestion",
                    code="INACTIVE_TAGGED_TOOLS",
                    message=f"{len(inactive_tagged)} inactive tool(s) still carry tags; consider removing them",
                    affected_ids=inactive_tagged,
                )
            )

        return RelationshipValidationResult(is_valid=not errors, errors=errors, warnings=warnings, suggestions=suggestions)

    def _invalidate_relationship_views(self) -> None:
        for prefix in (RELATIONSHIPS_CACHE_PREFIX, TAG_USAGE_CACHE_PREFIX, ANALYTICS_CACHE_PREFIX):
            self.invalidate_cache(prefix)
