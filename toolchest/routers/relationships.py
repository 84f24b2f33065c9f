# -*- coding: utf-8 -*-
"""Location: ./toolchest/routers/relationships.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

Relationship Admin API Router.
Provides REST endpoints for browsing tool/tag assignments, previewing and
executing bulk tag changes, orphan cleanup, tag statistics and integrity
validation. All work is delegated to ``RelationshipService``; service errors
are translated to HTTP responses by the application exception handlers.
"""

# Standard
from typing import List, Optional

# Third-Party
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

# First-Party
from toolchest.db import get_db
from toolchest.schemas import (
    BulkOperationPreview,
    BulkOperationResult,
    BulkTagOperation,
    OrphanedEntityCheck,
    OrphanResolutionResult,
    RelationshipFilters,
    RelationshipSortField,
    RelationshipSortOptions,
    RelationshipValidationResult,
    SortDirection,
    TagUsageStatistics,
    ToolTagAssignmentData,
    ToolTagRelationship,
)
from toolchest.services.relationship_service import RelationshipService

router = APIRouter(prefix="/admin/relationships", tags=["Relationships"])


def get_relationship_service(request: Request) -> RelationshipService:
    """Relationship service built by the application lifespan.

    Args:
        request: Incoming request.

    Returns:
        RelationshipService: The shared service.
    """
    return request.app.state.relationship_service


@router.get("/", response_model=List[ToolTagRelationship])
async def list_relationships(
    search: Optional[str] = Query(None, description="Substring matched against tool and tag names"),
    tool_ids: Optional[List[str]] = Query(None, description="Restrict to these tools"),
    tag_ids: Optional[List[str]] = Query(None, description="Restrict to these tags"),
    tool_is_active: Optional[bool] = Query(None, description="Filter on tool active state"),
    sort_field: RelationshipSortField = Query("tool_name"),
    sort_direction: SortDirection = Query("asc"),
    db: Session = Depends(get_db),
    service: RelationshipService = Depends(get_relationship_service),
):
    """List tool/tag assignments.

    Args:
        search: Substring matched against tool and tag names.
        tool_ids: Restrict to these tools.
        tag_ids: Restrict to these tags.
        tool_is_active: Filter on tool active state.
        sort_field: Sort key.
        sort_direction: asc or desc.
        db: Database session.
        service: Relationship service.

    Returns:
        List[ToolTagRelationship]: Matching assignments.
    """
    filters = RelationshipFilters(search=search, tool_ids=tool_ids, tag_ids=tag_ids, tool_is_active=tool_is_active)
    return await service.get_all_relationships(db, filters, RelationshipSortOptions(field=sort_field, direction=sort_direction))


@router.get("/assignments/{tool_id}", response_model=ToolTagAssignmentData)
async def get_tool_assignments(tool_id: str, db: Session = Depends(get_db), service: RelationshipService = Depends(get_relationship_service)):
    """Current and available tags of one tool.

    Args:
        tool_id: Tool id.
        db: Database session.
        service: Relationship service.

    Returns:
        ToolTagAssignmentData: Assignment data for the tool.
    """
    return await service.get_tool_tag_assignments(db, tool_id)


@router.post("/preview", response_model=BulkOperationPreview)
async def preview_bulk_operation(operation: BulkTagOperation, db: Session = Depends(get_db), service: RelationshipService = Depends(get_relationship_service)):
    """Describe what a bulk operation would change without changing anything.

    Args:
        operation: Bulk command.
        db: Database session.
        service: Relationship service.

    Returns:
        BulkOperationPreview: Planned changes and warnings.
    """
    return await service.preview_bulk_operation(db, operation)


@router.post("/execute", response_model=BulkOperationResult)
async def execute_bulk_operation(operation: BulkTagOperation, db: Session = Depends(get_db), service: RelationshipService = Depends(get_relationship_service)):
    """Apply a bulk operation in a single transaction.

    Args:
        operation: Bulk command; set ``requiresConfirmation`` for large or destructive changes.
        db: Database session.
        service: Relationship service.

    Returns:
        BulkOperationResult: Applied change counts.
    """
    return await service.execute_bulk_operation(db, operation)


@router.get("/orphans", response_model=OrphanedEntityCheck)
async def find_orphans(db: Session = Depends(get_db), service: RelationshipService = Depends(get_relationship_service)):
    """Tools without tags and tags without tools.

    Args:
        db: Database session.
        service: Relationship service.

    Returns:
        OrphanedEntityCheck: Orphans and suggested actions.
    """
    return await service.find_orphaned_entities(db)


@router.post("/auto-resolve", response_model=OrphanResolutionResult)
async def auto_resolve_orphans(db: Session = Depends(get_db), service: RelationshipService = Depends(get_relationship_service)):
    """Delete unused non-system tags.

    Args:
        db: Database session.
        service: Relationship service.

    Returns:
        OrphanResolutionResult: Removed and skipped tags.
    """
    return await service.auto_resolve_orphans(db)


@router.get("/tag-stats", response_model=List[TagUsageStatistics])
async def tag_statistics(
    tag_id: Optional[str] = Query(None, description="Only return this tag"),
    db: Session = Depends(get_db),
    service: RelationshipService = Depends(get_relationship_service),
):
    """Usage statistics per tag, most used first.

    Args:
        tag_id: Optional single tag.
        db: Database session.
        service: Relationship service.

    Returns:
        List[TagUsageStatistics]: Statistics ranked by popularity.
    """
    return await service.get_tag_usage_statistics(db, tag_id)


@router.get("/validation", response_model=RelationshipValidationResult)
async def validate_relationships(
    tool_ids: Optional[List[str]] = Query(None),
    tag_ids: Optional[List[str]] = Query(None),
    db: Session = Depends(get_db),
    service: RelationshipService = Depends(get_relationship_service),
):
    """Integrity report over the whole catalog or the given ids.

    Args:
        tool_ids: Optional tool ids to check.
        tag_ids: Optional tag ids to check.
        db: Database session.
        service: Relationship service.

    Returns:
        RelationshipValidationResult: Errors, warnings and suggestions.
    """
    return await service.validate_relationships(db, tool_ids=tool_ids, tag_ids=tag_ids)
