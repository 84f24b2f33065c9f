# -*- coding: utf-8 -*-
"""Location: ./toolchest/routers/analytics.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

Analytics Admin API Router.
Provides REST endpoints for usage summaries, per-tool trends, chart data,
system performance figures, analytics exports and a self-check of the
analytics features.
"""

# Standard
from datetime import datetime
from typing import List, Optional

# Third-Party
from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

# First-Party
from toolchest.db import get_db
from toolchest.schemas import (
    AnalyticsChart,
    AnalyticsExport,
    AnalyticsFilter,
    AnalyticsServiceStatus,
    AnalyticsSummary,
    AnalyticsTimeRange,
    ExportOptions,
    SystemPerformanceMetrics,
    TimePeriod,
    ToolUsageAnalytics,
)
from toolchest.services.analytics_service import AnalyticsService

router = APIRouter(prefix="/admin/analytics", tags=["Analytics"])

# HTTP status of the self-check per overall status
STATUS_CODES = {"healthy": 200, "degraded": 206, "unhealthy": 503}


def get_analytics_service(request: Request) -> AnalyticsService:
    """Analytics service built by the application lifespan.

    Args:
        request: Incoming request.

    Returns:
        AnalyticsService: The shared service.
    """
    return request.app.state.analytics_service


def analytics_filter_params(
    start: Optional[datetime] = Query(None, description="Start of the window (requires end)"),
    end: Optional[datetime] = Query(None, description="End of the window (requires start)"),
    period: TimePeriod = Query("day", description="Bucket size of time series"),
    tool_ids: Optional[List[str]] = Query(None),
    tag_ids: Optional[List[str]] = Query(None),
    include_inactive: bool = Query(False),
) -> AnalyticsFilter:
    """Build an ``AnalyticsFilter`` from query parameters.

    A time range is only applied when both ``start`` and ``end`` are given;
    otherwise the configured trailing window is used.

    Args:
        start: Window start.
        end: Window end.
        period: Bucket size.
        tool_ids: Restrict to these tools.
        tag_ids: Restrict to tools carrying any of these tags.
        include_inactive: Include inactive tools.

    Returns:
        AnalyticsFilter: The filter.

    Examples:
        >>> analytics_filter_params(None, None, "week", ["t1"], None, False).time_range is None
        True
    """
    time_range = AnalyticsTimeRange(start=start, end=end, period=period) if start is not None and end is not None else None
    return AnalyticsFilter(time_range=time_range, tool_ids=tool_ids, tag_ids=tag_ids, include_inactive=include_inactive)


@router.get("/summary", response_model=AnalyticsSummary)
async def analytics_summary(
    analytics_filter: AnalyticsFilter = Depends(analytics_filter_params),
    db: Session = Depends(get_db),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Usage totals, breakdown and series for a window.

    Args:
        analytics_filter: Window and tool scope.
        db: Database session.
        service: Analytics service.

    Returns:
        AnalyticsSummary: The summary.
    """
    return await service.get_analytics_summary(db, analytics_filter)


@router.get("/charts", response_model=List[AnalyticsChart])
async def analytics_charts(
    analytics_filter: AnalyticsFilter = Depends(analytics_filter_params),
    db: Session = Depends(get_db),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Chart datasets for the analytics page.

    Args:
        analytics_filter: Window and tool scope.
        db: Database session.
        service: Analytics service.

    Returns:
        List[AnalyticsChart]: Line, bar and pie charts.
    """
    return await service.generate_charts(db, analytics_filter)


@router.get("/usage", response_model=List[ToolUsageAnalytics])
async def tool_usage(
    analytics_filter: AnalyticsFilter = Depends(analytics_filter_params),
    db: Session = Depends(get_db),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Per-tool usage with trends and growth rates.

    Args:
        analytics_filter: Window and tool scope.
        db: Database session.
        service: Analytics service.

    Returns:
        List[ToolUsageAnalytics]: Tools, most used first.
    """
    return await service.get_tool_usage_analytics(db, analytics_filter)


@router.get("/system", response_model=SystemPerformanceMetrics)
async def system_performance(db: Session = Depends(get_db), service: AnalyticsService = Depends(get_analytics_service)):
    """Current request, database and resource figures.

    Args:
        db: Database session.
        service: Analytics service.

    Returns:
        SystemPerformanceMetrics: Performance snapshot.
    """
    return await service.get_system_performance_metrics(db)


@router.post("/export", response_model=AnalyticsExport)
async def export_analytics(
    options: Optional[ExportOptions] = None,
    analytics_filter: AnalyticsFilter = Depends(analytics_filter_params),
    db: Session = Depends(get_db),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Bundle analytics for download.

    Args:
        options: Sections to include (all by default).
        analytics_filter: Window and tool scope.
        db: Database session.
        service: Analytics service.

    Returns:
        AnalyticsExport: The export document.
    """
    return await service.export_analytics(db, options, analytics_filter)


@router.get("/status", response_model=AnalyticsServiceStatus)
async def service_status(
    response: Response,
    detailed: bool = Query(False, description="Include per-check results and the health dashboard"),
    db: Session = Depends(get_db),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Self-check of the analytics features.

    Answers 200 when every check passes, 206 when most pass and 503 otherwise.

    Args:
        response: Outgoing response, used to set the status code.
        detailed: Include per-check results.
        db: Database session.
        service: Analytics service.

    Returns:
        AnalyticsServiceStatus: Overall status and availability.
    """
    status = await service.get_service_status(db, detailed=detailed)
    response.status_code = STATUS_CODES[status.status]
    response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
    return status
