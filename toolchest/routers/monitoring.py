# -*- coding: utf-8 -*-
"""Location: ./toolchest/routers/monitoring.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

Monitoring Admin API Router.
Provides REST endpoints for the health dashboard, recorded metric snapshots,
alert acknowledgement and resolution, and the application error log.
"""

# Standard
from datetime import datetime
from typing import List, Optional

# Third-Party
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

# First-Party
from toolchest.db import get_db
from toolchest.routers.analytics import get_analytics_service
from toolchest.schemas import Alert, AlertAction, AlertSeverity, ErrorLevel, ErrorLogEntry, MonitoringFilter, RealTimeMetrics, SystemHealthDashboard
from toolchest.services.analytics_service import AnalyticsService

router = APIRouter(prefix="/admin/monitoring", tags=["Monitoring"])


@router.get("/dashboard", response_model=SystemHealthDashboard)
async def health_dashboard(db: Session = Depends(get_db), service: AnalyticsService = Depends(get_analytics_service)):
    """Health checks, open alerts, recent errors and metric trends.

    Args:
        db: Database session.
        service: Analytics service.

    Returns:
        SystemHealthDashboard: Dashboard data.
    """
    return await service.get_system_health_dashboard(db)


@router.get("/metrics", response_model=List[RealTimeMetrics])
async def recorded_metrics(
    limit: int = Query(100, ge=1, le=2880, description="Maximum snapshots to return"),
    start: Optional[datetime] = Query(None, alias="from", description="Only snapshots taken at or after this time"),
    end: Optional[datetime] = Query(None, alias="to", description="Only snapshots taken at or before this time"),
    current: bool = Query(False, description="Return one fresh snapshot instead of the history"),
    db: Session = Depends(get_db),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Recorded metric snapshots, newest first.

    With ``current=true`` a single fresh snapshot is taken and returned
    without being added to the history.

    Args:
        limit: Maximum snapshots.
        start: Lower time bound (query ``from``).
        end: Upper time bound (query ``to``).
        current: Sample now instead of reading the history.
        db: Database session.
        service: Analytics service.

    Returns:
        List[RealTimeMetrics]: Snapshots.
    """
    if current:
        return [await service.get_current_metrics(db)]
    return await service.get_real_time_metrics(limit, start=start, end=end)


@router.get("/alerts", response_model=List[Alert])
async def list_alerts(
    include_resolved: bool = Query(False),
    severity: Optional[AlertSeverity] = Query(None),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Alerts, most severe first.

    Args:
        include_resolved: Also list resolved alerts.
        severity: Only list alerts of this severity.
        service: Analytics service.

    Returns:
        List[Alert]: Alerts.
    """
    return await service.list_alerts(include_resolved=include_resolved, severity=severity)


@router.patch("/alerts/{alert_id}", response_model=Alert)
async def update_alert(alert_id: str, action: AlertAction, service: AnalyticsService = Depends(get_analytics_service)):
    """Acknowledge or resolve an alert.

    Args:
        alert_id: Alert id.
        action: ``acknowledge`` or ``resolve``.
        service: Analytics service.

    Returns:
        Alert: The alert after the change.
    """
    if action.action == "acknowledge":
        return await service.acknowledge_alert(alert_id, action.acknowledged_by)
    return await service.resolve_alert(alert_id)


@router.get("/errors", response_model=List[ErrorLogEntry])
async def error_logs(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    levels: Optional[List[ErrorLevel]] = Query(None),
    resolved: Optional[bool] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Recorded application errors, newest first.

    Args:
        start: Only entries at or after this time.
        end: Only entries at or before this time.
        levels: Only these levels.
        resolved: Filter on resolution state.
        limit: Maximum entries (capped by configuration).
        service: Analytics service.

    Returns:
        List[ErrorLogEntry]: Entries.
    """
    return await service.get_error_logs(MonitoringFilter(start=start, end=end, levels=levels, resolved=resolved, limit=limit))


@router.patch("/errors/{error_id}/resolve", response_model=ErrorLogEntry)
async def resolve_error(error_id: str, service: AnalyticsService = Depends(get_analytics_service)):
    """Mark an error log entry as resolved.

    Args:
        error_id: Entry id.
        service: Analytics service.

    Returns:
        ErrorLogEntry: The entry after the change.
    """
    return await service.resolve_error(error_id)
