# -*- coding: utf-8 -*-
"""Location: ./toolchest/schemas.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

ToolChest Schema Definitions.
This module provides Pydantic models for the admin back office:
- Tool/tag relationship listings, filters and bulk tagging commands
- Orphan detection, tag usage statistics and relationship validation
- Usage analytics summaries, trends, charts and exports
- Monitoring snapshots, health checks, alerts and error logs

Command and filter objects are validated here, at the boundary, so the
services only ever see well-formed input.
"""

# Standard
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Self

# Third-Party
from pydantic import computed_field, Field, field_validator, model_validator

# First-Party
from toolchest.db import as_utc
from toolchest.utils.base_models import BaseModelWithConfigDict

SortDirection = Literal["asc", "desc"]
RelationshipSortField = Literal["tool_name", "tag_name", "tool_display_order", "assignment_count", "last_modified"]
BulkOperationType = Literal["assign", "remove"]
TimePeriod = Literal["day", "week", "month", "quarter", "year"]
ChartType = Literal["line", "bar", "pie", "area"]
HealthStatus = Literal["healthy", "degraded", "unhealthy"]
ErrorLevel = Literal["warning", "error", "critical"]
IssueType = Literal["error", "warning", "suggestion"]


def _utc_field(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise a datetime field to UTC, rejecting values UTC cannot hold.

    Args:
        value: Datetime or None.

    Returns:
        Optional[datetime]: Aware UTC datetime or None.

    Raises:
        ValueError: If the UTC equivalent falls outside the datetime range.

    Examples:
        >>> _utc_field(datetime(2025, 3, 1, 12)).isoformat()
        '2025-03-01T12:00:00+00:00'
        >>> from datetime import timedelta
        >>> try:
        ...     _utc_field(datetime(1, 1, 1, tzinfo=timezone(timedelta(hours=5))))
        ... except ValueError as e:
        ...     print(e)
        Datetime out of range in UTC: 0001-01-01 00:00:00+05:00
    """
    try:
        return as_utc(value)
    except OverflowError as e:
        raise ValueError(f"Datetime out of range in UTC: {value}") from e


def _dedupe_ids(values: Optional[List[str]]) -> Optional[List[str]]:
    """Drop duplicate ids, keeping first-seen order.

    Args:
        values: Id list or None.

    Returns:
        Optional[List[str]]: De-duplicated list or None.
    """
    if values is None:
        return None
    return list(dict.fromkeys(values))


# ---------------------------------------------------------------------------
# Relationships
# ---------------------------------------------------------------------------


class RelationshipFilters(BaseModelWithConfigDict):
    """Filters for relationship listings.

    Examples:
        >>> RelationshipFilters(toolIds=["t1", "t1"], search="  json ").tool_ids
        ['t1']
        >>> RelationshipFilters(search="  json ").search
        'json'
        >>> RelationshipFilters(search="   ").search is None
        True
    """

    search: Optional[str] = Field(None, description="Case-insensitive substring matched against tool and tag names")
    tool_ids: Optional[List[str]] = Field(None, description="Restrict to these tools")
    tag_ids: Optional[List[str]] = Field(None, description="Restrict to these tags")
    tool_is_active: Optional[bool] = Field(None, description="True for active tools only, False for inactive tools only")

    @field_validator("search")
    @classmethod
    def _strip_search(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("tool_ids", "tag_ids")
    @classmethod
    def _unique_ids(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _dedupe_ids(v)


class RelationshipSortOptions(BaseModelWithConfigDict):
    """Sort order for relationship listings."""

    field: RelationshipSortField = "tool_name"
    direction: SortDirection = "asc"


class ToolTagRelationship(BaseModelWithConfigDict):
    """One (tool, tag) assignment joined with display data."""

    tool_id: str
    tag_id: str
    tool_name: str
    tag_name: str
    tool_slug: str
    tag_slug: str
    tool_is_active: bool
    tag_color: Optional[str] = None
    tool_display_order: int = 0
    assignment_count: int = Field(0, description="Number of tags assigned to the tool")
    assigned_at: Optional[datetime] = None
    last_modified: Optional[datetime] = None


class ToolTagAssignmentData(BaseModelWithConfigDict):
    """Current tag assignment of one tool plus the tags it could receive."""

    tool_id: str
    tool_name: str
    tool_slug: str
    is_active: bool
    display_order: int
    current_tag_ids: List[str]
    available_tag_ids: List[str]
    last_modified: Optional[datetime] = None


class BulkTagOperation(BaseModelWithConfigDict):
    """Command to assign or remove a set of tags on a set of tools.

    Ids are de-duplicated in order. ``requires_confirmation`` is the caller's
    acknowledgement that a destructive or large operation may proceed.

    Examples:
        >>> op = BulkTagOperation(type="assign", toolIds=["t1", "t2", "t1"], tagIds=["g1"])
        >>> op.tool_ids, op.estimated_changes
        (['t1', 't2'], 2)
        >>> BulkTagOperation(type="remove").estimated_changes
        0
    """

    type: BulkOperationType
    tool_ids: List[str] = Field(default_factory=list)
    tag_ids: List[str] = Field(default_factory=list)
    requires_confirmation: bool = False

    @field_validator("tool_ids", "tag_ids")
    @classmethod
    def _unique_ids(cls, v: List[str]) -> List[str]:
        return list(dict.fromkeys(v))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def estimated_changes(self) -> int:
        """Upper bound on the number of assignment changes.

        Returns:
            int: ``len(tool_ids) * len(tag_ids)``.
        """
        return len(self.tool_ids) * len(self.tag_ids)


class ToolChangePreview(BaseModelWithConfigDict):
    """Planned change for a single tool."""

    tool_id: str
    tool_name: str
    current_tags: List[str]
    new_tags: List[str]
    added_tags: List[str]
    removed_tags: List[str]


class BulkOperationSummary(BaseModelWithConfigDict):
    """Totals over a bulk operation plan."""

    total_tools: int = 0
    total_tag_changes: int = 0
    new_relationships: int = 0
    removed_relationships: int = 0


class BulkOperationPreview(BaseModelWithConfigDict):
    """Result of planning a bulk operation without writing anything."""

    operation: BulkTagOperation
    tools_to_update: List[ToolChangePreview] = Field(default_factory=list)
    summary: BulkOperationSummary = Field(default_factory=BulkOperationSummary)
    warnings: List[str] = Field(default_factory=list)
    requires_confirmation: bool = False
    unknown_tool_ids: List[str] = Field(default_factory=list)
    unknown_tag_ids: List[str] = Field(default_factory=list)


class BulkOperationResult(BaseModelWithConfigDict):
    """Outcome of an executed bulk operation."""

    success: bool
    total_changes: int = 0
    tools_affected: int = 0
    tags_affected: int = 0
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class OrphanedTool(BaseModelWithConfigDict):
    """A tool with no tags."""

    id: str
    name: str
    slug: str
    is_active: bool


class OrphanedTag(BaseModelWithConfigDict):
    """A tag assigned to no tool."""

    id: str
    name: str
    slug: str
    is_system: bool = False


class OrphanedEntityCheck(BaseModelWithConfigDict):
    """Untagged tools and unused tags found in the catalog."""

    orphaned_tools: List[OrphanedTool] = Field(default_factory=list)
    orphaned_tags: List[OrphanedTag] = Field(default_factory=list)
    can_auto_resolve: bool = False
    suggested_actions: List[str] = Field(default_factory=list)


class SkippedTag(BaseModelWithConfigDict):
    """An orphaned tag that automatic cleanup left in place."""

    tag_id: str
    reason: str


class OrphanResolutionResult(BaseModelWithConfigDict):
    """Outcome of automatic orphan cleanup."""

    tools_reviewed: int = 0
    tags_removed: int = 0
    removed_tag_ids: List[str] = Field(default_factory=list)
    skipped_tags: List[SkippedTag] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class TaggedToolSummary(BaseModelWithConfigDict):
    """A tool carrying a given tag."""

    id: str
    name: str
    slug: str
    is_active: bool
    assigned_at: Optional[datetime] = None


class RecentTagUsage(BaseModelWithConfigDict):
    """Recent assignment activity for a tag."""

    tools_added_this_week: int = 0
    tools_added_this_month: int = 0
    last_assigned_at: Optional[datetime] = None


class TagUsageStatistics(BaseModelWithConfigDict):
    """Usage statistics of one tag."""

    tag_id: str
    tag_name: str
    tag_slug: str
    tag_color: Optional[str] = None
    total_tools: int = 0
    active_tools: int = 0
    inactive_tools: int = 0
    usage_percentage: float = Field(0.0, description="Tagged tools as a percentage of all tools")
    popularity_rank: int = Field(..., ge=1)
    recent_usage: RecentTagUsage = Field(default_factory=RecentTagUsage)
    tools: List[TaggedToolSummary] = Field(default_factory=list)


class RelationshipValidationIssue(BaseModelWithConfigDict):
    """One finding of a relationship consistency check."""

    type: IssueType
    code: str
    message: str
    affected_ids: List[str] = Field(default_factory=list)


class RelationshipValidationResult(BaseModelWithConfigDict):
    """Outcome of a relationship consistency check."""

    is_valid: bool
    errors: List[RelationshipValidationIssue] = Field(default_factory=list)
    warnings: List[RelationshipValidationIssue] = Field(default_factory=list)
    suggestions: List[RelationshipValidationIssue] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


class AnalyticsTimeRange(BaseModelWithConfigDict):
    """Closed time window with the bucket size used for series.

    Examples:
        >>> r = AnalyticsTimeRange(start=datetime(2025, 1, 1), end=datetime(2025, 1, 31))
        >>> r.start.tzinfo is not None, r.period
        (True, 'day')
        >>> try:
        ...     AnalyticsTimeRange(start=datetime(2025, 2, 1), end=datetime(2025, 1, 1))
        ... except ValueError:
        ...     print("error")
        error
    """

    start: datetime
    end: datetime
    period: TimePeriod = "day"

    @field_validator("start", "end")
    @classmethod
    def _to_utc(cls, v: datetime) -> datetime:
        return _utc_field(v)

    @model_validator(mode="after")
    def _check_order(self) -> Self:
        if self.start > self.end:
            raise ValueError("Time range start must not be after end")
        return self


class AnalyticsFilter(BaseModelWithConfigDict):
    """Scope of an analytics query."""

    time_range: Optional[AnalyticsTimeRange] = None
    tool_ids: Optional[List[str]] = None
    tag_ids: Optional[List[str]] = None
    include_inactive: bool = False

    @field_validator("tool_ids", "tag_ids")
    @classmethod
    def _unique_ids(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _dedupe_ids(v)


class UsageEvent(BaseModelWithConfigDict):
    """One recorded tool run."""

    tool_id: Optional[str] = None
    timestamp: datetime


class UsageSeriesPoint(BaseModelWithConfigDict):
    """One bucket of a usage time series."""

    label: str
    period_start: datetime
    value: int


class ToolUsageBreakdown(BaseModelWithConfigDict):
    """Usage of one tool inside an analytics window."""

    tool_id: str
    tool_name: str
    tool_slug: str
    usage_count: int
    share_percentage: float
    last_used: Optional[datetime] = None


class PeriodComparison(BaseModelWithConfigDict):
    """Usage of the window against the preceding window of equal length."""

    current_period_usage: int
    previous_period_usage: int
    growth_rate: float
    unbounded: bool = False


class AnalyticsSummary(BaseModelWithConfigDict):
    """Aggregated usage over a time window."""

    time_range: AnalyticsTimeRange
    total_tools: int
    total_tags: int
    total_usage: int
    tool_breakdown: List[ToolUsageBreakdown] = Field(default_factory=list)
    series: List[UsageSeriesPoint] = Field(default_factory=list)
    top_tools: List[ToolUsageBreakdown] = Field(default_factory=list)
    period_comparison: Optional[PeriodComparison] = None
    generated_at: datetime


class UsageTrends(BaseModelWithConfigDict):
    """Usage counts bucketed per day, week and month, oldest first."""

    daily: List[int] = Field(default_factory=list)
    weekly: List[int] = Field(default_factory=list)
    monthly: List[int] = Field(default_factory=list)


class GrowthRates(BaseModelWithConfigDict):
    """Percentage change between first and last bucket of each trend.

    Series whose first bucket is zero but last bucket is not report the
    ``UNBOUNDED_GROWTH`` sentinel and are listed in ``unbounded``.
    """

    daily_growth: float = 0.0
    weekly_growth: float = 0.0
    monthly_growth: float = 0.0
    unbounded: List[str] = Field(default_factory=list)


class ToolUsageAnalytics(BaseModelWithConfigDict):
    """Usage profile of one tool."""

    tool_id: str
    tool_name: str
    tool_slug: str
    is_active: bool
    tags: List[str] = Field(default_factory=list)
    usage_count: int = 0
    last_used: Optional[datetime] = None
    trends: UsageTrends = Field(default_factory=UsageTrends)
    growth_rates: GrowthRates = Field(default_factory=GrowthRates)


class ChartDataPoint(BaseModelWithConfigDict):
    """One labelled value of a chart."""

    label: str
    value: float
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ChartOptions(BaseModelWithConfigDict):
    """Rendering hints for the admin UI."""

    colors: List[str] = Field(default_factory=list)
    show_legend: bool = True
    show_tooltip: bool = True


class AnalyticsChart(BaseModelWithConfigDict):
    """Chart-ready dataset."""

    id: str
    title: str
    type: ChartType
    data: List[ChartDataPoint] = Field(default_factory=list)
    options: ChartOptions = Field(default_factory=ChartOptions)


class ExportOptions(BaseModelWithConfigDict):
    """What an analytics export should contain."""

    format: Literal["json"] = "json"
    include_charts: bool = True
    include_tool_usage: bool = True
    include_system_metrics: bool = True


class ExportMetadata(BaseModelWithConfigDict):
    """Provenance of an analytics export."""

    generated_at: datetime
    format: str
    time_range: AnalyticsTimeRange
    filters: AnalyticsFilter


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------


class AlertSeverity(str, Enum):
    """Alert severity, ordered low < medium < high < critical.

    Examples:
        >>> AlertSeverity.HIGH.rank > AlertSeverity.MEDIUM.rank
        True
        >>> AlertSeverity("critical") is AlertSeverity.CRITICAL
        True
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Position in the severity order.

        Returns:
            int: 0 for low up to 3 for critical.
        """
        return list(AlertSeverity).index(self)


class AlertStatus(str, Enum):
    """Lifecycle state of an alert."""

    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class Alert(BaseModelWithConfigDict):
    """A threshold breach raised by monitoring.

    Examples:
        >>> alert = Alert(id="a1", metric_name="memory_usage", severity=AlertSeverity.LOW, baseline=80, observed=85,
        ...               title="t", description="d", created_at=datetime(2025, 1, 1, tzinfo=timezone.utc))
        >>> alert.status
        <AlertStatus.OPEN: 'open'>
    """

    id: str
    metric_name: str
    severity: AlertSeverity
    baseline: float
    observed: float
    title: str
    description: str
    acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    created_at: datetime

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> AlertStatus:
        """Derived lifecycle state.

        Returns:
            AlertStatus: Resolved wins over acknowledged.
        """
        if self.resolved:
            return AlertStatus.RESOLVED
        if self.acknowledged:
            return AlertStatus.ACKNOWLEDGED
        return AlertStatus.OPEN


class AlertAction(BaseModelWithConfigDict):
    """Request body for changing an alert's state."""

    action: Literal["acknowledge", "resolve"]
    acknowledged_by: str = "admin"


class ErrorLogEntry(BaseModelWithConfigDict):
    """A recorded application error."""

    id: str
    message: str
    stack: Optional[str] = None
    error_type: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    level: ErrorLevel = "error"
    timestamp: datetime
    resolved: bool = False
    resolved_at: Optional[datetime] = None


class MonitoringFilter(BaseModelWithConfigDict):
    """Filter for error log queries."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    levels: Optional[List[ErrorLevel]] = None
    resolved: Optional[bool] = None
    limit: Optional[int] = Field(None, ge=1)

    @field_validator("start", "end")
    @classmethod
    def _to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _utc_field(v)


class RealTimeMetrics(BaseModelWithConfigDict):
    """One monitoring snapshot."""

    timestamp: datetime
    response_time_ms: float = 0.0
    error_rate: float = Field(0.0, description="Failed requests as a percentage of all requests in the window")
    requests_per_minute: float = 0.0
    memory_usage_percent: float = 0.0
    cpu_usage_percent: float = 0.0
    disk_usage_percent: float = 0.0
    db_latency_ms: Optional[float] = None
    db_connections_in_use: int = 0


class ResponseTimeStats(BaseModelWithConfigDict):
    """Response time distribution in milliseconds."""

    average: float = 0.0
    p50: float = 0.0
    p95: float = 0.0
    p99: float = 0.0


class DatabaseMetrics(BaseModelWithConfigDict):
    """Store connectivity and pool usage."""

    status: HealthStatus
    latency_ms: Optional[float] = None
    pool_size: int = 0
    connections_in_use: int = 0
    overflow: int = 0
    error: Optional[str] = None


class ResourceUsage(BaseModelWithConfigDict):
    """Host and process resource usage."""

    memory_percent: float = 0.0
    process_memory_mb: float = 0.0
    cpu_percent: float = 0.0
    disk_percent: float = 0.0


class SystemPerformanceMetrics(BaseModelWithConfigDict):
    """Point-in-time performance figures."""

    timestamp: datetime
    status: HealthStatus
    uptime_seconds: float
    total_requests: int = 0
    requests_per_minute: float = 0.0
    error_rate: float = 0.0
    response_time: ResponseTimeStats = Field(default_factory=ResponseTimeStats)
    database: DatabaseMetrics
    resources: ResourceUsage = Field(default_factory=ResourceUsage)


class HealthCheck(BaseModelWithConfigDict):
    """Result of one health probe."""

    name: str
    status: HealthStatus
    message: str = ""
    response_time_ms: Optional[float] = None
    last_checked: datetime


class SystemHealthDashboard(BaseModelWithConfigDict):
    """Everything the monitoring page shows at once."""

    overall_status: HealthStatus
    last_updated: datetime
    uptime_seconds: float
    health_checks: List[HealthCheck] = Field(default_factory=list)
    active_alerts: List[Alert] = Field(default_factory=list)
    recent_errors: List[ErrorLogEntry] = Field(default_factory=list)
    metrics: RealTimeMetrics
    trends: List[RealTimeMetrics] = Field(default_factory=list)


class AnalyticsServiceStatus(BaseModelWithConfigDict):
    """Self-check of the analytics features.

    ``checks`` and ``health`` are only filled in for detailed requests.
    """

    status: HealthStatus
    timestamp: datetime
    response_time_ms: float
    healthy_services: int
    total_services: int
    availability: float = Field(..., description="Healthy checks as a percentage of all checks")
    uptime_seconds: float
    version: str
    checks: List[HealthCheck] = Field(default_factory=list)
    health: Optional[SystemHealthDashboard] = None


class AnalyticsExport(BaseModelWithConfigDict):
    """Bundle produced by an analytics export."""

    metadata: ExportMetadata
    summary: AnalyticsSummary
    tool_usage: List[ToolUsageAnalytics] = Field(default_factory=list)
    charts: List[AnalyticsChart] = Field(default_factory=list)
    system_metrics: Optional[SystemPerformanceMetrics] = None
