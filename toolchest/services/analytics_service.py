# -*- coding: utf-8 -*-
"""Location: ./toolchest/services/analytics_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

Analytics Service Implementation.
This module turns the tool usage log into admin analytics and runs system
monitoring:
- Usage summaries, per-tool trends, chart datasets and exports
- Period bucketing and growth-rate calculation for time series
- Periodic metric sampling with threshold alerts
- Alert lifecycle (open -> acknowledged -> resolved) and an error log

Alerts, error log entries and metric history live in process memory and are
guarded by a single lock.

Examples:
    >>> from datetime import datetime, timezone
    >>> days = [datetime(2025, 1, d, tzinfo=timezone.utc) for d in (1, 1, 3)]
    >>> AnalyticsService.group_usages_by_period(days, "day")
    [2, 0, 1]
    >>> AnalyticsService.calculate_growth_rates(UsageTrends(daily=[1, 2, 4], weekly=[2, 2], monthly=[1, 3])).daily_growth
    300.0
    >>> AnalyticsService.calculate_alert_severity("response_time", 100, 220)
    <AlertSeverity.CRITICAL: 'critical'>
"""

# Standard
import asyncio
from collections import defaultdict, deque
from contextlib import AbstractContextManager
from datetime import datetime, timedelta, timezone
import threading
import time
import traceback
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
import uuid

# Third-Party
import orjson
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

# First-Party
from toolchest import __version__
from toolchest.cache import TTLCache
from toolchest.config import settings
from toolchest.db import as_utc, fresh_db_session, Tag, Tool, ToolTag, ToolUsageEvent, ToolUsageStats, utc_now
from toolchest.schemas import (
    Alert,
    AlertSeverity,
    AnalyticsChart,
    AnalyticsExport,
    AnalyticsFilter,
    AnalyticsServiceStatus,
    AnalyticsSummary,
    AnalyticsTimeRange,
    ChartDataPoint,
    ChartOptions,
    ErrorLevel,
    ErrorLogEntry,
    ExportMetadata,
    ExportOptions,
    GrowthRates,
    HealthCheck,
    HealthStatus,
    MonitoringFilter,
    PeriodComparison,
    RealTimeMetrics,
    SystemHealthDashboard,
    SystemPerformanceMetrics,
    TimePeriod,
    ToolUsageAnalytics,
    ToolUsageBreakdown,
    UsageSeriesPoint,
    UsageTrends,
)
from toolchest.services.base_service import BaseService, NotFoundError
from toolchest.services.logging_service import LoggingService
from toolchest.services.performance_service import PerformanceService

# Initialize logging service first
logging_service = LoggingService()
logger = logging_service.get_logger(__name__)

# Reported when a series grows from zero; JSON has no infinity
UNBOUNDED_GROWTH = 999_999.0

EARLIEST_UTC = datetime.min.replace(tzinfo=timezone.utc)

# Upper ratio bounds (inclusive) of observed/baseline for each severity below critical
SEVERITY_BANDS: Tuple[Tuple[float, AlertSeverity], ...] = (
    (1.1, AlertSeverity.LOW),
    (1.5, AlertSeverity.MEDIUM),
)
CRITICAL_RATIO = 2.0

RESOLVED_ALERT_RETENTION = timedelta(days=7)
DASHBOARD_RECENT_ERRORS = 10
DASHBOARD_TREND_POINTS = 100

CHART_COLORS = ["#3B82F6", "#10B981", "#F59E0B", "#EF4444", "#8B5CF6", "#06B6D4", "#84CC16", "#F97316", "#EC4899", "#6B7280"]
UNTAGGED_LABEL = "Untagged"

_STATUS_ORDER: Dict[str, int] = {"healthy": 0, "degraded": 1, "unhealthy": 2}

METRIC_TITLES = {
    "response_time": "High response time",
    "error_rate": "High error rate",
    "memory_usage": "High memory usage",
    "disk_usage": "High disk usage",
}


# ---------------------------------------------------------------------------
# Period helpers (all UTC)
# ---------------------------------------------------------------------------


def floor_to_period(ts: datetime, period: TimePeriod) -> datetime:
    """Start of the UTC period containing ``ts``.

    Weeks start on Monday; quarters on January, April, July and October.

    Args:
        ts: Timestamp; naive values are taken as UTC.
        period: Bucket size.

    Returns:
        datetime: Aware UTC period start.

    Examples:
        >>> floor_to_period(datetime(2025, 1, 8, 15, 30), "week").isoformat()
        '2025-01-06T00:00:00+00:00'
        >>> floor_to_period(datetime(2025, 5, 20), "quarter").date().isoformat()
        '2025-04-01'
    """
    ts = as_utc(ts)
    day = datetime(ts.year, ts.month, ts.day, tzinfo=timezone.utc)
    if period == "day":
        return day
    if period == "week":
        return day - timedelta(days=day.weekday())
    if period == "month":
        return day.replace(day=1)
    if period == "quarter":
        return day.replace(month=(day.month - 1) // 3 * 3 + 1, day=1)
    return day.replace(month=1, day=1)


def next_period(start: datetime, period: TimePeriod) -> datetime:
    """Start of the period following ``start``.

    Args:
        start: A period start as returned by ``floor_to_period``.
        period: Bucket size.

    Returns:
        datetime: Next period start.

    Examples:
        >>> next_period(datetime(2025, 12, 1, tzinfo=timezone.utc), "month").date().isoformat()
        '2026-01-01'
        >>> next_period(datetime(2025, 10, 1, tzinfo=timezone.utc), "quarter").date().isoformat()
        '2026-01-01'
    """
    if period == "day":
        return start + timedelta(days=1)
    if period == "week":
        return start + timedelta(days=7)
    if period == "year":
        return start.replace(year=start.year + 1)
    step = 3 if period == "quarter" else 1
    month_index = start.month - 1 + step
    return start.replace(year=start.year + month_index // 12, month=month_index % 12 + 1)


def period_label(start: datetime, period: TimePeriod) -> str:
    """Human readable label of a period.

    Args:
        start: Period start.
        period: Bucket size.

    Returns:
        str: Label such as ``2025-01-06``, ``2025-W02``, ``2025-01``, ``2025-Q1`` or ``2025``.

    Examples:
        >>> period_label(datetime(2025, 1, 6, tzinfo=timezone.utc), "week")
        '2025-W02'
        >>> period_label(datetime(2025, 7, 1, tzinfo=timezone.utc), "quarter")
        '2025-Q3'
    """
    if period == "day":
        return start.strftime("%Y-%m-%d")
    if period == "week":
        iso_year, iso_week, _ = start.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    if period == "month":
        return start.strftime("%Y-%m")
    if period == "quarter":
        return f"{start.year}-Q{(start.month - 1) // 3 + 1}"
    return str(start.year)


def bucket_counts(timestamps: Iterable[datetime], period: TimePeriod, start: datetime, end: datetime) -> List[Tuple[datetime, int]]:
    """Count timestamps per period between ``start`` and ``end`` inclusive.

    Every period in the range gets a bucket, empty ones included; timestamps
    outside the range are ignored.

    Args:
        timestamps: Event times.
        period: Bucket size.
        start: First instant of the range.
        end: Last instant of the range.

    Returns:
        List[Tuple[datetime, int]]: (period start, count) oldest first.
    """
    first = floor_to_period(start, period)
    last = floor_to_period(end, period)
    if first > last:
        return []
    buckets: Dict[datetime, int] = {}
    cursor = first
    buckets[cursor] = 0
    # Never step past the last bucket; the following period may not exist (year 9999)
    while cursor < last:
        cursor = next_period(cursor, period)
        buckets[cursor] = 0
    for ts in timestamps:
        bucket = floor_to_period(ts, period)
        if bucket in buckets:
            buckets[bucket] += 1
    return list(buckets.items())


def _event_timestamp(event: Any) -> datetime:
    """Extract the timestamp of a usage event.

    Args:
        event: A datetime, a mapping with ``timestamp``, or an object with a ``timestamp`` attribute.
            Timestamps may also be ISO-8601 strings.

    Returns:
        datetime: Aware UTC timestamp.

    Raises:
        ValueError: If a string timestamp is not ISO-8601.

    Examples:
        >>> _event_timestamp({"timestamp": "2025-01-01T02:00:00+02:00"}).isoformat()
        '2025-01-01T00:00:00+00:00'
    """
    if isinstance(event, Mapping):
        event = event["timestamp"]
    elif not isinstance(event, (datetime, str)):
        event = event.timestamp
    if isinstance(event, str):
        event = datetime.fromisoformat(event)
    return as_utc(event)


def _shift_back(ts: datetime, window: timedelta) -> datetime:
    """``ts - window``, clamped to the earliest representable UTC instant.

    Args:
        ts: Aware UTC datetime.
        window: Non-negative duration.

    Returns:
        datetime: The earlier instant.

    Examples:
        >>> _shift_back(datetime(2025, 1, 2, tzinfo=timezone.utc), timedelta(days=1)).isoformat()
        '2025-01-01T00:00:00+00:00'
        >>> _shift_back(datetime(500, 1, 1, tzinfo=timezone.utc), timedelta(days=365 * 1000)) == EARLIEST_UTC
        True
    """
    if ts - EARLIEST_UTC < window:
        return EARLIEST_UTC
    return ts - window


def growth_rate(series: Sequence[float]) -> Tuple[float, bool]:
    """Percentage change from the first to the last point of ``series``.

    Args:
        series: Values, oldest first.

    Returns:
        Tuple[float, bool]: Rate rounded to two decimals, and whether it is the
        ``UNBOUNDED_GROWTH`` sentinel.

    Examples:
        >>> growth_rate([1, 2, 4])
        (300.0, False)
        >>> growth_rate([5])
        (0.0, False)
        >>> growth_rate([0, 0])
        (0.0, False)
        >>> growth_rate([0, 3])
        (999999.0, True)
        >>> growth_rate([4, 1])
        (-75.0, False)
    """
    if len(series) < 2:
        return 0.0, False
    first, last = series[0], series[-1]
    if first == 0:
        if last == 0:
            return 0.0, False
        return UNBOUNDED_GROWTH, True
    return round((last - first) / first * 100, 2), False


def _worst_status(statuses: Iterable[HealthStatus]) -> HealthStatus:
    """Most severe of several health statuses.

    Args:
        statuses: Statuses to combine.

    Returns:
        HealthStatus: The worst one, ``healthy`` when empty.

    Examples:
        >>> _worst_status(["healthy", "degraded", "healthy"])
        'degraded'
    """
    worst: HealthStatus = "healthy"
    for status in statuses:
        if _STATUS_ORDER[status] > _STATUS_ORDER[worst]:
            worst = status
    return worst


def _json_safe(context: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Copy ``context`` into plain JSON-compatible data.

    Args:
        context: Arbitrary mapping.

    Returns:
        Dict[str, Any]: JSON-compatible copy; unknown objects become strings.

    Examples:
        >>> _json_safe({"when": datetime(2025, 1, 1), 1: [1, 2]})
        {'when': '2025-01-01T00:00:00', '1': [1, 2]}
    """
    if not context:
        return {}
    return orjson.loads(orjson.dumps(dict(context), default=str, option=orjson.OPT_NON_STR_KEYS))


class AnalyticsService(BaseService):
    """Service for usage analytics and system monitoring.

    Construct one per application; the monitoring loop is started and
    stopped by the application lifespan.
    """

    def __init__(
        self,
        performance_service: Optional[PerformanceService] = None,
        cache: Optional[TTLCache] = None,
        cache_ttl: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now,
        session_factory: Callable[[], AbstractContextManager] = fresh_db_session,
    ) -> None:
        """Initialize the analytics service.

        Args:
            performance_service: Source of system, database and request figures.
            cache: Optional shared cache.
            cache_ttl: TTL for summaries, trends and charts.
            clock: Source of the current UTC time, injectable for tests.
            session_factory: Context manager yielding sessions for the monitoring loop.
        """
        super().__init__(cache=cache, cache_ttl=settings.analytics_cache_ttl if cache_ttl is None else cache_ttl)
        self._performance = performance_service or PerformanceService()
        self._now = clock
        self._session_factory = session_factory
        self._state_lock = threading.Lock()
        self._alerts: Dict[str, Alert] = {}
        self._errors: Deque[ErrorLogEntry] = deque(maxlen=settings.error_log_max_entries)
        self._metrics_history: Deque[RealTimeMetrics] = deque(maxlen=settings.metrics_history_size)
        self._monitor_task: Optional[asyncio.Task] = None

    async def shutdown(self) -> None:
        """Stop monitoring and drop cached entries."""
        await self.stop_monitoring()
        await super().shutdown()

    # ------------------------------------------------------------------
    # Pure calculations
    # ------------------------------------------------------------------

    @staticmethod
    def group_usages_by_period(events: Iterable[Any], period: TimePeriod) -> List[int]:
        """Count events per period from the earliest to the latest event.

        Args:
            events: Datetimes, ``UsageEvent`` objects or mappings with a ``timestamp``.
            period: Bucket size.

        Returns:
            List[int]: Counts oldest first, empty periods included; ``[]`` for no events.
        """
        timestamps = sorted(_event_timestamp(event) for event in events)
        if not timestamps:
            return []
        return [count for _, count in bucket_counts(timestamps, period, timestamps[0], timestamps[-1])]

    @staticmethod
    def calculate_growth_rates(trends: UsageTrends) -> GrowthRates:
        """Growth of each trend series from its first to its last bucket.

        Args:
            trends: Daily, weekly and monthly series.

        Returns:
            GrowthRates: Percentages, with zero-based growth flagged in ``unbounded``.
        """
        rates: Dict[str, float] = {}
        unbounded: List[str] = []
        for name in ("daily", "weekly", "monthly"):
            rate, is_unbounded = growth_rate(getattr(trends, name))
            rates[f"{name}_growth"] = rate
            if is_unbounded:
                unbounded.append(name)
        return GrowthRates(**rates, unbounded=unbounded)

    @staticmethod
    def calculate_alert_severity(metric_name: str, baseline: float, observed: float) -> AlertSeverity:
        """Severity of a metric observation relative to its baseline.

        Args:
            metric_name: Metric the observation belongs to.
            baseline: Expected value or threshold.
            observed: Measured value.

        Returns:
            AlertSeverity: low up to 1.1x, medium up to 1.5x, high below 2x, critical from 2x.

        Examples:
            >>> AnalyticsService.calculate_alert_severity("response_time", 100, 110)
            <AlertSeverity.LOW: 'low'>
            >>> AnalyticsService.calculate_alert_severity("error_rate", 5, 7)
            <AlertSeverity.MEDIUM: 'medium'>
            >>> AnalyticsService.calculate_alert_severity("memory_usage", 40, 70)
            <AlertSeverity.HIGH: 'high'>
            >>> AnalyticsService.calculate_alert_severity("disk_usage", 0, 0)
            <AlertSeverity.LOW: 'low'>
        """
        if baseline <= 0:
            severity = AlertSeverity.LOW if observed <= 0 else AlertSeverity.CRITICAL
        else:
            ratio = observed / baseline
            severity = AlertSeverity.CRITICAL if ratio >= CRITICAL_RATIO else AlertSeverity.HIGH
            for upper, band in SEVERITY_BANDS:
                if ratio <= upper:
                    severity = band
                    break
        logger.debug(f"Severity for {metric_name}: baseline={baseline} observed={observed} -> {severity.value}")
        return severity

    # ------------------------------------------------------------------
    # Usage analytics
    # ------------------------------------------------------------------

    def _resolve_time_range(self, analytics_filter: AnalyticsFilter) -> AnalyticsTimeRange:
        if analytics_filter.time_range is not None:
            return analytics_filter.time_range
        end = self._now()
        return AnalyticsTimeRange(start=end - timedelta(days=settings.analytics_default_range_days), end=end, period="day")

    @staticmethod
    def _scope_tools(stmt, analytics_filter: AnalyticsFilter):
        """Apply the tool scope of ``analytics_filter`` to a statement over ``Tool``.

        Args:
            stmt: Select statement that includes the ``tools`` table.
            analytics_filter: Filter carrying ids and the inactive flag.

        Returns:
            The restricted statement.
        """
        if not analytics_filter.include_inactive:
            stmt = stmt.where(Tool.is_active.is_(True))
        if analytics_filter.tool_ids is not None:
            stmt = stmt.where(Tool.id.in_(analytics_filter.tool_ids))
        if analytics_filter.tag_ids is not None:
            stmt = stmt.where(Tool.id.in_(select(ToolTag.tool_id).where(ToolTag.tag_id.in_(analytics_filter.tag_ids))))
        return stmt

    def _scoped_tools(self, db: Session, analytics_filter: AnalyticsFilter) -> List[Tool]:
        stmt = self._scope_tools(select(Tool), analytics_filter)
        return list(db.execute(stmt.order_by(Tool.name, Tool.id)).scalars())

    def _usage_events(self, db: Session, analytics_filter: AnalyticsFilter, start: datetime, end: datetime, end_inclusive: bool = True) -> List[Tuple[str, datetime]]:
        stmt = select(ToolUsageEvent.tool_id, ToolUsageEvent.timestamp).join(Tool, Tool.id == ToolUsageEvent.tool_id).where(ToolUsageEvent.timestamp >= start)
        stmt = stmt.where(ToolUsageEvent.timestamp <= end if end_inclusive else ToolUsageEvent.timestamp < end)
        stmt = self._scope_tools(stmt, analytics_filter)
        return [(tool_id, as_utc(ts)) for tool_id, ts in db.execute(stmt)]

    async def get_analytics_summary(self, db: Session, analytics_filter: Optional[AnalyticsFilter] = None) -> AnalyticsSummary:
        """Aggregate tool usage over a time window.

        Args:
            db: Database session.
            analytics_filter: Optional time range and tool scope; defaults to the
                trailing ``analytics_default_range_days`` bucketed by day.

        Returns:
            AnalyticsSummary: Totals, per-tool breakdown, series and period comparison.

        Raises:
            StorageError: If the store cannot be read.
        """
        analytics_filter = analytics_filter or AnalyticsFilter()
        key = self.cache_key("analytics:summary", analytics_filter)
        try:
            return await self.get_cached(key, lambda: self._build_summary(db, analytics_filter))
        except SQLAlchemyError as e:
            self.handle_error(e, "build analytics summary")

    def _build_summary(self, db: Session, analytics_filter: AnalyticsFilter) -> AnalyticsSummary:
        time_range = self._resolve_time_range(analytics_filter)
        tools = self._scoped_tools(db, analytics_filter)
        events = self._usage_events(db, analytics_filter, time_range.start, time_range.end)

        tag_stmt = select(func.count(Tag.id))
        if analytics_filter.tag_ids is not None:
            tag_stmt = tag_stmt.where(Tag.id.in_(analytics_filter.tag_ids))
        total_tags = db.execute(tag_stmt).scalar_one()

        counts: Dict[str, int] = defaultdict(int)
        last_used: Dict[str, datetime] = {}
        for tool_id, ts in events:
            counts[tool_id] += 1
            if tool_id not in last_used or ts > last_used[tool_id]:
                last_used[tool_id] = ts

        total_usage = len(events)
        breakdown = [
            ToolUsageBreakdown(
                tool_id=tool.id,
                tool_name=tool.name,
                tool_slug=tool.slug,
                usage_count=counts[tool.id],
                share_percentage=round(counts[tool.id] / total_usage * 100, 2) if total_usage else 0.0,
                last_used=last_used.get(tool.id),
            )
            for tool in tools
        ]
        breakdown.sort(key=lambda item: (-item.usage_count, item.tool_name.casefold(), item.tool_id))

        series = [
            UsageSeriesPoint(label=period_label(period_start, time_range.period), period_start=period_start, value=count)
            for period_start, count in bucket_counts((ts for _, ts in events), time_range.period, time_range.start, time_range.end)
        ]

        previous_start = _shift_back(time_range.start, time_range.end - time_range.start)
        previous_usage = len(self._usage_events(db, analytics_filter, previous_start, time_range.start, end_inclusive=False))
        rate, unbounded = growth_rate([previous_usage, total_usage])

        return AnalyticsSummary(
            time_range=time_range,
            total_tools=len(tools),
            total_tags=total_tags,
            total_usage=total_usage,
            tool_breakdown=breakdown,
            series=series,
            top_tools=[item for item in breakdown if item.usage_count > 0][: settings.analytics_top_tools_limit],
            period_comparison=PeriodComparison(current_period_usage=total_usage, previous_period_usage=previous_usage, growth_rate=rate, unbounded=unbounded),
            generated_at=self._now(),
        )

    async def get_tool_usage_analytics(self, db: Session, analytics_filter: Optional[AnalyticsFilter] = None) -> List[ToolUsageAnalytics]:
        """Per-tool usage counts, trends and growth rates.

        Args:
            db: Database session.
            analytics_filter: Optional time range and tool scope.

        Returns:
            List[ToolUsageAnalytics]: Tools ordered by usage, most used first.

        Raises:
            StorageError: If the store cannot be read.
        """
        analytics_filter = analytics_filter or AnalyticsFilter()
        key = self.cache_key("analytics:tool_usage", analytics_filter)
        try:
            return await self.get_cached(key, lambda: self._build_tool_usage(db, analytics_filter))
        except SQLAlchemyError as e:
            self.handle_error(e, "build tool usage analytics")

    def _build_tool_usage(self, db: Session, analytics_filter: AnalyticsFilter) -> List[ToolUsageAnalytics]:
        time_range = self._resolve_time_range(analytics_filter)
        tools = self._scoped_tools(db, analytics_filter)
        tool_ids = [tool.id for tool in tools]

        events_by_tool: Dict[str, List[datetime]] = defaultdict(list)
        for tool_id, ts in self._usage_events(db, analytics_filter, time_range.start, time_range.end):
            events_by_tool[tool_id].append(ts)

        tag_names: Dict[str, List[str]] = defaultdict(list)
        stats_last_used: Dict[str, Optional[datetime]] = {}
        if tool_ids:
            for tool_id, name in db.execute(
                select(ToolTag.tool_id, Tag.name).join(Tag, Tag.id == ToolTag.tag_id).where(ToolTag.tool_id.in_(tool_ids)).order_by(Tag.display_order, Tag.name)
            ):
                tag_names[tool_id].append(name)
            for tool_id, last in db.execute(select(ToolUsageStats.tool_id, ToolUsageStats.last_used).where(ToolUsageStats.tool_id.in_(tool_ids))):
                stats_last_used[tool_id] = as_utc(last)

        results: List[ToolUsageAnalytics] = []
        for tool in tools:
            timestamps = events_by_tool[tool.id]
            trends = UsageTrends(
                daily=[count for _, count in bucket_counts(timestamps, "day", time_range.start, time_range.end)],
                weekly=[count for _, count in bucket_counts(timestamps, "week", time_range.start, time_range.end)],
                monthly=[count for _, count in bucket_counts(timestamps, "month", time_range.start, time_range.end)],
            )
            results.append(
                ToolUsageAnalytics(
                    tool_id=tool.id,
                    tool_name=tool.name,
                    tool_slug=tool.slug,
                    is_active=tool.is_active,
                    tags=tag_names[tool.id],
                    usage_count=len(timestamps),
                    last_used=stats_last_used.get(tool.id) or (max(timestamps) if timestamps else None),
                    trends=trends,
                    growth_rates=self.calculate_growth_rates(trends),
                )
            )
        results.sort(key=lambda item: (-item.usage_count, item.tool_name.casefold(), item.tool_id))
        return results

    async def generate_charts(self, db: Session, analytics_filter: Optional[AnalyticsFilter] = None) -> List[AnalyticsChart]:
        """Chart datasets for the analytics page.

        Produces a usage-over-time line chart, a top tools bar chart and a
        usage-by-tag pie chart, where each tool counts towards its first tag.

        Args:
            db: Database session.
            analytics_filter: Optional time range and tool scope.

        Returns:
            List[AnalyticsChart]: The three charts.

        Raises:
            StorageError: If the store cannot be read.
        """
        analytics_filter = analytics_filter or AnalyticsFilter()
        summary = await self.get_analytics_summary(db, analytics_filter)
        key = self.cache_key("analytics:charts", analytics_filter)
        try:
            return await self.get_cached(key, lambda: self._build_charts(db, summary))
        except SQLAlchemyError as e:
            self.handle_error(e, "generate charts")

    def _build_charts(self, db: Session, summary: AnalyticsSummary) -> List[AnalyticsChart]:
        usage_over_time = AnalyticsChart(
            id="usage_over_time",
            title="Tool usage over time",
            type="line",
            data=[ChartDataPoint(label=point.label, value=point.value, metadata={"period_start": point.period_start.isoformat()}) for point in summary.series],
            options=ChartOptions(colors=CHART_COLORS[:1], show_legend=False),
        )

        top = [item for item in summary.tool_breakdown if item.usage_count > 0][: settings.analytics_chart_top_tools_limit]
        top_tools = AnalyticsChart(
            id="top_tools",
            title="Most popular tools",
            type="bar",
            data=[ChartDataPoint(label=item.tool_name, value=item.usage_count, metadata={"tool_id": item.tool_id, "tool_slug": item.tool_slug}) for item in top],
            options=ChartOptions(colors=CHART_COLORS, show_legend=False),
        )

        used = {item.tool_id: item.usage_count for item in summary.tool_breakdown if item.usage_count > 0}
        primary_tag: Dict[str, str] = {}
        if used:
            rows = db.execute(
                select(ToolTag.tool_id, Tag.name).join(Tag, Tag.id == ToolTag.tag_id).where(ToolTag.tool_id.in_(list(used))).order_by(Tag.display_order, Tag.name, Tag.id)
            )
            for tool_id, name in rows:
                primary_tag.setdefault(tool_id, name)
        by_tag: Dict[str, int] = defaultdict(int)
        for tool_id, count in used.items():
            by_tag[primary_tag.get(tool_id, UNTAGGED_LABEL)] += count
        usage_by_tag = AnalyticsChart(
            id="usage_by_tag",
            title="Usage by tag",
            type="pie",
            data=[ChartDataPoint(label=label, value=count) for label, count in sorted(by_tag.items(), key=lambda item: (-item[1], item[0]))],
            options=ChartOptions(colors=CHART_COLORS),
        )
        return [usage_over_time, top_tools, usage_by_tag]

    async def export_analytics(self, db: Session, options: Optional[ExportOptions] = None, analytics_filter: Optional[AnalyticsFilter] = None) -> AnalyticsExport:
        """Bundle analytics for download.

        Args:
            db: Database session.
            options: What to include.
            analytics_filter: Optional time range and tool scope.

        Returns:
            AnalyticsExport: Summary plus the requested sections.
        """
        options = options or ExportOptions()
        analytics_filter = analytics_filter or AnalyticsFilter()
        summary = await self.get_analytics_summary(db, analytics_filter)
        export = AnalyticsExport(
            metadata=ExportMetadata(generated_at=self._now(), format=options.format, time_range=summary.time_range, filters=analytics_filter),
            summary=summary,
        )
        if options.include_tool_usage:
            export.tool_usage = await self.get_tool_usage_analytics(db, analytics_filter)
        if options.include_charts:
            export.charts = await self.generate_charts(db, analytics_filter)
        if options.include_system_metrics:
            export.system_metrics = await self.get_system_performance_metrics(db)
        logger.info(f"Exported analytics for {summary.time_range.start.isoformat()} - {summary.time_range.end.isoformat()}")
        return export

    # ------------------------------------------------------------------
    # System metrics and health
    # ------------------------------------------------------------------

    def _sample(self, db: Session) -> RealTimeMetrics:
        stats, error_rate, requests_per_minute, _ = self._performance.get_request_metrics()
        resources = self._performance.get_resource_usage()
        database = self._performance.check_database(db)
        return RealTimeMetrics(
            timestamp=self._now(),
            response_time_ms=stats.average,
            error_rate=error_rate,
            requests_per_minute=requests_per_minute,
            memory_usage_percent=resources.memory_percent,
            cpu_usage_percent=resources.cpu_percent,
            disk_usage_percent=resources.disk_percent,
            db_latency_ms=database.latency_ms,
            db_connections_in_use=database.connections_in_use,
        )

    async def get_current_metrics(self, db: Session) -> RealTimeMetrics:
        """Take one fresh snapshot without recording it.

        Args:
            db: Database session.

        Returns:
            RealTimeMetrics: Current figures.
        """
        return self._sample(db)

    async def collect_metrics(self, db: Session) -> RealTimeMetrics:
        """Take a snapshot, append it to the history and check thresholds.

        Args:
            db: Database session.

        Returns:
            RealTimeMetrics: The recorded snapshot.
        """
        snapshot = self._sample(db)
        with self._state_lock:
            self._metrics_history.append(snapshot)
        self.check_alert_thresholds(snapshot)
        return snapshot

    def check_alert_thresholds(self, snapshot: RealTimeMetrics) -> List[Alert]:
        """Open alerts for every metric above its configured threshold.

        Args:
            snapshot: Metrics to check.

        Returns:
            List[Alert]: Newly opened alerts.
        """
        observed = {
            "response_time": snapshot.response_time_ms,
            "error_rate": snapshot.error_rate,
            "memory_usage": snapshot.memory_usage_percent,
            "disk_usage": snapshot.disk_usage_percent,
        }
        created: List[Alert] = []
        for metric_name, threshold in settings.alert_thresholds.items():
            value = observed[metric_name]
            if value > threshold:
                alert = self.raise_alert(metric_name, threshold, value)
                if alert is not None:
                    created.append(alert)
        return created

    def raise_alert(self, metric_name: str, baseline: float, observed: float, description: Optional[str] = None) -> Optional[Alert]:
        """Open an alert unless one for the same metric is still unresolved.

        Args:
            metric_name: Metric that breached its baseline.
            baseline: Threshold or expected value.
            observed: Measured value.
            description: Optional text; a default one is generated.

        Returns:
            Optional[Alert]: The new alert, or None if an unresolved one exists.
        """
        severity = self.calculate_alert_severity(metric_name, baseline, observed)
        with self._state_lock:
            if any(a.metric_name == metric_name and not a.resolved for a in self._alerts.values()):
                return None
            alert = Alert(
                id=uuid.uuid4().hex,
                metric_name=metric_name,
                severity=severity,
                baseline=baseline,
                observed=observed,
                title=METRIC_TITLES.get(metric_name, f"{metric_name} above threshold"),
                description=description or f"{metric_name} is {observed:.2f}, threshold {baseline:.2f}",
                created_at=self._now(),
            )
            self._alerts[alert.id] = alert
        logger.warning(f"Alert raised ({severity.value}): {alert.description}")
        return alert.model_copy()

    async def get_system_performance_metrics(self, db: Session) -> SystemPerformanceMetrics:
        """Point-in-time performance figures, cached briefly.

        Args:
            db: Database session.

        Returns:
            SystemPerformanceMetrics: Request, database and resource figures.
        """
        return await self.get_cached("performance:system", lambda: self._build_performance(db), ttl=settings.performance_cache_ttl)

    def _build_performance(self, db: Session) -> SystemPerformanceMetrics:
        stats, error_rate, requests_per_minute, total = self._performance.get_request_metrics()
        resources = self._performance.get_resource_usage()
        database = self._performance.check_database(db)
        status = _worst_status(
            [
                database.status,
                self._performance.classify_memory(resources.memory_percent),
                self._performance.classify_api(stats.average, error_rate),
            ]
        )
        return SystemPerformanceMetrics(
            timestamp=self._now(),
            status=status,
            uptime_seconds=round(self._performance.uptime_seconds(), 2),
            total_requests=total,
            requests_per_minute=requests_per_minute,
            error_rate=error_rate,
            response_time=stats,
            database=database,
            resources=resources,
        )

    async def get_system_health_dashboard(self, db: Session) -> SystemHealthDashboard:
        """Health checks, open alerts, recent errors and metric trends.

        Args:
            db: Database session.

        Returns:
            SystemHealthDashboard: Dashboard data; the overall status is the worst check.
        """
        now = self._now()
        stats, error_rate, requests_per_minute, _ = self._performance.get_request_metrics()
        resources = self._performance.get_resource_usage()
        database = self._performance.check_database(db)

        checks = [
            HealthCheck(
                name="database",
                status=database.status,
                message=database.error or f"Query completed in {database.latency_ms}ms",
                response_time_ms=database.latency_ms,
                last_checked=now,
            ),
            HealthCheck(
                name="memory",
                status=self._performance.classify_memory(resources.memory_percent),
                message=f"Memory usage at {resources.memory_percent:.1f}%",
                last_checked=now,
            ),
            HealthCheck(
                name="api",
                status=self._performance.classify_api(stats.average, error_rate),
                message=f"Average response time {stats.average:.1f}ms, error rate {error_rate:.2f}%",
                response_time_ms=stats.average,
                last_checked=now,
            ),
        ]
        metrics = RealTimeMetrics(
            timestamp=now,
            response_time_ms=stats.average,
            error_rate=error_rate,
            requests_per_minute=requests_per_minute,
            memory_usage_percent=resources.memory_percent,
            cpu_usage_percent=resources.cpu_percent,
            disk_usage_percent=resources.disk_percent,
            db_latency_ms=database.latency_ms,
            db_connections_in_use=database.connections_in_use,
        )

        recent_errors = await self.get_error_logs(MonitoringFilter(resolved=False, limit=DASHBOARD_RECENT_ERRORS))
        with self._state_lock:
            trends = list(self._metrics_history)[-DASHBOARD_TREND_POINTS:]

        return SystemHealthDashboard(
            overall_status=_worst_status(check.status for check in checks),
            last_updated=now,
            uptime_seconds=round(self._performance.uptime_seconds(), 2),
            health_checks=checks,
            active_alerts=await self.list_alerts(),
            recent_errors=recent_errors,
            metrics=metrics,
            trends=trends,
        )

    async def get_real_time_metrics(self, limit: int = 100, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[RealTimeMetrics]:
        """Most recent recorded snapshots.

        Args:
            limit: Maximum number of snapshots.
            start: Only snapshots taken at or after this time.
            end: Only snapshots taken at or before this time.

        Returns:
            List[RealTimeMetrics]: Newest first.
        """
        if limit <= 0:
            return []
        start, end = as_utc(start), as_utc(end)
        with self._state_lock:
            history = list(self._metrics_history)
        if start is not None:
            history = [m for m in history if m.timestamp >= start]
        if end is not None:
            history = [m for m in history if m.timestamp <= end]
        return list(reversed(history[-limit:]))

    async def get_service_status(self, db: Session, detailed: bool = False) -> AnalyticsServiceStatus:
        """Exercise each analytics feature once and report which ones work.

        Runs a summary, a metrics snapshot, the charts and a minimal export.
        All checks passing is healthy, more than half passing is degraded,
        anything less is unhealthy.

        Args:
            db: Database session.
            detailed: Include per-check results and the health dashboard.

        Returns:
            AnalyticsServiceStatus: Overall status and availability.
        """
        minimal_export = ExportOptions(include_charts=False, include_tool_usage=False, include_system_metrics=False)
        features: List[Tuple[str, Callable[[], Any]]] = [
            ("analytics", lambda: self.get_analytics_summary(db)),
            ("metrics", lambda: self.get_current_metrics(db)),
            ("charts", lambda: self.generate_charts(db)),
            ("export", lambda: self.export_analytics(db, minimal_export)),
        ]
        started = time.perf_counter()
        checks: List[HealthCheck] = []
        for name, run in features:
            check_started = time.perf_counter()
            try:
                await run()
            except Exception as e:
                logger.warning(f"Analytics self-check '{name}' failed: {e}")
                checks.append(HealthCheck(name=name, status="unhealthy", message=str(e), last_checked=self._now()))
                continue
            elapsed_ms = round((time.perf_counter() - check_started) * 1000, 2)
            checks.append(HealthCheck(name=name, status="healthy", message="OK", response_time_ms=elapsed_ms, last_checked=self._now()))

        healthy = sum(1 for check in checks if check.status == "healthy")
        if healthy == len(checks):
            status: HealthStatus = "healthy"
        elif healthy > len(checks) / 2:
            status = "degraded"
        else:
            status = "unhealthy"

        result = AnalyticsServiceStatus(
            status=status,
            timestamp=self._now(),
            response_time_ms=round((time.perf_counter() - started) * 1000, 2),
            healthy_services=healthy,
            total_services=len(checks),
            availability=round(healthy / len(checks) * 100, 1),
            uptime_seconds=round(self._performance.uptime_seconds(), 2),
            version=__version__,
        )
        if detailed:
            result.checks = checks
            result.health = await self.get_system_health_dashboard(db)
        return result

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    async def list_alerts(self, include_resolved: bool = False, severity: Optional[AlertSeverity] = None) -> List[Alert]:
        """Alerts, most severe first and newest first within a severity.

        Args:
            include_resolved: Also return resolved alerts.
            severity: Only return alerts of this severity.

        Returns:
            List[Alert]: Copies of the stored alerts.
        """
        with self._state_lock:
            alerts = [
                alert.model_copy() for alert in self._alerts.values() if (include_resolved or not alert.resolved) and (severity is None or alert.severity == severity)
            ]
        alerts.sort(key=lambda alert: alert.created_at, reverse=True)
        alerts.sort(key=lambda alert: alert.severity.rank, reverse=True)
        return alerts

    async def acknowledge_alert(self, alert_id: str, acknowledged_by: str = "admin") -> Alert:
        """Move an open alert to acknowledged.

        Acknowledging an acknowledged or resolved alert changes nothing.

        Args:
            alert_id: Alert id.
            acknowledged_by: Who acknowledged it.

        Returns:
            Alert: The alert after the call.

        Raises:
            NotFoundError: If the alert does not exist.
        """
        with self._state_lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                raise NotFoundError(f"Alert not found: {alert_id}", context="acknowledge_alert", details={"ids": [alert_id]})
            if not alert.acknowledged and not alert.resolved:
                alert.acknowledged = True
                alert.acknowledged_by = acknowledged_by
                alert.acknowledged_at = self._now()
                logger.info(f"Alert {alert_id} acknowledged by {acknowledged_by}")
            return alert.model_copy()

    async def resolve_alert(self, alert_id: str) -> Alert:
        """Resolve an alert; resolving twice changes nothing.

        Args:
            alert_id: Alert id.

        Returns:
            Alert: The alert after the call.

        Raises:
            NotFoundError: If the alert does not exist.
        """
        with self._state_lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                raise NotFoundError(f"Alert not found: {alert_id}", context="resolve_alert", details={"ids": [alert_id]})
            if not alert.resolved:
                alert.resolved = True
                alert.resolved_at = self._now()
                logger.info(f"Alert {alert_id} resolved")
            return alert.model_copy()

    # ------------------------------------------------------------------
    # Error log
    # ------------------------------------------------------------------

    def log_error(self, message: str, error: Optional[BaseException] = None, context: Optional[Mapping[str, Any]] = None, level: ErrorLevel = "error") -> Optional[ErrorLogEntry]:
        """Record an application error.

        Never raises: a failure to record is itself logged and ``None`` returned.

        Args:
            message: What went wrong.
            error: Optional exception; its type and traceback are kept.
            context: Optional structured data.
            level: warning, error or critical.

        Returns:
            Optional[ErrorLogEntry]: The stored entry, or None if recording failed.
        """
        try:
            entry = ErrorLogEntry(
                id=uuid.uuid4().hex,
                message=str(message),
                stack="".join(traceback.format_exception(error)) if error is not None else None,
                error_type=type(error).__name__ if error is not None else None,
                context=_json_safe(context),
                level=level,
                timestamp=self._now(),
            )
            with self._state_lock:
                self._errors.append(entry)
        except Exception as e:
            logger.error(f"Failed to record error log entry '{message}': {e}")
            return None
        logger.log(logging_level(level), f"Recorded {level}: {message}")
        return entry

    async def get_error_logs(self, monitoring_filter: Optional[MonitoringFilter] = None) -> List[ErrorLogEntry]:
        """Recorded errors, newest first.

        Args:
            monitoring_filter: Optional time range, levels, resolved flag and limit.

        Returns:
            List[ErrorLogEntry]: At most ``error_log_query_limit`` entries.
        """
        monitoring_filter = monitoring_filter or MonitoringFilter()
        with self._state_lock:
            entries = [entry.model_copy() for entry in self._errors]

        if monitoring_filter.start is not None:
            entries = [e for e in entries if e.timestamp >= monitoring_filter.start]
        if monitoring_filter.end is not None:
            entries = [e for e in entries if e.timestamp <= monitoring_filter.end]
        if monitoring_filter.levels:
            entries = [e for e in entries if e.level in monitoring_filter.levels]
        if monitoring_filter.resolved is not None:
            entries = [e for e in entries if e.resolved == monitoring_filter.resolved]

        entries.sort(key=lambda e: e.timestamp, reverse=True)
        limit = min(monitoring_filter.limit or settings.error_log_query_limit, settings.error_log_query_limit)
        return entries[:limit]

    async def resolve_error(self, error_id: str) -> ErrorLogEntry:
        """Mark an error log entry as resolved.

        Args:
            error_id: Entry id.

        Returns:
            ErrorLogEntry: The entry after the call.

        Raises:
            NotFoundError: If the entry does not exist.
        """
        with self._state_lock:
            for entry in self._errors:
                if entry.id == error_id:
                    if not entry.resolved:
                        entry.resolved = True
                        entry.resolved_at = self._now()
                    return entry.model_copy()
        raise NotFoundError(f"Error log entry not found: {error_id}", context="resolve_error", details={"ids": [error_id]})

    def cleanup(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Drop monitoring data past its retention.

        Args:
            now: Reference time (defaults to the service clock).

        Returns:
            Dict[str, int]: Number of removed errors, alerts and metric snapshots.
        """
        now = now or self._now()
        error_cutoff = now - timedelta(days=settings.monitoring_retention_days)
        alert_cutoff = now - RESOLVED_ALERT_RETENTION
        metrics_cutoff = now - timedelta(hours=settings.metrics_history_hours)
        with self._state_lock:
            kept_errors = [e for e in self._errors if e.timestamp >= error_cutoff]
            removed_errors = len(self._errors) - len(kept_errors)
            self._errors.clear()
            self._errors.extend(kept_errors)

            stale_alerts = [alert_id for alert_id, a in self._alerts.items() if a.resolved and a.resolved_at is not None and a.resolved_at < alert_cutoff]
            for alert_id in stale_alerts:
                del self._alerts[alert_id]

            removed_metrics = 0
            while self._metrics_history and self._metrics_history[0].timestamp < metrics_cutoff:
                self._metrics_history.popleft()
                removed_metrics += 1

        removed = {"errors": removed_errors, "alerts": len(stale_alerts), "metrics": removed_metrics}
        if any(removed.values()):
            logger.info(f"Monitoring cleanup removed {removed}")
        return removed

    # ------------------------------------------------------------------
    # Background monitoring
    # ------------------------------------------------------------------

    async def run_monitoring_cycle(self) -> Optional[RealTimeMetrics]:
        """Sample metrics with a fresh session and apply retention.

        Failures are logged and recorded in the error log so the loop keeps running.

        Returns:
            Optional[RealTimeMetrics]: The snapshot, or None if sampling failed.
        """
        try:
            with self._session_factory() as db:
                snapshot = await self.collect_metrics(db)
        except Exception as e:
            logger.error(f"Monitoring cycle failed: {e}")
            self.log_error("Monitoring cycle failed", e, {"component": "monitoring"})
            return None
        self.cleanup()
        self.cache.sweep()
        return snapshot

    async def _monitor_loop(self) -> None:
        while True:
            await self.run_monitoring_cycle()
            await asyncio.sleep(settings.monitoring_interval_seconds)

    def start_monitoring(self) -> None:
        """Start the background sampling task if it is not running."""
        if self._monitor_task is not None and not self._monitor_task.done():
            return
        self._monitor_task = asyncio.create_task(self._monitor_loop())
        logger.info(f"Monitoring started (interval={settings.monitoring_interval_seconds}s)")

    async def stop_monitoring(self) -> None:
        """Cancel the background sampling task and wait for it to finish."""
        task, self._monitor_task = self._monitor_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.info("Monitoring stopped")


def logging_level(level: ErrorLevel) -> int:
    """Map an error log level onto a ``logging`` level.

    Args:
        level: warning, error or critical.

    Returns:
        int: The ``logging`` module constant.

    Examples:
        >>> logging_level("critical") == 50
        True
    """
    return {"warning": 30, "error": 40, "critical": 50}[level]
