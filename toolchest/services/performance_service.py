# -*- coding: utf-8 -*-
"""Location: ./toolchest/services/performance_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

Performance Probes.

This module collects the raw figures the monitoring layer works from:
- System resources (CPU, memory, disk) via psutil
- Database round-trip latency and connection pool usage
- HTTP request latency and failures, recorded by the request middleware
  and kept for a sliding window
"""

# Standard
from collections import deque
import math
import os
import threading
import time
from typing import Callable, Deque, List, Optional, Tuple

# Third-Party
import psutil
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

# First-Party
from toolchest.config import settings
from toolchest.schemas import DatabaseMetrics, HealthStatus, ResourceUsage, ResponseTimeStats
from toolchest.services.logging_service import LoggingService

# Initialize logging service first
logging_service = LoggingService()
logger = logging_service.get_logger(__name__)


def percentile(sorted_values: List[float], pct: float) -> float:
    """Nearest-rank percentile of an ascending list.

    Args:
        sorted_values: Values sorted ascending.
        pct: Percentile in the range 0-100.

    Returns:
        float: The percentile, or 0.0 for an empty list.

    Examples:
        >>> percentile([10, 20, 30, 40], 50)
        20
        >>> percentile([10, 20, 30, 40], 99)
        40
        >>> percentile([], 95)
        0.0
    """
    if not sorted_values:
        return 0.0
    rank = max(1, math.ceil(pct / 100 * len(sorted_values)))
    return sorted_values[min(rank, len(sorted_values)) - 1]


class PerformanceService:
    """
    Service for sampling system, database and request performance.

    One instance is shared by the application: the request middleware feeds
    ``record_request`` and the analytics service reads the aggregates.
    """

    def __init__(self, window_seconds: Optional[int] = None, clock: Callable[[], float] = time.time):
        """Initialize the performance service.

        Args:
            window_seconds: Sliding window for request statistics.
            clock: Wall-clock source in epoch seconds, injectable for tests.
        """
        self.window_seconds = window_seconds if window_seconds is not None else settings.request_window_seconds
        self._clock = clock
        self.started_at = clock()
        self._requests: Deque[Tuple[float, float, bool]] = deque()
        self._total_requests = 0
        self._lock = threading.Lock()

    def uptime_seconds(self) -> float:
        """Seconds since the service was created.

        Returns:
            float: Uptime.
        """
        return max(0.0, self._clock() - self.started_at)

    def record_request(self, duration_ms: float, failed: bool = False) -> None:
        """Record one handled HTTP request.

        Args:
            duration_ms: Handling time in milliseconds.
            failed: Whether the request ended in a server error.

        Examples:
            >>> service = PerformanceService(window_seconds=60)
            >>> service.record_request(12.5)
            >>> service.record_request(40.0, failed=True)
            >>> stats, error_rate, _, total = service.get_request_metrics()
            >>> (stats.average, error_rate, total)
            (26.25, 50.0, 2)
        """
        now = self._clock()
        with self._lock:
            self._requests.append((now, duration_ms, failed))
            self._total_requests += 1
            self._trim(now)

    def _trim(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._requests and self._requests[0][0] < cutoff:
            self._requests.popleft()

    def get_request_metrics(self) -> Tuple[ResponseTimeStats, float, float, int]:
        """Aggregate the requests inside the sliding window.

        Returns:
            Tuple: Response time stats, error rate (percent), requests per
            minute and the lifetime request count.
        """
        now = self._clock()
        with self._lock:
            self._trim(now)
            window = list(self._requests)
            total = self._total_requests

        if not window:
            return ResponseTimeStats(), 0.0, 0.0, total

        durations = sorted(duration for _, duration, _ in window)
        failures = sum(1 for _, _, failed in window if failed)
        stats = ResponseTimeStats(
            average=round(sum(durations) / len(durations), 2),
            p50=round(percentile(durations, 50), 2),
            p95=round(percentile(durations, 95), 2),
            p99=round(percentile(durations, 99), 2),
        )
        error_rate = round(failures / len(window) * 100, 2)
        minutes = max(self.window_seconds, 1) / 60
        return stats, error_rate, round(len(window) / minutes, 2), total

    def get_resource_usage(self) -> ResourceUsage:
        """Collect current host and process resource usage using psutil.

        Returns:
            ResourceUsage: Memory, CPU and disk usage.
        """
        vm = psutil.virtual_memory()
        root = os.getenv("SystemDrive", "C:\\") if os.name == "nt" else "/"
        disk = psutil.disk_usage(str(root))
        process_memory = psutil.Process(os.getpid()).memory_info().rss
        return ResourceUsage(
            memory_percent=vm.percent,
            process_memory_mb=round(process_memory / 1_048_576, 2),
            # Non-blocking: percentage since the previous call
            cpu_percent=psutil.cpu_percent(interval=None),
            disk_percent=disk.percent,
        )

    def check_database(self, db: Session) -> DatabaseMetrics:
        """Measure a round trip to the store and read pool usage.

        A failing probe reports an ``unhealthy`` status with the error text
        rather than raising, since it feeds health dashboards.

        Args:
            db: Database session.

        Returns:
            DatabaseMetrics: Latency, status and pool usage.
        """
        started = time.perf_counter()
        try:
            db.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.warning(f"Database health probe failed: {e}")
            return DatabaseMetrics(status="unhealthy", error=str(e))
        latency_ms = round((time.perf_counter() - started) * 1000, 2)

        metrics = DatabaseMetrics(status=self.classify_db_latency(latency_ms), latency_ms=latency_ms)
        pool = db.get_bind().pool
        # StaticPool / NullPool do not report sizes
        if hasattr(pool, "size") and hasattr(pool, "checkedout"):
            metrics.pool_size = pool.size()
            metrics.connections_in_use = pool.checkedout()
            metrics.overflow = pool.overflow()
        return metrics

    @staticmethod
    def classify_db_latency(latency_ms: float) -> HealthStatus:
        """Map a database round trip onto a health status.

        Args:
            latency_ms: Round-trip time in milliseconds.

        Returns:
            HealthStatus: healthy, degraded or unhealthy.

        Examples:
            >>> PerformanceService.classify_db_latency(20)
            'healthy'
            >>> PerformanceService.classify_db_latency(250)
            'degraded'
            >>> PerformanceService.classify_db_latency(900)
            'unhealthy'
        """
        if latency_ms < settings.health_db_healthy_ms:
            return "healthy"
        if latency_ms < settings.health_db_degraded_ms:
            return "degraded"
        return "unhealthy"

    @staticmethod
    def classify_memory(memory_percent: float) -> HealthStatus:
        """Map memory usage onto a health status.

        Args:
            memory_percent: Used memory in percent.

        Returns:
            HealthStatus: healthy, degraded or unhealthy.

        Examples:
            >>> PerformanceService.classify_memory(50), PerformanceService.classify_memory(75), PerformanceService.classify_memory(95)
            ('healthy', 'degraded', 'unhealthy')
        """
        if memory_percent < settings.health_memory_healthy_percent:
            return "healthy"
        if memory_percent < settings.health_memory_degraded_percent:
            return "degraded"
        return "unhealthy"

    @staticmethod
    def classify_api(average_ms: float, error_rate: float) -> HealthStatus:
        """Map request latency and failures onto a health status.

        Args:
            average_ms: Average response time in the window.
            error_rate: Failed requests in percent.

        Returns:
            HealthStatus: healthy, degraded or unhealthy.

        Examples:
            >>> PerformanceService.classify_api(120, 0.0)
            'healthy'
            >>> PerformanceService.classify_api(1500, 0.0)
            'degraded'
            >>> PerformanceService.classify_api(100, 12.0)
            'unhealthy'
        """
        if error_rate >= settings.alert_threshold_error_rate * 2 or average_ms >= settings.alert_threshold_response_time_ms * 2:
            return "unhealthy"
        if error_rate >= settings.alert_threshold_error_rate or average_ms >= settings.alert_threshold_response_time_ms:
            return "degraded"
        return "healthy"
