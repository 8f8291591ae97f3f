"""
Timing and metric recorder.

Every pipeline stage reports its duration here. Metrics are kept in a bounded
buffer so a long-running process never grows without limit.

Usage:
    monitor = PerformanceMonitor()

    metric_id = monitor.start_timing("agent_request", "operation", session_id="s1")
    ...
    monitor.end_timing(metric_id, success=True)

    async with monitor.time_operation("quality_check", "operation"):
        ...

    stats = monitor.get_stats("agent_request")
"""

import math
import threading
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator

import structlog

from adaptive_agent.core.domain.buffers import RingBuffer
from adaptive_agent.core.domain.models import new_id

METRIC_CATEGORIES = ("operation", "network", "memory", "system")


@dataclass
class PerformanceMetric:
    """A single timing or value sample."""

    metric_id: str
    name: str
    category: str
    started_at: datetime
    start_counter: float = field(default_factory=time.perf_counter, repr=False)
    duration_ms: float | None = None
    value: float | None = None
    unit: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PerformanceStats:
    """Aggregate over completed timings."""

    average_duration_ms: float = 0.0
    min_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    p95_duration_ms: float = 0.0
    total_count: int = 0
    success_rate: float = 0.0
    throughput: float = 0.0  # operations per second


@dataclass(frozen=True)
class PerformanceAlert:
    """Raised when an operation crosses a configured threshold."""

    alert_id: str
    alert_type: str
    severity: str
    message: str
    metric: str
    threshold: float
    current_value: float
    timestamp: datetime = field(default_factory=datetime.now)


class PerformanceMonitor:
    """
    Records operation timings and ad-hoc metric values.

    Thread-safe; a single instance is shared by all components of an agent.
    """

    def __init__(
        self,
        max_metrics: int = 5000,
        max_alerts: int = 100,
        slow_operation_ms: float = 5000.0,
    ):
        self._metrics: RingBuffer[PerformanceMetric] = RingBuffer(max_metrics)
        self._alerts: RingBuffer[PerformanceAlert] = RingBuffer(max_alerts)
        self._open: dict[str, PerformanceMetric] = {}
        self._lock = threading.Lock()
        self.slow_operation_ms = slow_operation_ms
        self.logger = structlog.get_logger().bind(component="performance_monitor")

    def start_timing(self, name: str, category: str = "operation", **metadata: Any) -> str:
        """Start timing an operation and return its metric id."""
        metric = PerformanceMetric(
            metric_id=new_id("perf"),
            name=name,
            category=category,
            started_at=datetime.now(),
            metadata=dict(metadata),
        )
        with self._lock:
            self._open[metric.metric_id] = metric
        return metric.metric_id

    def end_timing(self, metric_id: str, **metadata: Any) -> PerformanceMetric | None:
        """
        Finish a timing started with start_timing().

        Unknown ids are ignored so callers can end timings unconditionally
        in ``finally`` blocks.
        """
        with self._lock:
            metric = self._open.pop(metric_id, None)
        if metric is None:
            return None

        metric.duration_ms = (time.perf_counter() - metric.start_counter) * 1000
        metric.metadata.update(metadata)
        self._metrics.append(metric)
        self._check_thresholds(metric)

        self.logger.debug(
            "timing_recorded",
            name=metric.name,
            category=metric.category,
            duration_ms=round(metric.duration_ms, 2),
        )
        return metric

    def record_metric(
        self,
        name: str,
        value: float,
        unit: str,
        category: str = "system",
        **metadata: Any,
    ) -> None:
        """Record a point-in-time value (counts, sizes, scores)."""
        self._metrics.append(
            PerformanceMetric(
                metric_id=new_id("perf"),
                name=name,
                category=category,
                started_at=datetime.now(),
                value=value,
                unit=unit,
                metadata=dict(metadata),
            )
        )

    @asynccontextmanager
    async def time_operation(
        self, name: str, category: str = "operation", **metadata: Any
    ) -> AsyncIterator[str]:
        """Time the enclosed block; marks success=False if it raises."""
        metric_id = self.start_timing(name, category, **metadata)
        try:
            yield metric_id
        except BaseException as e:
            self.end_timing(metric_id, success=False, error=str(e))
            raise
        else:
            self.end_timing(metric_id, success=True)

    def get_stats(
        self,
        name: str | None = None,
        category: str | None = None,
        since: datetime | None = None,
    ) -> PerformanceStats:
        """Aggregate completed timings, optionally filtered."""
        metrics = [m for m in self._metrics if m.duration_ms is not None]
        if name:
            metrics = [m for m in metrics if m.name == name]
        if category:
            metrics = [m for m in metrics if m.category == category]
        if since:
            metrics = [m for m in metrics if m.started_at >= since]

        if not metrics:
            return PerformanceStats()

        durations = sorted(m.duration_ms for m in metrics)
        p95_index = min(len(durations) - 1, math.floor(len(durations) * 0.95))
        successes = sum(1 for m in metrics if m.metadata.get("success") is not False)

        if since:
            span = (datetime.now() - since).total_seconds()
        else:
            starts = [m.started_at for m in metrics]
            span = (max(starts) - min(starts)).total_seconds()

        return PerformanceStats(
            average_duration_ms=sum(durations) / len(durations),
            min_duration_ms=durations[0],
            max_duration_ms=durations[-1],
            p95_duration_ms=durations[p95_index],
            total_count=len(metrics),
            success_rate=successes / len(metrics),
            throughput=len(metrics) / span if span > 0 else 0.0,
        )

    def get_metrics(self, name: str | None = None, limit: int = 100) -> list[PerformanceMetric]:
        metrics = self._metrics.snapshot()
        if name:
            metrics = [m for m in metrics if m.name == name]
        return metrics[-limit:] if limit > 0 else []

    def get_alerts(self, limit: int = 20) -> list[PerformanceAlert]:
        return self._alerts.latest(limit)

    def clear(self) -> None:
        self._metrics.clear()
        self._alerts.clear()
        with self._lock:
            self._open.clear()

    def _check_thresholds(self, metric: PerformanceMetric) -> None:
        if metric.category != "operation" or metric.duration_ms is None:
            return
        if metric.duration_ms <= self.slow_operation_ms:
            return

        severity = "high" if metric.duration_ms > self.slow_operation_ms * 2 else "medium"
        alert = PerformanceAlert(
            alert_id=new_id("alert"),
            alert_type="slow_operation",
            severity=severity,
            message=f"Slow operation detected: {metric.name} took {metric.duration_ms:.0f}ms",
            metric=metric.name,
            threshold=self.slow_operation_ms,
            current_value=metric.duration_ms,
        )
        self._alerts.append(alert)
        self.logger.warning(
            "slow_operation_detected",
            name=metric.name,
            duration_ms=round(metric.duration_ms, 2),
            severity=severity,
        )
