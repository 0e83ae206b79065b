"""
Engine operation metrics tracking.

Tracks latency and failure rates of build, query, enrich, update and
insight operations.
"""

import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class OperationMetric:
    """Single operation metric."""
    operation: str
    graph_id: Optional[str]
    success: bool
    latency_ms: float
    error_type: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


class OperationMetricsCollector:
    """Collects and aggregates operation metrics."""

    def __init__(self, max_metrics: int = 10000):
        """
        Initialize metrics collector.

        Args:
            max_metrics: Maximum number of metrics to keep in memory
        """
        self.metrics: List[OperationMetric] = []
        self.max_metrics = max_metrics
        self._lock = threading.Lock()

    def record_operation(
        self,
        operation: str,
        latency_ms: float,
        graph_id: Optional[str] = None,
        success: bool = True,
        error_type: Optional[str] = None,
    ) -> None:
        """Record an operation metric."""
        metric = OperationMetric(
            operation=operation,
            graph_id=graph_id,
            success=success,
            latency_ms=latency_ms,
            error_type=error_type,
        )
        with self._lock:
            self.metrics.append(metric)

            # Trim if too many metrics
            if len(self.metrics) > self.max_metrics:
                self.metrics = self.metrics[-self.max_metrics:]

    def get_summary(self, window_seconds: Optional[float] = None) -> Dict[str, Any]:
        """
        Get metrics summary.

        Args:
            window_seconds: Optional time window (only metrics within this window)

        Returns:
            Dict with aggregated metrics per operation
        """
        with self._lock:
            snapshot = list(self.metrics)

        if window_seconds:
            cutoff_time = time.time() - window_seconds
            recent_metrics = [m for m in snapshot if m.timestamp >= cutoff_time]
        else:
            recent_metrics = snapshot

        if not recent_metrics:
            return {
                "total_operations": 0,
                "operations": {},
            }

        operation_stats = defaultdict(lambda: {
            "count": 0,
            "total_latency_ms": 0.0,
            "errors": defaultdict(int),
            "latencies": [],
        })

        for metric in recent_metrics:
            stats = operation_stats[metric.operation]
            stats["count"] += 1
            stats["total_latency_ms"] += metric.latency_ms
            stats["latencies"].append(metric.latency_ms)
            if not metric.success:
                stats["errors"][metric.error_type or "unknown"] += 1

        summary: Dict[str, Any] = {
            "total_operations": len(recent_metrics),
            "window_seconds": window_seconds,
            "operations": {},
        }

        for operation, stats in operation_stats.items():
            latencies = sorted(stats["latencies"])
            n = len(latencies)
            error_count = sum(stats["errors"].values())

            summary["operations"][operation] = {
                "count": stats["count"],
                "avg_latency_ms": stats["total_latency_ms"] / stats["count"],
                "p50_latency_ms": latencies[int(n * 0.5)],
                "p95_latency_ms": latencies[min(n - 1, int(n * 0.95))],
                "p99_latency_ms": latencies[min(n - 1, int(n * 0.99))],
                "error_rate": error_count / stats["count"],
                "errors": dict(stats["errors"]),
            }

        return summary

    def clear(self) -> None:
        """Clear all metrics."""
        with self._lock:
            self.metrics.clear()
