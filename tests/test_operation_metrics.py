"""
Tests for operation metrics collection.
"""
import pytest

from semkg.monitoring.operation_metrics import OperationMetricsCollector


class TestOperationMetrics:
    """Test operation metrics aggregation."""

    def test_empty_summary(self):
        """Test summary with no metrics."""
        assert OperationMetricsCollector().get_summary() == {"total_operations": 0, "operations": {}}

    def test_summary_per_operation(self):
        """Test counts, latency percentiles and error rates."""
        collector = OperationMetricsCollector()
        for latency in (10.0, 20.0, 30.0):
            collector.record_operation("query_graph", latency, graph_id="g1")
        collector.record_operation("query_graph", 40.0, graph_id="g1", success=False, error_type="NotFoundError")
        collector.record_operation("build_graph", 5.0)

        summary = collector.get_summary()

        assert summary["total_operations"] == 5
        query = summary["operations"]["query_graph"]
        assert query["count"] == 4
        assert query["avg_latency_ms"] == pytest.approx(25.0)
        assert query["p50_latency_ms"] == 30.0
        assert query["p99_latency_ms"] == 40.0
        assert query["error_rate"] == pytest.approx(0.25)
        assert query["errors"] == {"NotFoundError": 1}
        assert summary["operations"]["build_graph"]["errors"] == {}

    def test_max_metrics_trims_oldest(self):
        """Test the in-memory cap."""
        collector = OperationMetricsCollector(max_metrics=3)
        for i in range(5):
            collector.record_operation("op", float(i))
        assert [m.latency_ms for m in collector.metrics] == [2.0, 3.0, 4.0]

    def test_window_filters_old_metrics(self):
        """Test time-windowed summaries."""
        collector = OperationMetricsCollector()
        collector.record_operation("old", 1.0)
        collector.metrics[0].timestamp -= 3600
        collector.record_operation("new", 1.0)

        summary = collector.get_summary(window_seconds=60)

        assert list(summary["operations"]) == ["new"]
        assert summary["window_seconds"] == 60

    def test_clear(self):
        collector = OperationMetricsCollector()
        collector.record_operation("op", 1.0)
        collector.clear()
        assert collector.get_summary()["total_operations"] == 0
