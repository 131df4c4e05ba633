"""Tests for metrics collection."""

import json
import tempfile
from pathlib import Path

from detect_cart.metrics import MetricsCollector


class TestMetricsCollector:
    """Test MetricsCollector."""

    def test_counters_and_histograms(self):
        """Test stats aggregate across event types."""
        metrics = MetricsCollector(enable_logging=False)
        metrics.record_fetch("r1", "demo", success=True, redirect_count=2, latency_ms=120)
        metrics.record_model_result("r1", "m1", "success", latency_ms=300, total_tokens=900)
        metrics.record_model_result("r1", "m2", "failure", latency_ms=100, error_kind="ProviderFatal")
        metrics.record_consensus("r1", "m1", success=True, total_tokens=400)

        stats = metrics.get_stats()
        assert stats["counters"]["fetch_success"] == 1
        assert stats["counters"]["model_results_total"] == 2
        assert stats["counters"]["errors_ProviderFatal"] == 1
        assert stats["counters"]["consensus_total"] == 1
        assert stats["llm_latency"]["max_ms"] == 300
        assert stats["tokens"]["total"] == 900
        assert stats["total_events"] == 4

    def test_writes_jsonl(self):
        """Test events are appended to the metrics file."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "metrics.jsonl"
            metrics = MetricsCollector(metrics_file=path, enable_logging=False)
            metrics.record_error("r1", "NoVariant", "找不到商品 variant ID", store_name="demo")

            lines = path.read_text(encoding="utf-8").splitlines()

        event = json.loads(lines[0])
        assert event["event_type"] == "error"
        assert event["data"]["error_message"] == "找不到商品 variant ID"
        assert event["data"]["store_name"] == "demo"

    def test_reset(self):
        metrics = MetricsCollector(enable_logging=False)
        metrics.record_consensus("r1", "m1", success=False, error_kind="ProviderTransient")

        metrics.reset()

        assert metrics.events == []
        assert metrics.get_stats()["counters"] == {}
