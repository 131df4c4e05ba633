"""
Metrics and observability for detect-cart.

Provides structured logging and metrics collection for the fetch, fan-out,
consensus stages and for request-level failures.
"""

import json
import logging
import statistics
from collections import defaultdict
from dataclasses import dataclass, asdict
from datetime import datetime, UTC
from pathlib import Path
from threading import Lock
from typing import Optional, Any


@dataclass
class MetricEvent:
    """A single metric event."""
    timestamp: str
    event_type: str  # fetch, model_result, consensus, error
    correlation_id: str
    data: dict[str, Any]


class MetricsCollector:
    """
    Counts fetches, per-model results and arbiter calls for each pipeline run.

    Events are kept in memory and optionally appended to a JSONL file.
    """

    def __init__(
        self,
        metrics_file: Optional[Path] = None,
        enable_logging: bool = True,
    ):
        """
        Args:
            metrics_file: JSONL file each event is appended to
            enable_logging: Echo events to the detect_cart.metrics logger
        """
        self.metrics_file = metrics_file
        self.enable_logging = enable_logging

        self.logger = logging.getLogger("detect_cart.metrics")
        if enable_logging and not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
                )
            )
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.INFO)

        self._lock = Lock()
        self._events: list[MetricEvent] = []
        self._counters: dict[str, int] = defaultdict(int)
        self._histograms: dict[str, list[float]] = defaultdict(list)

    def record_fetch(
        self,
        correlation_id: str,
        store_name: str,
        success: bool,
        redirect_count: int,
        latency_ms: int,
        error_kind: Optional[str] = None,
    ) -> None:
        """Record the outcome of a cart fetch."""
        self._record_event(
            event_type="fetch",
            correlation_id=correlation_id,
            data={
                "store_name": store_name,
                "success": success,
                "redirect_count": redirect_count,
                "latency_ms": latency_ms,
                "error_kind": error_kind,
            },
        )
        self._counters["fetch_total"] += 1
        self._counters["fetch_success" if success else f"fetch_failed_{error_kind}"] += 1
        self._histograms["fetch_latency_ms"].append(latency_ms)

    def record_model_result(
        self,
        correlation_id: str,
        model_id: str,
        state: str,
        latency_ms: Optional[int] = None,
        total_tokens: Optional[int] = None,
        error_kind: Optional[str] = None,
    ) -> None:
        """
        Record a terminal per-model result.

        Args:
            correlation_id: Analysis request identifier
            model_id: Registry model id
            state: success, failure or skipped
            latency_ms: Gateway latency, when the model was called
            total_tokens: Tokens consumed, on success
            error_kind: Provider error kind, on failure
        """
        self._record_event(
            event_type="model_result",
            correlation_id=correlation_id,
            data={
                "model_id": model_id,
                "state": state,
                "latency_ms": latency_ms,
                "total_tokens": total_tokens,
                "error_kind": error_kind,
            },
        )
        self._counters["model_results_total"] += 1
        self._counters[f"model_{state}_{model_id}"] += 1
        if error_kind:
            self._counters[f"errors_{error_kind}"] += 1
        if latency_ms is not None:
            self._histograms["llm_latency_ms"].append(latency_ms)
        if total_tokens:
            self._histograms["tokens"].append(total_tokens)

    def record_consensus(
        self,
        correlation_id: str,
        arbiter_model_id: str,
        success: bool,
        total_tokens: Optional[int] = None,
        error_kind: Optional[str] = None,
    ) -> None:
        """Record the consensus pass."""
        self._record_event(
            event_type="consensus",
            correlation_id=correlation_id,
            data={
                "arbiter_model_id": arbiter_model_id,
                "success": success,
                "total_tokens": total_tokens,
                "error_kind": error_kind,
            },
        )
        self._counters["consensus_total"] += 1
        if not success:
            self._counters["consensus_failed"] += 1

    def record_error(
        self,
        correlation_id: str,
        error_type: str,
        error_message: str,
        **extra: Any,
    ) -> None:
        """
        Record a failure that reached the caller.

        Args:
            correlation_id: Pipeline run or request id
            error_type: Error kind, e.g. NoVariant or ProviderFatal
            error_message: User-facing message
            **extra: Context such as store_name or path
        """
        self._record_event(
            event_type="error",
            correlation_id=correlation_id,
            data={
                "error_type": error_type,
                "error_message": error_message,
                **extra,
            },
        )
        self._counters["errors_total"] += 1
        self._counters[f"errors_{error_type}"] += 1

        if self.enable_logging:
            self.logger.error(
                f"Error in request {correlation_id}: {error_type} - {error_message}"
            )

    def _record_event(
        self,
        event_type: str,
        correlation_id: str,
        data: dict,
    ) -> None:
        """Record a metric event."""
        event = MetricEvent(
            timestamp=datetime.now(UTC).isoformat(),
            event_type=event_type,
            correlation_id=correlation_id,
            data=data,
        )

        with self._lock:
            self._events.append(event)

        if self.metrics_file:
            with open(self.metrics_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(asdict(event), ensure_ascii=False) + "\n")

        if self.enable_logging:
            self.logger.info(
                f"{event_type.upper()}: correlation_id={correlation_id}, data={data}"
            )

    @property
    def events(self) -> list[MetricEvent]:
        return list(self._events)

    def get_stats(self) -> dict:
        """
        Counters plus LLM latency, fetch latency and token histograms.
        """
        llm_latency = self._histograms.get("llm_latency_ms", [])
        fetch_latency = self._histograms.get("fetch_latency_ms", [])
        tokens = self._histograms.get("tokens", [])

        return {
            "counters": dict(self._counters),
            "llm_latency": {
                "avg_ms": statistics.mean(llm_latency) if llm_latency else 0,
                "p50_ms": statistics.median(llm_latency) if llm_latency else 0,
                "max_ms": max(llm_latency) if llm_latency else 0,
            },
            "fetch_latency": {
                "avg_ms": statistics.mean(fetch_latency) if fetch_latency else 0,
                "max_ms": max(fetch_latency) if fetch_latency else 0,
            },
            "tokens": {
                "total": sum(tokens),
                "avg": statistics.mean(tokens) if tokens else 0,
            },
            "total_events": len(self._events),
        }

    def reset(self) -> None:
        """Drop every recorded event and counter."""
        with self._lock:
            self._events.clear()
            self._counters.clear()
            self._histograms.clear()
