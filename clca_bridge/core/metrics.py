"""
In-memory metrics for the ingestion pipeline.

Counts deliveries, queue writes and terminal outcomes. The dlq_write_failures
counter is the visible trace of a lost retry opportunity: when a queue entry
cannot be persisted, delivery becomes at-most-once for that change.

Thread-safe for single-process deployments.
"""

from __future__ import annotations

import threading
from typing import TypedDict


class MetricCounts(TypedDict):
    """Type for metric counts dictionary."""

    published: int
    publish_failures: int
    dlq_enqueued: int
    dlq_write_failures: int
    dlq_retry_succeeded: int
    dlq_retry_failed: int
    dlq_exhausted: int
    terminal_failures: int
    failed_store_write_failures: int


class PipelineMetrics:
    """Counter set owned by one pipeline instance."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: dict[str, int] = {name: 0 for name in MetricCounts.__annotations__}

    def increment(self, name: str, amount: int = 1) -> None:
        if name not in self._counts:
            raise KeyError(f"Unknown metric: {name}")
        with self._lock:
            self._counts[name] += amount

    def get(self, name: str) -> int:
        with self._lock:
            return self._counts[name]

    def snapshot(self) -> MetricCounts:
        with self._lock:
            return MetricCounts(**self._counts)  # type: ignore[typeddict-item]

    def reset(self) -> None:
        """Reset all counters - only for use in tests."""
        with self._lock:
            for name in self._counts:
                self._counts[name] = 0


_default_metrics = PipelineMetrics()


def get_metrics() -> PipelineMetrics:
    """Process-wide default counters."""
    return _default_metrics
