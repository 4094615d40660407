# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Memory engine metrics.

In-process counters, labelled counters and latency windows in an
OpenTelemetry-compatible shape. The service records one entry per
operation; exporters can read ``get_stats()``.
"""

import math
from collections import Counter, defaultdict, deque
from dataclasses import dataclass, field
from statistics import fmean
from typing import Any, Optional

# Metric name prefix for all engine metrics
METRIC_PREFIX: str = "tiered_memory"

# Per-action breakdown reported for consolidation sweeps
CONSOLIDATION_ACTIONS = ("promoted", "demoted", "archived", "merged", "deleted")


@dataclass
class LatencyWindow:
    """Most recent latency samples for one operation.

    ``count`` covers every sample ever recorded; the summary statistics
    are taken over the retained window only.
    """

    max_samples: int = 1000
    count: int = 0
    samples: deque = field(default_factory=deque)

    def add(self, latency_ms: float) -> None:
        self.count += 1
        self.samples.append(latency_ms)
        if len(self.samples) > self.max_samples:
            self.samples.popleft()

    def summary(self) -> dict[str, float]:
        if not self.samples:
            return {"count": self.count, "avg_ms": 0.0, "min_ms": 0.0, "max_ms": 0.0, "p95_ms": 0.0}
        ordered = sorted(self.samples)
        rank = max(0, math.ceil(0.95 * len(ordered)) - 1)
        return {
            "count": self.count,
            "avg_ms": fmean(ordered),
            "min_ms": ordered[0],
            "max_ms": ordered[-1],
            "p95_ms": ordered[rank],
        }


class MemoryMetrics:
    """Metrics collector for engine operations.

    Example:
        >>> metrics = MemoryMetrics()
        >>> metrics.record_store(memory_type="fact", outcome="created")
        >>> metrics.record_latency("store", 4.2)
        >>> metrics.get_stats()["counters"]["store_total"]
        1
    """

    def __init__(self, latency_window: int = 1000):
        self.latency_window = latency_window
        self._counters: Counter = Counter()
        self._labels: dict[str, Counter] = defaultdict(Counter)
        self._latencies: dict[str, LatencyWindow] = {}

    def record_store(self, memory_type: str = "unknown", outcome: str = "created") -> None:
        """Record a store call.

        Args:
            memory_type: Type of the candidate memory.
            outcome: "created", "reinforced" or "rejected".
        """
        self.increment_counter("store_total")
        self._labels["store_by_type"][memory_type] += 1
        self._labels["store_by_outcome"][outcome] += 1

    def record_retrieve(self, result_count: int = 0, total_matched: int = 0) -> None:
        self._counters.update(
            retrieve_total=1, retrieve_results=result_count, retrieve_candidates=total_matched
        )

    def record_consolidation(self, failures: int = 0, cancelled: bool = False, **actions: int) -> None:
        """Record one sweep.

        Keyword arguments named in CONSOLIDATION_ACTIONS give the number of
        memories per action; zero counts are left out of the breakdown.
        """
        unknown = set(actions) - set(CONSOLIDATION_ACTIONS)
        if unknown:
            raise ValueError(f"Unknown consolidation actions: {sorted(unknown)}")
        self._counters.update(consolidation_total=1, batch_failures=failures)
        self._labels["consolidation_actions"].update(
            {action: count for action, count in actions.items() if count}
        )
        if cancelled:
            self._counters["consolidation_cancelled"] += 1

    def record_forget(
        self, forgotten: int = 0, skipped: int = 0, failures: int = 0, cancelled: bool = False
    ) -> None:
        self._counters.update(
            forget_total=1,
            forget_forgotten=forgotten,
            forget_skipped=skipped,
            batch_failures=failures,
        )
        if cancelled:
            self._counters["forget_cancelled"] += 1

    def record_latency(self, operation: str, latency_ms: float) -> None:
        window = self._latencies.get(operation)
        if window is None:
            window = self._latencies[operation] = LatencyWindow(self.latency_window)
        window.add(latency_ms)

    def increment_counter(
        self,
        name: str,
        value: int = 1,
        labels: Optional[dict[str, str]] = None,
    ) -> None:
        """Increment a counter; each label adds a ``<name>_<label>`` breakdown."""
        self._counters[name] += value
        for label_key, label_value in (labels or {}).items():
            self._labels[f"{name}_{label_key}"][label_value] += value

    def get_stats(self) -> dict[str, Any]:
        return {
            "counters": dict(self._counters),
            "latencies": {op: window.summary() for op, window in self._latencies.items()},
            "labels": {name: dict(counts) for name, counts in self._labels.items()},
        }

    def reset(self) -> None:
        self._counters.clear()
        self._labels.clear()
        self._latencies.clear()
