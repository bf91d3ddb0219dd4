from __future__ import annotations

import math
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque


@dataclass(frozen=True)
class BatchRunSample:
    ts: float
    operation: str
    total: int
    failed: int
    duration_ms: float


_batch_samples: Deque[BatchRunSample] = deque(maxlen=5000)
_counters: dict[str, int] = defaultdict(int)
_gauges: dict[str, float] = {}


def increment_counter(name: str, value: int = 1) -> None:
    # Store counters for cache, batch and sharing dashboards.
    _counters[name] += value


def set_gauge(name: str, value: float) -> None:
    _gauges[name] = value


def record_batch_run(*, operation: str, total: int, failed: int, duration_ms: float) -> None:
    # Track bulk operation size and latency for capacity estimates.
    _batch_samples.append(
        BatchRunSample(
            ts=time.time(),
            operation=operation,
            total=total,
            failed=failed,
            duration_ms=duration_ms,
        )
    )


def batch_duration_stats(operation: str | None = None) -> dict[str, float | None]:
    # Summarize recent bulk run durations, optionally for one operation kind.
    durations = sorted(
        sample.duration_ms
        for sample in _batch_samples
        if operation is None or sample.operation == operation
    )
    if not durations:
        return {"p95": None, "max": None}
    idx = max(0, math.ceil(0.95 * len(durations)) - 1)
    return {"p95": durations[idx], "max": durations[-1]}


def counters_snapshot() -> dict[str, int]:
    # Return a copy of all counters for metrics reporting.
    return dict(_counters)


def gauges_snapshot() -> dict[str, float]:
    return dict(_gauges)


def reset_metrics() -> None:
    # Allow tests to start from a clean slate.
    _counters.clear()
    _gauges.clear()
    _batch_samples.clear()
