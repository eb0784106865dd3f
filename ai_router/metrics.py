"""
Rolling per-backend metrics for load balancing.

Process-wide, in-memory, resettable. Only the executor writes; the
router reads. History is intentionally lost on restart since the store
serves short-horizon balancing, not analytics.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone

from .types import Backend, BackendMetrics

# Optimistic seeds: (success_rate, avg_latency_ms)
SEED_METRICS: dict[Backend, tuple[float, float]] = {
    Backend.PRIMARY_GATEWAY: (0.95, 1200.0),
    Backend.SECONDARY_INFERENCE: (0.92, 2500.0),
    Backend.LOCAL_INFERENCE: (0.98, 800.0),
}


def seeded_metrics() -> dict[Backend, BackendMetrics]:
    """Fresh copy of the seeded baseline."""
    return {
        backend: BackendMetrics(
            backend=backend,
            success_rate=success_rate,
            avg_latency_ms=avg_latency,
        )
        for backend, (success_rate, avg_latency) in SEED_METRICS.items()
    }


class MetricsStore:
    """
    Per-backend rolling statistics.

    Averages are call-weighted and folded in incrementally, so each update
    is O(1). Each backend has its own lock; an update is a single
    read-modify-write under that lock.
    """

    def __init__(self) -> None:
        self._metrics = seeded_metrics()
        self._locks: dict[Backend, threading.Lock] = {b: threading.Lock() for b in Backend}

    def get(self, backend: Backend) -> BackendMetrics:
        """Copy of one backend's metrics."""
        with self._locks[backend]:
            return replace(self._metrics[backend])

    def record_success(self, backend: Backend, latency_ms: float, cost: float) -> BackendMetrics:
        """Fold a successful call into the backend's averages."""
        with self._locks[backend]:
            m = self._metrics[backend]
            n = m.total_calls
            updated = replace(
                m,
                total_calls=n + 1,
                avg_latency_ms=(m.avg_latency_ms * n + latency_ms) / (n + 1),
                success_rate=(m.success_rate * n + 1) / (n + 1),
                total_cost=m.total_cost + cost,
                last_used_at=datetime.now(timezone.utc),
            )
            self._metrics[backend] = updated
            return replace(updated)

    def record_failure(self, backend: Backend) -> BackendMetrics:
        """Fold a failed call into the backend's success rate."""
        with self._locks[backend]:
            m = self._metrics[backend]
            n = m.total_calls
            updated = replace(
                m,
                total_calls=n + 1,
                failed_calls=m.failed_calls + 1,
                success_rate=(m.success_rate * n) / (n + 1),
            )
            self._metrics[backend] = updated
            return replace(updated)

    def snapshot(self) -> dict[Backend, BackendMetrics]:
        """Copy of all metrics."""
        return {backend: self.get(backend) for backend in Backend}

    def load_balance(self) -> dict[Backend, int]:
        """Rounded percentage of all calls handled by each backend."""
        snapshot = self.snapshot()
        total = sum(m.total_calls for m in snapshot.values())
        if total == 0:
            return dict.fromkeys(Backend, 0)
        return {
            backend: round(m.total_calls / total * 100) for backend, m in snapshot.items()
        }

    def reset(self) -> None:
        """Restore the seeded baseline exactly."""
        seeds = seeded_metrics()
        for backend in Backend:
            with self._locks[backend]:
                self._metrics[backend] = seeds[backend]


__all__ = ["MetricsStore", "SEED_METRICS", "seeded_metrics"]
