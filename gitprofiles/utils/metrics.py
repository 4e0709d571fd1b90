"""Lightweight counters and timers for the resolution and detection paths.

Usage:
    from gitprofiles.utils.metrics import Metrics

    metrics = Metrics()
    metrics.increment("detector.rule_evaluations")

    with metrics.timer("detector.evaluate"):
        # ... evaluate rules ...

    print(metrics.summary())

Components accept a ``Metrics`` instance in their constructor so tests can
observe them in isolation; ``get_metrics()`` returns a process-wide default.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Generator, Optional

logger = logging.getLogger("gitprofiles.metrics")


@dataclass
class TimerStats:
    """Statistics for a timer metric.

    Attributes:
        count: Number of times the timer was invoked.
        total: Total elapsed time in seconds.
        min: Minimum elapsed time.
        max: Maximum elapsed time.
    """

    count: int = 0
    total: float = 0.0
    min: float = float("inf")
    max: float = 0.0

    def record(self, elapsed: float) -> None:
        """Record a new timing measurement."""
        self.count += 1
        self.total += elapsed
        self.min = min(self.min, elapsed)
        self.max = max(self.max, elapsed)

    @property
    def avg(self) -> float:
        """Average elapsed time."""
        return self.total / self.count if self.count > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization (milliseconds)."""
        return {
            "count": self.count,
            "total_ms": round(self.total * 1000, 3),
            "avg_ms": round(self.avg * 1000, 3),
            "min_ms": round(self.min * 1000, 3) if self.min != float("inf") else 0.0,
            "max_ms": round(self.max * 1000, 3),
        }


class Metrics:
    """Thread-safe counters and timers."""

    def __init__(self) -> None:
        self._counters: Dict[str, int] = {}
        self._timers: Dict[str, TimerStats] = {}
        self._lock = threading.Lock()

    def increment(self, name: str, value: int = 1) -> int:
        """Increment a counter.

        Args:
            name: Counter name.
            value: Amount to increment (default 1).

        Returns:
            New counter value.
        """
        with self._lock:
            new_value = self._counters.get(name, 0) + value
            self._counters[name] = new_value
            return new_value

    def get_counter(self, name: str) -> int:
        """Get current counter value (0 if never incremented)."""
        with self._lock:
            return self._counters.get(name, 0)

    @contextmanager
    def timer(self, name: str) -> Generator[None, None, None]:
        """Context manager timing a code block with ``time.perf_counter``."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_time(name, time.perf_counter() - start)

    def record_time(self, name: str, elapsed: float) -> None:
        """Record a timing measurement in seconds."""
        with self._lock:
            stats = self._timers.get(name)
            if stats is None:
                stats = self._timers[name] = TimerStats()
            stats.record(elapsed)

    def get_timer(self, name: str) -> Optional[TimerStats]:
        """Get timer statistics, or None if the timer never ran."""
        with self._lock:
            return self._timers.get(name)

    def summary(self) -> Dict[str, Any]:
        """Snapshot of all counters and timers."""
        with self._lock:
            return {
                "counters": dict(self._counters),
                "timers": {name: stats.to_dict() for name, stats in self._timers.items()},
            }

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._counters.clear()
            self._timers.clear()
        logger.debug("Metrics reset")

    def log_summary(self, level: int = logging.INFO) -> None:
        """Log the metrics summary."""
        summary = self.summary()
        for name, value in sorted(summary["counters"].items()):
            logger.log(level, "counter %s: %d", name, value)
        for name, stats in sorted(summary["timers"].items()):
            logger.log(
                level,
                "timer %s: count=%d avg=%.3fms max=%.3fms",
                name,
                stats["count"],
                stats["avg_ms"],
                stats["max_ms"],
            )


_metrics: Optional[Metrics] = None
_metrics_lock = threading.Lock()


def get_metrics() -> Metrics:
    """Return the process-wide default metrics instance."""
    global _metrics
    if _metrics is None:
        with _metrics_lock:
            if _metrics is None:
                _metrics = Metrics()
    return _metrics
