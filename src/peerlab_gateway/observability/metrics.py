"""In-process metrics for allocation, auth and storage activity."""

from dataclasses import dataclass
from threading import Lock
from typing import Any


@dataclass
class Counter:
    value: int = 0

    def inc(self, amount: int = 1) -> None:
        self.value += amount


@dataclass
class Timing:
    count: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0

    def observe(self, duration_ms: float) -> None:
        self.count += 1
        self.total_ms += duration_ms
        if duration_ms > self.max_ms:
            self.max_ms = duration_ms

    def snapshot(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "avg_ms": self.total_ms / self.count if self.count else 0.0,
            "max_ms": self.max_ms,
        }


class MetricsRegistry:
    """Thread-safe registry of named counters and timings.

    Names are dotted, e.g. ``allocation.asn.assigned`` or
    ``db.query.duration_ms``.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self.counters: dict[str, Counter] = {}
        self.timings: dict[str, Timing] = {}

    def inc_counter(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self.counters.setdefault(name, Counter()).inc(amount)

    def observe(self, name: str, duration_ms: float) -> None:
        with self._lock:
            self.timings.setdefault(name, Timing()).observe(duration_ms)

    def counter(self, name: str) -> int:
        with self._lock:
            counter = self.counters.get(name)
            return counter.value if counter else 0

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": {name: c.value for name, c in self.counters.items()},
                "timings": {name: t.snapshot() for name, t in self.timings.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self.counters.clear()
            self.timings.clear()


metrics = MetricsRegistry()
