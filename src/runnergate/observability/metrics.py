"""In-process metrics registry for dispatch counters and latencies."""

from collections import deque
from threading import Lock
from typing import Any

# Samples kept per histogram; percentiles describe recent behaviour only
WINDOW_SIZE = 512


class SampleWindow:
    """Rolling window of the most recent observations for one metric."""

    def __init__(self, size: int = WINDOW_SIZE) -> None:
        self.samples: deque[float] = deque(maxlen=size)
        self.count = 0

    def observe(self, value: float) -> None:
        self.samples.append(value)
        self.count += 1

    def percentile(self, fraction: float) -> float | None:
        if not self.samples:
            return None
        ordered = sorted(self.samples)
        index = min(len(ordered) - 1, int(fraction * len(ordered)))
        return ordered[index]

    def snapshot(self) -> dict[str, Any]:
        window = len(self.samples)
        return {
            "count": self.count,
            "window": window,
            "mean": sum(self.samples) / window if window else 0.0,
            "p50": self.percentile(0.50),
            "p95": self.percentile(0.95),
            "max": max(self.samples) if window else None,
        }


class MetricsRegistry:
    """Thread-safe registry of named counters and sample windows.

    Counter names are dotted, e.g. ``dispatch.outcome.reassigned`` or
    ``geolocation.source.stored``.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self.counters: dict[str, float] = {}
        self.histograms: dict[str, SampleWindow] = {}

    def inc_counter(self, name: str, amount: float = 1.0) -> None:
        with self._lock:
            self.counters[name] = self.counters.get(name, 0.0) + amount

    def observe(self, name: str, value: float) -> None:
        with self._lock:
            window = self.histograms.get(name)
            if window is None:
                window = self.histograms[name] = SampleWindow()
            window.observe(value)

    def counter(self, name: str) -> float:
        with self._lock:
            return self.counters.get(name, 0.0)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self.counters),
                "histograms": {name: w.snapshot() for name, w in self.histograms.items()},
            }


metrics = MetricsRegistry()
