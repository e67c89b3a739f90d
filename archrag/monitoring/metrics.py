"""Metrics sink interface and in-process implementations."""

from abc import ABC, abstractmethod
from collections import defaultdict
import threading


def _key(name: str, tags: dict) -> str:
    if not tags:
        return name
    rendered = ",".join(f"{k}={tags[k]}" for k in sorted(tags))
    return f"{name}{{{rendered}}}"


class MetricsSink(ABC):
    """Counters, gauges and histograms, tagged by keyword arguments."""

    @abstractmethod
    def increment(self, name: str, value: float = 1, **tags) -> None:
        pass

    @abstractmethod
    def gauge(self, name: str, value: float, **tags) -> None:
        pass

    @abstractmethod
    def histogram(self, name: str, value: float, **tags) -> None:
        pass


class NullMetrics(MetricsSink):
    """Discards everything."""

    def increment(self, name: str, value: float = 1, **tags) -> None:
        pass

    def gauge(self, name: str, value: float, **tags) -> None:
        pass

    def histogram(self, name: str, value: float, **tags) -> None:
        pass


class InMemoryMetrics(MetricsSink):
    """Keeps metrics in process memory.

    Series are keyed by name plus sorted tags, e.g.
    ``embedding_tokens_consumed{model=hashing-embedding}``.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: dict[str, float] = defaultdict(float)
        self._gauges: dict[str, float] = {}
        self._histograms: dict[str, list[float]] = defaultdict(list)

    def increment(self, name: str, value: float = 1, **tags) -> None:
        with self._lock:
            self._counters[_key(name, tags)] += value

    def gauge(self, name: str, value: float, **tags) -> None:
        with self._lock:
            self._gauges[_key(name, tags)] = value

    def histogram(self, name: str, value: float, **tags) -> None:
        with self._lock:
            self._histograms[_key(name, tags)].append(value)

    def counter_total(self, name: str) -> float:
        """Sum of a counter across all tag combinations."""
        with self._lock:
            return sum(
                value for key, value in self._counters.items()
                if key == name or key.startswith(name + "{")
            )

    def histogram_values(self, name: str) -> list[float]:
        """All samples of a histogram across tag combinations."""
        with self._lock:
            values: list[float] = []
            for key, samples in self._histograms.items():
                if key == name or key.startswith(name + "{"):
                    values.extend(samples)
            return values

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": {
                    key: {
                        "count": len(samples),
                        "sum": sum(samples),
                        "min": min(samples),
                        "max": max(samples),
                    }
                    for key, samples in self._histograms.items()
                    if samples
                },
            }
