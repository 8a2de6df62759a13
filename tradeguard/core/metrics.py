from __future__ import annotations

import re
import threading
from typing import Dict, Protocol

from prometheus_client import CollectorRegistry, Counter, Gauge, Summary, generate_latest


class Metrics(Protocol):
    def increment(self, name: str, value: float = 1.0) -> None: ...

    def gauge(self, name: str, value: float) -> None: ...

    def observe(self, name: str, value: float) -> None: ...


class InMemoryMetrics:
    """Plain counters and gauges, used by tests and dry runs."""

    def __init__(self) -> None:
        self.counters: Dict[str, float] = {}
        self.gauges: Dict[str, float] = {}
        self.observations: Dict[str, list] = {}

    def increment(self, name: str, value: float = 1.0) -> None:
        self.counters[name] = self.counters.get(name, 0.0) + value

    def gauge(self, name: str, value: float) -> None:
        self.gauges[name] = float(value)

    def observe(self, name: str, value: float) -> None:
        self.observations.setdefault(name, []).append(float(value))

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        return {"counters": dict(self.counters), "gauges": dict(self.gauges)}


_INVALID = re.compile(r"[^a-zA-Z0-9_]")


def sanitize(name: str) -> str:
    return _INVALID.sub("_", name)


class PrometheusMetrics:
    """Metrics sink rendered in the Prometheus text exposition format.

    Each instance owns its registry so several sinks can coexist in one
    process (tests, multiple bots). Metric objects are created lazily on
    first use; names are sanitized and namespaced with ``prefix``. A name
    must keep a single kind (counter, gauge or summary) for its lifetime.
    """

    def __init__(self, prefix: str = "tradeguard") -> None:
        self.prefix = sanitize(prefix)
        self.registry = CollectorRegistry()
        self._lock = threading.Lock()
        self._counters: Dict[str, Counter] = {}
        self._gauges: Dict[str, Gauge] = {}
        self._summaries: Dict[str, Summary] = {}
        self._counter_values: Dict[str, float] = {}
        self._gauge_values: Dict[str, float] = {}

    def increment(self, name: str, value: float = 1.0) -> None:
        key = sanitize(name)
        with self._lock:
            counter = self._counters.get(key)
            if counter is None:
                counter = Counter(key, key, namespace=self.prefix, registry=self.registry)
                self._counters[key] = counter
            counter.inc(value)
            self._counter_values[key] = self._counter_values.get(key, 0.0) + value

    def gauge(self, name: str, value: float) -> None:
        key = sanitize(name)
        with self._lock:
            gauge = self._gauges.get(key)
            if gauge is None:
                gauge = Gauge(key, key, namespace=self.prefix, registry=self.registry)
                self._gauges[key] = gauge
            gauge.set(value)
            self._gauge_values[key] = float(value)

    def observe(self, name: str, value: float) -> None:
        key = sanitize(name)
        with self._lock:
            summary = self._summaries.get(key)
            if summary is None:
                summary = Summary(key, key, namespace=self.prefix, registry=self.registry)
                self._summaries[key] = summary
            summary.observe(value)

    def render(self) -> str:
        return generate_latest(self.registry).decode("utf-8")

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            return {"counters": dict(self._counter_values), "gauges": dict(self._gauge_values)}
