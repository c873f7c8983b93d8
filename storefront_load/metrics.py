"""
Run-wide metric aggregation.

Four metric types, each backed by a sink that folds samples as they arrive:

- Counter: running sum (http_reqs, dropped_iterations, checkout_errors)
- Rate:    fraction of non-zero samples (http_req_failed, checks)
- Trend:   distribution with avg/min/max/med/p(N) (http_req_duration)
- Gauge:   last value plus min/max (vus, vus_max)

Sinks merge commutatively, so the arrival order of samples from concurrent
iterations never changes the final aggregate. Submetrics ("metric{tag:value}")
are extra sinks fed only with samples whose tags match.
"""

import math
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


class MetricType(Enum):
    COUNTER = "counter"
    RATE = "rate"
    TREND = "trend"
    GAUGE = "gauge"


@dataclass(frozen=True)
class Sample:
    metric: str
    value: float
    tags: Mapping[str, str] = field(default_factory=dict)


# =============================================================================
# SINKS
# =============================================================================

class CounterSink:
    def __init__(self):
        self.total = 0.0
        self.samples = 0

    def add(self, value: float):
        self.total += value
        self.samples += 1

    def merge(self, other: "CounterSink"):
        self.total += other.total
        self.samples += other.samples

    def stat(self, name: str, duration: float = 0.0) -> Optional[float]:
        if name == "count":
            return self.total
        if name == "rate":
            return self.total / duration if duration > 0 else 0.0
        return None

    def values(self, duration: float = 0.0) -> Dict[str, float]:
        return {"count": self.total, "rate": self.stat("rate", duration)}


class RateSink:
    def __init__(self):
        self.passes = 0
        self.total = 0

    def add(self, value: float):
        self.total += 1
        if value:
            self.passes += 1

    def merge(self, other: "RateSink"):
        self.passes += other.passes
        self.total += other.total

    @property
    def fails(self) -> int:
        return self.total - self.passes

    @property
    def rate(self) -> float:
        return self.passes / self.total if self.total else 0.0

    def stat(self, name: str, duration: float = 0.0) -> Optional[float]:
        if name == "rate":
            return self.rate
        if name == "count":
            return float(self.total)
        return None

    def values(self, duration: float = 0.0) -> Dict[str, float]:
        return {"rate": self.rate, "passes": self.passes, "fails": self.fails}


class TrendSink:
    """Keeps every observation; percentiles are computed on a sorted copy."""

    def __init__(self):
        self._values: List[float] = []
        self._sorted = True
        self.sum = 0.0

    def add(self, value: float):
        if self._values and value < self._values[-1]:
            self._sorted = False
        self._values.append(value)
        self.sum += value

    def merge(self, other: "TrendSink"):
        for value in other._values:
            self.add(value)

    def _ordered(self) -> List[float]:
        if not self._sorted:
            self._values.sort()
            self._sorted = True
        return self._values

    @property
    def count(self) -> int:
        return len(self._values)

    @property
    def avg(self) -> float:
        return self.sum / len(self._values) if self._values else 0.0

    @property
    def min(self) -> float:
        return self._ordered()[0] if self._values else 0.0

    @property
    def max(self) -> float:
        return self._ordered()[-1] if self._values else 0.0

    def percentile(self, p: float) -> float:
        """Linear interpolation between closest ranks."""
        ordered = self._ordered()
        if not ordered:
            return 0.0
        if len(ordered) == 1:
            return ordered[0]
        position = (len(ordered) - 1) * (p / 100.0)
        lower = math.floor(position)
        upper = math.ceil(position)
        if lower == upper:
            return ordered[lower]
        weight = position - lower
        return ordered[lower] + (ordered[upper] - ordered[lower]) * weight

    def stat(self, name: str, duration: float = 0.0) -> Optional[float]:
        if name == "avg":
            return self.avg
        if name == "min":
            return self.min
        if name == "max":
            return self.max
        if name == "med":
            return self.percentile(50)
        if name == "count":
            return float(self.count)
        if name.startswith("p(") and name.endswith(")"):
            return self.percentile(float(name[2:-1]))
        return None

    def values(self, duration: float = 0.0) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg": self.avg,
            "min": self.min,
            "med": self.percentile(50),
            "max": self.max,
            "p(90)": self.percentile(90),
            "p(95)": self.percentile(95),
            "p(99)": self.percentile(99),
        }


class GaugeSink:
    def __init__(self):
        self.value = 0.0
        self.min = math.inf
        self.max = -math.inf
        self.samples = 0

    def add(self, value: float):
        self.value = value
        self.min = min(self.min, value)
        self.max = max(self.max, value)
        self.samples += 1

    def merge(self, other: "GaugeSink"):
        if other.samples:
            self.value = other.value
            self.min = min(self.min, other.min)
            self.max = max(self.max, other.max)
            self.samples += other.samples

    def stat(self, name: str, duration: float = 0.0) -> Optional[float]:
        if name == "value":
            return self.value
        if name == "min":
            return self.min if self.samples else 0.0
        if name == "max":
            return self.max if self.samples else 0.0
        return None

    def values(self, duration: float = 0.0) -> Dict[str, float]:
        return {"value": self.value, "min": self.stat("min"), "max": self.stat("max")}


SINK_TYPES = {
    MetricType.COUNTER: CounterSink,
    MetricType.RATE: RateSink,
    MetricType.TREND: TrendSink,
    MetricType.GAUGE: GaugeSink,
}

# Metrics every run produces
BUILTIN_METRICS: Dict[str, MetricType] = {
    "http_reqs": MetricType.COUNTER,
    "http_req_duration": MetricType.TREND,
    "http_req_failed": MetricType.RATE,
    "checks": MetricType.RATE,
    "step_success": MetricType.RATE,
    "iterations": MetricType.COUNTER,
    "iteration_duration": MetricType.TREND,
    "incomplete_iterations": MetricType.COUNTER,
    "interrupted_iterations": MetricType.COUNTER,
    "dropped_iterations": MetricType.COUNTER,
    "vus": MetricType.GAUGE,
    "vus_max": MetricType.GAUGE,
}


def submetric_key(name: str, tags: Mapping[str, str]) -> str:
    if not tags:
        return name
    inner = ",".join(f"{k}:{v}" for k, v in sorted(tags.items()))
    return f"{name}{{{inner}}}"


def tags_match(sample_tags: Mapping[str, str], wanted: Tuple[Tuple[str, str], ...]) -> bool:
    return all(str(sample_tags.get(k)) == v for k, v in wanted)


# =============================================================================
# REGISTRY
# =============================================================================

class MetricsRegistry:
    """
    Thread-safe store of every metric of one run.

    Custom metrics are declared on first use through counter()/rate()/trend()/
    gauge(); using a name with a different type than it was declared with is
    an error.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._types: Dict[str, MetricType] = dict(BUILTIN_METRICS)
        self._sinks: Dict[str, Any] = {}
        # metric name -> [(filter, sink)]
        self._submetrics: Dict[str, List[Tuple[Tuple[Tuple[str, str], ...], Any]]] = {}
        self._submetric_index: Dict[str, Any] = {}

    def define(self, name: str, metric_type: MetricType) -> None:
        with self._lock:
            self._define(name, metric_type)

    def _define(self, name: str, metric_type: MetricType) -> None:
        existing = self._types.get(name)
        if existing is not None and existing != metric_type:
            raise ValueError(f"Metric {name!r} is a {existing.value}, not a {metric_type.value}")
        self._types[name] = metric_type

    def type_of(self, name: str) -> Optional[MetricType]:
        return self._types.get(name)

    def add_submetric(self, name: str, tags: Mapping[str, str]) -> str:
        """Start tracking `name` restricted to samples carrying `tags`."""
        key = submetric_key(name, tags)
        with self._lock:
            if key in self._submetric_index or not tags:
                return key
            metric_type = self._types.get(name)
            if metric_type is None:
                raise KeyError(f"Unknown metric: {name}")
            sink = SINK_TYPES[metric_type]()
            wanted = tuple(sorted((k, str(v)) for k, v in tags.items()))
            self._submetrics.setdefault(name, []).append((wanted, sink))
            self._submetric_index[key] = sink
        return key

    def add(self, sample: Sample) -> None:
        with self._lock:
            metric_type = self._types.get(sample.metric)
            if metric_type is None:
                raise KeyError(f"Unknown metric: {sample.metric}")
            sink = self._sinks.get(sample.metric)
            if sink is None:
                sink = self._sinks[sample.metric] = SINK_TYPES[metric_type]()
            sink.add(sample.value)
            for wanted, sub in self._submetrics.get(sample.metric, ()):
                if tags_match(sample.tags, wanted):
                    sub.add(sample.value)

    def _emit(self, name: str, metric_type: MetricType, value: float, tags: Optional[Mapping[str, str]]):
        if self._types.get(name) != metric_type:
            self.define(name, metric_type)
        self.add(Sample(name, float(value), dict(tags or {})))

    def counter(self, name: str, value: float = 1, tags: Optional[Mapping[str, str]] = None):
        self._emit(name, MetricType.COUNTER, value, tags)

    def rate(self, name: str, passed: bool, tags: Optional[Mapping[str, str]] = None):
        self._emit(name, MetricType.RATE, 1 if passed else 0, tags)

    def trend(self, name: str, value: float, tags: Optional[Mapping[str, str]] = None):
        self._emit(name, MetricType.TREND, value, tags)

    def gauge(self, name: str, value: float, tags: Optional[Mapping[str, str]] = None):
        self._emit(name, MetricType.GAUGE, value, tags)

    def sink(self, name: str, tags: Optional[Mapping[str, str]] = None):
        """The sink for a metric or submetric, None while it has no samples."""
        with self._lock:
            if tags:
                sink = self._submetric_index.get(submetric_key(name, tags))
                if sink is None:
                    return None
                return sink if _has_samples(sink) else None
            return self._sinks.get(name)

    def merge(self, other: "MetricsRegistry") -> None:
        """Fold another registry into this one (e.g. per-worker registries)."""
        with other._lock:
            types = dict(other._types)
            sinks = dict(other._sinks)
            subs = dict(other._submetric_index)
        with self._lock:
            for name, metric_type in types.items():
                self._define(name, metric_type)
            for name, sink in sinks.items():
                mine = self._sinks.get(name)
                if mine is None:
                    mine = self._sinks[name] = SINK_TYPES[types[name]]()
                mine.merge(sink)
            for key, sink in subs.items():
                mine = self._submetric_index.get(key)
                if mine is not None:
                    mine.merge(sink)

    def snapshot(self, duration: float = 0.0) -> Dict[str, Dict[str, Any]]:
        """Plain-dict view of every metric and submetric that has samples."""
        with self._lock:
            out: Dict[str, Dict[str, Any]] = {}
            for name in sorted(self._sinks):
                out[name] = {
                    "type": self._types[name].value,
                    "values": self._sinks[name].values(duration),
                }
            for key in sorted(self._submetric_index):
                sink = self._submetric_index[key]
                if not _has_samples(sink):
                    continue
                name = key.split("{", 1)[0]
                out[key] = {
                    "type": self._types[name].value,
                    "values": sink.values(duration),
                }
            return out


def _has_samples(sink) -> bool:
    if isinstance(sink, CounterSink):
        return sink.samples > 0
    if isinstance(sink, RateSink):
        return sink.total > 0
    if isinstance(sink, TrendSink):
        return sink.count > 0
    return sink.samples > 0
