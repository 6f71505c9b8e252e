"""Metric descriptors, metric values and a small registry in the Prometheus data model."""

from __future__ import annotations

import json
import re
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

EXPORTER_NAME = "cloudcost_exporter"
METRIC_PREFIX = "cloudcost"

HOURS_IN_MONTH = 24.35 * 30  # 24.35 is the average number of hours in a day over a year
INSTANCE_CPU_COST_SUFFIX = "instance_cpu_usd_per_core_hour"
INSTANCE_MEMORY_COST_SUFFIX = "instance_memory_usd_per_gib_hour"
INSTANCE_TOTAL_COST_SUFFIX = "instance_total_usd_per_hour"
PERSISTENT_VOLUME_COST_SUFFIX = "persistent_volume_usd_per_hour"

DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

_FQ_NAME_RE = re.compile(r'fqName:\s*"([^"]+)"')


class ValueType(Enum):
    """Kind of value a metric carries."""

    COUNTER = "counter"
    GAUGE = "gauge"
    UNTYPED = "untyped"
    HISTOGRAM = "histogram"


def build_fq_name(namespace: str, subsystem: str, name: str) -> str:
    """Join the non-empty parts with underscores; an empty name gives an empty result."""
    if not name:
        return ""
    return "_".join(part for part in (namespace, subsystem, name) if part)


@dataclass(frozen=True)
class Desc:
    """Describes a metric: its name, help text and label names."""

    fq_name: str
    help: str
    variable_labels: tuple[str, ...] = ()
    const_labels: tuple[tuple[str, str], ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "variable_labels", tuple(self.variable_labels))
        object.__setattr__(self, "const_labels", tuple(self.const_labels))

    def __str__(self) -> str:
        const = ",".join(f"{key}={json.dumps(value)}" for key, value in self.const_labels)
        variable = ",".join(self.variable_labels)
        return (
            f"Desc{{fqName: {json.dumps(self.fq_name)}, help: {json.dumps(self.help)}, "
            f"constLabels: {{{const}}}, variableLabels: {{{variable}}}}}"
        )


def generate_desc(
    prefix: str, subsystem: str, suffix: str, description: str, labels: Sequence[str]
) -> Desc:
    """Build a descriptor whose name is made from prefix, subsystem and suffix."""
    return Desc(build_fq_name(prefix, subsystem, suffix), description, tuple(labels))


@dataclass(frozen=True)
class Metric:
    """A single sample bound to its descriptor and label values."""

    desc: Desc
    value_type: ValueType
    value: float
    label_values: tuple[str, ...] = ()
    count: int = 0
    buckets: tuple[tuple[float, int], ...] = ()

    def labels(self) -> dict[str, str]:
        """All labels of the sample, constant ones included."""
        pairs = dict(self.desc.const_labels)
        pairs.update(zip(self.desc.variable_labels, self.label_values))
        return pairs


def new_const_metric(desc: Desc, value_type: ValueType, value: float, *args: str) -> Metric:
    """Create a fixed metric; the label values must match the descriptor's labels."""
    if len(args) != len(desc.variable_labels):
        raise ValueError(
            f"{desc.fq_name}: expected {len(desc.variable_labels)} label values, got {len(args)}"
        )
    return Metric(desc, value_type, float(value), tuple(args))


@dataclass
class MetricResult:
    """Plain view of a metric, handy for comparisons."""

    fq_name: str
    labels: dict[str, str]
    value: float
    metric_type: ValueType


def read_metrics(metric: Metric | None) -> MetricResult | None:
    """Flatten a metric into a MetricResult; histograms and None give None."""
    if metric is None:
        return None
    labels = metric.labels()
    fq_name = parse_fq_name_from_metric(str(metric.desc))
    if metric.value_type is ValueType.GAUGE:
        return MetricResult(fq_name, labels, metric.value, ValueType.GAUGE)
    # Only gauge results carry the name.
    if metric.value_type is ValueType.COUNTER:
        return MetricResult("", labels, metric.value, ValueType.COUNTER)
    if metric.value_type is ValueType.UNTYPED:
        return MetricResult("", labels, metric.value, ValueType.UNTYPED)
    return None


def parse_fq_name_from_metric(desc: str) -> str:
    """Pull the fqName value out of a descriptor's text form."""
    if not desc:
        return ""
    match = _FQ_NAME_RE.search(desc)
    if match is None:
        raise ValueError(f"no fqName in descriptor: {desc!r}")
    return match.group(1)


class Gauge:
    """A value that can go up and down."""

    def __init__(self, name: str = "", help: str = "", *, desc: Desc | None = None,
                 label_values: Sequence[str] = ()) -> None:
        self._desc = desc if desc is not None else Desc(name, help)
        self._label_values = tuple(label_values)
        self._value = 0.0
        self._lock = threading.Lock()

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def set(self, value: float) -> None:
        with self._lock:
            self._value = float(value)

    def inc(self) -> None:
        with self._lock:
            self._value += 1.0

    def collect(self) -> Iterator[Metric]:
        yield Metric(self._desc, ValueType.GAUGE, self.value, self._label_values)

    def describe(self) -> Iterator[Desc]:
        yield self._desc


class Counter:
    """A value that only goes up."""

    def __init__(self, name: str = "", help: str = "", *, desc: Desc | None = None,
                 label_values: Sequence[str] = ()) -> None:
        self._desc = desc if desc is not None else Desc(name, help)
        self._label_values = tuple(label_values)
        self._value = 0.0
        self._lock = threading.Lock()

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def inc(self) -> None:
        self.add(1.0)

    def add(self, amount: float) -> None:
        if amount < 0:
            raise ValueError("counter cannot decrease in value")
        with self._lock:
            self._value += amount

    def collect(self) -> Iterator[Metric]:
        yield Metric(self._desc, ValueType.COUNTER, self.value, self._label_values)

    def describe(self) -> Iterator[Desc]:
        yield self._desc


class Histogram:
    """Counts observations into cumulative buckets."""

    def __init__(self, name: str = "", help: str = "", *, desc: Desc | None = None,
                 label_values: Sequence[str] = (),
                 buckets: Sequence[float] = DEFAULT_BUCKETS) -> None:
        self._desc = desc if desc is not None else Desc(name, help)
        self._label_values = tuple(label_values)
        self._bounds = tuple(sorted(buckets))
        self._counts = [0] * len(self._bounds)
        self._count = 0
        self._sum = 0.0
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def sum(self) -> float:
        with self._lock:
            return self._sum

    def observe(self, value: float) -> None:
        with self._lock:
            self._count += 1
            self._sum += value
            for index, bound in enumerate(self._bounds):
                if value <= bound:
                    self._counts[index] += 1

    def collect(self) -> Iterator[Metric]:
        with self._lock:
            buckets = tuple(zip(self._bounds, self._counts))
            total, count = self._sum, self._count
        yield Metric(self._desc, ValueType.HISTOGRAM, total, self._label_values, count, buckets)

    def describe(self) -> Iterator[Desc]:
        yield self._desc


class _MetricVec:
    """Family of metrics sharing a descriptor, one child per label-value tuple."""

    def __init__(self, name: str, help: str, labels: Sequence[str]) -> None:
        self._desc = Desc(name, help, tuple(labels))
        self._children: dict[tuple[str, ...], Any] = {}
        self._lock = threading.Lock()

    def _new_child(self, label_values: tuple[str, ...]) -> Any:
        raise NotImplementedError

    def _child(self, args: tuple[str, ...]) -> Any:
        if len(args) != len(self._desc.variable_labels):
            raise ValueError(
                f"{self._desc.fq_name}: expected {len(self._desc.variable_labels)} "
                f"label values, got {len(args)}"
            )
        with self._lock:
            child = self._children.get(args)
            if child is None:
                child = self._children[args] = self._new_child(args)
            return child

    def _collect_children(self) -> Iterator[Metric]:
        with self._lock:
            children = list(self._children.values())
        for child in children:
            yield from child.collect()


class GaugeVec(_MetricVec):
    """Gauges partitioned by label values."""

    def _new_child(self, label_values: tuple[str, ...]) -> Gauge:
        return Gauge(desc=self._desc, label_values=label_values)

    def with_label_values(self, *args: str) -> Gauge:
        return self._child(tuple(args))

    def collect(self) -> Iterator[Metric]:
        yield from self._collect_children()

    def describe(self) -> Iterator[Desc]:
        yield self._desc


class CounterVec(_MetricVec):
    """Counters partitioned by label values."""

    def _new_child(self, label_values: tuple[str, ...]) -> Counter:
        return Counter(desc=self._desc, label_values=label_values)

    def with_label_values(self, *args: str) -> Counter:
        return self._child(tuple(args))

    def collect(self) -> Iterator[Metric]:
        yield from self._collect_children()

    def describe(self) -> Iterator[Desc]:
        yield self._desc


class HistogramVec(_MetricVec):
    """Histograms partitioned by label values."""

    def __init__(self, name: str, help: str, labels: Sequence[str],
                 buckets: Sequence[float] = DEFAULT_BUCKETS) -> None:
        super().__init__(name, help, labels)
        self._buckets = tuple(buckets)

    def _new_child(self, label_values: tuple[str, ...]) -> Histogram:
        return Histogram(desc=self._desc, label_values=label_values, buckets=self._buckets)

    def with_label_values(self, *args: str) -> Histogram:
        return self._child(tuple(args))

    def collect(self) -> Iterator[Metric]:
        yield from self._collect_children()

    def describe(self) -> Iterator[Desc]:
        yield self._desc


_YIELDING = (Gauge, Counter, Histogram, _MetricVec)


def _drain(owner: Any, method_name: str) -> list[Any]:
    """Run describe or collect of a collector.

    Metric primitives yield their items; other collectors take an emit callback.
    """
    method = getattr(owner, method_name)
    if isinstance(owner, _YIELDING):
        return list(method())
    items: list[Any] = []
    method(items.append)
    return items


class Registry:
    """Holds collectors and gathers their metrics."""

    def __init__(self) -> None:
        self._collectors: list[Any] = []
        self._names: set[str] = set()
        self._lock = threading.Lock()

    def register(self, collector: Any) -> None:
        """Add a collector; raise ValueError on a duplicate collector or metric name."""
        descs = _drain(collector, "describe")
        names = {desc.fq_name for desc in descs}
        with self._lock:
            if any(existing is collector for existing in self._collectors):
                raise ValueError("collector already registered")
            clash = names & self._names
            if clash:
                raise ValueError(f"duplicate metrics collector registration: {sorted(clash)}")
            self._names |= names
            self._collectors.append(collector)

    def gather(self) -> list[Metric]:
        """Collect from every collector, ordered by name and labels."""
        with self._lock:
            collectors = list(self._collectors)
        metrics = [metric for c in collectors for metric in _drain(c, "collect")]
        return sorted(metrics, key=lambda m: (m.desc.fq_name, sorted(m.labels().items())))


Emit = Callable[[Metric], None]


class CostCollector(ABC):
    """A cost collector for one cloud service."""

    @abstractmethod
    def register(self, registry: Registry) -> None:
        """Register the collector's own metrics."""

    @abstractmethod
    def collect_metrics(self, emit: Emit) -> float:
        """Collect and return 1.0 on success, 0.0 on failure."""

    @abstractmethod
    def collect(self, emit: Emit) -> None:
        """Collect metrics, raising on failure."""

    @abstractmethod
    def describe(self, emit: Callable[[Desc], None]) -> None:
        """Emit the descriptors of the metrics the collector produces."""

    @abstractmethod
    def name(self) -> str:
        """Name of the collector."""


def iter_descs(collectors: Iterable[Any]) -> Iterator[Desc]:
    """Descriptors of several collectors in turn."""
    for collector in collectors:
        yield from _drain(collector, "describe")