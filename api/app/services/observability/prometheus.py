"""
Prometheus metrics - in-process registry exposed at /metrics.

Metrics:
- gas_readings_ingested_total: persisted readings by sensor type and severity
- gas_notifications_total: notification decisions by outcome
- gas_gate_blocks_total: blocked notifications by gate rule
- gas_fail_open_total: lookups that failed and let the pipeline continue
- gas_audit_write_failures_total: audit rows that could not be written
- gas_email_send_duration_seconds: provider round-trip time
- gas_retention_deleted_total: readings removed by retention
"""

import asyncio
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from functools import wraps
from typing import Callable, Dict, List, Optional

from app.core import get_logger

logger = get_logger(__name__)


class MetricType(str, Enum):
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass
class MetricValue:
    value: float
    labels: Dict[str, str] = field(default_factory=dict)
    timestamp: Optional[float] = None


@dataclass
class MetricDefinition:
    name: str
    metric_type: MetricType
    help_text: str
    labels: List[str] = field(default_factory=list)
    buckets: Optional[List[float]] = None


class PrometheusRegistry:
    """Thread-safe metric registry rendering the Prometheus text format."""

    def __init__(self):
        self._metrics: Dict[str, MetricDefinition] = {}
        self._values: Dict[str, List[MetricValue]] = {}
        self._lock = threading.RLock()

        self._register_default_metrics()

    def _register_default_metrics(self):
        self.register(
            "gas_readings_ingested_total",
            MetricType.COUNTER,
            "Total sensor readings persisted",
            labels=["sensor_type", "severity"]
        )

        self.register(
            "gas_notifications_total",
            MetricType.COUNTER,
            "Notification decisions by outcome",
            labels=["outcome"]  # sent, failed, blocked
        )

        self.register(
            "gas_gate_blocks_total",
            MetricType.COUNTER,
            "Notifications blocked by the gate",
            labels=["rule"]
        )

        self.register(
            "gas_fail_open_total",
            MetricType.COUNTER,
            "Lookups that failed and were treated permissively",
            labels=["component"]
        )

        self.register(
            "gas_audit_write_failures_total",
            MetricType.COUNTER,
            "Audit records that could not be written",
            labels=["outcome"]
        )

        self.register(
            "gas_email_send_duration_seconds",
            MetricType.HISTOGRAM,
            "Email provider round-trip duration in seconds",
            labels=["provider"],
            buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
        )

        self.register(
            "gas_retention_deleted_total",
            MetricType.COUNTER,
            "Readings deleted by retention pruning",
            labels=[]
        )

        self.register(
            "gas_retention_duration_seconds",
            MetricType.HISTOGRAM,
            "Retention pruning duration in seconds",
            labels=[],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0]
        )

        self.register(
            "gas_datastore_up",
            MetricType.GAUGE,
            "Datastore reachability (1=up, 0=down)",
            labels=[]
        )

    def register(
        self,
        name: str,
        metric_type,  # MetricType or its string value
        help_text: str,
        labels: List[str] = None,
        buckets: List[float] = None
    ):
        if isinstance(metric_type, str):
            metric_type = MetricType(metric_type)

        with self._lock:
            if name in self._metrics:
                return
            self._metrics[name] = MetricDefinition(
                name=name,
                metric_type=metric_type,
                help_text=help_text,
                labels=labels or [],
                buckets=buckets
            )
            self._values[name] = []

    def _find(self, series: str, labels: Dict[str, str]) -> Optional[MetricValue]:
        for mv in self._values.setdefault(series, []):
            if mv.labels == labels:
                return mv
        return None

    def _add(self, series: str, amount: float, labels: Dict[str, str]):
        mv = self._find(series, labels)
        if mv is None:
            self._values[series].append(MetricValue(value=amount, labels=labels, timestamp=time.time()))
        else:
            mv.value += amount
            mv.timestamp = time.time()

    def set(self, name: str, value: float, labels: Dict[str, str] = None):
        """Set a gauge."""
        with self._lock:
            if name not in self._metrics:
                logger.warning("Unknown metric", metric=name)
                return
            labels = labels or {}
            mv = self._find(name, labels)
            if mv is None:
                self._values[name].append(MetricValue(value=value, labels=labels, timestamp=time.time()))
            else:
                mv.value = value
                mv.timestamp = time.time()

    def inc(self, name: str, value: float = 1, labels: Dict[str, str] = None):
        """Increment a counter (or move a gauge)."""
        with self._lock:
            if name not in self._metrics:
                logger.warning("Unknown metric", metric=name)
                return
            self._add(name, value, labels or {})

    def observe(self, name: str, value: float, labels: Dict[str, str] = None):
        """Record one histogram observation."""
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                logger.warning("Unknown metric", metric=name)
                return
            if metric.metric_type != MetricType.HISTOGRAM:
                logger.warning("Metric is not a histogram", metric=name)
                return

            labels = labels or {}
            self._add(f"{name}_sum", value, labels)
            self._add(f"{name}_count", 1, labels)

            for bucket in metric.buckets or []:
                if value <= bucket:
                    self._add(f"{name}_bucket", 1, {**labels, "le": str(bucket)})
            self._add(f"{name}_bucket", 1, {**labels, "le": "+Inf"})

    def names(self) -> List[str]:
        with self._lock:
            return list(self._metrics)

    def get_value(self, name: str, labels: Dict[str, str] = None) -> float:
        """Current value of one series, 0 when never touched."""
        with self._lock:
            mv = self._find(name, labels or {})
            return mv.value if mv else 0.0

    def export(self) -> str:
        lines = []

        with self._lock:
            for name, metric in self._metrics.items():
                lines.append(f"# HELP {name} {metric.help_text}")
                lines.append(f"# TYPE {name} {metric.metric_type.value}")

                if metric.metric_type == MetricType.HISTOGRAM:
                    series = [f"{name}_bucket", f"{name}_sum", f"{name}_count"]
                else:
                    series = [name]

                for series_name in series:
                    for mv in self._values.get(series_name, []):
                        lines.append(f"{series_name}{self._format_labels(mv.labels)} {mv.value}")

        return "\n".join(lines) + "\n"

    def _format_labels(self, labels: Dict[str, str]) -> str:
        if not labels:
            return ""
        pairs = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(pairs) + "}"

    def clear(self):
        """Reset every series (definitions are kept)."""
        with self._lock:
            for name in self._values:
                self._values[name] = []


_registry = PrometheusRegistry()


def get_registry() -> PrometheusRegistry:
    return _registry


def track_execution_time(metric_name: str, labels_func: Callable = None):
    """
    Observe the wall time of a coroutine or function into a histogram.

    Args:
        metric_name: Histogram metric name
        labels_func: Builds labels from (args, kwargs)
    """
    def decorator(func):
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                labels = labels_func(args, kwargs) if labels_func else {}
                get_registry().observe(metric_name, time.perf_counter() - start, labels)

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                labels = labels_func(args, kwargs) if labels_func else {}
                get_registry().observe(metric_name, time.perf_counter() - start, labels)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


# Convenience recorders

def record_reading_ingested(sensor_type: str, severity: str):
    get_registry().inc(
        "gas_readings_ingested_total",
        1,
        labels={"sensor_type": sensor_type, "severity": severity}
    )


def record_notification(outcome: str, rule: Optional[str] = None):
    """
    Count one notification decision.

    Args:
        outcome: sent, failed or blocked
        rule: Gate rule that blocked the notification (blocked only)
    """
    registry = get_registry()
    registry.inc("gas_notifications_total", 1, labels={"outcome": outcome})
    if rule:
        registry.inc("gas_gate_blocks_total", 1, labels={"rule": rule})


def record_fail_open(component: str):
    get_registry().inc("gas_fail_open_total", 1, labels={"component": component})


def record_audit_write_failure(outcome: str):
    get_registry().inc("gas_audit_write_failures_total", 1, labels={"outcome": outcome})


def record_email_duration(provider: str, duration_seconds: float):
    get_registry().observe(
        "gas_email_send_duration_seconds",
        duration_seconds,
        labels={"provider": provider}
    )


def record_retention_deleted(count: int):
    if count > 0:
        get_registry().inc("gas_retention_deleted_total", count)


def record_datastore_status(up: bool):
    get_registry().set("gas_datastore_up", 1 if up else 0)
