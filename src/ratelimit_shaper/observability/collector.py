# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Metrics collector backed by dicts and mirrored into Prometheus.

Features:
    1. Thread-safe counter/gauge/histogram operations
    2. Prometheus metric registration on a configurable registry
    3. Dict-based snapshot for JSON export and tests
    4. Label cardinality protection (max 1000 unique combinations per metric)
    5. Optional HTTP server for Prometheus scraping

Usage:
    >>> from ratelimit_shaper.observability.collector import get_metrics_collector
    >>> collector = get_metrics_collector()
    >>> collector.inc_counter('ratelimit_shaper_retries_total',
    ...                       labels={'target': 'https://api.example.com'})
    >>> metrics = collector.get_metrics()
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, ClassVar

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from .constants import (
    DELAY_BUCKETS,
    DELAY_SECONDS,
    DELAYS_APPLIED_TOTAL,
    HEADERS_RECEIVED_TOTAL,
    PARSING_ERRORS_TOTAL,
    RETRIES_TOTAL,
    TOO_MANY_REQUESTS_TOTAL,
    TRACKED_STATES,
)

logger = logging.getLogger(__name__)


@dataclass
class MetricDefinition:
    """
    Definition for a metric that can be instantiated.

    This dataclass defines the schema for metrics, including their type,
    description, labels, and histogram buckets.
    """

    name: str
    metric_type: str  # 'counter', 'gauge', 'histogram'
    description: str
    label_names: tuple[str, ...] = ()
    buckets: list[float] | None = None


# Pre-defined metrics for the library
METRIC_DEFINITIONS: dict[str, MetricDefinition] = {
    HEADERS_RECEIVED_TOTAL: MetricDefinition(
        HEADERS_RECEIVED_TOTAL,
        "counter",
        "Total responses with rate limit headers applied",
        ("target",),
    ),
    PARSING_ERRORS_TOTAL: MetricDefinition(
        PARSING_ERRORS_TOTAL,
        "counter",
        "Total responses whose rate limit headers could not be applied",
        ("target",),
    ),
    DELAYS_APPLIED_TOTAL: MetricDefinition(
        DELAYS_APPLIED_TOTAL,
        "counter",
        "Total rate limit waits applied",
        ("target",),
    ),
    DELAY_SECONDS: MetricDefinition(
        DELAY_SECONDS,
        "histogram",
        "Duration of applied rate limit waits",
        ("target",),
        buckets=DELAY_BUCKETS,
    ),
    TOO_MANY_REQUESTS_TOTAL: MetricDefinition(
        TOO_MANY_REQUESTS_TOTAL,
        "counter",
        "Total 429 Too Many Requests responses",
        ("target",),
    ),
    RETRIES_TOTAL: MetricDefinition(
        RETRIES_TOTAL,
        "counter",
        "Total automatic retries after 429 responses",
        ("target",),
    ),
    TRACKED_STATES: MetricDefinition(
        TRACKED_STATES,
        "gauge",
        "Rate limit states currently tracked",
        (),
    ),
}

_PROMETHEUS_TYPES: dict[str, Any] = {
    "counter": Counter,
    "gauge": Gauge,
    "histogram": Histogram,
}


class MetricsCollector:
    """
    Metrics collector supporting both dict-based and Prometheus metrics.

    Thread Safety:
        All dict operations use an RLock. Prometheus client objects are
        thread-safe on their own.

    Cardinality Protection:
        To prevent unbounded memory growth, a maximum of MAX_LABEL_COMBINATIONS
        unique label combinations are tracked per metric.

    Example:
        >>> from prometheus_client import CollectorRegistry
        >>> collector = MetricsCollector(registry=CollectorRegistry())
        >>> collector.inc_counter('ratelimit_shaper_retries_total',
        ...                       labels={'target': 'https://api.example.com'})
        >>> metrics = collector.get_metrics()
    """

    # Maximum unique label combinations per metric to prevent cardinality explosion
    MAX_LABEL_COMBINATIONS: ClassVar[int] = 1000

    def __init__(
        self,
        enable_prometheus: bool = True,
        registry: CollectorRegistry | None = None,
    ) -> None:
        """
        Initialize the metrics collector.

        Args:
            enable_prometheus: Whether to mirror metrics into Prometheus
            registry: Prometheus registry (default: the global REGISTRY)
        """
        self._enable_prometheus = enable_prometheus
        self._registry = registry if registry is not None else REGISTRY

        # Dict-based metrics (always available)
        self._counters: dict[str, dict[str, int]] = defaultdict(
            lambda: defaultdict(int)
        )
        self._gauges: dict[str, dict[str, float]] = defaultdict(
            lambda: defaultdict(float)
        )
        self._histograms: dict[str, dict[str, list[float]]] = defaultdict(
            lambda: defaultdict(list)
        )

        self._lock = threading.RLock()

        # Prometheus metric instances (lazy initialized)
        self._prom_metrics: dict[str, Any] = {}

        # Label cardinality tracking
        self._label_combinations: dict[str, set[str]] = defaultdict(set)

        self._server_running = False

        logger.debug(
            f"MetricsCollector initialized "
            f"(prometheus={'enabled' if self._enable_prometheus else 'disabled'})"
        )

    def _labels_to_key(self, labels: dict[str, str] | None) -> str:
        """Convert labels dict to a stable string key."""
        if not labels:
            return ""
        return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))

    def _check_cardinality(self, name: str, label_key: str) -> bool:
        """
        Check if adding this label combination would exceed cardinality limit.

        Returns:
            True if the label combination is allowed, False otherwise
        """
        if label_key in self._label_combinations[name]:
            return True
        if len(self._label_combinations[name]) >= self.MAX_LABEL_COMBINATIONS:
            logger.warning(
                f"Cardinality limit ({self.MAX_LABEL_COMBINATIONS}) reached "
                f"for metric {name}. Dropping label combination: {label_key}"
            )
            return False
        self._label_combinations[name].add(label_key)
        return True

    def _get_or_create_prom(
        self, name: str, metric_type: str, label_names: tuple[str, ...]
    ) -> Any | None:
        """Get or create the Prometheus metric backing ``name``."""
        if not self._enable_prometheus:
            return None

        with self._lock:
            if name in self._prom_metrics:
                return self._prom_metrics[name]

            defn = METRIC_DEFINITIONS.get(name)
            if defn is not None:
                metric_type = defn.metric_type
                label_names = defn.label_names
            description = defn.description if defn else f"Dynamic {metric_type}: {name}"

            kwargs: dict[str, Any] = {"registry": self._registry}
            if metric_type == "histogram":
                kwargs["buckets"] = defn.buckets if defn and defn.buckets else DELAY_BUCKETS

            try:
                metric = _PROMETHEUS_TYPES[metric_type](
                    name, description, list(label_names), **kwargs
                )
            except ValueError as e:
                # Duplicated timeseries in a shared registry
                logger.warning(f"Failed to create Prometheus {metric_type} {name}: {e}")
                return None

            self._prom_metrics[name] = metric
            return metric

    def _update_prom(
        self,
        name: str,
        metric_type: str,
        labels: dict[str, str] | None,
        action: str,
        value: float,
    ) -> None:
        label_names = tuple(sorted(labels)) if labels else ()
        metric = self._get_or_create_prom(name, metric_type, label_names)
        if metric is None:
            return
        try:
            target = metric.labels(**labels) if labels else metric
            getattr(target, action)(value)
        except (ValueError, KeyError) as e:
            logger.debug(f"Prometheus {metric_type} update failed for {name}: {e}")

    # === Counter Operations ===

    def inc_counter(
        self,
        name: str,
        value: int = 1,
        labels: dict[str, str] | None = None,
    ) -> None:
        """
        Increment a counter metric.

        Raises:
            ValueError: If value is negative
        """
        if value < 0:
            raise ValueError("Counter increment must be non-negative")

        label_key = self._labels_to_key(labels)

        with self._lock:
            if not self._check_cardinality(name, label_key):
                return
            self._counters[name][label_key] += value

        self._update_prom(name, "counter", labels, "inc", value)

    # === Gauge Operations ===

    def set_gauge(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Set a gauge metric to a specific value."""
        label_key = self._labels_to_key(labels)

        with self._lock:
            if not self._check_cardinality(name, label_key):
                return
            self._gauges[name][label_key] = value

        self._update_prom(name, "gauge", labels, "set", value)

    # === Histogram Operations ===

    def observe_histogram(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Record an observation in a histogram."""
        label_key = self._labels_to_key(labels)

        with self._lock:
            if not self._check_cardinality(name, label_key):
                return
            self._histograms[name][label_key].append(value)
            # Keep only recent observations to prevent memory growth
            if len(self._histograms[name][label_key]) > 10000:
                self._histograms[name][label_key] = self._histograms[name][label_key][
                    -5000:
                ]

        self._update_prom(name, "histogram", labels, "observe", value)

    # === Snapshot Operations ===

    def get_metrics(self) -> dict[str, Any]:
        """
        Get a snapshot of all metrics.

        Returns a dict suitable for JSON serialization with structure:
        {
            "counters": {"metric_name": {"label_key": value, ...}, ...},
            "gauges": {"metric_name": {"label_key": value, ...}, ...},
            "histograms": {"metric_name": {"label_key": {...}, ...}, ...}
        }
        """
        with self._lock:
            counters = {
                name: dict(label_values)
                for name, label_values in self._counters.items()
            }
            gauges = {
                name: dict(label_values) for name, label_values in self._gauges.items()
            }

            histograms: dict[str, dict[str, dict[str, Any]]] = {}
            for name, label_values in self._histograms.items():
                histograms[name] = {}
                for label_key, observations in label_values.items():
                    if observations:
                        histograms[name][label_key] = {
                            "count": len(observations),
                            "sum": sum(observations),
                            "avg": sum(observations) / len(observations),
                            "min": min(observations),
                            "max": max(observations),
                        }

        return {
            "counters": counters,
            "gauges": gauges,
            "histograms": histograms,
        }

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        """Current value of a counter (0 if never incremented)."""
        label_key = self._labels_to_key(labels)
        with self._lock:
            return self._counters.get(name, {}).get(label_key, 0)

    # === Lifecycle ===

    def reset(self) -> None:
        """Reset all dict-based metrics to zero."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._label_combinations.clear()

        logger.debug("Metrics collector reset")

    # === Prometheus HTTP Server ===

    def start_http_server(self, host: str = "127.0.0.1", port: int = 9090) -> bool:
        """
        Start the Prometheus HTTP server for metrics scraping.

        Binds to localhost by default. Pass host="0.0.0.0" explicitly for
        external access in containerized environments.

        Returns:
            True if the server is running, False if it failed to start
        """
        if self._server_running:
            logger.warning("Prometheus server already running")
            return True

        try:
            # start_http_server runs in a daemon thread
            start_http_server(port, addr=host, registry=self._registry)
        except OSError as e:
            logger.error(f"Failed to start Prometheus server: {e}")
            return False

        self._server_running = True
        logger.info(f"Prometheus metrics server started on {host}:{port}")
        return True

    @property
    def prometheus_enabled(self) -> bool:
        return self._enable_prometheus

    @property
    def server_running(self) -> bool:
        return self._server_running


# =============================================================================
# Singleton Pattern
# =============================================================================

_global_collector: MetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics_collector(enable_prometheus: bool = True) -> MetricsCollector:
    """
    Get or create the global metrics collector singleton.

    Thread-safe singleton initialization.

    Args:
        enable_prometheus: Whether to enable Prometheus metrics
            (only used on first call)
    """
    global _global_collector

    if _global_collector is None:
        with _collector_lock:
            if _global_collector is None:
                _global_collector = MetricsCollector(
                    enable_prometheus=enable_prometheus
                )

    return _global_collector


def reset_metrics_collector() -> None:
    """
    Reset the global metrics collector singleton (mainly for testing).

    The next call to get_metrics_collector() creates a fresh collector.
    Prometheus metrics already registered on the global registry stay
    registered; the new collector logs a warning and keeps dict-only
    metrics for those names.
    """
    global _global_collector
    with _collector_lock:
        if _global_collector:
            _global_collector.reset()
        _global_collector = None


__all__ = [
    "METRIC_DEFINITIONS",
    "MetricDefinition",
    "MetricsCollector",
    "get_metrics_collector",
    "reset_metrics_collector",
]
