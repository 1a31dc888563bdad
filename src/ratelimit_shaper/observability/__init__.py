# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Observability and metrics for ratelimit-shaper.

Classes:
    MetricsCollector: Dict-based metrics mirrored into Prometheus.
    MetricDefinition: Schema of a pre-defined metric.

Protocols:
    MetricsCollectorProtocol: Protocol for metrics collection backends.

Functions:
    get_metrics_collector: Get the global metrics collector singleton.
    reset_metrics_collector: Reset the global metrics collector singleton.

Constants:
    All metric name constants from the constants module.
"""

from .collector import (
    METRIC_DEFINITIONS,
    MetricDefinition,
    MetricsCollector,
    get_metrics_collector,
    reset_metrics_collector,
)
from .constants import (
    DELAY_BUCKETS,
    DELAY_SECONDS,
    DELAYS_APPLIED_TOTAL,
    HEADERS_RECEIVED_TOTAL,
    METRIC_PREFIX,
    PARSING_ERRORS_TOTAL,
    RETRIES_TOTAL,
    TOO_MANY_REQUESTS_TOTAL,
    TRACKED_STATES,
)
from .protocols import MetricsCollectorProtocol

__all__ = [
    "DELAYS_APPLIED_TOTAL",
    "DELAY_BUCKETS",
    "DELAY_SECONDS",
    "HEADERS_RECEIVED_TOTAL",
    "METRIC_DEFINITIONS",
    "METRIC_PREFIX",
    "PARSING_ERRORS_TOTAL",
    "RETRIES_TOTAL",
    "TOO_MANY_REQUESTS_TOTAL",
    "TRACKED_STATES",
    "MetricDefinition",
    "MetricsCollector",
    "MetricsCollectorProtocol",
    "get_metrics_collector",
    "reset_metrics_collector",
]
