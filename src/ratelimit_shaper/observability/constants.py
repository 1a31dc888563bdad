# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Metric name constants following Prometheus naming conventions.

All metric names use the `ratelimit_shaper_` prefix.

Naming Conventions:
    - Counter metrics end with `_total`
    - Histogram metrics for time end with `_seconds`
    - Gauges use present-tense descriptive names

Label Best Practices:
    The only label is `target`, the tracking key of a request (by default
    scheme://host), which is categorical.

    NEVER use:
    - partition keys - Unique per user or tenant (unbounded!)
    - full request URLs - Unique per path and query (unbounded!)

Usage:
    >>> from ratelimit_shaper.observability.constants import DELAYS_APPLIED_TOTAL
    >>> print(DELAYS_APPLIED_TOTAL)
    'ratelimit_shaper_delays_applied_total'
"""


# =============================================================================
# Global Prefix
# =============================================================================

METRIC_PREFIX = "ratelimit_shaper"
"""Prefix for all Prometheus metrics in this library."""


# =============================================================================
# Header Metrics (gateway.py)
# =============================================================================

HEADERS_RECEIVED_TOTAL = f"{METRIC_PREFIX}_headers_received_total"
"""Total responses whose rate limit headers were decoded and applied."""

PARSING_ERRORS_TOTAL = f"{METRIC_PREFIX}_parsing_errors_total"
"""Total responses whose rate limit headers could not be applied."""


# =============================================================================
# Shaping Metrics (tracking/tracker.py, gateway.py)
# =============================================================================

DELAYS_APPLIED_TOTAL = f"{METRIC_PREFIX}_delays_applied_total"
"""Total waits applied before or after a request."""

DELAY_SECONDS = f"{METRIC_PREFIX}_delay_seconds"
"""Distribution of applied delays."""

TOO_MANY_REQUESTS_TOTAL = f"{METRIC_PREFIX}_too_many_requests_total"
"""Total 429 Too Many Requests responses received."""

RETRIES_TOTAL = f"{METRIC_PREFIX}_retries_total"
"""Total automatic retries after a 429 response."""


# =============================================================================
# State Gauges
# =============================================================================

TRACKED_STATES = f"{METRIC_PREFIX}_tracked_states"
"""Number of rate limit states currently held by the tracker."""


# =============================================================================
# Histogram Buckets
# =============================================================================

DELAY_BUCKETS: list[float] = [
    0.01,
    0.05,
    0.1,
    0.5,
    1.0,
    5.0,
    10.0,
    30.0,
    60.0,
    120.0,
    300.0,
]
"""Buckets for delay histograms, from throttling spreads to full resets."""


__all__ = [
    "DELAYS_APPLIED_TOTAL",
    "DELAY_BUCKETS",
    "DELAY_SECONDS",
    "HEADERS_RECEIVED_TOTAL",
    "METRIC_PREFIX",
    "PARSING_ERRORS_TOTAL",
    "RETRIES_TOTAL",
    "TOO_MANY_REQUESTS_TOTAL",
    "TRACKED_STATES",
]
