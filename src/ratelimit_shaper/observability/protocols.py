# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Protocol definition for metrics collection backends.

The tracker and the gateway only depend on this protocol, so an
application can route shaping metrics into StatsD, OpenTelemetry or a
test double instead of the bundled Prometheus-backed collector.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class MetricsCollectorProtocol(Protocol):
    """
    Protocol for metrics collection backends.

    Example:
        >>> class MyCollector:
        ...     def inc_counter(self, name, value=1, labels=None): pass
        ...     def set_gauge(self, name, value, labels=None): pass
        ...     def observe_histogram(self, name, value, labels=None): pass
        ...     def get_metrics(self): return {}
        ...     def reset(self): pass
        >>>
        >>> isinstance(MyCollector(), MetricsCollectorProtocol)
        True
    """

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
        ...

    def set_gauge(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Set a gauge metric to a specific value."""
        ...

    def observe_histogram(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Record an observation in a histogram."""
        ...

    def get_metrics(self) -> dict[str, Any]:
        """Get a snapshot of all metrics (counters, gauges, histograms)."""
        ...

    def reset(self) -> None:
        """Reset all metrics to zero."""
        ...


__all__ = ["MetricsCollectorProtocol"]
