# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""ratelimit-shaper - Client-side HTTP traffic shaping from rate limit headers.

This library reads the RateLimit-Policy, RateLimit and Retry-After response
headers (draft-ietf-httpapi-ratelimit-headers) and slows outbound requests
down before the server has to reject them.

Key Features:
    - Structured field parsing with byte-sequence partition keys
    - Per-target, per-policy, per-partition limit tracking
    - Proactive throttling that spreads the remaining quota over the window
    - Absolute Retry-After precedence and bounded 429 retries
    - httpx transport integration and Prometheus metrics

Quick Start:
    >>> import httpx
    >>> from ratelimit_shaper import RateLimitTransport, ShaperConfig
    >>>
    >>> config = ShaperConfig(auto_retry_on_429=True)
    >>> async with httpx.AsyncClient(transport=RateLimitTransport(config=config)) as client:
    ...     response = await client.get("https://api.example.com/items")

Main Exports:
    - ShapingGateway, RateLimitTransport: Request path integration
    - LimitTracker, TrackedState: Rate limit state and delay computation
    - HeaderDecoder, StructuredFieldParser: Header decoding
    - ShaperConfig, WaitMode: Configuration options

Test helpers (MockRateLimitTransport) live in ``ratelimit_shaper.testing``.

Version: 1.0.0
"""

__version__ = "1.0.0"

from .config import ShaperConfig, WaitMode
from .exceptions import ConfigurationError, HeaderParseError, RateLimitShaperError
from .gateway import RateLimitTransport, ShapingGateway, bearer_partition_resolver
from .headers import HeaderDecoder
from .identity import (
    create_sample_token,
    extract_all_claims,
    extract_claim,
    extract_oid,
    extract_sub,
)
from .observability import (
    MetricsCollector,
    MetricsCollectorProtocol,
    get_metrics_collector,
    reset_metrics_collector,
)
from .structured_fields import (
    FieldItem,
    StructuredFieldParser,
    StructuredFieldParserProtocol,
)
from .tracking import LimitTracker, TrackedState
from .types import HeaderSnapshot, Limit, Policy

__all__ = [
    "__version__",
    # Configuration
    "ShaperConfig",
    "WaitMode",
    # Exceptions
    "ConfigurationError",
    "HeaderParseError",
    "RateLimitShaperError",
    # Gateway
    "RateLimitTransport",
    "ShapingGateway",
    "bearer_partition_resolver",
    # Headers
    "FieldItem",
    "HeaderDecoder",
    "HeaderSnapshot",
    "Limit",
    "Policy",
    "StructuredFieldParser",
    "StructuredFieldParserProtocol",
    # Tracking
    "LimitTracker",
    "TrackedState",
    # Identity
    "create_sample_token",
    "extract_all_claims",
    "extract_claim",
    "extract_oid",
    "extract_sub",
    # Observability
    "MetricsCollector",
    "MetricsCollectorProtocol",
    "get_metrics_collector",
    "reset_metrics_collector",
]
