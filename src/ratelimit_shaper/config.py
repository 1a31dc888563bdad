# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Configuration for the ratelimit-shaper gateway and tracker.

This module provides the configuration dataclass shared by the
LimitTracker and the ShapingGateway, including wait policy, throttling,
retry and callback settings.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
from typing_extensions import Self

from .exceptions import ConfigurationError
from .types.headers import HeaderSnapshot

# Callback signatures exposed to the embedding application
KeyFunc = Callable[[str], str]
PartitionResolver = Callable[[httpx.Request], "str | None"]
HeadersReceivedCallback = Callable[[str, HeaderSnapshot], None]
DelayCalculatedCallback = Callable[[str, float], None]
TooManyRequestsCallback = Callable[[httpx.Request, httpx.Response], None]
ParsingErrorCallback = Callable[[str, Exception], None]

DEFAULT_ENV_PREFIX = "RATELIMIT_SHAPER_"


class WaitMode(Enum):
    """When the gateway applies rate limit delays.

    - BEFORE_REQUEST: Wait before sending. Avoids sending requests that
      would be rate limited. This is the default.
    - AFTER_RESPONSE: Wait after the response arrives, so the freshly
      received headers shape the next request.
    - NEVER: Never wait automatically; the caller consults the tracker.
    """

    BEFORE_REQUEST = "before_request"
    AFTER_RESPONSE = "after_response"
    NEVER = "never"


@dataclass
class ShaperConfig:
    """
    Configuration for rate limit traffic shaping.

    All durations are in seconds.
    """

    # === Waiting ===

    wait_mode: WaitMode = WaitMode.BEFORE_REQUEST
    """When to apply computed delays."""

    max_delay_threshold: float = 300.0
    """Upper bound for any single delay. Protects against hostile or buggy
    servers advertising huge reset windows."""

    # === Proactive Throttling ===

    enable_proactive_throttling: bool = True
    """Slow requests down before the quota is exhausted."""

    proactive_throttle_threshold: float = 0.8
    """Utilization (0.0-1.0) at which proactive throttling starts."""

    # === State Management ===

    state_expiration_time: float = 3600.0
    """How long a state without a reset time stays valid after its last
    update."""

    # === 429 Handling ===

    auto_retry_on_429: bool = False
    """Retry requests answered with 429 Too Many Requests."""

    max_retries: int = 3
    """Maximum automatic retries per request."""

    # === Keying ===

    key_func: KeyFunc | None = None
    """Maps a request URL to its tracking key. Default: scheme://host."""

    partition_resolver: PartitionResolver | None = None
    """Maps a request to the partition key whose quota should gate it."""

    # === Callbacks ===

    on_headers_received: HeadersReceivedCallback | None = None
    """Called with (target, snapshot) after headers are decoded."""

    on_delay_calculated: DelayCalculatedCallback | None = None
    """Called with (target, delay) before a delay is applied."""

    on_too_many_requests: TooManyRequestsCallback | None = None
    """Called with (request, response) on a 429 response."""

    on_parsing_error: ParsingErrorCallback | None = None
    """Called with (target, error) when headers could not be applied."""

    # === Metrics and Monitoring ===

    metrics_enabled: bool = True
    """Enable metrics collection."""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not isinstance(self.wait_mode, WaitMode):
            raise ConfigurationError(
                f"wait_mode must be a WaitMode, got {self.wait_mode!r}"
            )
        if self.max_delay_threshold <= 0:
            raise ConfigurationError("max_delay_threshold must be positive")
        if not 0.0 <= self.proactive_throttle_threshold <= 1.0:
            raise ConfigurationError(
                "proactive_throttle_threshold must be between 0.0 and 1.0"
            )
        if self.state_expiration_time <= 0:
            raise ConfigurationError("state_expiration_time must be positive")
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be at least 0")
        for name in (
            "key_func",
            "partition_resolver",
            "on_headers_received",
            "on_delay_calculated",
            "on_too_many_requests",
            "on_parsing_error",
        ):
            value = getattr(self, name)
            if value is not None and not callable(value):
                raise ConfigurationError(f"{name} must be callable")

    @classmethod
    def from_env(
        cls,
        prefix: str = DEFAULT_ENV_PREFIX,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> Self:
        """
        Build a configuration from environment variables.

        Reads ``{prefix}WAIT_MODE``, ``{prefix}MAX_DELAY_THRESHOLD``,
        ``{prefix}ENABLE_PROACTIVE_THROTTLING``,
        ``{prefix}PROACTIVE_THROTTLE_THRESHOLD``,
        ``{prefix}STATE_EXPIRATION_TIME``, ``{prefix}AUTO_RETRY_ON_429``,
        ``{prefix}MAX_RETRIES`` and ``{prefix}METRICS_ENABLED``. Unset
        variables keep their defaults; keyword overrides win over both.

        Raises:
            ConfigurationError: If a variable cannot be converted.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        converters: dict[str, Callable[[str], Any]] = {
            "wait_mode": lambda raw: WaitMode(raw.strip().lower()),
            "max_delay_threshold": float,
            "enable_proactive_throttling": _parse_bool,
            "proactive_throttle_threshold": float,
            "state_expiration_time": float,
            "auto_retry_on_429": _parse_bool,
            "max_retries": int,
            "metrics_enabled": _parse_bool,
        }

        for name, convert in converters.items():
            raw = env.get(f"{prefix}{name.upper()}")
            if raw is None:
                continue
            try:
                values[name] = convert(raw)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid value for {prefix}{name.upper()}: {raw!r}"
                ) from e

        values.update(overrides)
        return cls(**values)


def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {raw!r}")


__all__ = [
    "DEFAULT_ENV_PREFIX",
    "DelayCalculatedCallback",
    "HeadersReceivedCallback",
    "KeyFunc",
    "ParsingErrorCallback",
    "PartitionResolver",
    "ShaperConfig",
    "TooManyRequestsCallback",
    "WaitMode",
]
