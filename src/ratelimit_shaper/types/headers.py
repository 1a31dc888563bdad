# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Rate limit header records.

This module defines the typed records decoded from the RateLimit-Policy,
RateLimit and Retry-After response headers. They are built once per
response and never mutated afterwards.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

DEFAULT_QUOTA_UNIT = "requests"


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Policy:
    """
    A quota policy advertised by the RateLimit-Policy header.

    Attributes:
        name: Policy identifier (the bare item value)
        quota: Quota allocated in quota units (``q``); must be positive
        window_seconds: Time window the quota applies to (``w``)
        quota_unit: Unit of the quota (``qu``), e.g. "requests",
            "content-bytes" or "concurrent-requests"
        partition_key: Partition the quota is scoped to (``pk``)
    """

    name: str
    quota: int
    window_seconds: int | None = None
    quota_unit: str = DEFAULT_QUOTA_UNIT
    partition_key: str | None = None


@dataclass(frozen=True)
class Limit:
    """
    Current consumption reported by the RateLimit header.

    A negative remaining value is clamped to zero on construction so the
    delay math never sees it.

    Attributes:
        policy_name: Policy this limit applies to
        remaining: Remaining quota units (``r``)
        reset_seconds: Seconds until the quota is restored (``t``)
        partition_key: Partition the limit is scoped to (``pk``)
        observed_at: When the response carrying this limit was received
    """

    policy_name: str
    remaining: int
    reset_seconds: int | None = None
    partition_key: str | None = None
    observed_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if self.remaining < 0:
            object.__setattr__(self, "remaining", 0)

    @property
    def reset_at(self) -> datetime | None:
        """Absolute reset time, or None if the server gave no ``t``."""
        if self.reset_seconds is None:
            return None
        return self.observed_at + timedelta(seconds=self.reset_seconds)

    def time_until_reset(self, now: datetime | None = None) -> float | None:
        """Seconds left until reset (never negative), or None if unknown."""
        reset_at = self.reset_at
        if reset_at is None:
            return None
        now = now or utc_now()
        return max(0.0, (reset_at - now).total_seconds())


@dataclass(frozen=True)
class HeaderSnapshot:
    """
    Everything decoded from one response's rate limit headers.

    Attributes:
        policies: Policies from RateLimit-Policy, in header order
        limits: Limits from RateLimit, in header order
        retry_after_seconds: Retry-After value; takes precedence over
            any Limit.reset_seconds
        observed_at: When the response was received
    """

    policies: tuple[Policy, ...] = ()
    limits: tuple[Limit, ...] = ()
    retry_after_seconds: int | None = None
    observed_at: datetime = field(default_factory=utc_now)

    @property
    def is_empty(self) -> bool:
        """True when the response carried no usable rate limit headers."""
        return (
            not self.policies
            and not self.limits
            and self.retry_after_seconds is None
        )

    def find_policy(self, name: str) -> Policy | None:
        """Return the first policy with the given name."""
        for policy in self.policies:
            if policy.name == name:
                return policy
        return None


__all__ = [
    "DEFAULT_QUOTA_UNIT",
    "HeaderSnapshot",
    "Limit",
    "Policy",
    "utc_now",
]
