# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
State models for the limit tracker.

A TrackedState is the last observation of one quota for one
(target, policy, partition) triple. States are immutable; the tracker
replaces them wholesale on every observation.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

RETRY_AFTER_POLICY = "retry-after"
"""Policy name of the synthetic state written for a Retry-After header."""

DEFAULT_KEY_PART = "default"
"""Stand-in for a missing policy name or partition key in state keys."""


class TrackedState(BaseModel):
    """
    Last observed state of one rate limit quota.

    Attributes:
        tracking_key: Target the state belongs to (by default scheme://host)
        policy_name: Policy the quota belongs to
        partition_key: Partition the quota is scoped to, if any
        remaining: Remaining quota units (never negative)
        reset_at: When the quota is restored, if the server said so
        last_updated: When the state was last observed
        quota: Total quota, copied from the matching policy
        window_seconds: Quota window, copied from the matching policy
        is_retry_after: Synthetic state written for a Retry-After header,
            never for a server policy of the same name
    """

    model_config = ConfigDict(frozen=True)

    tracking_key: str
    policy_name: str
    partition_key: str | None = None
    remaining: int = 0
    reset_at: datetime | None = None
    last_updated: datetime
    quota: int | None = None
    window_seconds: int | None = None
    is_retry_after: bool = False

    @property
    def state_key(self) -> str:
        """Composite key the tracker stores this state under."""
        if self.is_retry_after:
            return f"{self.tracking_key}:{RETRY_AFTER_POLICY}"
        return (
            f"{self.tracking_key}:{self.policy_name or DEFAULT_KEY_PART}:"
            f"{self.partition_key or DEFAULT_KEY_PART}"
        )

    @property
    def is_exhausted(self) -> bool:
        return self.remaining <= 0

    @property
    def utilization(self) -> float | None:
        """Fraction of the quota consumed, or None without a known quota."""
        if not self.quota or self.quota <= 0:
            return None
        return (self.quota - self.remaining) / self.quota

    def is_stale(self, now: datetime, expiration_seconds: float) -> bool:
        """
        Whether this state must be ignored for delay computation.

        A state is stale once its reset time has passed. Without a reset
        time it goes stale when it has not been refreshed for
        ``expiration_seconds``.
        """
        if self.reset_at is not None:
            return self.reset_at <= now
        return (now - self.last_updated).total_seconds() > expiration_seconds

    def time_until_reset(self, now: datetime) -> float | None:
        """Seconds until reset (never negative), or None if unknown."""
        if self.reset_at is None:
            return None
        return max(0.0, (self.reset_at - now).total_seconds())


__all__ = ["DEFAULT_KEY_PART", "RETRY_AFTER_POLICY", "TrackedState"]
