# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
LimitTracker: per-target, per-policy, per-partition rate limit state.

The tracker ingests decoded header snapshots and answers one question:
how long should the next request to a target wait?

Delay rules:
    1. A live Retry-After state wins outright.
    2. An exhausted quota with a known reset waits until the reset.
    3. A quota past the proactive throttle threshold spreads its remaining
       requests evenly over the time left in its window.
    4. The largest candidate wins, clamped to ``max_delay_threshold``.

Stale states (reset time passed, or unrefreshed for longer than
``state_expiration_time``) never contribute to a delay. They stay in the
table until ``clear()``.

Concurrency: the state table is a plain dict. Every write replaces a
whole immutable TrackedState in a single item assignment and every scan
iterates over a copy of the values, so concurrent callers never observe
a half-written state and need no lock.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Any

import httpx

from ..config import ShaperConfig
from ..observability.constants import (
    DELAY_SECONDS,
    DELAYS_APPLIED_TOTAL,
    TRACKED_STATES,
)
from ..observability.protocols import MetricsCollectorProtocol
from ..types.headers import HeaderSnapshot, utc_now
from .models import DEFAULT_KEY_PART, RETRY_AFTER_POLICY, TrackedState

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class LimitTracker:
    """
    Tracks rate limit state and computes the delay before the next request.

    Example:
        >>> tracker = LimitTracker(ShaperConfig())
        >>> tracker.update(snapshot, "https://api.example.com/v1/items")
        >>> delay = tracker.compute_delay("https://api.example.com/v1/items")
    """

    def __init__(
        self,
        config: ShaperConfig | None = None,
        clock: Clock | None = None,
        metrics: MetricsCollectorProtocol | None = None,
    ) -> None:
        """
        Initialize the tracker.

        Args:
            config: Shaping configuration (default: ShaperConfig())
            clock: Returns the current tz-aware UTC time (default: utc_now)
            metrics: Optional metrics collector
        """
        self.config = config if config is not None else ShaperConfig()
        self._clock: Clock = clock or utc_now
        self._metrics = metrics
        self._states: dict[str, TrackedState] = {}

    # ===== KEYING =====

    def get_tracking_key(self, target: str | httpx.URL) -> str:
        """
        Derive the tracking key for a request target.

        Uses ``config.key_func`` when set, otherwise ``scheme://host`` with
        the port appended only when it is not the scheme default.
        """
        if self.config.key_func is not None:
            return self.config.key_func(str(target))

        url = target if isinstance(target, httpx.URL) else httpx.URL(str(target))
        if not url.scheme or not url.host:
            return str(target)

        host = url.host.lower()
        if ":" in host:
            host = f"[{host}]"
        if url.port is not None:
            return f"{url.scheme}://{host}:{url.port}"
        return f"{url.scheme}://{host}"

    # ===== INGESTION =====

    def update(self, snapshot: HeaderSnapshot, target: str | httpx.URL) -> None:
        """
        Record the limits of one response.

        Each Limit overwrites the state of its (target, policy, partition)
        key. Quota and window come from the first Policy of the same name
        in the snapshot, or are carried over from the previous state.
        A Retry-After value overwrites the target's synthetic
        ``retry-after`` state.
        """
        tracking_key = self.get_tracking_key(target)

        for limit in snapshot.limits:
            policy = snapshot.find_policy(limit.policy_name)
            candidate = TrackedState(
                tracking_key=tracking_key,
                policy_name=limit.policy_name or DEFAULT_KEY_PART,
                partition_key=limit.partition_key,
                remaining=max(0, limit.remaining),
                reset_at=limit.reset_at,
                last_updated=limit.observed_at,
            )
            key = candidate.state_key

            if policy is not None:
                quota, window = policy.quota, policy.window_seconds
            else:
                previous = self._states.get(key)
                quota = previous.quota if previous else None
                window = previous.window_seconds if previous else None

            self._states[key] = candidate.model_copy(
                update={"quota": quota, "window_seconds": window}
            )
            logger.debug(
                f"Updated {key}: remaining={limit.remaining}, "
                f"reset_in={limit.reset_seconds}, quota={quota}"
            )

        if snapshot.retry_after_seconds is not None:
            state = TrackedState(
                tracking_key=tracking_key,
                policy_name=RETRY_AFTER_POLICY,
                is_retry_after=True,
                remaining=0,
                reset_at=snapshot.observed_at
                + timedelta(seconds=snapshot.retry_after_seconds),
                last_updated=snapshot.observed_at,
            )
            self._states[state.state_key] = state
            logger.debug(
                f"Retry-After for {tracking_key}: {snapshot.retry_after_seconds}s"
            )

        if self._metrics is not None:
            self._metrics.set_gauge(TRACKED_STATES, len(self._states))

    # ===== DELAY COMPUTATION =====

    def compute_delay(
        self,
        target: str | httpx.URL,
        partition_key: str | None = None,
        clamp: bool = True,
    ) -> float:
        """
        Seconds to wait before the next request to ``target``.

        Args:
            target: Request URL (or anything ``key_func`` understands)
            partition_key: Only consider states of this partition. States
                without a partition match ``"default"``. The synthetic
                Retry-After state is partition-agnostic and only applies
                when no partition filter is given.
            clamp: Cap the result at ``max_delay_threshold``. Pass False to
                see the delay the server actually asked for.

        Returns:
            A non-negative delay, within ``[0, max_delay_threshold]`` when
            ``clamp`` is set.
        """
        tracking_key = self.get_tracking_key(target)
        now = self._clock()
        max_delay = self.config.max_delay_threshold if clamp else float("inf")
        delay = 0.0

        for state in list(self._states.values()):
            if state.tracking_key != tracking_key:
                continue
            if partition_key is not None and (
                state.is_retry_after
                or (state.partition_key or DEFAULT_KEY_PART) != partition_key
            ):
                continue
            if state.is_stale(now, self.config.state_expiration_time):
                continue

            if state.is_retry_after:
                retry_delay = state.time_until_reset(now) or 0.0
                if retry_delay > 0:
                    return min(retry_delay, max_delay)
                continue

            if state.is_exhausted and state.reset_at is not None:
                delay = max(delay, state.time_until_reset(now) or 0.0)
            elif self.config.enable_proactive_throttling and state.remaining > 0:
                delay = max(delay, self.proactive_delay(state, now))

        return max(0.0, min(delay, max_delay))

    def proactive_delay(self, state: TrackedState, now: datetime | None = None) -> float:
        """
        Per-request delay that spreads the remaining quota over the window.

        Zero unless quota and window are known and utilization has reached
        ``proactive_throttle_threshold``.
        """
        if not state.quota or state.window_seconds is None:
            return 0.0

        utilization = state.utilization
        if utilization is None or utilization < self.config.proactive_throttle_threshold:
            return 0.0

        now = now or self._clock()
        if state.reset_at is not None:
            time_remaining = (state.reset_at - now).total_seconds()
        else:
            elapsed = (now - state.last_updated).total_seconds()
            time_remaining = state.window_seconds - elapsed

        if time_remaining <= 0 or state.remaining <= 0:
            return 0.0
        return min(time_remaining / state.remaining, self.config.max_delay_threshold)

    async def wait(
        self, target: str | httpx.URL, partition_key: str | None = None
    ) -> float:
        """
        Sleep for the computed delay.

        Cancellation propagates to the caller; tracked state is never
        touched while sleeping.

        Returns:
            The delay applied (0.0 if none).
        """
        delay = self.compute_delay(target, partition_key)
        if delay <= 0:
            return 0.0

        tracking_key = self.get_tracking_key(target)
        callback = self.config.on_delay_calculated
        if callback is not None:
            try:
                callback(str(target), delay)
            except Exception as e:
                logger.warning(f"on_delay_calculated callback failed: {e}")

        if self._metrics is not None:
            labels = {"target": tracking_key}
            self._metrics.inc_counter(DELAYS_APPLIED_TOTAL, labels=labels)
            self._metrics.observe_histogram(DELAY_SECONDS, delay, labels=labels)

        logger.info(f"Rate limit delay of {delay:.2f}s for {tracking_key}")
        await asyncio.sleep(delay)
        return delay

    # ===== STATE MANAGEMENT =====

    def clear(self) -> None:
        """Discard all tracked state."""
        self._states = {}
        if self._metrics is not None:
            self._metrics.set_gauge(TRACKED_STATES, 0)
        logger.debug("Cleared all rate limit state")

    def snapshot(self) -> MappingProxyType[str, TrackedState]:
        """Read-only copy of every tracked state, stale ones included."""
        return MappingProxyType(dict(self._states))

    def get_stats(self) -> dict[str, Any]:
        """Diagnostic counts of tracked states."""
        now = self._clock()
        states = list(self._states.values())
        stale = sum(
            1 for s in states if s.is_stale(now, self.config.state_expiration_time)
        )
        return {
            "tracked_states": len(states),
            "stale_states": stale,
            "targets": len({s.tracking_key for s in states}),
        }

    def __len__(self) -> int:
        return len(self._states)


__all__ = ["Clock", "LimitTracker"]
