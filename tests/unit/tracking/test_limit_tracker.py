"""Tests for LimitTracker and TrackedState."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ratelimit_shaper.config import ShaperConfig
from ratelimit_shaper.observability.constants import (
    DELAY_SECONDS,
    DELAYS_APPLIED_TOTAL,
    TRACKED_STATES,
)
from ratelimit_shaper.tracking import RETRY_AFTER_POLICY, LimitTracker, TrackedState
from ratelimit_shaper.types import HeaderSnapshot, Limit, Policy

TARGET = "https://api.example.com/v1/items"
KEY = "https://api.example.com"


def make_snapshot(clock, limits=(), policies=(), retry_after=None):
    observed_at = clock()
    return HeaderSnapshot(
        policies=tuple(policies),
        limits=tuple(
            Limit(
                policy_name=limit[0],
                remaining=limit[1],
                reset_seconds=limit[2] if len(limit) > 2 else None,
                partition_key=limit[3] if len(limit) > 3 else None,
                observed_at=observed_at,
            )
            for limit in limits
        ),
        retry_after_seconds=retry_after,
        observed_at=observed_at,
    )


@pytest.fixture
def tracker(clock):
    return LimitTracker(ShaperConfig(), clock=clock)


class TestTrackedState:
    """Tests for the TrackedState model."""

    def test_frozen(self, clock):
        state = TrackedState(tracking_key=KEY, policy_name="burst", last_updated=clock())
        with pytest.raises(Exception):  # noqa: B017
            state.remaining = 5  # type: ignore[misc]

    def test_state_key_defaults(self, clock):
        state = TrackedState(tracking_key=KEY, policy_name="burst", last_updated=clock())
        assert state.state_key == f"{KEY}:burst:default"

    def test_state_key_with_partition(self, clock):
        state = TrackedState(
            tracking_key=KEY, policy_name="burst", partition_key="u1", last_updated=clock()
        )
        assert state.state_key == f"{KEY}:burst:u1"

    def test_retry_after_key(self, clock):
        state = TrackedState(
            tracking_key=KEY,
            policy_name=RETRY_AFTER_POLICY,
            is_retry_after=True,
            last_updated=clock(),
        )
        assert state.is_retry_after
        assert state.state_key == f"{KEY}:retry-after"

    def test_server_policy_named_retry_after(self, clock):
        state = TrackedState(
            tracking_key=KEY, policy_name=RETRY_AFTER_POLICY, last_updated=clock()
        )
        assert not state.is_retry_after
        assert state.state_key == f"{KEY}:retry-after:default"

    def test_stale_after_reset(self, clock):
        state = TrackedState(
            tracking_key=KEY,
            policy_name="burst",
            reset_at=clock() + timedelta(seconds=10),
            last_updated=clock(),
        )
        assert not state.is_stale(clock(), 3600)
        clock.advance(10)
        assert state.is_stale(clock(), 3600)

    def test_stale_without_reset_after_expiration(self, clock):
        state = TrackedState(tracking_key=KEY, policy_name="burst", last_updated=clock())
        clock.advance(60)
        assert not state.is_stale(clock(), 60)
        clock.advance(1)
        assert state.is_stale(clock(), 60)

    def test_utilization(self, clock):
        state = TrackedState(
            tracking_key=KEY, policy_name="b", remaining=2, quota=10, last_updated=clock()
        )
        assert state.utilization == pytest.approx(0.8)
        unknown = state.model_copy(update={"quota": None})
        assert unknown.utilization is None


class TestTrackingKey:
    """Tests for LimitTracker.get_tracking_key."""

    @pytest.mark.parametrize(
        ("target", "expected"),
        [
            ("https://api.example.com/v1/items?x=1", "https://api.example.com"),
            ("https://API.Example.com/", "https://api.example.com"),
            ("https://api.example.com:443/x", "https://api.example.com"),
            ("http://api.example.com:8080/x", "http://api.example.com:8080"),
            ("http://[::1]:9000/x", "http://[::1]:9000"),
        ],
    )
    def test_default_key(self, tracker, target, expected):
        assert tracker.get_tracking_key(target) == expected

    def test_relative_target_used_verbatim(self, tracker):
        assert tracker.get_tracking_key("not-a-url") == "not-a-url"

    def test_custom_key_func(self, clock):
        config = ShaperConfig(key_func=lambda url: url.split("?")[0])
        tracker = LimitTracker(config, clock=clock)

        assert tracker.get_tracking_key(f"{TARGET}?page=2") == TARGET


class TestUpdate:
    """Tests for LimitTracker.update."""

    def test_creates_state(self, tracker, clock):
        tracker.update(
            make_snapshot(
                clock,
                limits=[("burst", 42, 18)],
                policies=[Policy(name="burst", quota=100, window_seconds=60)],
            ),
            TARGET,
        )

        state = tracker.snapshot()[f"{KEY}:burst:default"]
        assert state.remaining == 42
        assert state.reset_at == clock() + timedelta(seconds=18)
        assert state.last_updated == clock()
        assert state.quota == 100
        assert state.window_seconds == 60

    def test_overwrites_without_history(self, tracker, clock):
        tracker.update(make_snapshot(clock, limits=[("burst", 10, 30)]), TARGET)
        clock.advance(1)
        tracker.update(make_snapshot(clock, limits=[("burst", 9, 29)]), TARGET)

        assert len(tracker) == 1
        assert tracker.snapshot()[f"{KEY}:burst:default"].remaining == 9

    def test_quota_carried_over_when_policy_missing(self, tracker, clock):
        tracker.update(
            make_snapshot(
                clock,
                limits=[("burst", 10, 30)],
                policies=[Policy(name="burst", quota=100, window_seconds=60)],
            ),
            TARGET,
        )
        tracker.update(make_snapshot(clock, limits=[("burst", 5, 20)]), TARGET)

        state = tracker.snapshot()[f"{KEY}:burst:default"]
        assert state.remaining == 5
        assert state.quota == 100
        assert state.window_seconds == 60

    def test_first_matching_policy_wins(self, tracker, clock):
        tracker.update(
            make_snapshot(
                clock,
                limits=[("burst", 1, 30)],
                policies=[
                    Policy(name="burst", quota=10, window_seconds=60),
                    Policy(name="burst", quota=99, window_seconds=1),
                ],
            ),
            TARGET,
        )

        assert tracker.snapshot()[f"{KEY}:burst:default"].quota == 10

    def test_partitions_tracked_separately(self, tracker, clock):
        tracker.update(
            make_snapshot(clock, limits=[("burst", 0, 30, "A"), ("burst", 50, 30, "B")]),
            TARGET,
        )

        states = tracker.snapshot()
        assert states[f"{KEY}:burst:A"].remaining == 0
        assert states[f"{KEY}:burst:B"].remaining == 50

    def test_retry_after_state(self, tracker, clock):
        tracker.update(make_snapshot(clock, retry_after=120), TARGET)

        state = tracker.snapshot()[f"{KEY}:retry-after"]
        assert state.policy_name == RETRY_AFTER_POLICY
        assert state.remaining == 0
        assert state.reset_at == clock() + timedelta(seconds=120)
        assert state.partition_key is None

    def test_empty_snapshot_is_noop(self, tracker, clock):
        tracker.update(make_snapshot(clock), TARGET)
        assert len(tracker) == 0

    def test_tracked_states_gauge(self, clock, metrics):
        tracker = LimitTracker(ShaperConfig(), clock=clock, metrics=metrics)
        tracker.update(make_snapshot(clock, limits=[("a", 1), ("b", 2)]), TARGET)

        assert metrics.get_metrics()["gauges"][TRACKED_STATES][""] == 2
        tracker.clear()
        assert metrics.get_metrics()["gauges"][TRACKED_STATES][""] == 0


class TestComputeDelay:
    """Tests for LimitTracker.compute_delay."""

    def test_no_state_no_delay(self, tracker):
        assert tracker.compute_delay(TARGET) == 0.0

    def test_exhausted_waits_until_reset(self, tracker, clock):
        tracker.update(make_snapshot(clock, limits=[("burst", 0, 30)]), TARGET)

        assert tracker.compute_delay(TARGET) == pytest.approx(30.0)
        clock.advance(10)
        assert tracker.compute_delay(TARGET) == pytest.approx(20.0)

    def test_exhausted_without_reset_no_delay(self, tracker, clock):
        tracker.update(make_snapshot(clock, limits=[("burst", 0)]), TARGET)

        assert tracker.compute_delay(TARGET) == 0.0

    def test_proactive_spreads_remaining_over_reset(self, tracker, clock):
        # quota 10, remaining 2, window elapsed, reset 30s away
        tracker.update(
            make_snapshot(
                clock,
                limits=[("burst", 2, 30)],
                policies=[Policy(name="burst", quota=10, window_seconds=60)],
            ),
            TARGET,
        )

        delay = tracker.compute_delay(TARGET)

        assert 0 < delay <= 15.0
        assert delay == pytest.approx(15.0)

    def test_proactive_below_threshold(self, tracker, clock):
        tracker.update(
            make_snapshot(
                clock,
                limits=[("burst", 5, 30)],
                policies=[Policy(name="burst", quota=10, window_seconds=60)],
            ),
            TARGET,
        )

        assert tracker.compute_delay(TARGET) == 0.0

    def test_proactive_uses_window_without_reset(self, tracker, clock):
        tracker.update(
            make_snapshot(
                clock,
                limits=[("burst", 1)],
                policies=[Policy(name="burst", quota=10, window_seconds=60)],
            ),
            TARGET,
        )
        clock.advance(20)

        assert tracker.compute_delay(TARGET) == pytest.approx(40.0)

    def test_proactive_needs_quota_and_window(self, tracker, clock):
        tracker.update(
            make_snapshot(
                clock,
                limits=[("burst", 1, 30)],
                policies=[Policy(name="burst", quota=10)],
            ),
            TARGET,
        )

        assert tracker.compute_delay(TARGET) == 0.0

    def test_proactive_disabled(self, clock):
        tracker = LimitTracker(ShaperConfig(enable_proactive_throttling=False), clock=clock)
        tracker.update(
            make_snapshot(
                clock,
                limits=[("burst", 1, 30)],
                policies=[Policy(name="burst", quota=10, window_seconds=60)],
            ),
            TARGET,
        )

        assert tracker.compute_delay(TARGET) == 0.0

    def test_clamped_to_max_delay(self, clock):
        tracker = LimitTracker(ShaperConfig(max_delay_threshold=300.0), clock=clock)
        tracker.update(make_snapshot(clock, limits=[("daily", 0, 86400)]), TARGET)

        assert tracker.compute_delay(TARGET) == 300.0

    def test_proactive_clamped_to_max_delay(self, clock):
        tracker = LimitTracker(ShaperConfig(max_delay_threshold=5.0), clock=clock)
        tracker.update(
            make_snapshot(
                clock,
                limits=[("daily", 1, 86400)],
                policies=[Policy(name="daily", quota=1000, window_seconds=86400)],
            ),
            TARGET,
        )

        assert tracker.compute_delay(TARGET) == 5.0

    def test_maximum_not_sum(self, tracker, clock):
        tracker.update(
            make_snapshot(clock, limits=[("a", 0, 10), ("b", 0, 40), ("c", 0, 25)]),
            TARGET,
        )

        assert tracker.compute_delay(TARGET) == pytest.approx(40.0)

    def test_past_reset_is_stale_even_when_exhausted(self, tracker, clock):
        tracker.update(make_snapshot(clock, limits=[("burst", 0, 30)]), TARGET)
        clock.advance(31)

        assert tracker.compute_delay(TARGET) == 0.0
        assert len(tracker) == 1

    def test_expired_state_without_reset_ignored(self, clock):
        tracker = LimitTracker(ShaperConfig(state_expiration_time=30), clock=clock)
        tracker.update(
            make_snapshot(
                clock,
                limits=[("burst", 1)],
                policies=[Policy(name="burst", quota=10, window_seconds=3600)],
            ),
            TARGET,
        )
        assert tracker.compute_delay(TARGET) > 0

        clock.advance(31)
        assert tracker.compute_delay(TARGET) == 0.0

    def test_other_target_unaffected(self, tracker, clock):
        tracker.update(make_snapshot(clock, limits=[("burst", 0, 30)]), TARGET)

        assert tracker.compute_delay("https://other.example.com/x") == 0.0
        assert tracker.compute_delay("https://api.example.com.evil.net/x") == 0.0


class TestPartitions:
    """Partition keys never influence each other."""

    def test_partition_isolation(self, tracker, clock):
        policies = [Policy(name="burst", quota=100, window_seconds=60)]
        tracker.update(
            make_snapshot(clock, limits=[("burst", 50, 30, "B")], policies=policies),
            TARGET,
        )
        before = tracker.compute_delay(TARGET, "B")

        tracker.update(
            make_snapshot(clock, limits=[("burst", 0, 30, "A")], policies=policies),
            TARGET,
        )

        assert tracker.compute_delay(TARGET, "A") == pytest.approx(30.0)
        assert tracker.compute_delay(TARGET, "B") == before == 0.0

    def test_unpartitioned_state_matches_default(self, tracker, clock):
        tracker.update(make_snapshot(clock, limits=[("burst", 0, 30)]), TARGET)

        assert tracker.compute_delay(TARGET, "default") == pytest.approx(30.0)
        assert tracker.compute_delay(TARGET, "user-1") == 0.0

    def test_no_filter_considers_all_partitions(self, tracker, clock):
        tracker.update(
            make_snapshot(clock, limits=[("burst", 0, 30, "A"), ("burst", 5, 30, "B")]),
            TARGET,
        )

        assert tracker.compute_delay(TARGET) == pytest.approx(30.0)


class TestRetryAfter:
    """Retry-After precedence."""

    def test_retry_after_overrides_limits(self, tracker, clock):
        tracker.update(
            make_snapshot(clock, limits=[("burst", 0, 5)], retry_after=120), TARGET
        )

        assert tracker.compute_delay(TARGET) == pytest.approx(120.0)

    def test_retry_after_beats_longer_reset(self, tracker, clock):
        tracker.update(
            make_snapshot(clock, limits=[("burst", 0, 200)], retry_after=120), TARGET
        )

        assert tracker.compute_delay(TARGET) == pytest.approx(120.0)

    def test_retry_after_clamped(self, tracker, clock):
        tracker.update(make_snapshot(clock, retry_after=1000), TARGET)

        assert tracker.compute_delay(TARGET) == 300.0

    def test_unclamped_retry_after(self, tracker, clock):
        tracker.update(make_snapshot(clock, retry_after=1000), TARGET)

        assert tracker.compute_delay(TARGET, clamp=False) == pytest.approx(1000.0)

    def test_unclamped_reset(self, tracker, clock):
        tracker.update(make_snapshot(clock, limits=[("daily", 0, 3600)]), TARGET)

        assert tracker.compute_delay(TARGET) == 300.0
        assert tracker.compute_delay(TARGET, clamp=False) == pytest.approx(3600.0)

    def test_server_policy_named_retry_after_is_a_quota(self, tracker, clock):
        tracker.update(
            make_snapshot(
                clock,
                limits=[(RETRY_AFTER_POLICY, 0, 30, "user-1")],
                retry_after=5,
            ),
            TARGET,
        )

        assert len(tracker) == 2
        assert tracker.compute_delay(TARGET, "user-1") == pytest.approx(30.0)
        assert tracker.compute_delay(TARGET, "user-2") == 0.0
        assert tracker.compute_delay(TARGET) == pytest.approx(5.0)

    def test_elapsed_retry_after_ignored(self, tracker, clock):
        tracker.update(
            make_snapshot(clock, limits=[("daily", 0, 200)], retry_after=10), TARGET
        )
        clock.advance(11)

        assert tracker.compute_delay(TARGET) == pytest.approx(189.0)

    def test_retry_after_zero(self, tracker, clock):
        tracker.update(make_snapshot(clock, retry_after=0), TARGET)

        assert tracker.compute_delay(TARGET) == 0.0

    def test_partition_filter_skips_retry_after(self, tracker, clock):
        tracker.update(make_snapshot(clock, retry_after=60), TARGET)

        assert tracker.compute_delay(TARGET, "user-1") == 0.0
        assert tracker.compute_delay(TARGET) == pytest.approx(60.0)


class TestWait:
    """Tests for LimitTracker.wait."""

    @pytest.mark.asyncio
    async def test_no_delay_does_not_sleep(self, tracker):
        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            assert await tracker.wait(TARGET) == 0.0
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_sleeps_for_delay(self, clock, metrics):
        on_delay = MagicMock()
        tracker = LimitTracker(
            ShaperConfig(on_delay_calculated=on_delay), clock=clock, metrics=metrics
        )
        tracker.update(make_snapshot(clock, limits=[("burst", 0, 30)]), TARGET)

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            delay = await tracker.wait(TARGET)

        assert delay == pytest.approx(30.0)
        sleep.assert_awaited_once()
        assert sleep.await_args.args[0] == pytest.approx(30.0)
        on_delay.assert_called_once()
        assert on_delay.call_args.args[0] == TARGET
        assert metrics.get_counter(DELAYS_APPLIED_TOTAL, {"target": KEY}) == 1
        histogram = metrics.get_metrics()["histograms"][DELAY_SECONDS]
        assert histogram[f"target={KEY}"]["count"] == 1

    @pytest.mark.asyncio
    async def test_callback_failure_suppressed(self, clock):
        def on_delay(target, delay):
            raise RuntimeError("callback bug")

        tracker = LimitTracker(ShaperConfig(on_delay_calculated=on_delay), clock=clock)
        tracker.update(make_snapshot(clock, limits=[("burst", 0, 5)]), TARGET)

        with patch("asyncio.sleep", new_callable=AsyncMock):
            assert await tracker.wait(TARGET) == pytest.approx(5.0)

    @pytest.mark.asyncio
    async def test_cancellation_propagates_and_keeps_state(self, tracker, clock):
        tracker.update(make_snapshot(clock, limits=[("burst", 0, 30)]), TARGET)
        before = dict(tracker.snapshot())

        task = asyncio.create_task(tracker.wait(TARGET))
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert dict(tracker.snapshot()) == before


class TestStateManagement:
    """clear, snapshot and stats."""

    def test_clear(self, tracker, clock):
        tracker.update(make_snapshot(clock, limits=[("a", 0, 30)], retry_after=5), TARGET)
        assert len(tracker) == 2

        tracker.clear()

        assert len(tracker) == 0
        assert tracker.compute_delay(TARGET) == 0.0

    def test_snapshot_is_read_only_copy(self, tracker, clock):
        tracker.update(make_snapshot(clock, limits=[("a", 1, 30)]), TARGET)
        view = tracker.snapshot()

        with pytest.raises(TypeError):
            view["x"] = None  # type: ignore[index]

        tracker.clear()
        assert len(view) == 1

    def test_get_stats(self, tracker, clock):
        tracker.update(make_snapshot(clock, limits=[("a", 1, 10), ("b", 1, 60)]), TARGET)
        tracker.update(make_snapshot(clock, limits=[("a", 1, 60)]), "https://other.example.com")
        clock.advance(20)

        stats = tracker.get_stats()

        assert stats == {"tracked_states": 3, "stale_states": 1, "targets": 2}
