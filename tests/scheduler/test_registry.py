"""Tests for the APScheduler-backed timer registry."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from cronpost.scheduler.cron import parse_schedule
from cronpost.scheduler.exceptions import UnreachableScheduleError
from cronpost.scheduler.registry import ScheduleTrigger, TimerRegistry

FIXED_NOW = datetime(2024, 1, 1, 10, 30, tzinfo=timezone.utc)


@pytest.fixture
def registry() -> TimerRegistry:
    """Create a registry whose clock is fixed; it is never started."""
    return TimerRegistry(clock=lambda: FIXED_NOW)


def past_clock() -> datetime:
    """A clock one minute behind, so '* * * * *' is due as soon as the registry starts."""
    return datetime.now(timezone.utc) - timedelta(seconds=60)


class TestScheduleTrigger:
    """Tests for the APScheduler trigger adapter."""

    def test_first_fire_time(self) -> None:
        trigger = ScheduleTrigger(parse_schedule("0 0 * * *"), timezone.utc)

        assert trigger.get_next_fire_time(None, FIXED_NOW) == datetime(2024, 1, 2, tzinfo=timezone.utc)

    def test_next_fire_time_after_previous(self) -> None:
        """Test that the later of previous fire time and now is used."""
        trigger = ScheduleTrigger(parse_schedule("*/15 * * * *"), timezone.utc)
        previous = datetime(2024, 1, 1, 11, 0, tzinfo=timezone.utc)

        assert trigger.get_next_fire_time(previous, FIXED_NOW) == datetime(
            2024, 1, 1, 11, 15, tzinfo=timezone.utc
        )

    def test_late_wakeup_skips_to_future(self) -> None:
        trigger = ScheduleTrigger(parse_schedule("*/15 * * * *"), timezone.utc)
        previous = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

        assert trigger.get_next_fire_time(previous, FIXED_NOW) == datetime(
            2024, 1, 1, 10, 45, tzinfo=timezone.utc
        )

    def test_fields_match_trigger_timezone(self) -> None:
        from zoneinfo import ZoneInfo

        berlin = ZoneInfo("Europe/Berlin")
        trigger = ScheduleTrigger(parse_schedule("0 9 * * *"), berlin)

        result = trigger.get_next_fire_time(None, FIXED_NOW)

        # 10:30 UTC is 11:30 in Berlin in winter, so the next 09:00 is tomorrow
        assert result == datetime(2024, 1, 2, 9, 0, tzinfo=berlin)
        assert result.astimezone(timezone.utc).hour == 8

    def test_unreachable_returns_none(self) -> None:
        trigger = ScheduleTrigger(parse_schedule("0 0 31 2 *"), timezone.utc)

        assert trigger.get_next_fire_time(None, FIXED_NOW) is None

    def test_str(self) -> None:
        trigger = ScheduleTrigger(parse_schedule("*/5 * * * *"), timezone.utc)

        assert str(trigger) == "cron[*/5 * * * *]"
        assert "*/5 * * * *" in repr(trigger)


class TestTimerRegistryBasics:
    """Tests for registry bookkeeping without a running scheduler."""

    def test_empty_registry(self, registry: TimerRegistry) -> None:
        assert registry.job_ids == []
        assert registry.is_running is False
        assert registry.is_scheduled("nothing") is False
        assert registry.next_fire_time("nothing") is None

    def test_upsert_returns_first_fire_time(self, registry: TimerRegistry) -> None:
        first = registry.upsert("nightly", parse_schedule("0 0 * * *"), AsyncMock())

        assert first == datetime(2024, 1, 2, tzinfo=timezone.utc)
        assert registry.is_scheduled("nightly") is True
        assert registry.next_fire_time("nightly") == first

    def test_upsert_twice_leaves_one_timer(self, registry: TimerRegistry) -> None:
        """Test that replacing a timer does not leak the old one."""
        registry.upsert("ping", parse_schedule("* * * * *"), AsyncMock())
        registry.upsert("ping", parse_schedule("0 * * * *"), AsyncMock())

        assert registry.job_ids == ["ping"]
        assert len(registry._scheduler.get_jobs()) == 1
        assert registry.next_fire_time("ping") == datetime(2024, 1, 1, 11, 0, tzinfo=timezone.utc)

    def test_remove_existing(self, registry: TimerRegistry) -> None:
        registry.upsert("ping", parse_schedule("* * * * *"), AsyncMock())

        assert registry.remove("ping") is True
        assert registry.is_scheduled("ping") is False
        assert registry.next_fire_time("ping") is None
        assert registry._scheduler.get_jobs() == []

    def test_remove_unknown(self, registry: TimerRegistry) -> None:
        """Test that removing an unknown id is a harmless no-op."""
        registry.upsert("other", parse_schedule("* * * * *"), AsyncMock())

        assert registry.remove("missing") is False
        assert registry.job_ids == ["other"]

    def test_remove_twice(self, registry: TimerRegistry) -> None:
        registry.upsert("ping", parse_schedule("* * * * *"), AsyncMock())

        assert registry.remove("ping") is True
        assert registry.remove("ping") is False

    def test_remove_all(self, registry: TimerRegistry) -> None:
        for job_id in ("a", "b", "c"):
            registry.upsert(job_id, parse_schedule("* * * * *"), AsyncMock())

        registry.remove_all()

        assert registry.job_ids == []
        assert registry._scheduler.get_jobs() == []

    def test_unreachable_upsert_keeps_existing_timer(self, registry: TimerRegistry) -> None:
        """Test that a failed replacement leaves the old timer installed."""
        registry.upsert("ping", parse_schedule("0 * * * *"), AsyncMock())

        with pytest.raises(UnreachableScheduleError):
            registry.upsert("ping", parse_schedule("0 0 31 2 *"), AsyncMock())

        assert registry.is_scheduled("ping") is True
        assert registry.next_fire_time("ping") == datetime(2024, 1, 1, 11, 0, tzinfo=timezone.utc)

    def test_timezone(self) -> None:
        registry = TimerRegistry(timezone="America/New_York", clock=lambda: FIXED_NOW)

        first = registry.upsert("ny", parse_schedule("0 9 * * *"), AsyncMock())

        # 10:30 UTC is 05:30 in New York
        assert first.astimezone(timezone.utc) == datetime(2024, 1, 1, 14, 0, tzinfo=timezone.utc)
        assert str(registry.timezone) == "America/New_York"


class TestFire:
    """Tests for the per-firing wrapper."""

    @pytest.mark.asyncio
    async def test_fire_invokes_callback(self, registry: TimerRegistry) -> None:
        callback = AsyncMock()
        registry.upsert("ping", parse_schedule("* * * * *"), callback)
        generation = registry._timers["ping"].generation

        await registry._fire("ping", generation)
        await registry.drain(timeout=1)

        callback.assert_awaited_once_with()
        assert registry.in_flight == 0

    @pytest.mark.asyncio
    async def test_stale_firing_is_dropped(self, registry: TimerRegistry) -> None:
        """Test that a firing from a replaced timer never reaches a callback."""
        old_callback = AsyncMock()
        new_callback = AsyncMock()
        registry.upsert("ping", parse_schedule("* * * * *"), old_callback)
        old_generation = registry._timers["ping"].generation
        registry.upsert("ping", parse_schedule("* * * * *"), new_callback)

        await registry._fire("ping", old_generation)
        await registry.drain(timeout=1)

        old_callback.assert_not_awaited()
        new_callback.assert_not_awaited()
        assert registry.in_flight == 0

    @pytest.mark.asyncio
    async def test_firing_after_remove_is_dropped(self, registry: TimerRegistry) -> None:
        callback = AsyncMock()
        registry.upsert("ping", parse_schedule("* * * * *"), callback)
        generation = registry._timers["ping"].generation
        registry.remove("ping")

        await registry._fire("ping", generation)
        await registry.drain(timeout=1)

        callback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_callback_exception_is_contained(self, registry: TimerRegistry) -> None:
        callback = AsyncMock(side_effect=RuntimeError("boom"))
        registry.upsert("ping", parse_schedule("* * * * *"), callback)

        await registry._fire("ping", registry._timers["ping"].generation)
        assert await registry.drain(timeout=1) == 0

        callback.assert_awaited_once()
        assert registry.is_scheduled("ping") is True

    @pytest.mark.asyncio
    async def test_fire_returns_before_callback_finishes(self, registry: TimerRegistry) -> None:
        """Test that overlapping firings of one job run side by side."""
        release = asyncio.Event()
        running = []

        async def slow() -> None:
            running.append(object())
            await release.wait()

        registry.upsert("ping", parse_schedule("* * * * *"), slow)
        generation = registry._timers["ping"].generation

        await registry._fire("ping", generation)
        await registry._fire("ping", generation)
        await asyncio.sleep(0)

        assert len(running) == 2
        assert registry.in_flight == 2

        release.set()
        assert await registry.drain(timeout=1) == 0
        assert registry.in_flight == 0


class TestDrain:
    @pytest.mark.asyncio
    async def test_drain_with_nothing_in_flight(self, registry: TimerRegistry) -> None:
        assert await registry.drain(timeout=0.1) == 0

    @pytest.mark.asyncio
    async def test_drain_cancels_firings_past_timeout(self, registry: TimerRegistry) -> None:
        cancelled = asyncio.Event()

        async def hang() -> None:
            try:
                await asyncio.sleep(60)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        registry.upsert("hang", parse_schedule("* * * * *"), hang)
        await registry._fire("hang", registry._timers["hang"].generation)
        await asyncio.sleep(0)

        assert await registry.drain(timeout=0.1) == 1
        assert cancelled.is_set()
        assert registry.in_flight == 0


class TestRunningRegistry:
    """Tests that let APScheduler fire timers on the event loop."""

    @pytest.mark.asyncio
    async def test_due_timer_fires(self) -> None:
        registry = TimerRegistry(clock=past_clock)
        fired = asyncio.Event()

        async def callback() -> None:
            fired.set()

        registry.upsert("ping", parse_schedule("* * * * *"), callback)
        registry.start()
        try:
            await asyncio.wait_for(fired.wait(), timeout=5)
            assert registry.is_running is True
            # Rescheduled to a future minute
            next_run = registry.next_fire_time("ping")
            assert next_run is not None
            assert next_run > datetime.now(timezone.utc)
        finally:
            registry.shutdown()

        assert registry.is_running is False

    @pytest.mark.asyncio
    async def test_removed_timer_never_fires(self) -> None:
        registry = TimerRegistry(clock=past_clock)
        callback = AsyncMock()

        registry.upsert("ping", parse_schedule("* * * * *"), callback)
        registry.remove("ping")
        registry.start()
        try:
            await asyncio.sleep(0.3)
        finally:
            registry.shutdown()

        callback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_replaced_timer_fires_new_callback_only(self) -> None:
        registry = TimerRegistry(clock=past_clock)
        old_callback = AsyncMock()
        fired = asyncio.Event()

        async def new_callback() -> None:
            fired.set()

        registry.upsert("ping", parse_schedule("* * * * *"), old_callback)
        registry.upsert("ping", parse_schedule("* * * * *"), new_callback)
        registry.start()
        try:
            await asyncio.wait_for(fired.wait(), timeout=5)
        finally:
            registry.shutdown()

        old_callback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_slow_callback_does_not_block_other_jobs(self) -> None:
        """Test that one job's in-flight work does not hold up another's firing."""
        registry = TimerRegistry(clock=past_clock)
        release = asyncio.Event()
        fast_fired = asyncio.Event()

        async def slow() -> None:
            await release.wait()

        async def fast() -> None:
            fast_fired.set()

        registry.upsert("slow", parse_schedule("* * * * *"), slow)
        registry.upsert("fast", parse_schedule("* * * * *"), fast)
        registry.start()
        try:
            await asyncio.wait_for(fast_fired.wait(), timeout=5)
            # Management calls still work while "slow" is in flight
            assert registry.remove("slow") is True
        finally:
            release.set()
            registry.shutdown()
            await asyncio.sleep(0.05)

    @pytest.mark.asyncio
    async def test_start_twice_is_harmless(self) -> None:
        registry = TimerRegistry()
        registry.start()
        try:
            registry.start()
            assert registry.is_running is True
        finally:
            registry.shutdown()
