"""Tests for the Reconciler facade."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List
from unittest.mock import MagicMock

import httpx
import pytest

from cronpost.scheduler.exceptions import (
    InvalidScheduleError,
    LogSinkError,
    UnreachableScheduleError,
)
from cronpost.scheduler.models import ExecutionStatus, JobDefinition
from cronpost.scheduler.reconciler import Reconciler, execute_job
from cronpost.scheduler.registry import TimerRegistry
from cronpost.scheduler.runner import ExecutionRunner
from cronpost.scheduler.sinks import MemoryLogSink

FIXED_NOW = datetime(2024, 1, 1, 10, 30, tzinfo=timezone.utc)


def past_clock() -> datetime:
    return datetime.now(timezone.utc) - timedelta(seconds=60)


@pytest.fixture
def sink() -> MemoryLogSink:
    return MemoryLogSink()


@pytest.fixture
def requests() -> List[httpx.Request]:
    return []


@pytest.fixture
def runner(requests: List[httpx.Request]) -> ExecutionRunner:
    """Runner whose transport records requests and answers 200."""
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200)

    return ExecutionRunner(transport=httpx.MockTransport(handler))


@pytest.fixture
def reconciler(runner: ExecutionRunner, sink: MemoryLogSink) -> Reconciler:
    """Reconciler on a registry that is never started."""
    return Reconciler(TimerRegistry(clock=lambda: FIXED_NOW), runner, sink)


@pytest.fixture
def job() -> JobDefinition:
    return JobDefinition(
        id="ping",
        url="https://example.com/hook",
        schedule="*/5 * * * *",
        body='{"source": "cron"}',
        secret="s3cret",
    )


class TestLifecycleEvents:
    """Tests for the created/updated/deleted/startup entry points."""

    def test_created_active_job_is_scheduled(self, reconciler: Reconciler, job: JobDefinition) -> None:
        assert reconciler.on_job_created(job) is True
        assert reconciler.is_scheduled("ping") is True

    def test_created_inactive_job_is_not_scheduled(self, reconciler: Reconciler, job: JobDefinition) -> None:
        job.is_active = False

        assert reconciler.on_job_created(job) is False
        assert reconciler.is_scheduled("ping") is False

    def test_created_with_invalid_schedule(self, reconciler: Reconciler, job: JobDefinition) -> None:
        job.schedule = "61 * * * *"

        with pytest.raises(InvalidScheduleError):
            reconciler.on_job_created(job)
        assert reconciler.is_scheduled("ping") is False

    def test_created_with_unreachable_schedule(self, reconciler: Reconciler, job: JobDefinition) -> None:
        job.schedule = "0 0 31 2 *"

        with pytest.raises(UnreachableScheduleError):
            reconciler.on_job_created(job)
        assert reconciler.is_scheduled("ping") is False

    def test_update_replaces_timer(self, reconciler: Reconciler, job: JobDefinition) -> None:
        reconciler.on_job_created(job)
        job.schedule = "0 * * * *"

        assert reconciler.on_job_updated(job, {"schedule"}) is True
        assert reconciler.registry.job_ids == ["ping"]
        assert reconciler.registry.next_fire_time("ping") == datetime(2024, 1, 1, 11, 0, tzinfo=timezone.utc)

    def test_update_to_inactive_removes_timer(self, reconciler: Reconciler, job: JobDefinition) -> None:
        reconciler.on_job_created(job)
        job.is_active = False

        assert reconciler.on_job_updated(job, {"is_active"}) is False
        assert reconciler.is_scheduled("ping") is False

    def test_reactivation_schedules_again(self, reconciler: Reconciler, job: JobDefinition) -> None:
        """Test Unscheduled -> Scheduled -> Unscheduled -> Scheduled."""
        reconciler.on_job_created(job)
        job.is_active = False
        reconciler.on_job_updated(job, {"is_active"})
        job.is_active = True

        assert reconciler.on_job_updated(job, {"is_active"}) is True
        assert reconciler.is_scheduled("ping") is True

    def test_irrelevant_update_keeps_timer(self, reconciler: Reconciler, job: JobDefinition) -> None:
        reconciler.on_job_created(job)
        registry = MagicMock(wraps=reconciler.registry)
        reconciler._registry = registry

        assert reconciler.on_job_updated(job, {"created_by"}) is True
        registry.upsert.assert_not_called()
        registry.remove.assert_not_called()

    def test_irrelevant_update_of_unscheduled_job(self, reconciler: Reconciler, job: JobDefinition) -> None:
        assert reconciler.on_job_updated(job, {"created_by"}) is False
        assert reconciler.is_scheduled("ping") is False

    @pytest.mark.parametrize("field_name", ["url", "schedule", "secret", "body", "is_active"])
    def test_timer_fields_trigger_replacement(
        self, reconciler: Reconciler, job: JobDefinition, field_name: str
    ) -> None:
        reconciler.on_job_created(job)
        registry = MagicMock(wraps=reconciler.registry)
        reconciler._registry = registry

        reconciler.on_job_updated(job, {field_name})

        registry.upsert.assert_called_once()

    def test_unknown_changes_treated_as_all(self, reconciler: Reconciler, job: JobDefinition) -> None:
        assert reconciler.on_job_updated(job) is True
        assert reconciler.is_scheduled("ping") is True

    def test_deleted(self, reconciler: Reconciler, job: JobDefinition) -> None:
        reconciler.on_job_created(job)

        assert reconciler.on_job_deleted("ping") is True
        assert reconciler.is_scheduled("ping") is False

    def test_deleted_unknown(self, reconciler: Reconciler) -> None:
        assert reconciler.on_job_deleted("missing") is False

    def test_startup_schedules_active_jobs(self, reconciler: Reconciler) -> None:
        jobs = [
            JobDefinition(id="a", url="https://example.com/a", schedule="* * * * *"),
            JobDefinition(id="b", url="https://example.com/b", schedule="0 0 * * *", is_active=False),
            JobDefinition(id="c", url="https://example.com/c", schedule="0 12 * * 1-5"),
        ]

        assert reconciler.on_startup(jobs) == 2
        assert sorted(reconciler.registry.job_ids) == ["a", "c"]

    def test_startup_skips_bad_schedules(self, reconciler: Reconciler) -> None:
        """Test that one unusable job does not stop the others from loading."""
        jobs = [
            JobDefinition(id="bad", url="https://example.com/a", schedule="nope"),
            JobDefinition(id="never", url="https://example.com/b", schedule="0 0 30 2 *"),
            JobDefinition(id="good", url="https://example.com/c", schedule="* * * * *"),
        ]

        assert reconciler.on_startup(jobs) == 1
        assert reconciler.registry.job_ids == ["good"]


class TestExecution:
    """Tests for what happens when a job fires."""

    @pytest.mark.asyncio
    async def test_run_now_records_success(
        self,
        reconciler: Reconciler,
        job: JobDefinition,
        sink: MemoryLogSink,
        requests: List[httpx.Request],
    ) -> None:
        record = await reconciler.run_now(job)

        assert record.job_id == "ping"
        assert record.status == ExecutionStatus.SUCCESS
        assert record.response_code == 200
        assert record.error_message is None
        assert sink.records == [record]
        assert requests[0].headers["authorization"] == "Bearer s3cret"
        assert requests[0].content == b'{"source": "cron"}'

    @pytest.mark.asyncio
    async def test_failure_is_recorded(self, sink: MemoryLogSink, job: JobDefinition) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        runner = ExecutionRunner(transport=httpx.MockTransport(handler))
        reconciler = Reconciler(TimerRegistry(clock=lambda: FIXED_NOW), runner, sink)

        record = await reconciler.run_now(job)

        assert record.status == ExecutionStatus.ERROR
        assert record.response_code is None
        assert record.error_message == "Connection failed: Connection refused"
        assert sink.for_job("ping") == [record]

    @pytest.mark.asyncio
    async def test_timeout_yields_one_error_record(self, sink: MemoryLogSink, job: JobDefinition) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200)

        runner = ExecutionRunner(timeout=0.1, transport=httpx.MockTransport(handler))
        reconciler = Reconciler(TimerRegistry(clock=lambda: FIXED_NOW), runner, sink)

        record = await asyncio.wait_for(reconciler.run_now(job), timeout=2)

        assert len(sink.records) == 1
        assert record.status == ExecutionStatus.ERROR
        assert record.response_code is None
        assert record.error_message

    @pytest.mark.asyncio
    async def test_sink_failure_does_not_propagate(self, runner: ExecutionRunner, job: JobDefinition) -> None:
        sink = MagicMock()
        sink.record.side_effect = LogSinkError("disk full", job_id="ping")
        reconciler = Reconciler(TimerRegistry(clock=lambda: FIXED_NOW), runner, sink)

        record = await reconciler.run_now(job)

        assert record.status == ExecutionStatus.SUCCESS
        sink.record.assert_called_once_with(record)

    @pytest.mark.asyncio
    async def test_callback_uses_definition_at_install_time(
        self,
        reconciler: Reconciler,
        job: JobDefinition,
        requests: List[httpx.Request],
    ) -> None:
        callback = reconciler._make_callback(job)
        job.url = "https://example.com/changed"

        await callback()

        assert str(requests[0].url) == "https://example.com/hook"

    @pytest.mark.asyncio
    async def test_scheduled_firing_writes_record(self, runner: ExecutionRunner, sink: MemoryLogSink) -> None:
        """Test the full path: timer fires, runner posts, sink records."""
        registry = TimerRegistry(clock=past_clock)
        reconciler = Reconciler(registry, runner, sink)
        job = JobDefinition(id="every-minute", url="https://example.com/tick", schedule="* * * * *")

        reconciler.on_job_created(job)
        registry.start()
        try:
            for _ in range(50):
                if sink.records:
                    break
                await asyncio.sleep(0.1)
        finally:
            registry.shutdown()

        assert len(sink.records) == 1
        assert sink.records[0].job_id == "every-minute"
        assert sink.records[0].status == ExecutionStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_delete_during_flight_still_records(self, sink: MemoryLogSink) -> None:
        """Test that an in-flight execution completes and logs after its job is deleted."""
        started = asyncio.Event()
        release = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            started.set()
            await release.wait()
            return httpx.Response(200)

        runner = ExecutionRunner(transport=httpx.MockTransport(handler))
        registry = TimerRegistry(clock=past_clock)
        reconciler = Reconciler(registry, runner, sink)
        reconciler.on_job_created(
            JobDefinition(id="slow", url="https://example.com/slow", schedule="* * * * *")
        )

        registry.start()
        try:
            await asyncio.wait_for(started.wait(), timeout=5)
            assert reconciler.on_job_deleted("slow") is True
            release.set()
            for _ in range(50):
                if sink.records:
                    break
                await asyncio.sleep(0.1)
        finally:
            registry.shutdown()
            await runner.aclose()

        assert [r.job_id for r in sink.records] == ["slow"]
        assert registry.is_scheduled("slow") is False
        assert registry._scheduler.get_jobs() == []

    @pytest.mark.asyncio
    async def test_execute_job_needs_no_registry(
        self,
        runner: ExecutionRunner,
        sink: MemoryLogSink,
        job: JobDefinition,
    ) -> None:
        record = await execute_job(job, runner, sink)

        assert record.status == ExecutionStatus.SUCCESS
        assert sink.records == [record]

    @pytest.mark.asyncio
    async def test_overlapping_firings_each_record(self, sink: MemoryLogSink, job: JobDefinition) -> None:
        """Test that a second firing starts while the first is still in flight."""
        release = asyncio.Event()
        calls: List[httpx.Request] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            await release.wait()
            return httpx.Response(200)

        runner = ExecutionRunner(transport=httpx.MockTransport(handler))
        registry = TimerRegistry(clock=lambda: FIXED_NOW)
        reconciler = Reconciler(registry, runner, sink)
        reconciler.on_job_created(job)
        generation = registry._timers["ping"].generation

        try:
            await registry._fire("ping", generation)
            await registry._fire("ping", generation)
            for _ in range(50):
                if len(calls) == 2:
                    break
                await asyncio.sleep(0.02)

            assert len(calls) == 2
            assert sink.records == []

            release.set()
            assert await registry.drain(timeout=2) == 0
        finally:
            await runner.aclose()

        assert [r.job_id for r in sink.records] == ["ping", "ping"]
        assert len({r.id for r in sink.records}) == 2
