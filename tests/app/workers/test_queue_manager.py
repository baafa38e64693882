"""
Unit tests for app/workers/queue_manager.py

Poll ticks are driven by hand with ``poll_once()`` and a fake clock, so no
test depends on wall-clock timing except the start/stop test.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from app.workers.queue_manager import JobResult, QueueConfig, QueueManager
from mnemo_core.domain.exceptions import NotFoundError, ValidationError


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


def _manager(clock, **config):
    return QueueManager(QueueConfig(**config), clock=clock)


async def _tick(manager):
    dispatched = manager.poll_once()
    await manager.wait_idle()
    return dispatched


async def succeed(job):
    return JobResult(success=True, result=f"done:{job.payload}")


async def fail(job):
    return JobResult(success=False, error="nope")


class TestCompletion:
    @pytest.mark.asyncio
    async def test_successful_job_completes(self, clock):
        manager = _manager(clock)
        manager.register_handler("email", succeed)
        job_id = manager.add_job("email", "R")

        assert await _tick(manager) == 1

        assert manager.get_stats()["email"] == {
            "pending": 0,
            "processing": 0,
            "completed": 1,
            "failed": 0,
        }
        assert manager.get_result(job_id).result == "done:R"

    @pytest.mark.asyncio
    async def test_plain_return_value_counts_as_success(self, clock):
        manager = _manager(clock)

        async def plain(job):
            return 42

        manager.register_handler("count", plain)
        job_id = manager.add_job("count")

        await _tick(manager)

        assert manager.get_result(job_id).result == 42

    @pytest.mark.asyncio
    async def test_failure_mapping_takes_failure_path(self, clock):
        manager = _manager(clock)

        async def report_failure(job):
            return {"success": False, "error": "boom"}

        manager.register_handler("t", report_failure)
        manager.add_job("t", max_attempts=1)

        await _tick(manager)

        stats = manager.get_stats()["t"]
        assert stats["failed"] == 1
        assert stats["completed"] == 0
        assert manager.get_failed("t")[0].error == "boom"

    @pytest.mark.asyncio
    async def test_success_mapping_is_unwrapped(self, clock):
        manager = _manager(clock)

        async def report_success(job):
            return {"success": True, "result": "R"}

        manager.register_handler("t", report_success)
        job_id = manager.add_job("t")

        await _tick(manager)

        assert manager.get_result(job_id).result == "R"

    @pytest.mark.asyncio
    async def test_mapping_without_success_key_is_a_payload(self, clock):
        manager = _manager(clock)

        async def plain_dict(job):
            return {"count": 3}

        manager.register_handler("t", plain_dict)
        job_id = manager.add_job("t")

        await _tick(manager)

        assert manager.get_result(job_id).result == {"count": 3}

    @pytest.mark.asyncio
    async def test_malformed_result_mapping_is_a_failure(self, clock):
        manager = _manager(clock)

        async def malformed(job):
            return {"success": "maybe"}

        manager.register_handler("t", malformed)
        manager.add_job("t", max_attempts=1)

        await _tick(manager)

        assert "Invalid job result" in manager.get_failed("t")[0].error

    @pytest.mark.asyncio
    async def test_job_without_handler_stays_pending(self, clock):
        manager = _manager(clock)
        manager.add_job("orphan", {})

        assert await _tick(manager) == 0
        assert manager.get_stats()["orphan"]["pending"] == 1

    def test_job_ids_are_unique(self, clock):
        manager = _manager(clock)
        ids = {manager.add_job("a") for _ in range(50)}

        assert len(ids) == 50
        assert all(i.startswith("job-") for i in ids)


class TestRetries:
    @pytest.mark.asyncio
    async def test_always_failing_job_with_three_attempts(self, clock):
        manager = _manager(clock, retry_delay_ms=0)
        manager.register_handler("flaky", fail)
        job_id = manager.add_job("flaky", max_attempts=3)

        await _tick(manager)
        assert manager.get_job(job_id).attempts == 1
        assert manager.get_stats()["flaky"]["pending"] == 1

        await _tick(manager)
        assert manager.get_job(job_id).attempts == 2
        assert manager.get_stats()["flaky"]["pending"] == 1

        await _tick(manager)
        stats = manager.get_stats()["flaky"]
        assert stats["failed"] == 1
        assert stats["pending"] == 0
        assert manager.get_failed("flaky")[0].error == "nope"

        assert await _tick(manager) == 0
        assert manager.get_stats()["flaky"]["failed"] == 1

    @pytest.mark.asyncio
    async def test_raised_errors_are_retried_too(self, clock):
        manager = _manager(clock, retry_delay_ms=0)
        attempts = []

        async def explode(job):
            attempts.append(job.attempts)
            raise RuntimeError("boom")

        manager.register_handler("explode", explode)
        manager.add_job("explode", max_attempts=2)

        await _tick(manager)
        await _tick(manager)

        assert attempts == [0, 1]
        assert manager.get_failed("explode")[0].error == "boom"

    @pytest.mark.asyncio
    async def test_single_attempt_fails_immediately(self, clock):
        manager = _manager(clock, retry_delay_ms=0)
        manager.register_handler("once", fail)
        manager.add_job("once", max_attempts=1)

        await _tick(manager)

        assert manager.get_stats()["once"]["failed"] == 1

    @pytest.mark.asyncio
    async def test_retry_waits_for_flat_delay(self, clock):
        manager = _manager(clock, retry_delay_ms=5000)
        manager.register_handler("flaky", fail)
        job_id = manager.add_job("flaky")

        await _tick(manager)
        assert manager.get_job(job_id).process_after == clock.now + timedelta(seconds=5)

        clock.advance(seconds=4)
        assert await _tick(manager) == 0

        clock.advance(seconds=1)
        assert await _tick(manager) == 1

    @pytest.mark.asyncio
    async def test_default_max_attempts_from_config(self, clock):
        manager = _manager(clock, default_max_attempts=5)
        job_id = manager.add_job("x")

        assert manager.get_job(job_id).max_attempts == 5


class TestOrdering:
    @pytest.mark.asyncio
    async def test_priority_then_fifo(self, clock):
        manager = _manager(clock, concurrency=1)
        order = []

        async def record(job):
            order.append(job.payload)
            return JobResult(success=True)

        manager.register_handler("work", record)
        manager.add_job("work", "low-1", priority=0)
        manager.add_job("work", "high", priority=10)
        manager.add_job("work", "low-2", priority=0)
        manager.add_job("work", "mid", priority=5)

        for _ in range(4):
            await _tick(manager)

        assert order == ["high", "mid", "low-1", "low-2"]

    @pytest.mark.asyncio
    async def test_not_yet_due_job_is_skipped(self, clock):
        manager = _manager(clock, concurrency=1)
        order = []

        async def record(job):
            order.append(job.payload)
            return JobResult(success=True)

        manager.register_handler("work", record)
        manager.add_job("work", "delayed-high", priority=10, delay_ms=1000)
        manager.add_job("work", "due-low", priority=0)

        await _tick(manager)
        assert order == ["due-low"]

        assert await _tick(manager) == 0

        clock.advance(milliseconds=1000)
        await _tick(manager)
        assert order == ["due-low", "delayed-high"]

    @pytest.mark.asyncio
    async def test_absolute_process_after(self, clock):
        manager = _manager(clock)
        manager.register_handler("work", succeed)
        manager.add_job("work", process_after=clock.now + timedelta(minutes=1))

        assert await _tick(manager) == 0
        clock.advance(minutes=1)
        assert await _tick(manager) == 1


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_one_dispatch_per_type_per_tick_up_to_limit(self, clock):
        manager = _manager(clock)
        release = asyncio.Event()

        async def blocked(job):
            await release.wait()
            return JobResult(success=True)

        manager.register_handler("slow", blocked, concurrency=2)
        for _ in range(3):
            manager.add_job("slow")

        assert manager.poll_once() == 1
        assert manager.poll_once() == 1
        assert manager.poll_once() == 0
        await asyncio.sleep(0)

        stats = manager.get_stats()["slow"]
        assert stats["processing"] == 2
        assert stats["pending"] == 1

        release.set()
        await manager.wait_idle()
        assert manager.poll_once() == 1
        await manager.wait_idle()
        assert manager.get_stats()["slow"]["completed"] == 3

    @pytest.mark.asyncio
    async def test_slow_type_does_not_block_other_types(self, clock):
        manager = _manager(clock, concurrency=1)
        release = asyncio.Event()

        async def blocked(job):
            await release.wait()
            return JobResult(success=True)

        manager.register_handler("slow", blocked)
        manager.register_handler("fast", succeed)
        manager.add_job("slow")
        manager.add_job("slow")
        manager.add_job("fast")

        assert manager.poll_once() == 2
        await asyncio.sleep(0)
        assert manager.poll_once() == 0

        assert manager.get_stats()["fast"]["completed"] == 1
        assert manager.get_stats()["slow"]["processing"] == 1

        release.set()
        await manager.wait_idle()

    def test_concurrency_override_from_config(self, clock):
        manager = _manager(clock, concurrency_overrides={"slow": 3})
        manager.register_handler("slow", succeed)

        assert manager._concurrency["slow"] == 3

    def test_invalid_concurrency_rejected(self, clock):
        with pytest.raises(ValidationError):
            _manager(clock).register_handler("x", succeed, concurrency=0)


class TestValidationAndInspection:
    def test_invalid_max_attempts(self, clock):
        with pytest.raises(ValidationError):
            _manager(clock).add_job("x", max_attempts=0)

    def test_negative_delay(self, clock):
        with pytest.raises(ValidationError):
            _manager(clock).add_job("x", delay_ms=-1)

    def test_unknown_job(self, clock):
        with pytest.raises(NotFoundError):
            _manager(clock).get_job("job-missing")

    def test_get_failed_for_unknown_type(self, clock):
        assert _manager(clock).get_failed("nothing") == []

    def test_metadata_kept(self, clock):
        manager = _manager(clock)
        job_id = manager.add_job("x", metadata={"source": "test"})

        assert manager.get_job(job_id).metadata == {"source": "test"}


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_polls_until_stopped(self):
        manager = QueueManager(QueueConfig(poll_interval_ms=5))
        manager.register_handler("email", succeed)
        manager.add_job("email", "x")

        manager.start()
        manager.start()
        assert manager.is_running is True

        for _ in range(200):
            if manager.get_stats()["email"]["completed"] == 1:
                break
            await asyncio.sleep(0.01)

        await manager.stop(drain=True)

        assert manager.is_running is False
        assert manager.get_stats()["email"]["completed"] == 1

    @pytest.mark.asyncio
    async def test_stop_when_not_running_is_noop(self):
        manager = QueueManager()

        await manager.stop()

        assert manager.is_running is False
