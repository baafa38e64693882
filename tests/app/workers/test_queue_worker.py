"""Unit tests for app/workers/worker.py and app/workers/job_types.py"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from app.agent.storage import InMemoryAgentStore
from app.memory.processor import MemoryProcessor
from app.memory.store import InMemoryMemoryStore
from app.memory.types import CleanupJobData, MemoryItem, MemoryJobData, MemoryKind
from app.workers.job_types import CLEANUP_JOB_TYPES, MEMORY_JOB_TYPES, JobType
from app.workers.queue_manager import QueueConfig, QueueJob, QueueManager
from app.workers.worker import QueueWorker, WorkerConfig
from mnemo_core.domain.exceptions import QueueError
from mnemo_core.domain.schemas import utcnow


@pytest.fixture
def memory_store():
    return InMemoryMemoryStore()


@pytest.fixture
def worker(memory_store):
    manager = QueueManager(QueueConfig(retry_delay_ms=0))
    processor = MemoryProcessor(memory_store, InMemoryAgentStore())
    worker = QueueWorker(manager, processor)
    worker.register_handlers()
    return worker


def _data(**overrides):
    values = {"agent_id": "agent-1", "user_id": "user-1", "organization_id": "org-1"}
    values.update(overrides)
    return MemoryJobData(**values)


async def _drain(manager):
    while manager.poll_once():
        await manager.wait_idle()


class TestJobTypes:
    def test_every_memory_kind_has_a_job_type(self):
        assert {JobType.for_memory(kind) for kind in MemoryKind} == set(MEMORY_JOB_TYPES)

    def test_round_trip_kind(self):
        for kind in MemoryKind:
            assert JobType.for_memory(kind).memory_kind == kind

    def test_cleanup_types(self):
        assert JobType.CLEANUP_OLD_TRACES.is_cleanup is True
        assert JobType.PROCESS_KNOWLEDGE.is_cleanup is False
        assert JobType.CLEANUP_OLD_TRACES.memory_kind is None

    def test_values(self):
        assert JobType.for_memory(MemoryKind.EPISODIC) == "process_episodic_memory"
        assert JobType.for_memory(MemoryKind.KNOWLEDGE) == "process_knowledge"


class TestRegistration:
    def test_one_handler_per_job_type(self, worker):
        assert set(worker.get_stats()) == {t.value for t in JobType}

    def test_register_twice_is_safe(self, worker):
        worker.register_handlers()

        assert len(worker.get_stats()) == len(JobType)

    def test_disabled_groups_are_skipped(self, memory_store):
        manager = QueueManager()
        worker = QueueWorker(
            manager,
            MemoryProcessor(memory_store, InMemoryAgentStore()),
            WorkerConfig(enable_memory_processing=False),
        )

        worker.register_handlers()

        assert set(worker.get_stats()) == {t.value for t in CLEANUP_JOB_TYPES}


class TestHandlers:
    @pytest.mark.asyncio
    async def test_memory_job_runs_processor(self, worker, memory_store):
        worker.enqueue_memory(MemoryKind.SEMANTIC, _data(content="Paris is the capital of France"))

        await _drain(worker.manager)

        stats = worker.get_stats()[JobType.PROCESS_SEMANTIC_MEMORY.value]
        assert stats["completed"] == 1
        items = await memory_store.list_items(MemoryKind.SEMANTIC)
        assert items[0].summary == "Paris is the capital of France"

    @pytest.mark.asyncio
    async def test_enqueue_memory_accepts_dict(self, worker):
        job_id = worker.enqueue_memory(
            MemoryKind.KNOWLEDGE,
            {"agent_id": "a", "user_id": "u", "organization_id": "o", "content": "x"},
        )

        job = worker.manager.get_job(job_id)
        assert job.type == JobType.PROCESS_KNOWLEDGE.value
        assert isinstance(job.payload, MemoryJobData)

    @pytest.mark.asyncio
    async def test_processor_error_becomes_failed_result(self, worker):
        worker.processor.process = AsyncMock(side_effect=RuntimeError("store offline"))
        handler = worker._memory_handler(MemoryKind.EPISODIC)

        result = await handler(QueueJob(type="process_episodic_memory", payload=_data()))

        assert result.success is False
        assert result.error == "store offline"
        assert result.execution_time_ms >= 0

    @pytest.mark.asyncio
    async def test_failing_job_is_retried_then_parked(self, worker):
        worker.processor.process = AsyncMock(side_effect=RuntimeError("store offline"))
        worker.enqueue_memory(MemoryKind.EPISODIC, _data(message_ids=["m1"]), max_attempts=2)

        await _drain(worker.manager)

        failed = worker.manager.get_failed(JobType.PROCESS_EPISODIC_MEMORY)
        assert len(failed) == 1
        assert failed[0].job.attempts == 1
        assert worker.processor.process.await_count == 2

    @pytest.mark.asyncio
    async def test_cleanup_job_returns_count(self, worker, memory_store):
        old = MemoryItem(
            kind=MemoryKind.SEMANTIC,
            agent_id="a",
            user_id="u",
            organization_id="org-1",
            created_at=utcnow() - timedelta(days=120),
        )
        await memory_store.add_item(old)
        job_id = worker.enqueue_cleanup(JobType.CLEANUP_EXPIRED_MEMORIES)

        await _drain(worker.manager)

        assert worker.manager.get_result(job_id).result == 1

    @pytest.mark.asyncio
    async def test_cleanup_traces_with_payload(self, worker):
        job_id = worker.enqueue_cleanup(
            JobType.CLEANUP_OLD_TRACES, CleanupJobData(organization_id="org-1")
        )

        await _drain(worker.manager)

        assert worker.manager.get_result(job_id).result == 0

    def test_enqueue_cleanup_rejects_memory_type(self, worker):
        with pytest.raises(QueueError):
            worker.enqueue_cleanup(JobType.PROCESS_KNOWLEDGE)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, worker):
        await worker.start()
        await worker.start()

        assert worker.is_running is True
        assert worker.manager.is_running is True

        await worker.stop()

        assert worker.is_running is False
        assert worker.manager.is_running is False

    def test_from_settings(self):
        class S:
            WORKER_ENABLE_MEMORY_PROCESSING = True
            WORKER_ENABLE_CLEANUP = False

        config = WorkerConfig.from_settings(S)

        assert config.enable_cleanup is False
