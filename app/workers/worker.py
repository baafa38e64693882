"""
Queue Worker

Binds the memory processor to the queue manager: one handler per job type,
each turning processor errors into a failed JobResult so the manager's retry
policy applies uniformly.
"""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from loguru import logger
from pydantic import BaseModel

from app.memory.processor import MemoryProcessor
from app.memory.types import CleanupJobData, MemoryJobData, MemoryKind
from app.workers.job_types import CLEANUP_JOB_TYPES, MEMORY_JOB_TYPES, JobType
from app.workers.queue_manager import JobHandler, JobResult, QueueJob, QueueManager
from mnemo_core.domain.exceptions import QueueError


class WorkerConfig(BaseModel):
    enable_memory_processing: bool = True
    enable_cleanup: bool = True

    model_config = {"frozen": True}

    @classmethod
    def from_settings(cls, settings: Any) -> "WorkerConfig":
        return cls(
            enable_memory_processing=settings.WORKER_ENABLE_MEMORY_PROCESSING,
            enable_cleanup=settings.WORKER_ENABLE_CLEANUP,
        )


async def _timed(job: QueueJob, work: Callable[[], Awaitable[Any]]) -> JobResult:
    start = time.perf_counter()
    try:
        result = await work()
    except Exception as e:
        logger.warning(f"[{job.id}] '{job.type}' handler failed: {e}")
        return JobResult(
            success=False,
            error=str(e) or type(e).__name__,
            execution_time_ms=(time.perf_counter() - start) * 1000,
        )
    return JobResult(
        success=True,
        result=result,
        execution_time_ms=(time.perf_counter() - start) * 1000,
    )


class QueueWorker:
    """
    Memory-processing worker.

    Example:
    ```python
    manager = QueueManager(QueueConfig.from_settings(settings))
    worker = QueueWorker(manager, MemoryProcessor(memory_store, agent_store))
    await worker.start()
    worker.enqueue_memory(MemoryKind.SEMANTIC, MemoryJobData(...))
    ```
    """

    def __init__(
        self,
        manager: QueueManager,
        processor: MemoryProcessor,
        config: Optional[WorkerConfig] = None,
    ):
        self.manager = manager
        self.processor = processor
        self.config = config or WorkerConfig()
        self._started = False
        self._registered = False

    async def start(self) -> None:
        if self._started:
            logger.warning("Queue worker already started")
            return

        self.register_handlers()
        self.manager.start()
        self._started = True
        logger.info("Queue worker started")

    async def stop(self, drain: bool = False) -> None:
        if not self._started:
            return

        await self.manager.stop(drain=drain)
        self._started = False
        logger.info("Queue worker stopped")

    @property
    def is_running(self) -> bool:
        return self._started

    def register_handlers(self) -> None:
        """Register one handler per enabled job type. Safe to call twice."""
        if self._registered:
            return

        if self.config.enable_memory_processing:
            for job_type in MEMORY_JOB_TYPES:
                self.manager.register_handler(job_type, self._memory_handler(job_type.memory_kind))

        if self.config.enable_cleanup:
            self.manager.register_handler(JobType.CLEANUP_EXPIRED_MEMORIES, self.handle_cleanup_expired_memories)
            self.manager.register_handler(JobType.CLEANUP_OLD_TRACES, self.handle_cleanup_old_traces)

        self._registered = True

    # =========================================================================
    # Handlers
    # =========================================================================

    def _memory_handler(self, kind: MemoryKind) -> JobHandler:
        async def handle(job: QueueJob) -> JobResult:
            async def work() -> Optional[str]:
                item = await self.processor.process(kind, job.payload)
                return item.id if item else None

            return await _timed(job, work)

        handle.__name__ = f"handle_{kind.value}_memory"
        return handle

    async def handle_cleanup_expired_memories(self, job: QueueJob) -> JobResult:
        return await _timed(job, lambda: self.processor.cleanup_expired_memories(job.payload))

    async def handle_cleanup_old_traces(self, job: QueueJob) -> JobResult:
        return await _timed(job, lambda: self.processor.cleanup_old_traces(job.payload))

    # =========================================================================
    # Enqueue helpers
    # =========================================================================

    def enqueue_memory(
        self,
        kind: MemoryKind,
        data: Union[MemoryJobData, dict],
        **options: Any,
    ) -> str:
        """Queue a memory-processing job for ``kind``; options go to ``add_job``."""
        payload = data if isinstance(data, MemoryJobData) else MemoryJobData.model_validate(data)
        return self.manager.add_job(JobType.for_memory(kind), payload, **options)

    def enqueue_cleanup(
        self,
        job_type: JobType,
        data: Union[CleanupJobData, dict, None] = None,
        **options: Any,
    ) -> str:
        job_type = JobType(job_type)
        if job_type not in CLEANUP_JOB_TYPES:
            raise QueueError(f"'{job_type.value}' is not a cleanup job type")
        payload = data if isinstance(data, CleanupJobData) else CleanupJobData.model_validate(data or {})
        return self.manager.add_job(job_type, payload, **options)

    def get_stats(self) -> Dict[str, Dict[str, int]]:
        return self.manager.get_stats()
