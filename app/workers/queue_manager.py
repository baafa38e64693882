"""
Queue Manager

In-process background job scheduler on asyncio.

Jobs are grouped by type. Each type keeps its own pending list, in-flight
set and terminal completed/failed records, and its own concurrency limit, so
one slow job type cannot starve another.

A poll tick runs every ``poll_interval_ms``. For each type with a registered
handler and spare capacity, the tick takes the first due job in pending
order and starts the handler without waiting for it. A failed job is retried
with a flat ``retry_delay_ms`` while ``attempts < max_attempts - 1`` and is
parked in the failed set after that.

All bookkeeping happens in synchronous code between awaits, so the single
event loop is the only writer. Nothing is persisted: queued work is lost when
the process exits.

Example:
```python
manager = QueueManager(QueueConfig(concurrency=2))
manager.register_handler("send_email", send_email_handler)
job_id = manager.add_job("send_email", {"to": "a@example.com"}, priority=5)
manager.start()
```
"""

from __future__ import annotations

import asyncio
import itertools
import time
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set

from loguru import logger
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from mnemo_core.domain.exceptions import NotFoundError, ValidationError
from mnemo_core.domain.schemas import new_id, utcnow


class QueueJob(BaseModel):
    """
    One unit of background work.

    Attributes:
        id: Job identifier.
        type: Job type; selects the handler.
        payload: Handler input.
        priority: Higher runs first.
        attempts: Failed attempts so far.
        max_attempts: Total attempts allowed.
        created_at: Enqueue time.
        process_after: Not-before time, if any.
        metadata: Free-form values.
    """
    id: str = Field(default_factory=lambda: new_id("job"))
    type: str
    payload: Any = None
    priority: int = 0
    attempts: int = 0
    max_attempts: int = Field(default=3, ge=1)
    created_at: datetime = Field(default_factory=utcnow)
    process_after: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def is_due(self, now: datetime) -> bool:
        return self.process_after is None or self.process_after <= now


class JobResult(BaseModel):
    """What a handler reports back."""
    success: bool
    result: Any = None
    error: Optional[str] = None
    execution_time_ms: float = 0.0


class FailedJob(BaseModel):
    job: QueueJob
    error: str
    failed_at: datetime = Field(default_factory=utcnow)


JobHandler = Callable[[QueueJob], Awaitable[JobResult]]


class QueueConfig(BaseModel):
    """
    Scheduler settings.

    Attributes:
        concurrency: Default in-flight limit per job type.
        default_max_attempts: Used when a job does not set max_attempts.
        retry_delay_ms: Flat delay before a failed job becomes due again.
        poll_interval_ms: Time between poll ticks.
        concurrency_overrides: Per-type in-flight limits.
    """
    concurrency: int = Field(default=5, ge=1)
    default_max_attempts: int = Field(default=3, ge=1)
    retry_delay_ms: int = Field(default=5000, ge=0)
    poll_interval_ms: int = Field(default=1000, ge=1)
    concurrency_overrides: Dict[str, int] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @classmethod
    def from_settings(cls, settings: Any) -> "QueueConfig":
        return cls(
            concurrency=settings.QUEUE_CONCURRENCY,
            default_max_attempts=settings.QUEUE_DEFAULT_MAX_ATTEMPTS,
            retry_delay_ms=settings.QUEUE_RETRY_DELAY_MS,
            poll_interval_ms=settings.QUEUE_POLL_INTERVAL_MS,
        )

    def concurrency_for(self, job_type: str) -> int:
        return self.concurrency_overrides.get(job_type, self.concurrency)


class _TypeQueue:
    """Pending, in-flight and terminal records of one job type."""

    def __init__(self):
        self.jobs: Dict[str, QueueJob] = {}
        self.pending: List[str] = []
        self.processing: Set[str] = set()
        self.completed: Dict[str, JobResult] = {}
        self.failed: Dict[str, FailedJob] = {}
        self._order: Dict[str, int] = {}
        self._seq = itertools.count()

    def add(self, job: QueueJob) -> None:
        self.jobs[job.id] = job
        self._order[job.id] = next(self._seq)
        self.pending.append(job.id)
        # priority descending, then creation time, then arrival
        self.pending.sort(
            key=lambda jid: (-self.jobs[jid].priority, self.jobs[jid].created_at, self._order[jid])
        )

    def next_due(self, now: datetime) -> Optional[QueueJob]:
        """Take the first due job in pending order; not-yet-due jobs are skipped, not reordered."""
        for index, job_id in enumerate(self.pending):
            job = self.jobs[job_id]
            if not job.is_due(now):
                continue
            del self.pending[index]
            self.processing.add(job_id)
            return job
        return None

    def mark_complete(self, job_id: str, result: JobResult) -> None:
        self.processing.discard(job_id)
        self.completed[job_id] = result

    def mark_failed(self, job_id: str, error: str) -> None:
        self.processing.discard(job_id)
        self.failed[job_id] = FailedJob(job=self.jobs[job_id], error=error)

    def requeue(self, job: QueueJob, process_after: datetime) -> QueueJob:
        """Back to the end of pending with one more attempt counted."""
        updated = job.model_copy(
            update={"attempts": job.attempts + 1, "process_after": process_after}
        )
        self.jobs[job.id] = updated
        self.processing.discard(job.id)
        self.pending.append(job.id)
        return updated

    def stats(self) -> Dict[str, int]:
        return {
            "pending": len(self.pending),
            "processing": len(self.processing),
            "completed": len(self.completed),
            "failed": len(self.failed),
        }


def _type_key(job_type: Any) -> str:
    return str(getattr(job_type, "value", job_type))


def _as_job_result(outcome: Any) -> JobResult:
    """Mappings with a ``success`` key are results; any other value is a successful payload."""
    if isinstance(outcome, JobResult):
        return outcome
    if isinstance(outcome, Mapping) and "success" in outcome:
        return JobResult.model_validate(dict(outcome))
    return JobResult(success=True, result=outcome)


class QueueManager:
    """
    Background job scheduler.

    Construct one per process and pass it to whatever enqueues work.

    Args:
        config: Scheduler settings.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        config: Optional[QueueConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or QueueConfig()
        self._clock = clock or utcnow
        self._queues: Dict[str, _TypeQueue] = {}
        self._handlers: Dict[str, JobHandler] = {}
        self._concurrency: Dict[str, int] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._poll_task: Optional[asyncio.Task] = None
        self._running = False

    # =========================================================================
    # Registration & enqueue
    # =========================================================================

    def register_handler(
        self,
        job_type: Any,
        handler: JobHandler,
        concurrency: Optional[int] = None,
    ) -> None:
        """Register the handler for ``job_type``, replacing any previous one."""
        key = _type_key(job_type)
        limit = concurrency if concurrency is not None else self.config.concurrency_for(key)
        if limit < 1:
            raise ValidationError("Concurrency must be at least 1", {"concurrency": str(limit)})

        self._handlers[key] = handler
        self._concurrency[key] = limit
        self._get_or_create_queue(key)
        logger.info(f"Job handler registered for '{key}' (concurrency={limit})")

    def add_job(
        self,
        job_type: Any,
        payload: Any = None,
        priority: int = 0,
        max_attempts: Optional[int] = None,
        delay_ms: Optional[int] = None,
        process_after: Optional[datetime] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Enqueue a job.

        Args:
            job_type: Selects the handler.
            payload: Handler input.
            priority: Higher runs first; ties run in creation order.
            max_attempts: Total attempts; defaults to the config value.
            delay_ms: Make the job due only after this delay.
            process_after: Absolute not-before time; wins over ``delay_ms``.
            metadata: Free-form values carried on the job.

        Returns:
            The job id.

        Raises:
            ValidationError: If max_attempts or delay_ms is out of range.
        """
        attempts = self.config.default_max_attempts if max_attempts is None else max_attempts
        if attempts < 1:
            raise ValidationError("max_attempts must be at least 1", {"max_attempts": str(attempts)})
        if delay_ms is not None and delay_ms < 0:
            raise ValidationError("delay_ms cannot be negative", {"delay_ms": str(delay_ms)})

        now = self._clock()
        if process_after is None and delay_ms:
            process_after = now + timedelta(milliseconds=delay_ms)

        key = _type_key(job_type)
        job = QueueJob(
            type=key,
            payload=payload,
            priority=priority,
            max_attempts=attempts,
            created_at=now,
            process_after=process_after,
            metadata=metadata or {},
        )
        self._get_or_create_queue(key).add(job)
        logger.debug(f"[{job.id}] Job added to '{key}' (priority={priority})")
        return job.id

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the poll loop on the running event loop."""
        if self._running:
            return
        self._running = True
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())
        logger.info(f"Queue manager started (poll every {self.config.poll_interval_ms}ms)")

    async def stop(self, drain: bool = False) -> None:
        """
        Stop the poll loop. Jobs already started keep running.

        Args:
            drain: Also wait for in-flight jobs to finish.
        """
        if not self._running:
            return
        self._running = False

        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        if drain:
            await self.wait_idle()
        logger.info("Queue manager stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _poll_loop(self) -> None:
        interval = self.config.poll_interval_ms / 1000
        while self._running:
            try:
                self.poll_once()
            except Exception as e:
                logger.exception(f"Queue poll tick failed: {e}")
            await asyncio.sleep(interval)

    def poll_once(self) -> int:
        """
        Run one poll tick: dispatch at most one due job per type.

        Returns:
            Number of jobs dispatched.
        """
        now = self._clock()
        dispatched = 0
        for key, queue in self._queues.items():
            handler = self._handlers.get(key)
            if handler is None:
                continue
            if len(queue.processing) >= self._concurrency[key]:
                continue

            job = queue.next_due(now)
            if job is None:
                continue

            task = asyncio.get_running_loop().create_task(self._process_job(queue, job, handler))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            dispatched += 1
        return dispatched

    async def wait_idle(self) -> None:
        """Wait until no dispatched job is still running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # =========================================================================
    # Execution
    # =========================================================================

    async def _process_job(self, queue: _TypeQueue, job: QueueJob, handler: JobHandler) -> None:
        start = time.perf_counter()
        logger.debug(f"[{job.id}] Processing '{job.type}' (attempt {job.attempts + 1}/{job.max_attempts})")

        try:
            outcome = await handler(job)
        except Exception as e:
            error = str(e) or type(e).__name__
            elapsed = (time.perf_counter() - start) * 1000
            self._handle_failure(queue, job, error, f"threw after {elapsed:.1f}ms")
            return

        try:
            result = _as_job_result(outcome)
        except PydanticValidationError as e:
            self._handle_failure(queue, job, f"Invalid job result: {e}", "returned an invalid result")
            return

        if result.success:
            queue.mark_complete(job.id, result)
            logger.debug(f"[{job.id}] Job '{job.type}' completed in {result.execution_time_ms:.1f}ms")
        else:
            self._handle_failure(queue, job, result.error or "Unknown error", "returned failure")

    def _handle_failure(self, queue: _TypeQueue, job: QueueJob, error: str, how: str) -> None:
        if job.attempts < job.max_attempts - 1:
            process_after = self._clock() + timedelta(milliseconds=self.config.retry_delay_ms)
            queue.requeue(job, process_after)
            logger.warning(
                f"[{job.id}] Job '{job.type}' {how} on attempt {job.attempts + 1}, "
                f"requeuing for retry: {error}"
            )
        else:
            queue.mark_failed(job.id, error)
            logger.error(
                f"[{job.id}] Job '{job.type}' {how} after {job.max_attempts} attempts: {error}"
            )

    # =========================================================================
    # Inspection
    # =========================================================================

    def get_stats(self) -> Dict[str, Dict[str, int]]:
        """pending / processing / completed / failed counts per job type."""
        return {key: queue.stats() for key, queue in self._queues.items()}

    def get_job(self, job_id: str) -> QueueJob:
        """
        Latest snapshot of a job.

        Raises:
            NotFoundError: If no queue knows the id.
        """
        for queue in self._queues.values():
            if job_id in queue.jobs:
                return queue.jobs[job_id]
        raise NotFoundError("Job", job_id)

    def get_failed(self, job_type: Any) -> List[FailedJob]:
        queue = self._queues.get(_type_key(job_type))
        return list(queue.failed.values()) if queue else []

    def get_result(self, job_id: str) -> Optional[JobResult]:
        """Handler result of a completed job, if it has completed."""
        for queue in self._queues.values():
            if job_id in queue.completed:
                return queue.completed[job_id]
        return None

    def _get_or_create_queue(self, key: str) -> _TypeQueue:
        queue = self._queues.get(key)
        if queue is None:
            queue = _TypeQueue()
            self._queues[key] = queue
        return queue
