"""
Background job processing: scheduler, job types and the memory worker.
"""

from app.workers.job_types import JobType
from app.workers.queue_manager import (
    FailedJob,
    JobHandler,
    JobResult,
    QueueConfig,
    QueueJob,
    QueueManager,
)
from app.workers.worker import QueueWorker, WorkerConfig

__all__ = [
    "FailedJob",
    "JobHandler",
    "JobResult",
    "JobType",
    "QueueConfig",
    "QueueJob",
    "QueueManager",
    "QueueWorker",
    "WorkerConfig",
]
