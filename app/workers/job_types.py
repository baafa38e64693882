"""
Background job types.

Each job type maps to exactly one registered handler. Memory job types are
derived from MemoryKind one-to-one; the mapping is checked for totality when
this module is imported.
"""

from enum import Enum

from app.memory.types import CleanupJobData, MemoryJobData, MemoryKind


class JobType(str, Enum):
    """
    Job types understood by the queue worker.

    Usage:
        from app.workers.job_types import JobType

        manager.add_job(JobType.for_memory(MemoryKind.EPISODIC), payload)
    """
    # Memory processing jobs
    PROCESS_EPISODIC_MEMORY = "process_episodic_memory"
    PROCESS_SEMANTIC_MEMORY = "process_semantic_memory"
    PROCESS_PROCEDURAL_MEMORY = "process_procedural_memory"
    PROCESS_RESOURCE_MEMORY = "process_resource_memory"
    PROCESS_KNOWLEDGE = "process_knowledge"

    # Cleanup jobs
    CLEANUP_EXPIRED_MEMORIES = "cleanup_expired_memories"
    CLEANUP_OLD_TRACES = "cleanup_old_traces"

    @classmethod
    def for_memory(cls, kind: MemoryKind) -> "JobType":
        return _MEMORY_JOB_TYPES[MemoryKind(kind)]

    @property
    def memory_kind(self) -> "MemoryKind | None":
        return _JOB_MEMORY_KINDS.get(self)

    @property
    def is_cleanup(self) -> bool:
        return self in CLEANUP_JOB_TYPES


_MEMORY_JOB_TYPES = {
    MemoryKind.EPISODIC: JobType.PROCESS_EPISODIC_MEMORY,
    MemoryKind.SEMANTIC: JobType.PROCESS_SEMANTIC_MEMORY,
    MemoryKind.PROCEDURAL: JobType.PROCESS_PROCEDURAL_MEMORY,
    MemoryKind.RESOURCE: JobType.PROCESS_RESOURCE_MEMORY,
    MemoryKind.KNOWLEDGE: JobType.PROCESS_KNOWLEDGE,
}
_JOB_MEMORY_KINDS = {job_type: kind for kind, job_type in _MEMORY_JOB_TYPES.items()}

MEMORY_JOB_TYPES = tuple(_MEMORY_JOB_TYPES.values())
CLEANUP_JOB_TYPES = (JobType.CLEANUP_EXPIRED_MEMORIES, JobType.CLEANUP_OLD_TRACES)

if set(_MEMORY_JOB_TYPES) != set(MemoryKind):
    raise RuntimeError("Every MemoryKind needs exactly one memory job type")
if set(MEMORY_JOB_TYPES) | set(CLEANUP_JOB_TYPES) != set(JobType):
    raise RuntimeError("Every JobType must be a memory or cleanup job type")

__all__ = [
    "CLEANUP_JOB_TYPES",
    "CleanupJobData",
    "JobType",
    "MEMORY_JOB_TYPES",
    "MemoryJobData",
]
