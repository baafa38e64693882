"""
Long-term memory consolidation used by the background worker.
"""

from app.memory.processor import MemoryProcessor
from app.memory.store import InMemoryMemoryStore, MemoryStoreProtocol
from app.memory.types import (
    CleanupJobData,
    MemoryItem,
    MemoryJobData,
    MemoryKind,
    ProcessingTrace,
    TraceStatus,
)

__all__ = [
    "CleanupJobData",
    "InMemoryMemoryStore",
    "MemoryItem",
    "MemoryJobData",
    "MemoryKind",
    "MemoryProcessor",
    "MemoryStoreProtocol",
    "ProcessingTrace",
    "TraceStatus",
]
