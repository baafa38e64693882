"""
Memory Storage Adapters

MemoryStoreProtocol is what the memory processor writes to; the in-memory
implementation backs tests and local development.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Protocol, runtime_checkable

from app.memory.types import MemoryItem, MemoryKind, ProcessingTrace


@runtime_checkable
class MemoryStoreProtocol(Protocol):
    """Interface for long-term memory persistence."""

    async def add_item(self, item: MemoryItem) -> MemoryItem:
        """Persist a memory item."""
        ...

    async def list_items(
        self,
        kind: Optional[MemoryKind] = None,
        agent_id: Optional[str] = None,
        include_deleted: bool = False,
    ) -> List[MemoryItem]:
        """List items, oldest first."""
        ...

    async def soft_delete_older_than(
        self,
        cutoff: datetime,
        organization_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> int:
        """Mark items created at or before ``cutoff`` as deleted. Returns the count."""
        ...

    async def add_trace(self, trace: ProcessingTrace) -> ProcessingTrace:
        """Persist a processing trace."""
        ...

    async def delete_traces_older_than(
        self,
        cutoff: datetime,
        organization_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> int:
        """Remove traces created at or before ``cutoff``. Returns the count."""
        ...


class InMemoryMemoryStore:
    """
    In-memory storage for testing and development.

    Note: Does not persist across restarts.
    """

    def __init__(self):
        self._items: Dict[str, MemoryItem] = {}
        self._traces: Dict[str, ProcessingTrace] = {}

    async def add_item(self, item: MemoryItem) -> MemoryItem:
        self._items[item.id] = item
        return item

    async def list_items(
        self,
        kind: Optional[MemoryKind] = None,
        agent_id: Optional[str] = None,
        include_deleted: bool = False,
    ) -> List[MemoryItem]:
        items = [
            i for i in self._items.values()
            if (kind is None or i.kind == kind)
            and (agent_id is None or i.agent_id == agent_id)
            and (include_deleted or not i.is_deleted)
        ]
        return sorted(items, key=lambda i: i.created_at)

    async def soft_delete_older_than(
        self,
        cutoff: datetime,
        organization_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> int:
        expired = [
            i for i in sorted(self._items.values(), key=lambda i: i.created_at)
            if not i.is_deleted
            and i.created_at <= cutoff
            and (organization_id is None or i.organization_id == organization_id)
        ]
        if limit is not None:
            expired = expired[:limit]
        for item in expired:
            self._items[item.id] = item.model_copy(update={"is_deleted": True})
        return len(expired)

    async def add_trace(self, trace: ProcessingTrace) -> ProcessingTrace:
        self._traces[trace.id] = trace
        return trace

    async def list_traces(self) -> List[ProcessingTrace]:
        return sorted(self._traces.values(), key=lambda t: t.created_at)

    async def delete_traces_older_than(
        self,
        cutoff: datetime,
        organization_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> int:
        old = [
            t for t in sorted(self._traces.values(), key=lambda t: t.created_at)
            if t.created_at <= cutoff
            and (organization_id is None or t.organization_id == organization_id)
        ]
        if limit is not None:
            old = old[:limit]
        for trace in old:
            del self._traces[trace.id]
        return len(old)

    def clear(self) -> None:
        self._items.clear()
        self._traces.clear()
