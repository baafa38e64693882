"""
Memory Processor

Background consolidation of conversation data into long-term memory, plus
the retention cleanups. One method per MemoryKind; ``process`` dispatches
over the closed enum, so every kind has exactly one handler.

Extraction is deliberately simple: summaries are the first 500 characters of
the source text. Each run leaves a ProcessingTrace behind.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from loguru import logger

from app.memory.store import MemoryStoreProtocol
from app.memory.types import (
    SUMMARY_MAX_CHARS,
    CleanupJobData,
    MemoryItem,
    MemoryJobData,
    MemoryKind,
    ProcessingTrace,
    TraceStatus,
)
from mnemo_core.domain.exceptions import MemoryProcessingError
from mnemo_core.domain.interfaces import AgentStoreProtocol
from mnemo_core.domain.schemas import utcnow

DEFAULT_MEMORY_RETENTION_DAYS = 90
DEFAULT_TRACE_RETENTION_DAYS = 30

KindHandler = Callable[[MemoryJobData], Awaitable[Optional[MemoryItem]]]


def _partial_payload(data: Any) -> MemoryJobData:
    """Best-effort identity of a payload that failed validation, for its trace."""
    raw = data if isinstance(data, dict) else {}
    return MemoryJobData.model_construct(
        agent_id=str(raw.get("agent_id") or ""),
        user_id=str(raw.get("user_id") or ""),
        organization_id=str(raw.get("organization_id") or ""),
    )


class MemoryProcessor:
    """
    Turns memory jobs into stored memory items.

    Args:
        store: Long-term memory persistence.
        messages: Conversation store, used to resolve message ids.
        memory_retention_days: Default age for ``cleanup_expired_memories``.
        trace_retention_days: Default age for ``cleanup_old_traces``.
    """

    def __init__(
        self,
        store: MemoryStoreProtocol,
        messages: AgentStoreProtocol,
        memory_retention_days: int = DEFAULT_MEMORY_RETENTION_DAYS,
        trace_retention_days: int = DEFAULT_TRACE_RETENTION_DAYS,
    ):
        self.store = store
        self.messages = messages
        self.memory_retention_days = memory_retention_days
        self.trace_retention_days = trace_retention_days

        self._handlers: Dict[MemoryKind, KindHandler] = {
            MemoryKind.EPISODIC: self.process_episodic_memory,
            MemoryKind.SEMANTIC: self.process_semantic_memory,
            MemoryKind.PROCEDURAL: self.process_procedural_memory,
            MemoryKind.RESOURCE: self.process_resource_memory,
            MemoryKind.KNOWLEDGE: self.process_knowledge,
        }
        missing = set(MemoryKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No memory handler for: {sorted(k.value for k in missing)}")

    async def process(
        self,
        kind: MemoryKind,
        data: Union[MemoryJobData, dict],
    ) -> Optional[MemoryItem]:
        """
        Run the handler for ``kind`` and record a trace.

        Returns:
            The stored item, or None when there was nothing to store.

        Raises:
            MemoryProcessingError: If the payload is invalid or the handler failed.
        """
        kind = MemoryKind(kind)
        payload: Optional[MemoryJobData] = data if isinstance(data, MemoryJobData) else None

        try:
            if payload is None:
                payload = MemoryJobData.model_validate(data)
            item = await self._handlers[kind](payload)
        except Exception as e:
            await self._trace(kind, payload or _partial_payload(data), TraceStatus.FAILED, error=str(e))
            if isinstance(e, MemoryProcessingError):
                raise
            raise MemoryProcessingError(f"{kind.value} memory processing failed: {e}", kind.value) from e

        status = TraceStatus.COMPLETED if item else TraceStatus.SKIPPED
        await self._trace(kind, payload, status, memory_id=item.id if item else None)
        return item

    # =========================================================================
    # Per-kind handlers
    # =========================================================================

    async def process_episodic_memory(self, data: MemoryJobData) -> Optional[MemoryItem]:
        """Summarise the referenced messages into one conversation event."""
        logger.debug(f"[{data.agent_id}] Processing episodic memory for {len(data.message_ids)} messages")

        if not data.message_ids:
            logger.debug(f"[{data.agent_id}] No messages to process for episodic memory")
            return None

        messages = await self.messages.get_messages(data.message_ids)
        combined = "\n".join(m.text for m in messages if m.text)
        if not combined:
            logger.debug(f"[{data.agent_id}] Referenced messages carry no text")
            return None

        item = await self.store.add_item(
            self._item(
                MemoryKind.EPISODIC,
                data,
                summary=combined,
                details={
                    "message_count": len(messages),
                    "actor": "user",
                    "event_type": "conversation",
                },
            )
        )
        logger.info(f"[{data.agent_id}] Episodic memory created from {len(messages)} messages")
        return item

    async def process_semantic_memory(self, data: MemoryJobData) -> Optional[MemoryItem]:
        logger.debug(f"[{data.agent_id}] Processing semantic memory")
        if not data.content:
            return None

        item = await self.store.add_item(
            self._item(
                MemoryKind.SEMANTIC,
                data,
                summary=data.content,
                details={"name": data.metadata.get("name", f"fact-{int(utcnow().timestamp())}")},
            )
        )
        logger.info(f"[{data.agent_id}] Semantic memory created")
        return item

    async def process_procedural_memory(self, data: MemoryJobData) -> Optional[MemoryItem]:
        logger.debug(f"[{data.agent_id}] Processing procedural memory")
        if not data.content:
            return None

        item = await self.store.add_item(
            self._item(
                MemoryKind.PROCEDURAL,
                data,
                summary=data.content,
                details={
                    "entry_type": data.metadata.get("entry_type", "system"),
                    "steps": list(data.metadata.get("steps", [])),
                },
            )
        )
        logger.info(f"[{data.agent_id}] Procedural memory created")
        return item

    async def process_resource_memory(self, data: MemoryJobData) -> Optional[MemoryItem]:
        """Store a resource reference; a title alone is enough."""
        logger.debug(f"[{data.agent_id}] Processing resource memory")
        title = data.metadata.get("title")
        if not data.content and not title:
            return None

        item = await self.store.add_item(
            self._item(
                MemoryKind.RESOURCE,
                data,
                summary=data.content or "",
                details={
                    "title": title or "Untitled Resource",
                    "resource_type": data.metadata.get("resource_type", "document"),
                    "content": data.content or "",
                },
            )
        )
        logger.info(f"[{data.agent_id}] Resource memory created")
        return item

    async def process_knowledge(self, data: MemoryJobData) -> Optional[MemoryItem]:
        logger.debug(f"[{data.agent_id}] Processing knowledge")
        if not data.content:
            return None

        item = await self.store.add_item(
            self._item(
                MemoryKind.KNOWLEDGE,
                data,
                summary=data.content,
                details={
                    "entry_type": data.metadata.get("entry_type", "fact"),
                    "sensitivity": "normal",
                },
                source=data.metadata.get("source", "conversation"),
            )
        )
        logger.info(f"[{data.agent_id}] Knowledge item created")
        return item

    # =========================================================================
    # Cleanup
    # =========================================================================

    async def cleanup_expired_memories(self, data: Union[CleanupJobData, dict, None] = None) -> int:
        """Soft-delete memory items older than the cutoff. Returns the count."""
        payload = self._cleanup_payload(data)
        cutoff = payload.older_than or utcnow() - timedelta(days=self.memory_retention_days)
        logger.debug(f"Cleaning up memories older than {cutoff.isoformat()} (org={payload.organization_id})")

        count = await self.store.soft_delete_older_than(
            cutoff, organization_id=payload.organization_id, limit=payload.limit
        )
        logger.info(f"Cleaned up {count} old memories (org={payload.organization_id})")
        return count

    async def cleanup_old_traces(self, data: Union[CleanupJobData, dict, None] = None) -> int:
        """Delete processing traces older than the cutoff. Returns the count."""
        payload = self._cleanup_payload(data)
        cutoff = payload.older_than or utcnow() - timedelta(days=self.trace_retention_days)
        logger.debug(f"Cleaning up traces older than {cutoff.isoformat()} (org={payload.organization_id})")

        count = await self.store.delete_traces_older_than(
            cutoff, organization_id=payload.organization_id, limit=payload.limit
        )
        logger.info(f"Cleaned up {count} old traces (org={payload.organization_id})")
        return count

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _cleanup_payload(data: Union[CleanupJobData, dict, None]) -> CleanupJobData:
        if data is None:
            return CleanupJobData()
        return data if isinstance(data, CleanupJobData) else CleanupJobData.model_validate(data)

    @staticmethod
    def _item(kind: MemoryKind, data: MemoryJobData, summary: str, **fields) -> MemoryItem:
        return MemoryItem(
            kind=kind,
            agent_id=data.agent_id,
            user_id=data.user_id,
            organization_id=data.organization_id,
            summary=summary[:SUMMARY_MAX_CHARS],
            **fields,
        )

    async def _trace(
        self,
        kind: MemoryKind,
        data: MemoryJobData,
        status: TraceStatus,
        memory_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        await self.store.add_trace(
            ProcessingTrace(
                kind=kind,
                agent_id=data.agent_id,
                organization_id=data.organization_id,
                status=status,
                memory_id=memory_id,
                error=error,
            )
        )
