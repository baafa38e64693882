"""
Agent Storage Adapters

Persistence collaborators for the step engine.

- InMemoryAgentStore: agents, tool rosters and messages kept in process
  memory. For tests and development; nothing survives a restart.
- RetryingAgentStore: wraps any store and retries transient failures
  (RetryableError) with exponential backoff.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar

from loguru import logger

from app.agent.tools.registry import ToolRegistry
from mnemo_core.domain.exceptions import NotFoundError
from mnemo_core.domain.interfaces import AgentStoreProtocol
from mnemo_core.domain.schemas import AgentContext, AgentProfile, MessageRecord, ToolSchema
from mnemo_core.runtime.errors import ErrorCode, RetryableError
from mnemo_core.runtime.retry import RetryPolicy, call_with_retry

T = TypeVar("T")


class InMemoryAgentStore:
    """
    In-memory storage for testing and development.

    Example:
    ```python
    store = InMemoryAgentStore()
    store.add_agent(AgentProfile(id="agent-1", system="You are helpful."))
    store.attach_tools("agent-1", registry.schemas())
    context = await store.load_context("agent-1")
    ```
    """

    def __init__(self):
        self._agents: Dict[str, AgentProfile] = {}
        self._tools: Dict[str, List[ToolSchema]] = {}
        self._messages: Dict[str, MessageRecord] = {}
        self._deleted: set[str] = set()

    # Seeding

    def add_agent(self, agent: AgentProfile) -> AgentProfile:
        self._agents[agent.id] = agent
        self._tools.setdefault(agent.id, [])
        return agent

    def get_agent(self, agent_id: str) -> AgentProfile:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise NotFoundError("Agent", agent_id)
        return agent

    def attach_tools(self, agent_id: str, tools: Iterable[ToolSchema]) -> None:
        """Add tools to the agent's roster, skipping names already present."""
        self.get_agent(agent_id)
        roster = self._tools[agent_id]
        known = {t.name for t in roster}
        for tool in tools:
            if tool.name not in known:
                roster.append(tool)
                known.add(tool.name)

    def attach_registry(self, agent_id: str, registry: ToolRegistry, names: Optional[Iterable[str]] = None) -> None:
        self.attach_tools(agent_id, registry.schemas(names))

    def delete_message(self, message_id: str) -> None:
        """Soft delete; deleted messages are left out of loaded context."""
        if message_id in self._messages:
            self._deleted.add(message_id)

    def clear(self) -> None:
        self._agents.clear()
        self._tools.clear()
        self._messages.clear()
        self._deleted.clear()

    # AgentStoreProtocol

    async def load_context(self, agent_id: str, limit: int = 100) -> AgentContext:
        agent = self.get_agent(agent_id)
        messages = sorted(
            (
                m for m in self._messages.values()
                if m.agent_id == agent_id and m.id not in self._deleted
            ),
            key=lambda m: m.created_at,
        )
        return AgentContext(
            messages=messages[-limit:] if limit else [],
            tools=list(self._tools.get(agent_id, [])),
            tool_rules=list(agent.tool_rules),
        )

    async def append_message(self, record: MessageRecord) -> MessageRecord:
        self._messages[record.id] = record
        return record

    async def get_messages(self, message_ids: list[str]) -> list[MessageRecord]:
        found = [self._messages[i] for i in message_ids if i in self._messages]
        return sorted(found, key=lambda m: m.created_at)

    def message_count(self, agent_id: Optional[str] = None) -> int:
        if agent_id is None:
            return len(self._messages)
        return sum(1 for m in self._messages.values() if m.agent_id == agent_id)


class RetryingAgentStore:
    """
    Store decorator that retries transient failures.

    I/O faults from the wrapped store (``OSError``, which covers connection
    errors and timeouts) are raised as RetryableError with a storage error
    code. Only RetryableError is retried, with the backoff of ``policy``;
    every other exception propagates on the first attempt.
    """

    def __init__(self, store: AgentStoreProtocol, policy: Optional[RetryPolicy] = None):
        self.store = store
        self.policy = policy or RetryPolicy()

    def _on_retry(self, attempt: int, error: Exception, delay: float) -> None:
        logger.warning(
            f"Persistence call failed (attempt {attempt + 1}/{self.policy.max_attempts}), "
            f"retrying in {delay:.2f}s: {error}"
        )

    async def _call(self, code: str, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        async def attempt() -> T:
            try:
                return await func(*args, **kwargs)
            except ConnectionError as e:
                raise RetryableError.wrap(ErrorCode.STORAGE_UNAVAILABLE, e) from e
            except OSError as e:
                raise RetryableError.wrap(code, e) from e

        return await call_with_retry(attempt, policy=self.policy, on_retry=self._on_retry)

    async def load_context(self, agent_id: str, limit: int = 100) -> AgentContext:
        return await self._call(ErrorCode.STORAGE_READ_ERROR, self.store.load_context, agent_id, limit=limit)

    async def append_message(self, record: MessageRecord) -> MessageRecord:
        return await self._call(ErrorCode.STORAGE_WRITE_ERROR, self.store.append_message, record)

    async def get_messages(self, message_ids: list[str]) -> list[MessageRecord]:
        return await self._call(ErrorCode.STORAGE_READ_ERROR, self.store.get_messages, message_ids)
