"""
Collaborator interfaces (Protocols) for the agent runtime.

The stepping engine depends only on these contracts:
- persistence: recent context in, conversation records out
- model call: one completion per step
- tool execution: one call per requested tool

Concrete implementations are injected, which also makes them easy to fake
in tests.
"""

from typing import Any, Protocol, runtime_checkable

from mnemo_core.domain.schemas import (
    AgentContext,
    MessageRecord,
    ModelReply,
    ModelRequest,
    ToolExecutionResult,
)
from mnemo_core.runtime.context import ToolExecutionContext


@runtime_checkable
class AgentStoreProtocol(Protocol):
    """Interface for the durable store of messages, tools and rules."""

    async def load_context(self, agent_id: str, limit: int = 100) -> AgentContext:
        """
        Load the recent context of an agent.

        Args:
            agent_id: Agent identifier.
            limit: Maximum number of most recent messages, oldest first.

        Returns:
            AgentContext with messages, tool roster and raw tool rules.
        """
        ...

    async def append_message(self, record: MessageRecord) -> MessageRecord:
        """
        Append a conversation record.

        Args:
            record: The message to persist.

        Returns:
            The stored record.
        """
        ...

    async def get_messages(self, message_ids: list[str]) -> list[MessageRecord]:
        """
        Fetch specific messages, oldest first. Unknown ids are skipped.
        """
        ...


@runtime_checkable
class ModelClientProtocol(Protocol):
    """Interface for the language-model call."""

    async def complete(self, request: ModelRequest) -> ModelReply:
        """
        Run one completion.

        Args:
            request: System prompt, history, tool schemas and sampling params.

        Returns:
            ModelReply with text and/or tool calls and token usage.
        """
        ...


@runtime_checkable
class ToolExecutorProtocol(Protocol):
    """Interface for executing a named tool."""

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        context: ToolExecutionContext,
    ) -> ToolExecutionResult:
        """
        Execute one tool call.

        Args:
            name: Registered tool name.
            arguments: Arguments produced by the model.
            context: Caller identity.

        Returns:
            ToolExecutionResult with either result or error.
        """
        ...
