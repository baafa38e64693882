"""
Execution context handed to tools.

ToolExecutionContext identifies who a tool call is running for. It is created
once per conversational turn and passed unchanged to every tool in that turn.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel

if TYPE_CHECKING:
    from mnemo_core.domain.schemas import AgentProfile


class ToolExecutionContext(BaseModel):
    """Caller identity for one tool execution.

    Attributes:
        agent_id: Agent whose turn issued the call.
        user_id: End user the agent is acting for.
        organization_id: Tenant namespace.
        client_id: Optional client application identifier.
        message_id: Optional triggering message.
        step_id: Optional external step identifier.
    """

    agent_id: str
    user_id: str = ""
    organization_id: str = ""
    client_id: str | None = None
    message_id: str | None = None
    step_id: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def for_agent(
        cls,
        profile: "AgentProfile",
        user_id: str = "",
        **extra: str | None,
    ) -> "ToolExecutionContext":
        """Build a context from the agent's profile.

        Args:
            profile: The agent configuration.
            user_id: End user identifier, empty when unknown.
            **extra: client_id / message_id / step_id.
        """
        return cls(
            agent_id=profile.id,
            user_id=user_id,
            organization_id=profile.organization_id or "",
            **extra,
        )

    def with_step(self, step_id: str) -> "ToolExecutionContext":
        """Return a copy bound to ``step_id``."""
        return self.model_copy(update={"step_id": step_id})
