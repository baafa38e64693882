"""
Step engine hooks.

Agent specialisations customise the step engine by supplying an AgentHooks
record instead of subclassing it. The record holds three async callables:

- build_system_prompt(state) -> str
- process_tool_calls(tool_calls, context) -> list[ToolReturn]
- handle_final_response(state, message) -> None

``default_hooks`` builds the standard record on top of a persistence
collaborator and a tool-execution collaborator.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Awaitable, Callable, List, Sequence

from loguru import logger

from app.agent.state import AgentState
from mnemo_core.domain.interfaces import AgentStoreProtocol, ToolExecutorProtocol
from mnemo_core.domain.schemas import MessageRecord, ToolCall, ToolReturn, utcnow
from mnemo_core.runtime.context import ToolExecutionContext

BuildSystemPrompt = Callable[[AgentState], Awaitable[str]]
ProcessToolCalls = Callable[[Sequence[ToolCall], ToolExecutionContext], Awaitable[List[ToolReturn]]]
HandleFinalResponse = Callable[[AgentState, str], Awaitable[None]]


@dataclass(frozen=True)
class AgentHooks:
    build_system_prompt: BuildSystemPrompt
    process_tool_calls: ProcessToolCalls
    handle_final_response: HandleFinalResponse

    def with_overrides(self, **overrides) -> "AgentHooks":
        """Copy with some hooks swapped out."""
        return replace(self, **overrides)


def render_system_prompt(state: AgentState) -> str:
    """Agent system text, then core memory blocks, then the current time."""
    agent = state.agent
    parts = [agent.system.strip()] if agent.system.strip() else []

    if agent.core_memory:
        blocks = "\n".join(
            f"<{label}>\n{value}\n</{label}>" for label, value in agent.core_memory.items()
        )
        parts.append(f"<core_memory>\n{blocks}\n</core_memory>")

    parts.append(f"Current date and time: {utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')}")
    return "\n\n".join(parts)


async def execute_tool_calls(
    tool_executor: ToolExecutorProtocol,
    tool_calls: Sequence[ToolCall],
    context: ToolExecutionContext,
) -> List[ToolReturn]:
    """
    Run tool calls one after another, in the order given.

    A failing call (raised or ``success=False``) becomes a ToolReturn with
    ``error`` set; the remaining calls still run.
    """
    returns: List[ToolReturn] = []
    for call in tool_calls:
        try:
            outcome = await tool_executor.execute(call.name, call.arguments, context)
        except Exception as e:
            logger.warning(f"[{context.agent_id}] Tool '{call.name}' raised: {e}")
            returns.append(
                ToolReturn(tool_call_id=call.id, name=call.name, error=str(e) or type(e).__name__)
            )
            continue

        if outcome.success:
            returns.append(ToolReturn(tool_call_id=call.id, name=call.name, result=outcome.result))
        else:
            returns.append(
                ToolReturn(
                    tool_call_id=call.id,
                    name=call.name,
                    error=outcome.error or "Tool execution failed",
                )
            )
    return returns


def persist_final_response(store: AgentStoreProtocol) -> HandleFinalResponse:
    """Final-response hook that stores the answer as an assistant message."""

    async def handle_final_response(state: AgentState, message: str) -> None:
        await store.append_message(
            MessageRecord(
                agent_id=state.agent.id,
                role="assistant",
                text=message,
                user_id=state.metadata.get("user_id", ""),
                organization_id=state.agent.organization_id,
            )
        )

    return handle_final_response


def default_hooks(store: AgentStoreProtocol, tool_executor: ToolExecutorProtocol) -> AgentHooks:
    """Standard hooks: rendered prompt, sequential tools, persisted final answer."""

    async def build_system_prompt(state: AgentState) -> str:
        return render_system_prompt(state)

    async def process_tool_calls(
        tool_calls: Sequence[ToolCall], context: ToolExecutionContext
    ) -> List[ToolReturn]:
        return await execute_tool_calls(tool_executor, tool_calls, context)

    return AgentHooks(
        build_system_prompt=build_system_prompt,
        process_tool_calls=process_tool_calls,
        handle_final_response=persist_final_response(store),
    )
