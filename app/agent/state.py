"""
Agent execution state.

AgentState is the snapshot of one conversational turn: status, messages in
context, the step counter and history, tool execution state, token usage and
the sticky stop flag. Every function here is a pure transformer that returns a
new AgentState; nothing mutates in place.

Invariants kept by these transformers:
- once ``should_stop`` is set it stays set for the rest of the execution
- ``step_number`` never decreases
- token counts never decrease
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from app.agent.tool_rules import ToolExecutionState
from mnemo_core.domain.schemas import AgentProfile, MessageRecord, ToolCall, ToolReturn, utcnow


class AgentStatus(str, Enum):
    """Agent execution status."""
    IDLE = "idle"
    THINKING = "thinking"
    EXECUTING_TOOL = "executing_tool"
    RESPONDING = "responding"
    COMPLETED = "completed"
    ERROR = "error"
    INTERRUPTED = "interrupted"


class AgentStep(BaseModel):
    """One model-call round."""
    step_number: int
    status: AgentStatus = AgentStatus.THINKING
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)
    tool_returns: List[ToolReturn] = Field(default_factory=list)
    assistant_message: Optional[str] = None
    error: Optional[str] = None

    model_config = {"frozen": True}


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    model_config = {"frozen": True}


class AgentState(BaseModel):
    """
    Snapshot of one execution.

    Attributes:
        agent: Static agent configuration.
        status: Current status.
        messages: Conversation messages in context, oldest first.
        step_number: Number of steps opened so far.
        step_history: Completed steps.
        current_step: The open step, if any.
        tool_state: Which tools have been called.
        token_usage: Accumulated token counts.
        execution_started_at: When the execution began.
        should_stop: Sticky stop flag.
        stop_reason: Why the flag was set.
        metadata: Free-form values.
    """
    agent: AgentProfile
    status: AgentStatus = AgentStatus.IDLE
    messages: List[MessageRecord] = Field(default_factory=list)
    step_number: int = 0
    step_history: List[AgentStep] = Field(default_factory=list)
    current_step: Optional[AgentStep] = None
    tool_state: ToolExecutionState = Field(default_factory=ToolExecutionState)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    execution_started_at: Optional[datetime] = None
    should_stop: bool = False
    stop_reason: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


# =============================================================================
# Factory
# =============================================================================

def create_agent_state(agent: AgentProfile) -> AgentState:
    return AgentState(agent=agent)


# =============================================================================
# Updaters
# =============================================================================

def update_status(state: AgentState, status: AgentStatus) -> AgentState:
    return state.model_copy(update={"status": status})


def mark_execution_started(state: AgentState, at: Optional[datetime] = None) -> AgentState:
    return state.model_copy(update={"execution_started_at": at or utcnow()})


def add_messages(state: AgentState, messages: Iterable[MessageRecord]) -> AgentState:
    return state.model_copy(update={"messages": [*state.messages, *messages]})


def replace_messages(state: AgentState, messages: Iterable[MessageRecord]) -> AgentState:
    """Swap in freshly loaded context messages."""
    return state.model_copy(update={"messages": list(messages)})


def update_tool_state(state: AgentState, tool_name: str) -> AgentState:
    return state.model_copy(update={"tool_state": state.tool_state.record_call(tool_name)})


def start_step(state: AgentState) -> AgentState:
    """Open a new step, bumping the step counter."""
    step_number = state.step_number + 1
    return state.model_copy(
        update={
            "status": AgentStatus.THINKING,
            "step_number": step_number,
            "current_step": AgentStep(step_number=step_number),
        }
    )


def complete_step(state: AgentState, **updates: Any) -> AgentState:
    """
    Close the open step.

    ``updates`` are merged into the step (e.g. ``assistant_message``,
    ``input_tokens``). Without an open step this is a no-op.
    """
    if state.current_step is None:
        return state

    completed = state.current_step.model_copy(
        update={"status": AgentStatus.COMPLETED, **updates, "completed_at": utcnow()}
    )
    return state.model_copy(
        update={
            "status": AgentStatus.COMPLETED,
            "step_history": [*state.step_history, completed],
            "current_step": None,
        }
    )


def record_tool_calls(state: AgentState, tool_calls: Iterable[ToolCall]) -> AgentState:
    """Append tool calls to the open step. Ignored without an open step."""
    if state.current_step is None:
        return state

    step = state.current_step.model_copy(
        update={
            "status": AgentStatus.EXECUTING_TOOL,
            "tool_calls": [*state.current_step.tool_calls, *tool_calls],
        }
    )
    return state.model_copy(update={"status": AgentStatus.EXECUTING_TOOL, "current_step": step})


def record_tool_returns(state: AgentState, tool_returns: Iterable[ToolReturn]) -> AgentState:
    """Append tool returns to the open step. Ignored without an open step."""
    if state.current_step is None:
        return state

    step = state.current_step.model_copy(
        update={"tool_returns": [*state.current_step.tool_returns, *tool_returns]}
    )
    return state.model_copy(update={"current_step": step})


def update_token_usage(state: AgentState, input_tokens: int, output_tokens: int) -> AgentState:
    """Add token counts. Negative counts are rejected so totals never decrease."""
    if input_tokens < 0 or output_tokens < 0:
        raise ValueError("Token counts cannot be negative")

    usage = state.token_usage
    return state.model_copy(
        update={
            "token_usage": TokenUsage(
                input_tokens=usage.input_tokens + input_tokens,
                output_tokens=usage.output_tokens + output_tokens,
                total_tokens=usage.total_tokens + input_tokens + output_tokens,
            )
        }
    )


def set_should_stop(state: AgentState, reason: str) -> AgentState:
    return state.model_copy(update={"should_stop": True, "stop_reason": reason})


def set_error(state: AgentState, error: str) -> AgentState:
    """Enter the Error status, set the stop flag and close any open step with ``error``."""
    state = state.model_copy(
        update={"status": AgentStatus.ERROR, "should_stop": True, "stop_reason": error}
    )
    if state.current_step is None:
        return state

    failed = state.current_step.model_copy(
        update={"status": AgentStatus.ERROR, "error": error, "completed_at": utcnow()}
    )
    return state.model_copy(
        update={"step_history": [*state.step_history, failed], "current_step": None}
    )


def update_metadata(state: AgentState, key: str, value: Any) -> AgentState:
    return state.model_copy(update={"metadata": {**state.metadata, key: value}})


# =============================================================================
# Queries
# =============================================================================

def get_execution_time_ms(state: AgentState, now: Optional[datetime] = None) -> int:
    if state.execution_started_at is None:
        return 0
    elapsed = (now or utcnow()) - state.execution_started_at
    return int(elapsed.total_seconds() * 1000)


def can_continue(state: AgentState, max_steps: int, max_tokens: int) -> bool:
    """Whether another step may be opened within the limits."""
    if state.should_stop:
        return False
    if state.step_number >= max_steps:
        return False
    if state.token_usage.total_tokens >= max_tokens:
        return False
    return True


def is_running(state: AgentState) -> bool:
    return state.status not in (AgentStatus.IDLE, AgentStatus.COMPLETED, AgentStatus.ERROR)


def get_execution_summary(state: AgentState) -> Dict[str, Any]:
    """Steps, token usage, elapsed time, status and total tool calls."""
    return {
        "steps": state.step_number,
        "token_usage": {
            "input": state.token_usage.input_tokens,
            "output": state.token_usage.output_tokens,
            "total": state.token_usage.total_tokens,
        },
        "execution_time_ms": get_execution_time_ms(state),
        "status": state.status.value,
        "tool_call_count": sum(len(step.tool_calls) for step in state.step_history),
    }
