"""
Step Engine

Runs one conversational turn of an agent: load context, append the user
message, then alternate model calls and tool rounds until the model answers
in plain text, a stop condition is hit, or the chaining limit is reached.

The engine never raises from ``step()``. Failures are folded into the state
with ``set_error`` and reported through ``AgentResult(success=False)``
together with whatever messages and token usage had accumulated.

Example:
```python
engine = StepEngine(
    agent=profile,
    store=store,
    model_client=client,
    hooks=default_hooks(store, registry),
)
result = await engine.chat("What is on my calendar?", user_id="user-1")
print(result.message)
```
"""

from __future__ import annotations

import time
from typing import Any, List, Optional, Sequence

from loguru import logger
from pydantic import BaseModel, Field

from app.agent.hooks import AgentHooks
from app.agent.solver import get_available_tools, is_terminal_call
from app.agent.state import (
    AgentState,
    AgentStatus,
    TokenUsage,
    add_messages,
    can_continue,
    complete_step,
    create_agent_state,
    mark_execution_started,
    record_tool_calls,
    record_tool_returns,
    replace_messages,
    set_error,
    set_should_stop,
    start_step,
    update_metadata,
    update_status,
    update_token_usage,
    update_tool_state,
)
from app.agent.tool_rules import ToolRule, parse_tool_rules
from mnemo_core.domain.exceptions import AgentStepError
from mnemo_core.domain.interfaces import AgentStoreProtocol, ModelClientProtocol
from mnemo_core.domain.schemas import (
    AgentProfile,
    MessageRecord,
    ModelRequest,
    ModelUsage,
    ToolCall,
    ToolReturn,
    ToolSchema,
)
from mnemo_core.runtime.context import ToolExecutionContext

STOP_TERMINAL_TOOL = "Terminal tool called"
STOP_NO_RESPONSE = "No response from AI"
STOP_MAX_CHAINING = "Max chaining steps reached"
STOP_MAX_STEPS = "Max steps reached"
STOP_TOKEN_BUDGET = "Token budget exhausted"


class AgentConfig(BaseModel):
    """Limits and sampling parameters for one engine."""

    max_steps: int = Field(default=100, ge=1)
    max_chaining_steps: int = Field(default=20, ge=1)
    max_tokens: int = Field(default=100000, ge=1)
    temperature: float = 0.7
    max_output_tokens: int = 4096
    context_message_limit: int = Field(default=100, ge=1)

    model_config = {"frozen": True}

    @classmethod
    def from_settings(cls, settings: Any) -> "AgentConfig":
        return cls(
            max_steps=settings.AGENT_MAX_STEPS,
            max_chaining_steps=settings.AGENT_MAX_CHAINING_STEPS,
            max_tokens=settings.AGENT_MAX_TOKENS,
            temperature=settings.AGENT_TEMPERATURE,
            max_output_tokens=settings.AGENT_MAX_OUTPUT_TOKENS,
            context_message_limit=settings.AGENT_CONTEXT_MESSAGE_LIMIT,
        )


class AgentResult(BaseModel):
    """Outcome of one ``step()`` call."""

    success: bool
    message: Optional[str] = None
    messages: List[MessageRecord] = Field(default_factory=list)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    step_count: int = 0
    execution_time_ms: int = 0
    error: Optional[str] = None
    stop_reason: Optional[str] = None


class StepEngine:
    """
    Drives the stepping loop for a single agent.

    Collaborators are injected: persistence (``store``), the model call
    (``model_client``) and the three specialisation hooks (``hooks``).

    One engine must not be stepped by two callers at the same time; each
    ``step()`` builds a fresh AgentState and keeps it on the engine for
    inspection afterwards.
    """

    def __init__(
        self,
        agent: AgentProfile,
        store: AgentStoreProtocol,
        model_client: ModelClientProtocol,
        hooks: AgentHooks,
        config: Optional[AgentConfig] = None,
    ):
        self.agent = agent
        self.store = store
        self.model_client = model_client
        self.hooks = hooks
        self.config = config or AgentConfig()
        self._state = create_agent_state(agent)

    @property
    def agent_id(self) -> str:
        return self.agent.id

    @property
    def current_state(self) -> AgentState:
        return self._state

    async def chat(
        self,
        message: str,
        user_id: str,
        client_id: Optional[str] = None,
        step_id: Optional[str] = None,
    ) -> AgentResult:
        """Run one turn for ``user_id`` with ``message`` as the new user input."""
        context = ToolExecutionContext.for_agent(
            self.agent, user_id=user_id, client_id=client_id, step_id=step_id
        )
        return await self.step(message, context)

    async def step(
        self,
        user_message: Optional[str] = None,
        context: Optional[ToolExecutionContext] = None,
    ) -> AgentResult:
        """
        Run one turn.

        Args:
            user_message: New user input to append before the first model call.
            context: Caller identity passed to every tool execution.

        Returns:
            AgentResult; ``success`` is False only when an error was raised.
        """
        start = time.perf_counter()
        context = context or ToolExecutionContext.for_agent(self.agent)

        state = create_agent_state(self.agent)
        state = update_status(state, AgentStatus.THINKING)
        state = mark_execution_started(state)
        self._state = update_metadata(state, "user_id", context.user_id)

        message: Optional[str] = None
        error: Optional[str] = None
        try:
            tools, rules = await self._load_context()

            if user_message:
                await self._add_user_message(user_message, context.user_id)

            message = await self._inner_loop(tools, rules, context)
            if self._state.status != AgentStatus.ERROR:
                self._state = update_status(self._state, AgentStatus.COMPLETED)
        except Exception as e:
            error = str(e) or type(e).__name__
            self._state = set_error(self._state, error)
            logger.exception(f"[{self.agent.id}] Agent execution failed: {error}")

        state = self._state
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            f"[{self.agent.id}] Step finished: success={error is None}, "
            f"steps={state.step_number}, tokens={state.token_usage.total_tokens}, "
            f"stop_reason={state.stop_reason!r}, {elapsed_ms}ms"
        )
        return AgentResult(
            success=error is None,
            message=message if error is None else None,
            messages=list(state.messages),
            token_usage=state.token_usage,
            step_count=state.step_number,
            execution_time_ms=elapsed_ms,
            error=error,
            stop_reason=state.stop_reason,
        )

    # =========================================================================
    # Loop
    # =========================================================================

    async def _inner_loop(
        self,
        tools: Sequence[ToolSchema],
        rules: Sequence[ToolRule],
        context: ToolExecutionContext,
    ) -> Optional[str]:
        chaining_count = 0
        roster = [t.name for t in tools]

        while chaining_count < self.config.max_chaining_steps:
            if self._state.should_stop:
                break

            if not can_continue(self._state, self.config.max_steps, self.config.max_tokens):
                reason = (
                    STOP_MAX_STEPS
                    if self._state.step_number >= self.config.max_steps
                    else STOP_TOKEN_BUDGET
                )
                self._state = set_should_stop(self._state, reason)
                break

            self._state = start_step(self._state)
            step_number = self._state.step_number

            available = get_available_tools(roster, rules, self._state.tool_state)
            request = ModelRequest(
                system_prompt=await self.hooks.build_system_prompt(self._state),
                messages=list(self._state.messages),
                tools=[t for t in tools if t.name in available],
                temperature=self.config.temperature,
                max_output_tokens=self.config.max_output_tokens,
            )

            logger.debug(
                f"[{self.agent.id}] Step {step_number}: calling model with "
                f"{len(request.messages)} messages, tools={available}"
            )
            try:
                reply = await self.model_client.complete(request)
            except Exception as e:
                raise AgentStepError(self.agent.id, step_number, f"Model call failed: {e}") from e

            usage = reply.usage or ModelUsage()
            self._state = update_token_usage(
                self._state, usage.prompt_tokens, usage.completion_tokens
            )
            step_tokens = {
                "input_tokens": usage.prompt_tokens,
                "output_tokens": usage.completion_tokens,
            }

            if reply.has_tool_calls:
                tool_calls = list(reply.tool_calls)
                self._state = record_tool_calls(self._state, tool_calls)

                tool_returns = await self.hooks.process_tool_calls(tool_calls, context)
                self._state = record_tool_returns(self._state, tool_returns)

                for call in tool_calls:
                    self._state = update_tool_state(self._state, call.name)
                    if is_terminal_call(call.name, rules) and not self._state.should_stop:
                        logger.info(f"[{self.agent.id}] Terminal tool '{call.name}' called")
                        self._state = set_should_stop(self._state, STOP_TERMINAL_TOOL)

                await self._add_tool_messages(tool_calls, tool_returns, context.user_id)
                self._state = complete_step(self._state, **step_tokens)
                chaining_count += 1
                continue

            if reply.text:
                self._state = update_status(self._state, AgentStatus.RESPONDING)
                await self.hooks.handle_final_response(self._state, reply.text)
                self._state = add_messages(
                    self._state,
                    [self._record("assistant", context.user_id, text=reply.text)],
                )
                self._state = complete_step(
                    self._state, assistant_message=reply.text, **step_tokens
                )
                return reply.text

            logger.warning(f"[{self.agent.id}] Step {step_number}: empty model reply")
            self._state = set_should_stop(self._state, STOP_NO_RESPONSE)
            self._state = complete_step(self._state, **step_tokens)
            return None

        if chaining_count >= self.config.max_chaining_steps and not self._state.should_stop:
            logger.info(
                f"[{self.agent.id}] Chaining limit reached ({self.config.max_chaining_steps})"
            )
            self._state = set_should_stop(self._state, STOP_MAX_CHAINING)
        return None

    # =========================================================================
    # Persistence
    # =========================================================================

    async def _load_context(self) -> tuple[List[ToolSchema], List[ToolRule]]:
        loaded = await self.store.load_context(
            self.agent.id, limit=self.config.context_message_limit
        )
        self._state = replace_messages(self._state, loaded.messages)
        rules = parse_tool_rules(loaded.tool_rules or self.agent.tool_rules)
        logger.debug(
            f"[{self.agent.id}] Loaded {len(loaded.messages)} messages, "
            f"{len(loaded.tools)} tools, {len(rules)} rules"
        )
        return list(loaded.tools), rules

    def _record(self, role: str, user_id: str, **fields: Any) -> MessageRecord:
        return MessageRecord(
            agent_id=self.agent.id,
            role=role,
            user_id=user_id,
            organization_id=self.agent.organization_id,
            **fields,
        )

    async def _add_user_message(self, text: str, user_id: str) -> None:
        stored = await self.store.append_message(self._record("user", user_id, text=text))
        self._state = add_messages(self._state, [stored])

    async def _add_tool_messages(
        self,
        tool_calls: Sequence[ToolCall],
        tool_returns: Sequence[ToolReturn],
        user_id: str,
    ) -> None:
        """Persist the tool-call entry, then one entry per tool return, in that order."""
        user_id = user_id or self.agent.created_by_id or ""
        records = [self._record("assistant", user_id, tool_calls=list(tool_calls))]
        for tr in tool_returns:
            text = tr.as_text() if tr.ok else f"Error: {tr.error}"
            records.append(
                self._record("tool", user_id, text=text, tool_call_id=tr.tool_call_id, name=tr.name)
            )

        stored = [await self.store.append_message(record) for record in records]
        self._state = add_messages(self._state, stored)
