"""
Meta agent.

A coordinating agent whose tool calls are delegated to specialised memory
agents. Each memory agent is a child StepEngine; which one handles a call is
decided by the tool name's prefix (``episodic_search`` goes to the episodic
agent, and so on). Names without a known prefix go to the meta memory agent.

Example:
```python
meta = MetaAgent(
    agent=profile,
    store=store,
    model_client=client,
    agents=MemoryAgents({MemoryAgentKind.EPISODIC: episodic_engine}),
)
usage = await meta.step_with_agent("Remember that I moved", "episodic_memory_agent")
```
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Union

from loguru import logger
from pydantic import BaseModel

from app.agent.engine import AgentConfig, AgentResult, StepEngine
from app.agent.hooks import AgentHooks, persist_final_response, render_system_prompt
from app.agent.state import AgentState
from mnemo_core.domain.exceptions import NotFoundError
from mnemo_core.domain.interfaces import AgentStoreProtocol, ModelClientProtocol
from mnemo_core.domain.schemas import AgentProfile, ToolCall, ToolReturn
from mnemo_core.runtime.context import ToolExecutionContext


class MemoryAgentKind(str, Enum):
    """The memory agents a meta agent can delegate to."""

    EPISODIC = "episodic_memory_agent"
    PROCEDURAL = "procedural_memory_agent"
    KNOWLEDGE = "knowledge_memory_agent"
    META = "meta_memory_agent"
    SEMANTIC = "semantic_memory_agent"
    CORE = "core_memory_agent"
    RESOURCE = "resource_memory_agent"
    REFLEXION = "reflexion_agent"
    BACKGROUND = "background_agent"


# Tool-name prefix owned by each kind. META owns every unprefixed name.
TOOL_PREFIXES: Dict[MemoryAgentKind, Optional[str]] = {
    MemoryAgentKind.EPISODIC: "episodic_",
    MemoryAgentKind.PROCEDURAL: "procedural_",
    MemoryAgentKind.KNOWLEDGE: "knowledge_",
    MemoryAgentKind.SEMANTIC: "semantic_",
    MemoryAgentKind.CORE: "core_",
    MemoryAgentKind.RESOURCE: "resource_",
    MemoryAgentKind.REFLEXION: "reflexion_",
    MemoryAgentKind.BACKGROUND: "background_",
    MemoryAgentKind.META: None,
}

_missing = set(MemoryAgentKind) - set(TOOL_PREFIXES)
if _missing:
    raise RuntimeError(f"Memory agent kinds without a tool prefix entry: {sorted(k.value for k in _missing)}")


def route_tool_call(tool_name: str) -> MemoryAgentKind:
    """Memory agent that owns ``tool_name``; META when no prefix matches."""
    for kind, prefix in TOOL_PREFIXES.items():
        if prefix and tool_name.startswith(prefix):
            return kind
    return MemoryAgentKind.META


class MetaAgentUsage(BaseModel):
    """Token and step counts of one delegated turn."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    step_count: int = 0

    model_config = {"frozen": True}

    @classmethod
    def from_result(cls, result: AgentResult) -> "MetaAgentUsage":
        usage = result.token_usage
        return cls(
            prompt_tokens=usage.input_tokens,
            completion_tokens=usage.output_tokens,
            total_tokens=usage.total_tokens,
            step_count=result.step_count,
        )


class MemoryAgents:
    """Child step engines keyed by memory agent kind. Not every kind needs one."""

    def __init__(self, engines: Mapping[MemoryAgentKind, StepEngine]):
        self._engines = {MemoryAgentKind(k): v for k, v in engines.items()}

    def __contains__(self, kind: object) -> bool:
        return kind in self._engines

    def get(self, name: Union[str, MemoryAgentKind]) -> StepEngine:
        """
        Engine for ``name``.

        Raises:
            NotFoundError: Unknown kind, or no engine configured for it.
        """
        try:
            kind = MemoryAgentKind(name)
        except ValueError:
            raise NotFoundError("Memory agent", str(name)) from None
        engine = self._engines.get(kind)
        if engine is None:
            raise NotFoundError("Memory agent", kind.value)
        return engine

    def names(self) -> List[str]:
        """Configured agent names, in declaration order."""
        return [kind.value for kind in MemoryAgentKind if kind in self._engines]


def _delegation_message(call: ToolCall) -> str:
    return f"Execute tool: {call.name} with args: {json.dumps(call.arguments, default=str)}"


def meta_agent_hooks(agents: MemoryAgents, store: AgentStoreProtocol) -> AgentHooks:
    """Hooks that hand every tool call to the memory agent owning its prefix."""

    async def build_system_prompt(state: AgentState) -> str:
        prompt = render_system_prompt(state)
        names = agents.names()
        if names:
            prompt += "\n\nAvailable memory agents: " + ", ".join(names)
        return prompt

    async def process_tool_calls(
        tool_calls: Sequence[ToolCall], context: ToolExecutionContext
    ) -> List[ToolReturn]:
        returns: List[ToolReturn] = []
        for call in tool_calls:
            kind = route_tool_call(call.name)
            if kind not in agents:
                logger.warning(f"[{context.agent_id}] No {kind.value} for tool '{call.name}'")
                returns.append(
                    ToolReturn(
                        tool_call_id=call.id,
                        name=call.name,
                        error=f"No memory agent available for tool '{call.name}'",
                    )
                )
                continue

            engine = agents.get(kind)
            child_context = ToolExecutionContext.for_agent(
                engine.agent, user_id=context.user_id, client_id=context.client_id
            )
            logger.debug(f"[{context.agent_id}] Routing '{call.name}' to {kind.value}")
            result = await engine.step(_delegation_message(call), child_context)
            if result.success:
                returns.append(ToolReturn(tool_call_id=call.id, name=call.name, result=result.message))
            else:
                returns.append(
                    ToolReturn(
                        tool_call_id=call.id,
                        name=call.name,
                        error=result.error or f"{kind.value} failed",
                    )
                )
        return returns

    return AgentHooks(
        build_system_prompt=build_system_prompt,
        process_tool_calls=process_tool_calls,
        handle_final_response=persist_final_response(store),
    )


class MetaAgent:
    """
    Step engine whose tools are the memory agents.

    ``step`` runs the meta agent itself; ``step_with_agent`` sends a message
    straight to one memory agent and reports its usage.
    """

    def __init__(
        self,
        agent: AgentProfile,
        store: AgentStoreProtocol,
        model_client: ModelClientProtocol,
        agents: MemoryAgents,
        config: Optional[AgentConfig] = None,
    ):
        self.agents = agents
        self.engine = StepEngine(
            agent=agent,
            store=store,
            model_client=model_client,
            hooks=meta_agent_hooks(agents, store),
            config=config,
        )

    @property
    def agent_id(self) -> str:
        return self.engine.agent_id

    async def step(
        self,
        user_message: Optional[str] = None,
        context: Optional[ToolExecutionContext] = None,
    ) -> AgentResult:
        return await self.engine.step(user_message, context)

    async def step_with_agent(
        self,
        message: str,
        agent_name: Union[str, MemoryAgentKind, None] = None,
        context: Optional[ToolExecutionContext] = None,
    ) -> MetaAgentUsage:
        """
        Run one turn on a single memory agent.

        Args:
            message: User input for the memory agent.
            agent_name: Memory agent to use; the meta memory agent when omitted.
            context: Caller identity; defaults to the memory agent's own.

        Raises:
            NotFoundError: The named memory agent does not exist here.
        """
        engine = self.agents.get(agent_name or MemoryAgentKind.META)
        if context is not None:
            context = ToolExecutionContext.for_agent(
                engine.agent, user_id=context.user_id, client_id=context.client_id
            )
        result = await engine.step(message, context)
        usage = MetaAgentUsage.from_result(result)
        logger.info(
            f"[{self.agent_id}] {engine.agent_id} finished: success={result.success}, "
            f"steps={usage.step_count}, tokens={usage.total_tokens}"
        )
        return usage

    def list_memory_agents(self) -> List[str]:
        return self.agents.names()
