"""
Agent stepping: the step engine, its hooks, tool rules and the meta agent.
"""

from app.agent.engine import AgentConfig, AgentResult, StepEngine
from app.agent.hooks import AgentHooks, default_hooks
from app.agent.meta import MemoryAgentKind, MemoryAgents, MetaAgent, MetaAgentUsage
from app.agent.state import AgentState, AgentStatus
from app.agent.storage import InMemoryAgentStore, RetryingAgentStore

__all__ = [
    "AgentConfig",
    "AgentHooks",
    "AgentResult",
    "AgentState",
    "AgentStatus",
    "InMemoryAgentStore",
    "MemoryAgentKind",
    "MemoryAgents",
    "MetaAgent",
    "MetaAgentUsage",
    "RetryingAgentStore",
    "StepEngine",
    "default_hooks",
]
