"""
Tool Rule Solver

Resolves which tools are callable given the agent's rules and what has been
called so far. Everything here is a pure function of its inputs: calling it
twice with the same arguments gives the same answer and changes nothing.

Precedence for availability:
1. Before any tool has been called, Init rules (if present) decide alone.
2. Afterwards, Child rules of the last called tool narrow the set.
3. MaxCount rules prune exhausted tools last, whatever 1-2 produced.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from loguru import logger
from pydantic import BaseModel

from app.agent.tool_rules import (
    ChildToolRule,
    InitToolRule,
    MaxCountToolRule,
    RequiredToolRule,
    TerminalToolRule,
    ToolExecutionState,
    ToolRule,
)


class RequiredToolsCheck(BaseModel):
    satisfied: bool
    missing: List[str]


class ToolCallValidation(BaseModel):
    valid: bool
    reason: Optional[str] = None


def get_available_tools(
    all_tools: Sequence[str],
    rules: Sequence[ToolRule],
    state: ToolExecutionState,
) -> List[str]:
    """
    Compute the currently callable subset of ``all_tools``.

    Args:
        all_tools: Every tool name on the agent's roster.
        rules: The agent's tool rules.
        state: Tool execution state of the running turn.

    Returns:
        Callable tool names, in roster order.
    """
    init_tools = {r.tool_name for r in rules if isinstance(r, InitToolRule)}
    if not state.has_called and init_tools:
        available = [t for t in all_tools if t in init_tools]
        logger.debug(f"Applied init rules: {available}")
        return available

    available = list(all_tools)

    if state.last_called_tool:
        parent_rules = [
            r for r in rules
            if isinstance(r, ChildToolRule) and r.tool_name == state.last_called_tool
        ]
        if parent_rules:
            children = set().union(*(r.children for r in parent_rules))
            available = [t for t in available if t in children]
            logger.debug(
                f"Applied child rules for '{state.last_called_tool}': {sorted(children)}"
            )

    for rule in rules:
        if isinstance(rule, MaxCountToolRule) and state.count(rule.tool_name) >= rule.max_count:
            if rule.tool_name in available:
                available = [t for t in available if t != rule.tool_name]
                logger.debug(
                    f"Tool '{rule.tool_name}' exhausted "
                    f"({state.count(rule.tool_name)}/{rule.max_count})"
                )

    return available


def is_terminal_call(tool_name: str, rules: Sequence[ToolRule]) -> bool:
    """Whether calling ``tool_name`` ends the turn."""
    return any(isinstance(r, TerminalToolRule) and r.tool_name == tool_name for r in rules)


def check_required_tools(
    rules: Sequence[ToolRule],
    state: ToolExecutionState,
) -> RequiredToolsCheck:
    """List Required-rule tools that have not been called yet."""
    missing: List[str] = []
    for rule in rules:
        if isinstance(rule, RequiredToolRule) and rule.tool_name not in state.called_tools:
            if rule.tool_name not in missing:
                missing.append(rule.tool_name)
    return RequiredToolsCheck(satisfied=not missing, missing=missing)


def validate_tool_call(
    tool_name: str,
    rules: Sequence[ToolRule],
    state: ToolExecutionState,
    available_tools: Sequence[str],
) -> ToolCallValidation:
    """
    Check a requested call against availability and MaxCount limits.

    Returns:
        ToolCallValidation with ``reason`` set when the call is rejected.
    """
    if tool_name not in available_tools:
        return ToolCallValidation(
            valid=False,
            reason=f"Tool '{tool_name}' is not available in current state",
        )

    for rule in rules:
        if isinstance(rule, MaxCountToolRule) and rule.tool_name == tool_name:
            if state.count(tool_name) >= rule.max_count:
                return ToolCallValidation(
                    valid=False,
                    reason=f"Tool '{tool_name}' has reached maximum call count ({rule.max_count})",
                )

    return ToolCallValidation(valid=True)
