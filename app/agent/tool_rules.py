"""
Tool rules and tool execution state.

A tool rule is a declarative constraint on when a tool may be called. Rules
are attached to an agent and never change during one execution. The
ToolExecutionState records which tools have been called so far and is only
ever extended, never rewritten.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from mnemo_core.domain.exceptions import ValidationError


class ToolRuleType(str, Enum):
    """Rule categories."""
    INIT = "init"                # Must be the first tool called
    TERMINAL = "terminal"        # Ends the turn once its result is folded in
    CHILD = "child"              # Restricts what may follow this tool
    CONDITIONAL = "conditional"  # Availability guarded by a predicate expression
    MAX_COUNT = "max_count"      # Caps calls per execution
    REQUIRED = "required"        # Must be called at some point


class _BaseToolRule(BaseModel):
    tool_name: str = Field(..., min_length=1, description="Tool governed by this rule")

    model_config = {"frozen": True}


class InitToolRule(_BaseToolRule):
    type: Literal["init"] = "init"


class TerminalToolRule(_BaseToolRule):
    type: Literal["terminal"] = "terminal"


class ChildToolRule(_BaseToolRule):
    type: Literal["child"] = "child"
    children: frozenset[str] = Field(
        default_factory=frozenset,
        description="Tools allowed right after this one",
    )


class ConditionalToolRule(_BaseToolRule):
    type: Literal["conditional"] = "conditional"
    condition: str = Field(..., description="Predicate expression")


class MaxCountToolRule(_BaseToolRule):
    type: Literal["max_count"] = "max_count"
    max_count: int = Field(..., ge=1)


class RequiredToolRule(_BaseToolRule):
    type: Literal["required"] = "required"


ToolRule = Annotated[
    Union[
        InitToolRule,
        TerminalToolRule,
        ChildToolRule,
        ConditionalToolRule,
        MaxCountToolRule,
        RequiredToolRule,
    ],
    Field(discriminator="type"),
]

_TOOL_RULE_LIST = TypeAdapter(List[ToolRule])


def parse_tool_rules(raw: Iterable[Any]) -> List[ToolRule]:
    """
    Validate rule definitions loaded from storage.

    Accepts dicts (``{"type": "child", "tool_name": "a", "children": ["b"]}``)
    and already-built rule objects, in any mix.

    Raises:
        ValidationError: If any entry is not a valid rule.
    """
    items = [r.model_dump() if isinstance(r, _BaseToolRule) else r for r in raw]
    try:
        return _TOOL_RULE_LIST.validate_python(items)
    except Exception as e:
        raise ValidationError(f"Invalid tool rules: {e}") from e


# =============================================================================
# Rule constructors
# =============================================================================

def init_rule(tool_name: str) -> InitToolRule:
    return InitToolRule(tool_name=tool_name)


def terminal_rule(tool_name: str) -> TerminalToolRule:
    return TerminalToolRule(tool_name=tool_name)


def child_rule(tool_name: str, children: Iterable[str]) -> ChildToolRule:
    return ChildToolRule(tool_name=tool_name, children=frozenset(children))


def conditional_rule(tool_name: str, condition: str) -> ConditionalToolRule:
    return ConditionalToolRule(tool_name=tool_name, condition=condition)


def max_count_rule(tool_name: str, max_count: int) -> MaxCountToolRule:
    return MaxCountToolRule(tool_name=tool_name, max_count=max_count)


def required_rule(tool_name: str) -> RequiredToolRule:
    return RequiredToolRule(tool_name=tool_name)


# =============================================================================
# Execution state
# =============================================================================

class ToolExecutionState(BaseModel):
    """
    Which tools have been called, and how often, within one execution.

    Attributes:
        called_tools: Tool names in call order.
        tool_call_counts: Calls per tool name.
        last_called_tool: Most recent tool name, if any.
        has_called: Whether any tool has been called.
    """
    called_tools: tuple[str, ...] = ()
    tool_call_counts: Dict[str, int] = Field(default_factory=dict)
    last_called_tool: Optional[str] = None
    has_called: bool = False

    model_config = {"frozen": True}

    def record_call(self, tool_name: str) -> "ToolExecutionState":
        """Return a new state with ``tool_name`` appended."""
        counts = dict(self.tool_call_counts)
        counts[tool_name] = counts.get(tool_name, 0) + 1
        return ToolExecutionState(
            called_tools=self.called_tools + (tool_name,),
            tool_call_counts=counts,
            last_called_tool=tool_name,
            has_called=True,
        )

    def count(self, tool_name: str) -> int:
        return self.tool_call_counts.get(tool_name, 0)
