"""
Domain schemas shared between the agent runtime and its collaborators.

These are the shapes that cross the boundary to persistence, the model
provider and tool execution. Storage format and provider wire format are the
collaborators' concern; only these in-process shapes are fixed here.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class AgentProfile(BaseModel):
    """Static configuration of one agent."""

    id: str
    name: str = "agent"
    system: str = Field(default="", description="Base system prompt")
    organization_id: Optional[str] = None
    created_by_id: Optional[str] = None
    tool_rules: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Raw tool rule definitions attached to the agent",
    )
    core_memory: Dict[str, str] = Field(
        default_factory=dict,
        description="Core memory blocks rendered into the system prompt (label -> value)",
    )
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class ToolCall(BaseModel):
    """A tool call requested by the model."""

    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class ToolReturn(BaseModel):
    """The result of executing one ToolCall."""

    tool_call_id: str
    name: str
    result: Any = None
    error: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_text(self) -> str:
        if isinstance(self.result, str):
            return self.result
        return json.dumps(self.result, default=str)


class ToolExecutionResult(BaseModel):
    """Outcome reported by the tool-execution collaborator."""

    success: bool
    result: Any = None
    error: Optional[str] = None
    execution_time_ms: Optional[float] = None


class ToolParameterSchema(BaseModel):
    """JSON schema for tool parameters."""

    type: Literal["object"] = "object"
    properties: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    required: List[str] = Field(default_factory=list)
    additional_properties: bool = True


class ToolSchema(BaseModel):
    """A tool as advertised to the model."""

    name: str
    description: str = ""
    parameters: ToolParameterSchema = Field(default_factory=ToolParameterSchema)

    def to_llm(self) -> dict:
        """OpenAI function-calling format."""
        parameters = {
            "type": "object",
            "properties": self.parameters.properties,
            "required": self.parameters.required,
        }
        if not self.parameters.additional_properties:
            parameters["additionalProperties"] = False
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


class MessageRecord(BaseModel):
    """A persisted conversation entry (user / assistant / tool-call / tool-return)."""

    id: str = Field(default_factory=lambda: new_id("msg"))
    agent_id: str
    role: Literal["system", "user", "assistant", "tool"]
    text: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    user_id: str = ""
    organization_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}


class AgentContext(BaseModel):
    """Recent context loaded from persistence for one turn."""

    messages: List[MessageRecord] = Field(default_factory=list)
    tools: List[ToolSchema] = Field(default_factory=list)
    tool_rules: List[Any] = Field(
        default_factory=list,
        description="Raw rule dicts or already-parsed rule objects",
    )


class ModelUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0


class ModelRequest(BaseModel):
    """Input to the model-call collaborator."""

    system_prompt: str
    messages: List[MessageRecord]
    tools: List[ToolSchema] = Field(default_factory=list)
    temperature: float = 0.7
    max_output_tokens: int = 4096


class ModelReply(BaseModel):
    """Output of the model-call collaborator."""

    text: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
    usage: Optional[ModelUsage] = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)
