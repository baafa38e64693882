"""
Standard exceptions for mnemo.

This module defines the hierarchy of exceptions used across the platform.
"""


class MnemoError(Exception):
    """Base exception for all mnemo errors."""

    code = "MNEMO_ERROR"


class ValidationError(MnemoError):
    """Bad arguments or a payload that failed validation."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: dict[str, str] | None = None):
        self.errors = errors or {}
        super().__init__(message)


class NotFoundError(MnemoError):
    """An agent, tool or job that does not exist."""

    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: str | None = None):
        self.resource = resource
        self.identifier = identifier
        if identifier:
            super().__init__(f"{resource} not found: {identifier}")
        else:
            super().__init__(f"{resource} not found")


class ToolExecutionError(MnemoError):
    """A tool handler raised or reported an error."""

    code = "TOOL_EXECUTION_ERROR"

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(f"Tool '{tool_name}' failed: {message}")


class AgentStepError(MnemoError):
    """The model call failed or returned nothing usable."""

    code = "AGENT_STEP_ERROR"

    def __init__(self, agent_id: str, step_number: int, message: str):
        self.agent_id = agent_id
        self.step_number = step_number
        super().__init__(f"Agent {agent_id} step {step_number}: {message}")


class MemoryProcessingError(MnemoError):
    """Background memory consolidation failed."""

    code = "MEMORY_PROCESSING_ERROR"

    def __init__(self, message: str, memory_kind: str | None = None):
        self.memory_kind = memory_kind
        super().__init__(message)


class QueueError(MnemoError):
    """Misuse of the background queue (e.g. unknown job type)."""

    code = "QUEUE_ERROR"
