"""
Tool Registry

In-process implementation of the tool-execution collaborator. Tools are
registered with a name, a description and a parameter schema; the registry
looks them up by name, validates arguments and runs the handler.

Handlers receive ``(arguments, context)`` and may be sync or async. A handler
may return a ToolExecutionResult directly, or any other value which is then
treated as a successful result. Sync handlers run in a worker thread so they
never block the event loop.

Example:
```python
registry = ToolRegistry()

@registry.tool("add", "Add two integers", {"a": {"type": "integer"}, "b": {"type": "integer"}})
def add(args, context):
    return args["a"] + args["b"]

result = await registry.execute("add", {"a": 2, "b": 3}, context)
assert result.result == 5
```
"""
from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from loguru import logger

from mnemo_core.domain.exceptions import NotFoundError, ToolExecutionError, ValidationError
from mnemo_core.domain.schemas import ToolExecutionResult, ToolParameterSchema, ToolSchema
from mnemo_core.runtime.context import ToolExecutionContext

ToolHandler = Callable[[Dict[str, Any], ToolExecutionContext], Any]

_JSON_TYPES: Dict[str, tuple] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list, tuple),
    "object": (dict,),
}


@dataclass
class ToolDefinition:
    """
    A registered tool.

    Attributes:
        name: Unique tool name
        description: What the tool does (shown to the model)
        parameters: JSON schema of the arguments
        handler: Implementation
        return_char_limit: Truncate longer results to this many characters
        tags: Free-form labels for grouping
    """
    name: str
    description: str
    parameters: ToolParameterSchema
    handler: Optional[ToolHandler] = None
    return_char_limit: Optional[int] = None
    tags: List[str] = field(default_factory=list)

    def to_schema(self) -> ToolSchema:
        return ToolSchema(name=self.name, description=self.description, parameters=self.parameters)


def create_tool(
    name: str,
    description: str,
    properties: Optional[Dict[str, Dict[str, Any]]] = None,
    handler: Optional[ToolHandler] = None,
    required: Optional[List[str]] = None,
    return_char_limit: Optional[int] = None,
    tags: Optional[List[str]] = None,
) -> ToolDefinition:
    """Build a ToolDefinition; every property is required unless ``required`` says otherwise."""
    properties = properties or {}
    return ToolDefinition(
        name=name,
        description=description,
        parameters=ToolParameterSchema(
            properties=properties,
            required=list(properties) if required is None else required,
        ),
        handler=handler,
        return_char_limit=return_char_limit,
        tags=tags or [],
    )


class ToolRegistry:
    """Registry of tools, keyed by name."""

    def __init__(self, tools: Iterable[ToolDefinition] = ()):
        self._tools: Dict[str, ToolDefinition] = {}
        for definition in tools:
            self.register(definition)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def register(self, definition: ToolDefinition, replace: bool = False) -> ToolDefinition:
        """
        Add a tool.

        Raises:
            ValidationError: If the name is taken and ``replace`` is False.
        """
        if definition.name in self._tools and not replace:
            raise ValidationError(f"Tool '{definition.name}' is already registered")
        self._tools[definition.name] = definition
        logger.debug(f"Registered tool '{definition.name}'")
        return definition

    def tool(
        self,
        name: str,
        description: str,
        properties: Optional[Dict[str, Dict[str, Any]]] = None,
        **options: Any,
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator that registers the decorated function as a tool handler."""

        def decorator(fn: ToolHandler) -> ToolHandler:
            self.register(create_tool(name, description, properties, handler=fn, **options))
            return fn

        return decorator

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def get_or_raise(self, name: str) -> ToolDefinition:
        definition = self._tools.get(name)
        if definition is None:
            raise NotFoundError("Tool", name)
        return definition

    def names(self) -> List[str]:
        return list(self._tools)

    def by_tags(self, tags: Iterable[str]) -> List[ToolDefinition]:
        wanted = set(tags)
        return [t for t in self._tools.values() if wanted.intersection(t.tags)]

    def schemas(self, names: Optional[Iterable[str]] = None) -> List[ToolSchema]:
        """Schemas for ``names`` (all tools when None)."""
        if names is None:
            return [t.to_schema() for t in self._tools.values()]
        return [self.get_or_raise(n).to_schema() for n in names]

    def to_llm_schemas(self, names: Optional[Iterable[str]] = None) -> List[dict]:
        return [s.to_llm() for s in self.schemas(names)]

    def validate_args(self, name: str, arguments: Dict[str, Any]) -> List[str]:
        """
        Check ``arguments`` against the tool's schema.

        Returns:
            Human-readable problems; empty when the arguments are valid.
        """
        schema = self.get_or_raise(name).parameters
        errors: List[str] = []

        for param in schema.required:
            if arguments.get(param) is None:
                errors.append(f"Missing required parameter: {param}")

        for key, value in arguments.items():
            prop = schema.properties.get(key)
            if prop is None:
                if not schema.additional_properties:
                    errors.append(f"Unknown parameter: {key}")
                continue
            if value is None:
                continue

            expected = prop.get("type")
            python_types = _JSON_TYPES.get(expected)
            # bool is an int subclass; keep it out of integer/number
            is_bool_mismatch = isinstance(value, bool) and expected in ("integer", "number")
            if python_types and (not isinstance(value, python_types) or is_bool_mismatch):
                errors.append(
                    f"Parameter '{key}' must be of type {expected}, got {type(value).__name__}"
                )

            if "enum" in prop and value not in prop["enum"]:
                allowed = ", ".join(str(v) for v in prop["enum"])
                errors.append(f"Parameter '{key}' must be one of: {allowed}")

        return errors

    async def execute(
        self,
        name: str,
        arguments: Dict[str, Any],
        context: ToolExecutionContext,
    ) -> ToolExecutionResult:
        """
        Run a tool.

        Handler errors are reported as ``success=False``, never raised.

        Raises:
            NotFoundError: If the tool is not registered.
            ToolExecutionError: If the tool has no handler.
        """
        definition = self.get_or_raise(name)
        if definition.handler is None:
            raise ToolExecutionError(name, "no handler registered")

        start = time.perf_counter()
        try:
            logger.debug(f"[{context.agent_id}] Executing tool '{name}' with args={arguments}")
            if inspect.iscoroutinefunction(definition.handler):
                outcome = await definition.handler(arguments, context)
            else:
                outcome = await asyncio.to_thread(definition.handler, arguments, context)
        except Exception as e:
            elapsed = (time.perf_counter() - start) * 1000
            logger.error(f"[{context.agent_id}] Tool '{name}' failed after {elapsed:.1f}ms: {e}")
            return ToolExecutionResult(success=False, error=str(e) or type(e).__name__, execution_time_ms=elapsed)

        result = outcome if isinstance(outcome, ToolExecutionResult) else ToolExecutionResult(
            success=True, result=outcome
        )
        result = self._apply_char_limit(definition, result)
        elapsed = (time.perf_counter() - start) * 1000
        logger.debug(
            f"[{context.agent_id}] Tool '{name}' completed (success={result.success}, {elapsed:.1f}ms)"
        )
        return result.model_copy(update={"execution_time_ms": elapsed})

    @staticmethod
    def _apply_char_limit(definition: ToolDefinition, result: ToolExecutionResult) -> ToolExecutionResult:
        if not definition.return_char_limit or result.result is None:
            return result
        text = result.result if isinstance(result.result, str) else str(result.result)
        if len(text) <= definition.return_char_limit:
            return result
        return result.model_copy(update={"result": text[: definition.return_char_limit] + "..."})
