"""Unit tests for app/agent/tools/registry.py"""

import pytest

from app.agent.tools.registry import ToolRegistry, create_tool
from mnemo_core.domain.exceptions import NotFoundError, ToolExecutionError, ValidationError
from mnemo_core.domain.schemas import ToolExecutionResult
from mnemo_core.runtime.context import ToolExecutionContext


@pytest.fixture
def context():
    return ToolExecutionContext(agent_id="agent-1", user_id="user-1")


@pytest.fixture
def registry():
    registry = ToolRegistry()

    @registry.tool(
        "add",
        "Add two integers",
        {"a": {"type": "integer"}, "b": {"type": "integer"}},
        tags=["math"],
    )
    def add(args, context):
        return args["a"] + args["b"]

    @registry.tool("echo", "Echo text back", {"text": {"type": "string"}}, return_char_limit=5)
    async def echo(args, context):
        return args["text"]

    @registry.tool("explode", "Always fails")
    async def explode(args, context):
        raise RuntimeError("kaboom")

    @registry.tool("whoami", "Return the calling user")
    async def whoami(args, context):
        return ToolExecutionResult(success=True, result=context.user_id)

    return registry


class TestRegistration:
    def test_names_and_len(self, registry):
        assert registry.names() == ["add", "echo", "explode", "whoami"]
        assert len(registry) == 4
        assert "add" in registry

    def test_duplicate_rejected(self, registry):
        with pytest.raises(ValidationError):
            registry.register(create_tool("add", "again"))

    def test_replace_allowed(self, registry):
        registry.register(create_tool("add", "replacement"), replace=True)

        assert registry.get("add").description == "replacement"

    def test_unregister(self, registry):
        registry.unregister("add")
        registry.unregister("missing")

        assert registry.get("add") is None

    def test_get_or_raise(self, registry):
        with pytest.raises(NotFoundError):
            registry.get_or_raise("missing")

    def test_by_tags(self, registry):
        assert [t.name for t in registry.by_tags(["math"])] == ["add"]

    def test_create_tool_requires_all_properties_by_default(self):
        tool = create_tool("t", "d", {"x": {"type": "string"}, "y": {"type": "string"}})

        assert tool.parameters.required == ["x", "y"]

    def test_to_llm_schemas(self, registry):
        schemas = registry.to_llm_schemas(["add"])

        assert schemas[0]["type"] == "function"
        assert schemas[0]["function"]["name"] == "add"
        assert schemas[0]["function"]["parameters"]["required"] == ["a", "b"]


class TestValidateArgs:
    def test_valid(self, registry):
        assert registry.validate_args("add", {"a": 1, "b": 2}) == []

    def test_missing_required(self, registry):
        assert registry.validate_args("add", {"a": 1}) == ["Missing required parameter: b"]

    def test_wrong_type(self, registry):
        errors = registry.validate_args("add", {"a": "1", "b": 2})

        assert errors == ["Parameter 'a' must be of type integer, got str"]

    def test_bool_is_not_integer(self, registry):
        assert registry.validate_args("add", {"a": True, "b": 2})

    def test_enum(self):
        registry = ToolRegistry([
            create_tool("mode", "Pick a mode", {"m": {"type": "string", "enum": ["fast", "slow"]}})
        ])

        assert registry.validate_args("mode", {"m": "medium"}) == [
            "Parameter 'm' must be one of: fast, slow"
        ]


class TestExecute:
    @pytest.mark.asyncio
    async def test_sync_handler(self, registry, context):
        result = await registry.execute("add", {"a": 2, "b": 3}, context)

        assert result.success is True
        assert result.result == 5
        assert result.execution_time_ms is not None

    @pytest.mark.asyncio
    async def test_handler_returning_result_object(self, registry, context):
        result = await registry.execute("whoami", {}, context)

        assert result.result == "user-1"

    @pytest.mark.asyncio
    async def test_handler_error_becomes_failure(self, registry, context):
        result = await registry.execute("explode", {}, context)

        assert result.success is False
        assert result.error == "kaboom"

    @pytest.mark.asyncio
    async def test_long_result_truncated(self, registry, context):
        result = await registry.execute("echo", {"text": "abcdefgh"}, context)

        assert result.result == "abcde..."

    @pytest.mark.asyncio
    async def test_unknown_tool_raises(self, registry, context):
        with pytest.raises(NotFoundError):
            await registry.execute("missing", {}, context)

    @pytest.mark.asyncio
    async def test_tool_without_handler_raises(self, context):
        registry = ToolRegistry([create_tool("stub", "No implementation")])

        with pytest.raises(ToolExecutionError):
            await registry.execute("stub", {}, context)
