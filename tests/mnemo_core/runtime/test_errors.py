"""Unit tests for the ServiceError hierarchy and domain exceptions."""

import pytest

from mnemo_core.domain.exceptions import (
    AgentStepError,
    MnemoError,
    NotFoundError,
    ToolExecutionError,
    ValidationError,
)
from mnemo_core.runtime.errors import (
    ErrorCode,
    RetryableError,
    ServiceError,
)


class TestServiceError:
    """Tests for ServiceError base class."""

    def test_create_with_required_fields(self):
        """Should create error with required fields."""
        error = ServiceError(code="TEST_ERROR", message_safe="Something went wrong")

        assert error.code == "TEST_ERROR"
        assert error.message_safe == "Something went wrong"
        assert error.message_debug is None
        assert error.retryable is False
        assert error.cause is None
        assert error.debug_id

    def test_str_representation(self):
        """Should format as [CODE] message."""
        error = ServiceError(code="MY_CODE", message_safe="My message")

        assert str(error) == "[MY_CODE] My message"

    def test_to_dict_excludes_debug_details(self):
        error = ServiceError(
            code=ErrorCode.STORAGE_READ_ERROR,
            message_safe="Oops",
            message_debug="stack",
            debug_id="abc",
        )

        assert error.to_dict() == {"code": "STORAGE_READ_ERROR", "message": "Oops", "debug_id": "abc"}

    def test_wrap_keeps_cause(self):
        cause = ConnectionError("reset")

        error = RetryableError.wrap(ErrorCode.STORAGE_UNAVAILABLE, cause)

        assert isinstance(error, RetryableError)
        assert error.retryable is True
        assert error.cause is cause
        assert error.message_safe == "reset"

    def test_wrap_returns_service_errors_unchanged(self):
        original = ServiceError(code=ErrorCode.STORAGE_WRITE_ERROR, message_safe="constraint")

        assert RetryableError.wrap(ErrorCode.STORAGE_READ_ERROR, original) is original


class TestRetryClassification:
    def test_retryable_error_defaults_to_retryable(self):
        assert RetryableError(code="X", message_safe="x").retryable is True

    def test_service_error_defaults_to_not_retryable(self):
        assert ServiceError(code="X", message_safe="x").retryable is False

    def test_explicit_flag_wins(self):
        assert RetryableError(code="X", message_safe="x", retryable=False).retryable is False


class TestDomainExceptions:
    def test_not_found_message(self):
        error = NotFoundError("Tool", "search")

        assert str(error) == "Tool not found: search"
        assert error.code == "NOT_FOUND"
        assert isinstance(error, MnemoError)

    def test_validation_error_carries_details(self):
        error = ValidationError("bad", {"field": "name"})

        assert error.errors == {"field": "name"}

    def test_tool_execution_error_message(self):
        assert str(ToolExecutionError("search", "timeout")) == "Tool 'search' failed: timeout"

    def test_agent_step_error_message(self):
        error = AgentStepError("agent-1", 2, "Model call failed")

        assert str(error) == "Agent agent-1 step 2: Model call failed"
        assert error.step_number == 2

    def test_domain_errors_are_exceptions(self):
        with pytest.raises(MnemoError):
            raise NotFoundError("Agent")
