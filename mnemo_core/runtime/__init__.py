"""
Service runtime layer for mnemo.

This package provides shared infrastructure for reliability:
- ToolExecutionContext: Caller identity passed to tools
- ServiceError: Standardized errors with retry semantics
- RetryPolicy: Exponential backoff for persistence calls
"""

from .context import ToolExecutionContext
from .errors import ErrorCode, RetryableError, ServiceError
from .retry import RetryPolicy, call_with_retry, with_retry

__all__ = [
    "ToolExecutionContext",
    "ErrorCode",
    "ServiceError",
    "RetryableError",
    "RetryPolicy",
    "call_with_retry",
    "with_retry",
]
