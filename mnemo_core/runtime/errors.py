"""
Standardized error model with retry semantics.

Collaborators at the I/O edge (persistence, model provider) raise these so
that the retry layer can tell transient failures from permanent ones.
"""

from __future__ import annotations

import uuid
from typing import Any


class ServiceError(Exception):
    """Service error with retry classification.

    Attributes:
        code: Error code for programmatic handling.
        message_safe: Safe message for logging and user display.
        message_debug: Optional detailed message for debugging.
        retryable: Whether this error can be retried.
        cause: Optional underlying exception.
        debug_id: Unique identifier for log correlation.
    """

    retryable_default = False

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        retryable: bool | None = None,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(message_safe)
        self.code = code
        self.message_safe = message_safe
        self.message_debug = message_debug
        self.retryable = self.retryable_default if retryable is None else retryable
        self.cause = cause
        self.debug_id = debug_id or str(uuid.uuid4())[:8]

    def __str__(self) -> str:
        return f"[{self.code}] {self.message_safe}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"message_safe={self.message_safe!r}, "
            f"retryable={self.retryable}, "
            f"debug_id={self.debug_id!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for API responses (excludes debug info)."""
        return {
            "code": self.code,
            "message": self.message_safe,
            "debug_id": self.debug_id,
        }

    @classmethod
    def wrap(cls, code: str, exc: Exception) -> "ServiceError":
        """Wrap an arbitrary exception, keeping it as the cause."""
        if isinstance(exc, ServiceError):
            return exc
        return cls(code=code, message_safe=str(exc) or type(exc).__name__, cause=exc)


class RetryableError(ServiceError):
    """Transient failure: timeouts, lock contention, provider rate limits."""

    retryable_default = True


class ErrorCode:
    """Error codes raised by the persistence layer."""

    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    STORAGE_READ_ERROR = "STORAGE_READ_ERROR"
    STORAGE_WRITE_ERROR = "STORAGE_WRITE_ERROR"
