"""
Retry policy configuration and decorator.

Exponential backoff with jitter for persistence and provider calls. The
background queue deliberately does not use this: it requeues with a flat delay.
"""

from __future__ import annotations

import asyncio
import functools
import random
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger
from pydantic import BaseModel

from .errors import RetryableError

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Configuration for retry behavior.

    The delay for attempt N is: min(base_delay * (exponential_base ** N), max_delay),
    plus up to 25% jitter when enabled.

    Attributes:
        max_attempts: Maximum number of attempts (including initial).
        base_delay: Initial delay in seconds between retries.
        max_delay: Maximum delay in seconds (caps backoff).
        exponential_base: Base for exponential backoff calculation.
        jitter: Whether to add random jitter to delays.
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True

    model_config = {"frozen": True}

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        return cls(
            max_attempts=settings.PERSISTENCE_RETRY_ATTEMPTS,
            base_delay=settings.PERSISTENCE_RETRY_BASE_DELAY,
        )

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt number.

        Args:
            attempt: The attempt number (0-indexed).

        Returns:
            Delay in seconds before the next retry.
        """
        delay = self.base_delay * (self.exponential_base**attempt)
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay += delay * 0.25 * random.random()

        return delay


DEFAULT_RETRY_POLICY = RetryPolicy()


async def call_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    policy: RetryPolicy | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
    **kwargs: Any,
) -> T:
    """Await ``func`` and retry it while it raises RetryableError.

    Any other exception propagates immediately.

    Args:
        func: Coroutine function to call.
        policy: Retry policy to use. Defaults to DEFAULT_RETRY_POLICY.
        on_retry: Optional callback called before each retry with
                  (attempt, exception, delay).
    """
    retry_policy = policy or DEFAULT_RETRY_POLICY
    name = getattr(func, "__qualname__", repr(func))

    for attempt in range(retry_policy.max_attempts):
        try:
            return await func(*args, **kwargs)
        except RetryableError as e:
            if attempt + 1 >= retry_policy.max_attempts:
                logger.warning(
                    f"[{e.debug_id}] Max retries ({retry_policy.max_attempts}) "
                    f"exceeded for {name}: {e.message_safe}"
                )
                raise

            delay = retry_policy.calculate_delay(attempt)
            logger.info(
                f"[{e.debug_id}] Retry {attempt + 1}/{retry_policy.max_attempts} "
                f"for {name} in {delay:.2f}s: {e.message_safe}"
            )

            if on_retry:
                on_retry(attempt, e, delay)

            await asyncio.sleep(delay)

    raise RuntimeError(f"Retry loop exited unexpectedly in {name}")


def with_retry(
    policy: RetryPolicy | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator form of :func:`call_with_retry`.

    Example:
        @with_retry(RetryPolicy(max_attempts=5))
        async def append(record: MessageRecord) -> MessageRecord:
            ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await call_with_retry(
                func, *args, policy=policy, on_retry=on_retry, **kwargs
            )

        return wrapper

    return decorator
