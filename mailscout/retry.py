"""Backoff policy and retry wrapper for outbound calls.

``next_delay`` and ``is_retryable`` are pure. ``with_retry`` drives an async
operation through them, and ``retryable`` is the decorator form used by the
scraper and classifier clients.
"""
from __future__ import annotations

import asyncio
import functools
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from loguru import logger

from mailscout.errors import AppError, RateLimitError

T = TypeVar("T")

RetryPattern = str | re.Pattern[str]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    retryable_patterns: tuple[RetryPattern, ...] = ()


def next_delay(attempt: int, initial_delay: float, max_delay: float) -> float:
    """Exponential backoff without jitter: ``initial * 2**(attempt-1)``, capped."""
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    return min(initial_delay * (2 ** (attempt - 1)), max_delay)


def error_kind(error: BaseException) -> str:
    if isinstance(error, AppError):
        return error.kind
    return type(error).__name__


def is_retryable(error: BaseException, patterns: Iterable[RetryPattern]) -> bool:
    """True when the error's message or kind matches any pattern."""
    message = str(error)
    kind = error_kind(error)
    for pattern in patterns:
        if isinstance(pattern, str):
            if pattern in message or pattern in kind:
                return True
        elif pattern.search(message) or pattern.search(kind):
            return True
    return False


def _delay_for(error: BaseException, attempt: int, policy: RetryPolicy) -> float:
    delay = next_delay(attempt, policy.initial_delay, policy.max_delay)
    if isinstance(error, RateLimitError) and error.retry_after is not None:
        delay = min(max(delay, float(error.retry_after)), policy.max_delay)
    return delay


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str = "operation",
) -> T:
    """Run ``operation`` at most ``policy.max_attempts`` times.

    Errors that are not retryable (by class or by pattern) are raised on the
    first occurrence. When attempts are exhausted the last error is raised
    unchanged.
    """
    max_attempts = max(int(policy.max_attempts), 1)
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            if isinstance(exc, AppError) and not exc.retryable:
                raise
            if not is_retryable(exc, policy.retryable_patterns):
                raise
            if attempt >= max_attempts:
                logger.warning(
                    f"{label} failed after {attempt} attempts: {error_kind(exc)}: {exc}"
                )
                raise
            delay = _delay_for(exc, attempt, policy)
            logger.warning(
                f"{label} attempt {attempt}/{max_attempts} failed "
                f"({error_kind(exc)}: {exc}); retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)
            attempt += 1


def retryable(
    policy: RetryPolicy | None = None,
    *,
    label: str | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Wrap an async callable with ``with_retry``.

    Without an explicit policy the wrapped method's instance must expose a
    ``retry_policy`` attribute.
    """

    def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        name = label or fn.__qualname__

        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            active = policy if policy is not None else getattr(args[0], "retry_policy")
            return await with_retry(lambda: fn(*args, **kwargs), active, label=name)

        return wrapper

    return decorator
