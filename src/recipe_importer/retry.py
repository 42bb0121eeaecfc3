"""Async retry utilities.

The core primitive is ``retry_async``: it runs an awaitable factory up to
``max_attempts`` times and returns a ``Result`` (``Ok`` or ``Err``) instead of
raising, so callers decide how a final failure is surfaced. The same
combinator backs transport retries (exponential backoff with jitter on
429/5xx) and the parsing orchestrator (linear backoff between whole
attempts).

Example:
    >>> result = await retry_async(
    ...     lambda: client.complete(messages),
    ...     max_attempts=3,
    ...     backoff=exponential_backoff(initial_delay=0.5, max_delay=8.0),
    ...     retryable=(RetryableError,),
    ... )
    >>> if isinstance(result, Err):
    ...     raise result.error
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

BackoffFn = Callable[[int], float]
"""Maps the number of the attempt that just failed (1-indexed) to a delay in seconds."""


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome."""

    value: T
    attempts: int = 1


@dataclass(frozen=True)
class Err:
    """Failed outcome carrying the last exception."""

    error: Exception
    attempts: int

    def unwrap(self) -> None:
        """Raise the captured exception."""
        raise self.error


Result = Union[Ok[T], Err]


def linear_backoff(base_delay: float, max_delay: float | None = None) -> BackoffFn:
    """Delay grows by ``base_delay`` per failed attempt (1s, 2s, 3s, ...)."""

    def backoff(attempt: int) -> float:
        delay = base_delay * attempt
        return min(delay, max_delay) if max_delay is not None else delay

    return backoff


def exponential_backoff(
    initial_delay: float = 0.5,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> BackoffFn:
    """Capped exponential delay, optionally with full jitter.

    Without jitter the delay follows ``min(initial * base^(attempt-1), max)``.
    With jitter a uniform value in ``[0, that delay]`` is used instead.
    """

    def backoff(attempt: int) -> float:
        delay = min(initial_delay * exponential_base ** (attempt - 1), max_delay)
        if jitter:
            return random.uniform(0, delay)
        return delay

    return backoff


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    backoff: BackoffFn | None = None,
    retryable: tuple[type[Exception], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    name: str | None = None,
) -> Result[T]:
    """Run ``operation`` until it succeeds or attempts run out.

    Exceptions outside ``retryable`` stop the loop immediately and are
    returned as ``Err`` on that attempt.

    Args:
        operation: Zero-argument factory producing a fresh awaitable per attempt
        max_attempts: Maximum number of attempts (including the first)
        backoff: Delay function; defaults to exponential backoff with jitter
        retryable: Exception types worth another attempt
        sleep: Sleep coroutine (injectable for tests)
        name: Label used in log messages

    Returns:
        ``Ok(value, attempts)`` or ``Err(last_exception, attempts)``
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    backoff = backoff or exponential_backoff()
    label = name or getattr(operation, "__name__", "operation")

    for attempt in range(1, max_attempts + 1):
        try:
            value = await operation()
            return Ok(value, attempts=attempt)
        except retryable as e:
            if attempt >= max_attempts:
                logger.error(f"All {max_attempts} attempts failed for {label}: {e}")
                return Err(e, attempts=attempt)
            delay = backoff(attempt)
            logger.warning(
                f"Attempt {attempt}/{max_attempts} failed for {label}: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            await sleep(delay)
        except Exception as e:
            logger.debug(f"Non-retryable failure for {label} on attempt {attempt}: {e}")
            return Err(e, attempts=attempt)

    raise RuntimeError("Retry logic error: loop exited without a result")  # pragma: no cover


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy for a transport layer.

    Example:
        >>> config = RetryConfig(max_attempts=5, initial_delay=0.5)
        >>> result = await retry_async(op, **config.to_kwargs())
    """

    max_attempts: int = 3
    initial_delay: float = 0.5
    max_delay: float = 8.0
    exponential_base: float = 2.0
    jitter: bool = True

    def backoff(self) -> BackoffFn:
        """Build the exponential backoff function for this policy."""
        return exponential_backoff(
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            exponential_base=self.exponential_base,
            jitter=self.jitter,
        )

    def to_kwargs(self) -> dict[str, int | BackoffFn]:
        """Convert to kwargs for ``retry_async``."""
        return {"max_attempts": self.max_attempts, "backoff": self.backoff()}
