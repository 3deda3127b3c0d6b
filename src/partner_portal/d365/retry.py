"""Exponential backoff retry for async calls."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from .errors import RETRYABLE_STATUS_CODES, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_RATIO = 0.25


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff settings. Delays are in seconds."""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    jitter: bool = True
    retryable_status_codes: frozenset[int] = RETRYABLE_STATUS_CODES

    def delay_for(self, attempt: int, rng: random.Random | Any = random) -> float:
        """Delay after failed ``attempt`` (1-based), capped then jittered by +/-25%."""
        delay = min(self.initial_delay * self.backoff_factor ** (attempt - 1), self.max_delay)
        if self.jitter:
            delay += (rng.random() * 2 - 1) * delay * JITTER_RATIO
        return max(0.0, delay)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


def should_retry(exc: BaseException) -> bool:
    """Errors flag themselves via ``is_retryable``; bare timeouts and transport errors retry."""
    flag = getattr(exc, "is_retryable", None)
    if flag is not None:
        return bool(flag)
    return isinstance(exc, (httpx.TimeoutException, httpx.TransportError, asyncio.TimeoutError))


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    deadline: float | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    on_retry: Callable[[int, float, BaseException], Any] | None = None,
) -> T:
    """Call ``fn`` until it succeeds, a non-retryable error is raised, or retries run out.

    ``deadline`` is a ``time.monotonic()`` value. Each attempt is cancelled
    when it is reached, and no retry is started that would begin after it.
    Either case raises ``RetryExhaustedError`` with ``deadline_exceeded``.
    """
    policy = policy or RetryPolicy()
    total_delay = 0.0
    last_error: BaseException | None = None

    for attempt in range(1, policy.max_attempts + 1):
        logger.debug("Executing attempt %d/%d", attempt, policy.max_attempts)
        try:
            if deadline is None:
                result = await fn()
            else:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise RetryExhaustedError(attempt - 1, total_delay, last_error, True)
                try:
                    result = await asyncio.wait_for(fn(), timeout=remaining)
                except asyncio.TimeoutError as exc:
                    raise RetryExhaustedError(attempt, total_delay, last_error or exc, True) from exc
        except RetryExhaustedError:
            raise
        except Exception as exc:
            last_error = exc
            if not should_retry(exc):
                raise
            if attempt >= policy.max_attempts:
                break

            delay = policy.delay_for(attempt)
            if deadline is not None and time.monotonic() + delay >= deadline:
                raise RetryExhaustedError(attempt, total_delay, exc, True) from exc

            logger.info(
                "Retryable error on attempt %d, waiting %.2fs: %s", attempt, delay, exc
            )
            if on_retry is not None:
                on_retry(attempt, delay, exc)
            total_delay += delay
            await sleep(delay)
        else:
            if attempt > 1:
                logger.info("Retry successful on attempt %d after %.2fs", attempt, total_delay)
            return result

    raise RetryExhaustedError(policy.max_attempts, total_delay, last_error) from last_error
