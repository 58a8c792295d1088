"""Reusable retry policy built on tenacity.

One RetryPolicy (max attempts, base delay, multiplier, max delay) is applied
at every network call site that retries. The wait before retry ``n`` is
``base_delay * multiplier ** (n - 1)`` capped at ``max_delay``, so with the
defaults the delays double starting from the base.

Only TransientProviderError is retried. Exhausting all attempts raises
RetryExhaustedError naming the operation and the last failure.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.app.core.monitoring import pipeline_retries_total
from src.app.sessions.errors import RetryExhaustedError, TransientProviderError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential-backoff retry configuration.

    Args:
        max_attempts: Total attempts including the first call.
        base_delay: Delay in seconds before the first retry.
        multiplier: Growth factor applied to the delay on each retry.
        max_delay: Upper bound on any single delay.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    def delay_for(self, attempt_number: int) -> float:
        """Delay applied after failed attempt ``attempt_number`` (1-based)."""
        return min(self.max_delay, self.base_delay * self.multiplier ** (attempt_number - 1))

    def _retrying(self, operation: str, sleep: SleepFn) -> AsyncRetrying:
        def _before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            pipeline_retries_total.labels(operation=operation).inc()
            logger.warning(
                "retry.scheduled",
                operation=operation,
                attempt=state.attempt_number,
                max_attempts=self.max_attempts,
                delay_s=state.next_action.sleep if state.next_action else None,
                error=str(exc),
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.base_delay,
                exp_base=self.multiplier,
                max=self.max_delay,
            ),
            retry=retry_if_exception_type(TransientProviderError),
            before_sleep=_before_sleep,
            sleep=sleep,
        )

    async def call(
        self,
        operation: str,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        sleep: SleepFn = asyncio.sleep,
        **kwargs: Any,
    ) -> T:
        """Run ``fn(*args, **kwargs)`` under this policy.

        Args:
            operation: Name used in logs, metrics, and the terminal error.
            fn: Async callable performing one attempt.
            sleep: Awaitable sleep used between attempts.

        Returns:
            The first successful result.

        Raises:
            RetryExhaustedError: If every attempt raised TransientProviderError.
            PipelineError: Any non-transient error is raised immediately.
        """
        try:
            async for attempt in self._retrying(operation, sleep):
                with attempt:
                    return await fn(*args, **kwargs)
        except RetryError as exc:
            last_error = exc.last_attempt.exception()
            logger.error(
                "retry.exhausted",
                operation=operation,
                attempts=exc.last_attempt.attempt_number,
                error=str(last_error),
            )
            raise RetryExhaustedError(
                operation, exc.last_attempt.attempt_number, last_error
            ) from last_error
        raise AssertionError("unreachable: tenacity yields until success or RetryError")
