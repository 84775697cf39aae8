"""Bounded retry executor.

The executor holds no policy of its own: the caller decides what is worth
retrying, either with a predicate or by raising RetryableError /
NonRetryableError from the action. Waiting between attempts honours the
overall deadline and aborts as soon as the stop event is set or the task is
cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .errors import DeadlineExceededError, ReconcileCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryableError(Exception):
    """Raised by an action to request another attempt.

    Chain the underlying failure with ``raise RetryableError(...) from err``;
    the executor records the chained cause as the last error.
    """

    @property
    def cause(self) -> BaseException:
        return self.__cause__ or self


class NonRetryableError(Exception):
    """Raised by an action to stop retrying; the chained cause is re-raised."""

    @property
    def cause(self) -> BaseException:
        return self.__cause__ or self


@dataclass
class RetryContext:
    """Bookkeeping for one ``RetryExecutor.run`` invocation."""

    started_at: float
    deadline: float
    attempts: int = 0
    last_error: BaseException | None = None

    def elapsed(self, now: float) -> float:
        return now - self.started_at

    def remaining(self, now: float) -> float:
        return self.deadline - now


def never_retry(_: BaseException) -> bool:
    return False


class RetryExecutor:
    """Re-invokes an async action until it succeeds, fails fatally, or time runs out."""

    def __init__(
        self,
        timeout: float,
        delay: float,
        *,
        is_retryable: Callable[[BaseException], bool] = never_retry,
        backoff: float = 1.0,
        max_delay: float | None = None,
        stop_event: asyncio.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
        description: str = "action",
    ) -> None:
        """Initialize the executor.

        Args:
            timeout: Overall budget in seconds, measured from the first attempt.
            delay: Wait before the second attempt.
            is_retryable: Classifies exceptions not wrapped in RetryableError or
                NonRetryableError.
            backoff: Multiplier applied to the delay after each retry.
            max_delay: Upper bound for the delay once backoff is applied.
            stop_event: When set, any pending wait aborts with
                ReconcileCancelledError.
            clock: Monotonic time source.
            description: Used in log messages.
        """
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if delay < 0:
            raise ValueError("delay must not be negative")
        if backoff < 1.0:
            raise ValueError("backoff must be at least 1.0")
        self._timeout = timeout
        self._delay = delay
        self._is_retryable = is_retryable
        self._backoff = backoff
        self._max_delay = max_delay
        self._stop_event = stop_event
        self._clock = clock
        self._description = description

    async def run(self, action: Callable[[], Awaitable[T]]) -> T:
        """Run ``action`` under this executor's policy.

        Raises:
            DeadlineExceededError: The budget ran out after a retryable failure.
            ReconcileCancelledError: The stop event was set.
            Exception: Any failure classified as non-retryable, unchanged.
        """
        now = self._clock()
        context = RetryContext(started_at=now, deadline=now + self._timeout)
        delay = self._delay

        while True:
            self._raise_if_stopped(context)
            context.attempts += 1
            try:
                return await action()
            except NonRetryableError as e:
                raise e.cause
            except RetryableError as e:
                cause = e.cause
            except Exception as e:
                if not self._is_retryable(e):
                    raise
                cause = e

            context.last_error = cause
            remaining = context.remaining(self._clock())
            if remaining <= 0:
                logger.warning(
                    "Retry budget exhausted",
                    extra={
                        "action": self._description,
                        "attempts": context.attempts,
                        "timeout_seconds": self._timeout,
                        "error": str(cause),
                    },
                )
                raise DeadlineExceededError(self._timeout, cause, context.attempts) from cause

            wait = min(delay, remaining)
            logger.debug(
                "Retrying after transient failure",
                extra={
                    "action": self._description,
                    "attempt": context.attempts,
                    "wait_seconds": round(wait, 3),
                    "error": str(cause),
                },
            )
            await self._wait(wait, context)
            delay = delay * self._backoff
            if self._max_delay is not None:
                delay = min(delay, self._max_delay)

    def _raise_if_stopped(self, context: RetryContext) -> None:
        if self._stop_event is not None and self._stop_event.is_set():
            raise ReconcileCancelledError(
                f"{self._description} cancelled after {context.attempts} attempt(s)"
            ) from context.last_error

    async def _wait(self, seconds: float, context: RetryContext) -> None:
        if self._stop_event is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            return
        self._raise_if_stopped(context)
