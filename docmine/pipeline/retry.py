"""Bounded retry with exponential backoff for pipeline steps."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from docmine.errors import ConfigError, MissingDependencyError, ModelInvocationError
from docmine.lib.log import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    """Everything except configuration, missing-dependency and permanent model errors."""
    if isinstance(exc, (ConfigError, MissingDependencyError)):
        return False
    if isinstance(exc, ModelInvocationError):
        return exc.transient
    return isinstance(exc, Exception)


def backoff_delays(retry_attempts: int, retry_delay_ms: int) -> list[float]:
    """Seconds slept between attempts: ``retry_delay_ms * 2**(n-1)`` for n in 1..retries."""
    return [retry_delay_ms * 2 ** (n - 1) / 1000 for n in range(1, retry_attempts + 1)]


class RetryingCall:
    """Call a function up to ``retry_attempts + 1`` times.

    Delays follow ``retry_delay_ms * 2**(attempt - 1)``. ``attempts`` holds
    the number of calls made by the most recent ``__call__``.
    """

    def __init__(
        self,
        retry_attempts: int,
        retry_delay_ms: int,
        *,
        sleep: Callable[[float], None] = time.sleep,
        retry_on: Callable[[BaseException], bool] = is_retryable,
        label: str = "call",
    ) -> None:
        self.retry_attempts = max(0, retry_attempts)
        self.retry_delay_ms = max(0, retry_delay_ms)
        self._sleep = sleep
        self._retry_on = retry_on
        self.label = label
        self.attempts = 0

    def _before_sleep(self, state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else 0
        logger.warning(
            "attempt failed, retrying",
            target=self.label,
            attempt=state.attempt_number,
            max_attempts=self.retry_attempts + 1,
            delay_s=delay,
            error=str(exc),
        )

    def __call__(self, func: Callable[[], T]) -> T:
        self.attempts = 0

        def counted() -> T:
            self.attempts += 1
            return func()

        retryer = Retrying(
            stop=stop_after_attempt(self.retry_attempts + 1),
            wait=wait_exponential(multiplier=self.retry_delay_ms / 1000),
            retry=retry_if_exception(self._retry_on),
            before_sleep=self._before_sleep,
            sleep=self._sleep,
            reraise=True,
        )
        return retryer(counted)


__all__ = ["RetryingCall", "backoff_delays", "is_retryable"]
