"""Retry with a fixed delay between attempts, shared by fetching and storage."""

import logging
import time
from typing import Callable, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _log_retry(label: str) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "%s: attempt %d failed (%s), retrying",
            label, state.attempt_number, exc,
        )

    return before_sleep


def retry_with_backoff(
    fn: Callable[[], T],
    *,
    attempts: int,
    delay: float,
    retry_on: type[BaseException] | tuple[type[BaseException], ...],
    label: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
    on_attempt: Callable[[int], None] | None = None,
) -> T:
    """
    Call ``fn`` up to ``attempts`` times, sleeping ``delay`` seconds between tries.

    Only exceptions matching ``retry_on`` are retried; anything else propagates
    immediately. When attempts run out the last exception is re-raised.
    ``on_attempt`` is called with the attempt number before every try.
    """

    attempt = 0

    def wrapped() -> T:
        nonlocal attempt
        attempt += 1
        if on_attempt is not None:
            on_attempt(attempt)
        return fn()

    retrying = Retrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_fixed(delay),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_retry(label),
        sleep=sleep,
        reraise=True,
    )
    return retrying(wrapped)
