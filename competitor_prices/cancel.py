"""Run-level cancellation: a stop flag plus an optional deadline."""

import threading
import time
from typing import Callable

from competitor_prices.errors import RunCancelled


class CancelToken:
    """
    Checked at every suspension point (before each fetch and each write).

    ``stop_event`` may be shared with a signal handler; ``timeout`` is the run
    deadline in seconds from construction (``None`` or 0 for no deadline).
    """

    def __init__(
        self,
        timeout: float | None = None,
        stop_event: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._event = stop_event if stop_event is not None else threading.Event()
        self._clock = clock
        self._deadline = clock() + timeout if timeout else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def deadline_passed(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.deadline_passed

    def check(self, stage: str = "") -> None:
        if self._event.is_set():
            raise RunCancelled(f"stop requested{' before ' + stage if stage else ''}")
        if self.deadline_passed:
            raise RunCancelled(f"run deadline passed{' before ' + stage if stage else ''}")
