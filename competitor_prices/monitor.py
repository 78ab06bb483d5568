"""Consecutive-failure tracking for one crawl run."""

import logging
from typing import Callable

logger = logging.getLogger(__name__)

AlertSink = Callable[[str], bool]


class FailureMonitor:
    """
    Counts item failures since the last success.

    Reaching ``threshold`` sends one alert for that streak; the count keeps
    going and the crawl is not stopped. ``run_failed`` alerts independently
    of the counter.
    """

    def __init__(self, threshold: int, alert: AlertSink, run_label: str = "crawl"):
        self.threshold = max(1, threshold)
        self._alert = alert
        self.run_label = run_label
        self.consecutive_failures = 0
        self.total_failures = 0
        self.alerts_sent = 0
        self.last_reason = ""

    def record_success(self) -> None:
        if self.consecutive_failures:
            logger.debug("Failure streak of %d reset", self.consecutive_failures)
        self.consecutive_failures = 0

    def record_failure(self, reason: str) -> None:
        self.consecutive_failures += 1
        self.total_failures += 1
        self.last_reason = reason
        if self.consecutive_failures == self.threshold:
            self._send(
                f"Price scraper ({self.run_label}) is experiencing {self.threshold} "
                f"consecutive failures.\nLast failure: {reason}"
            )

    def run_failed(self, error: BaseException | str) -> None:
        self._send(f"Price scraper ({self.run_label}) failed to run completely: {error}")

    def _send(self, message: str) -> None:
        logger.warning("ALERT: %s", message.splitlines()[0])
        self.alerts_sent += 1
        try:
            delivered = self._alert(message)
        except Exception as e:
            logger.error("Alert delivery raised: %s", e, exc_info=True)
            return
        if not delivered:
            logger.warning("Alert was not delivered on any channel")
