"""Alert channels."""

import logging
from typing import Callable

from competitor_prices.notifiers.email import send_email_alert
from competitor_prices.notifiers.telegram import send_telegram_alert

logger = logging.getLogger(__name__)


def alert_sender(recipient: str | None = None) -> Callable[[str], bool]:
    """Alert sink that tries every channel; True if any delivered."""

    def send_alert(message: str) -> bool:
        delivered = False
        for name, channel in (
            ("email", lambda: send_email_alert(message, recipient)),
            ("telegram", lambda: send_telegram_alert(message)),
        ):
            try:
                delivered = channel() or delivered
            except Exception as e:
                logger.error("Alert channel %s failed: %s", name, e, exc_info=True)
        return delivered

    return send_alert


__all__ = ["alert_sender", "send_email_alert", "send_telegram_alert"]
