"""Telegram push alerts."""

import logging
import os

import requests

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org/bot{token}/sendMessage"


def send_telegram_alert(message: str) -> bool:
    """
    Send a plain-text alert via the Telegram Bot API.

    Requires TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID.
    """
    token = os.environ.get("TELEGRAM_BOT_TOKEN")
    chat_id = os.environ.get("TELEGRAM_CHAT_ID")

    if not token or not chat_id:
        logger.debug("Telegram: TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID not set")
        return False

    payload = {
        "chat_id": chat_id,
        "text": f"🔔 {message.strip()}",
        "disable_web_page_preview": True,
    }

    try:
        resp = requests.post(TELEGRAM_API.format(token=token), json=payload, timeout=10)
        logger.debug("Telegram response status: %d", resp.status_code)
        if resp.status_code != 200:
            logger.error("Telegram API error (status %d): %s", resp.status_code, resp.text[:200])
        resp.raise_for_status()
        logger.info("Telegram: alert sent")
        return True
    except requests.exceptions.RequestException as e:
        logger.error("Telegram request failed: %s", e)
        return False
