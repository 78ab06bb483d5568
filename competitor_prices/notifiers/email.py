"""Email alerts via SMTP (Gmail by default)."""

import logging
import os
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "Price Scraper Alert"


def send_email_alert(message: str, recipient: str | None = None, subject: str = DEFAULT_SUBJECT) -> bool:
    """
    Send a plain-text alert email.

    Uses SMTP_USER and SMTP_PASS (Gmail App Password); SMTP_HOST/SMTP_PORT
    override the Gmail server. ``recipient`` defaults to SMTP_TO, then SMTP_USER.
    """
    user = os.environ.get("SMTP_USER")
    password = os.environ.get("SMTP_PASS")
    to_addr = recipient or os.environ.get("SMTP_TO", user)
    host = os.environ.get("SMTP_HOST", "smtp.gmail.com")
    try:
        port = int(os.environ.get("SMTP_PORT", "587"))
    except ValueError:
        port = 587

    if not user or not password:
        logger.warning("Email: SMTP_USER or SMTP_PASS not set")
        return False

    msg = MIMEMultipart()
    msg["From"] = user
    msg["To"] = to_addr
    msg["Subject"] = subject
    msg.attach(MIMEText(message.strip(), "plain"))

    try:
        logger.debug("Email: sending alert to %s", to_addr)
        with smtplib.SMTP(host, port, timeout=30) as server:
            server.starttls()
            server.login(user, password)
            server.sendmail(user, to_addr, msg.as_string())
        logger.info("Email: alert sent to %s", to_addr)
        return True
    except smtplib.SMTPAuthenticationError as e:
        logger.error("Email authentication failed: %s", e)
        return False
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Email SMTP error: %s", e)
        return False
