import smtplib

import requests

from competitor_prices import notifiers
from competitor_prices.notifiers import alert_sender, email, telegram

CREDENTIALS = ("SMTP_USER", "SMTP_PASS", "SMTP_TO", "TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID")


class FakeSMTP:
    sent = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        if password == "wrong":
            raise smtplib.SMTPAuthenticationError(535, b"bad credentials")

    def sendmail(self, from_addr, to_addr, body):
        FakeSMTP.sent.append((from_addr, to_addr, body))


def clear_credentials(monkeypatch):
    for name in CREDENTIALS:
        monkeypatch.delenv(name, raising=False)


def test_email_without_credentials(monkeypatch):
    clear_credentials(monkeypatch)
    assert email.send_email_alert("hello", "ops@example.com") is False


def test_email_sent(monkeypatch):
    clear_credentials(monkeypatch)
    monkeypatch.setenv("SMTP_USER", "bot@example.com")
    monkeypatch.setenv("SMTP_PASS", "secret")
    monkeypatch.setattr(email.smtplib, "SMTP", FakeSMTP)
    FakeSMTP.sent = []

    assert email.send_email_alert("3 consecutive failures", "ops@example.com") is True
    (from_addr, to_addr, body) = FakeSMTP.sent[0]
    assert (from_addr, to_addr) == ("bot@example.com", "ops@example.com")
    assert "3 consecutive failures" in body


def test_email_auth_failure(monkeypatch):
    clear_credentials(monkeypatch)
    monkeypatch.setenv("SMTP_USER", "bot@example.com")
    monkeypatch.setenv("SMTP_PASS", "wrong")
    monkeypatch.setattr(email.smtplib, "SMTP", FakeSMTP)
    assert email.send_email_alert("x") is False


def test_telegram_without_credentials(monkeypatch):
    clear_credentials(monkeypatch)
    assert telegram.send_telegram_alert("hello") is False


def test_telegram_request_error(monkeypatch):
    clear_credentials(monkeypatch)
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "t")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "1")

    def post(*args, **kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(telegram.requests, "post", post)
    assert telegram.send_telegram_alert("hello") is False


def test_alert_sender_fans_out(monkeypatch):
    seen = []
    monkeypatch.setattr(notifiers, "send_email_alert", lambda m, r: seen.append(("email", r)) or False)
    monkeypatch.setattr(notifiers, "send_telegram_alert", lambda m: seen.append(("telegram", m)) or True)

    assert alert_sender("ops@example.com")("down") is True
    assert seen == [("email", "ops@example.com"), ("telegram", "down")]


def test_alert_sender_contains_channel_errors(monkeypatch):
    def broken(*args):
        raise RuntimeError("boom")

    monkeypatch.setattr(notifiers, "send_email_alert", broken)
    monkeypatch.setattr(notifiers, "send_telegram_alert", broken)
    assert alert_sender()("down") is False
