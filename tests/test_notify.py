"""Unit tests for notify/ -- OTP email rendering and notifier selection.

Covers:
- otp_email_html escapes the user-supplied display name
- expiry is rendered in whole minutes (never 0)
- build_notifier picks the HTTP notifier only when MAIL_API_URL is set
- HttpMailNotifier posts the JSON payload with a bearer key and raises on HTTP errors
"""

import asyncio
from unittest.mock import MagicMock, patch

import pytest
import requests

from core.config import Settings
from notify.mailer import HttpMailNotifier, LogNotifier, build_notifier
from notify.templates import otp_email_html

_SECRET = "n" * 32


def test_template_escapes_name():
    body = otp_email_html("<script>alert(1)</script>", "123456", 600)
    assert "<script>" not in body
    assert "&lt;script&gt;" in body
    assert ">123456<" in body
    assert "10 minutes" in body


def test_template_minutes_never_zero():
    assert "1 minutes" in otp_email_html("Bob", "000001", 30)


def test_build_notifier_without_url_logs(monkeypatch):
    monkeypatch.delenv("MAIL_API_URL", raising=False)
    notifier = build_notifier(Settings(_env_file=None, secret_key=_SECRET))
    assert isinstance(notifier, LogNotifier)


def test_build_notifier_with_url():
    settings = Settings(
        _env_file=None,
        secret_key=_SECRET,
        mail_api_url="https://mail.example.test/send",
        mail_api_key="key-123",
        mail_from="auth@example.test",
        notify_timeout=3,
    )
    notifier = build_notifier(settings)
    assert isinstance(notifier, HttpMailNotifier)
    assert notifier.api_url == "https://mail.example.test/send"
    assert notifier.timeout == 3


def test_log_notifier_does_not_raise(caplog):
    asyncio.run(LogNotifier().send("a@x.com", "Subject", "<p>1</p>"))
    assert "not delivered" in caplog.text


def test_http_notifier_posts_payload():
    notifier = HttpMailNotifier("https://mail.example.test/send", "key-123", "auth@example.test", timeout=2.0)
    response = MagicMock()
    with patch("notify.mailer._session.post", return_value=response) as post:
        asyncio.run(notifier.send("alice@x.com", "OTP", "<p>123456</p>"))

    post.assert_called_once()
    args, kwargs = post.call_args
    assert args[0] == "https://mail.example.test/send"
    assert kwargs["json"] == {
        "from": "auth@example.test",
        "to": "alice@x.com",
        "subject": "OTP",
        "html": "<p>123456</p>",
    }
    assert kwargs["headers"]["Authorization"] == "Bearer key-123"
    assert kwargs["timeout"] == 2.0
    response.raise_for_status.assert_called_once()


def test_http_notifier_raises_on_http_error():
    notifier = HttpMailNotifier("https://mail.example.test/send", "", "auth@example.test")
    response = MagicMock()
    response.raise_for_status.side_effect = requests.HTTPError("502 Bad Gateway")
    with patch("notify.mailer._session.post", return_value=response) as post:
        with pytest.raises(requests.HTTPError):
            asyncio.run(notifier.send("alice@x.com", "OTP", "<p>1</p>"))
    assert "Authorization" not in post.call_args.kwargs["headers"]
