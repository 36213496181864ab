"""
notify/mailer.py -- Notification channel implementations.

The credential service depends only on the Notifier protocol:

    await notifier.send(recipient, subject, body_html)   # raises on failure

Two implementations:
  HttpMailNotifier -- POSTs the message as JSON to a transactional mail API
      (MAIL_API_URL) with a bearer key. Uses a module-level requests.Session
      for connection pooling; the blocking call runs in a worker thread.
  LogNotifier -- writes the message to the log. Used when MAIL_API_URL is
      empty (local development); never use it where real users sign up.

build_notifier() picks one from Settings.

Layer rule: no imports from api/, auth/, or cache/.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import requests

from core.config import Settings

logger = logging.getLogger("credgate.notify")

# Module-level session shared across sends for connection pooling.
_session = requests.Session()
_session.max_redirects = 3


class Notifier(Protocol):
    async def send(self, recipient: str, subject: str, body_html: str) -> None: ...


class HttpMailNotifier:
    """Deliver email through an HTTP mail API."""

    def __init__(self, api_url: str, api_key: str, sender: str, timeout: float = 10.0) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout

    def _post(self, recipient: str, subject: str, body_html: str) -> None:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        resp = _session.post(
            self.api_url,
            json={"from": self.sender, "to": recipient, "subject": subject, "html": body_html},
            headers=headers,
            timeout=self.timeout,
        )
        resp.raise_for_status()

    async def send(self, recipient: str, subject: str, body_html: str) -> None:
        """Send one message. Raises requests.RequestException on transport or HTTP errors."""
        await asyncio.to_thread(self._post, recipient, subject, body_html)
        logger.info("Email '%s' sent to %s", subject, recipient)


class LogNotifier:
    """Development notifier -- logs instead of delivering."""

    async def send(self, recipient: str, subject: str, body_html: str) -> None:
        logger.warning("MAIL_API_URL not set -- email '%s' for %s not delivered", subject, recipient)
        logger.debug("Email body for %s:\n%s", recipient, body_html)


def build_notifier(settings: Settings) -> Notifier:
    if settings.mail_api_url:
        return HttpMailNotifier(
            api_url=settings.mail_api_url,
            api_key=settings.mail_api_key,
            sender=settings.mail_from,
            timeout=settings.notify_timeout,
        )
    return LogNotifier()
