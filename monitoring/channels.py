# =============================================================================
# ISSUE TRIAGE MONITOR - NOTIFICATION CHANNELS
# =============================================================================
"""
Notification Channels

Pluggable alert delivery. Every channel implements ``send(alert) -> bool``
and the alerting engine treats them all alike.

Channels:
    - SlackChannel: Slack incoming webhook (aiohttp)
    - WebhookChannel: Generic JSON webhook (aiohttp)
    - EmailChannel: SMTP, run in a worker thread

Webhook URLs and SMTP passwords are treated as credentials and are never
logged.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Any, Dict, List, Optional

import aiohttp

from monitoring.alerts import Alert, AlertLevel

logger = logging.getLogger(__name__)


class NotificationChannel(ABC):
    """Base class for alert delivery channels."""

    name = "channel"

    def __init__(self, enabled: bool = True, min_level: AlertLevel = AlertLevel.INFO):
        self.enabled = enabled
        self.min_level = AlertLevel(min_level)

    def accepts(self, alert: Alert) -> bool:
        return alert.level.severity >= self.min_level.severity

    @abstractmethod
    async def send(self, alert: Alert) -> bool:
        """Deliver ``alert``. Returns True on success."""


# =============================================================================
# HTTP CHANNELS
# =============================================================================


class _HttpChannel(NotificationChannel):
    """POSTs a JSON body with aiohttp."""

    def __init__(self, url: str, timeout: float = 10, headers: Optional[Dict[str, str]] = None,
                 **kwargs: Any):
        super().__init__(**kwargs)
        if not url:
            raise ValueError(f"{self.name} channel requires a URL")
        self._url = url
        self.timeout = timeout
        self.headers = dict(headers or {})

    def __repr__(self):
        return f"{type(self).__name__}(enabled={self.enabled})"

    def build_payload(self, alert: Alert) -> Dict[str, Any]:
        return {"alert": alert.to_payload(), "source": "issue-triage-monitor"}

    async def send(self, alert: Alert) -> bool:
        payload = self.build_payload(alert)
        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as session:
                async with session.post(self._url, json=payload, headers=self.headers) as response:
                    if 200 <= response.status < 300:
                        logger.debug(f"{self.name} notification sent for alert {alert.id}")
                        return True
                    logger.error(f"{self.name} notification failed: HTTP {response.status}")
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"{self.name} notification failed: {type(e).__name__}")
            return False


class SlackChannel(_HttpChannel):
    """Slack incoming webhook."""

    name = "slack"

    _COLORS = {
        AlertLevel.INFO: "#439FE0",
        AlertLevel.WARNING: "warning",
        AlertLevel.CRITICAL: "danger",
    }

    def __init__(self, webhook_url: str, channel: Optional[str] = None,
                 username: str = "triage-monitor", **kwargs: Any):
        super().__init__(webhook_url, **kwargs)
        self.channel = channel
        self.username = username

    def build_payload(self, alert: Alert) -> Dict[str, Any]:
        payload = {
            "username": self.username,
            "text": f"[{alert.level.value.upper()}] {alert.component}/{alert.metric}",
            "attachments": [{
                "color": self._COLORS[alert.level],
                "text": alert.message,
                "fields": [
                    {"title": "Value", "value": str(alert.value), "short": True},
                    {"title": "Threshold", "value": str(alert.threshold), "short": True},
                ],
                "footer": f"alert {alert.id}",
            }],
        }
        if self.channel:
            payload["channel"] = self.channel
        return payload


class WebhookChannel(_HttpChannel):
    """Generic JSON webhook."""

    name = "webhook"


# =============================================================================
# EMAIL
# =============================================================================


class EmailChannel(NotificationChannel):
    """SMTP delivery; the blocking client runs in a worker thread."""

    name = "email"

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        recipients: List[str],
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: float = 10,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        if not recipients:
            raise ValueError("email channel requires at least one recipient")
        self.host = host
        self.port = port
        self.sender = sender
        self.recipients = list(recipients)
        self.username = username
        self._password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def __repr__(self):
        return f"EmailChannel(host={self.host!r}, recipients={len(self.recipients)})"

    def build_message(self, alert: Alert) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = ", ".join(self.recipients)
        msg["Subject"] = (
            f"[{alert.level.value.upper()}] {alert.component}/{alert.metric} alert"
        )
        payload = alert.to_payload()
        msg.set_content("\n".join(
            [alert.message, ""] + [f"{key}: {payload[key]}" for key in
                                   ("value", "threshold", "created_at", "id")]
        ))
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.username and self._password:
                server.login(self.username, self._password)
            server.send_message(msg)

    async def send(self, alert: Alert) -> bool:
        try:
            await asyncio.to_thread(self._deliver, self.build_message(alert))
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"email notification failed: {type(e).__name__}: {e}")
            return False
        logger.debug(f"email notification sent for alert {alert.id}")
        return True


# =============================================================================
# FACTORY
# =============================================================================


def build_channels(config: Optional[Dict[str, Any]]) -> List[NotificationChannel]:
    """
    Build enabled channels from the ``notifications`` config section.

    Example::

        notifications:
          slack: {enabled: true, webhook_url: "...", min_level: warning}
          webhook: {enabled: false, url: "..."}
          email: {enabled: true, host: smtp.example.com, port: 587,
                  sender: bot@example.com, recipients: [ops@example.com]}
    """
    config = config or {}
    channels: List[NotificationChannel] = []

    slack = config.get("slack") or {}
    if slack.get("enabled") and slack.get("webhook_url"):
        channels.append(SlackChannel(
            slack["webhook_url"],
            channel=slack.get("channel"),
            min_level=slack.get("min_level", "info"),
            timeout=slack.get("timeout", 10),
        ))

    webhook = config.get("webhook") or {}
    if webhook.get("enabled") and webhook.get("url"):
        channels.append(WebhookChannel(
            webhook["url"],
            headers=webhook.get("headers"),
            min_level=webhook.get("min_level", "info"),
            timeout=webhook.get("timeout", 10),
        ))

    email = config.get("email") or {}
    if email.get("enabled") and email.get("host") and email.get("recipients"):
        channels.append(EmailChannel(
            host=email["host"],
            port=int(email.get("port", 587)),
            sender=email.get("sender", "triage-monitor@localhost"),
            recipients=email["recipients"],
            username=email.get("username"),
            password=email.get("password"),
            use_tls=email.get("use_tls", True),
            min_level=email.get("min_level", "warning"),
        ))

    logger.info(f"Notification channels: {', '.join(c.name for c in channels) or 'none'}")
    return channels


__all__ = [
    "NotificationChannel",
    "SlackChannel",
    "WebhookChannel",
    "EmailChannel",
    "build_channels",
]
