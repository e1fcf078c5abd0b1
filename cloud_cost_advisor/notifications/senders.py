"""
Notification delivery over e-mail and chat webhooks.

Delivery is fire-and-forget: the dispatcher logs a failed sender and moves
on, it never retries and never raises.
"""

import smtplib
import ssl
from dataclasses import dataclass
from email.mime.text import MIMEText
from typing import Iterable, List, Optional, Protocol, Sequence

import httpx
import structlog

from cloud_cost_advisor.config.loader import NotificationConfig

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Notification:
    subject: str
    body: str


class NotificationSender(Protocol):
    """Anything that can deliver a notification; may raise on failure."""

    def send(self, notification: Notification) -> None:
        ...


class EmailNotifier:
    """Send notifications as plain-text e-mail over SMTP.

    Port 465 uses implicit TLS, any other port upgrades with STARTTLS.
    """

    def __init__(
        self,
        host: str,
        sender: str,
        recipients: Sequence[str],
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 30.0,
    ):
        if not recipients:
            raise ValueError("At least one e-mail recipient is required")
        self.host = host
        self.port = port
        self.sender = sender
        self.recipients = list(recipients)
        self.username = username
        self.password = password
        self.timeout = timeout

    def send(self, notification: Notification) -> None:
        msg = MIMEText(notification.body, "plain")
        msg["From"] = self.sender
        msg["To"] = ", ".join(self.recipients)
        msg["Subject"] = notification.subject

        context = ssl.create_default_context()
        if self.port == 465:
            with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                self._deliver(server, msg)
        else:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls(context=context)
                self._deliver(server, msg)

        logger.info("email_sent", subject=notification.subject, recipients=len(self.recipients))

    def _deliver(self, server: smtplib.SMTP, msg: MIMEText) -> None:
        if self.username:
            server.login(self.username, self.password or "")
        server.sendmail(self.sender, self.recipients, msg.as_string())


class ChatNotifier:
    """Post notifications to a chat incoming-webhook (Slack compatible)."""

    def __init__(
        self,
        webhook_url: str,
        channel: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.webhook_url = webhook_url
        self.channel = channel
        self.timeout = timeout
        self._client = client

    def send(self, notification: Notification) -> None:
        payload = {"text": f"*{notification.subject}*\n{notification.body}"}
        if self.channel:
            payload["channel"] = self.channel

        if self._client is not None:
            response = self._client.post(self.webhook_url, json=payload)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.webhook_url, json=payload)
        response.raise_for_status()

        logger.info("chat_message_sent", subject=notification.subject)


class NotificationDispatcher:
    """Fan a notification out to every sender, logging failures."""

    def __init__(self, senders: Iterable[NotificationSender] = ()):
        self.senders: List[NotificationSender] = list(senders)

    def send(self, notification: Notification) -> int:
        """Deliver to all senders.

        Returns:
            Number of senders that delivered successfully
        """
        delivered = 0
        for sender in self.senders:
            try:
                sender.send(notification)
                delivered += 1
            except Exception as exc:
                logger.warning(
                    "notification_failed",
                    sender=type(sender).__name__,
                    subject=notification.subject,
                    error=str(exc),
                )
        return delivered


def build_dispatcher(config: NotificationConfig) -> NotificationDispatcher:
    """Create a dispatcher with one sender per configured channel."""
    senders: List[NotificationSender] = []
    if config.email is not None:
        senders.append(EmailNotifier(
            host=config.email.smtp_host,
            sender=config.email.sender,
            recipients=config.email.recipients,
            port=config.email.smtp_port,
            username=config.email.username,
            password=config.email.password,
        ))
    if config.chat is not None:
        senders.append(ChatNotifier(
            webhook_url=config.chat.webhook_url,
            channel=config.chat.channel,
            timeout=config.chat.timeout_seconds,
        ))
    return NotificationDispatcher(senders)
