"""
Notifier Module

Delivers alerts outside the process.  Global backends (a webhook and/or
SMTP from config) receive every alert; a job's own ``webhook_url`` is
added for that job's alerts only.  Delivery happens on a small thread pool
and a failed delivery is logged, never raised.

Usage:
    notifier = Notifier.from_config()
    notifier.notify_alert(alert, webhook_url=job.webhook_url)
"""

import logging
import smtplib
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from email.message import EmailMessage
from typing import Callable, Dict, List, Optional

import requests

from arpmon.config import (
    APP_NAME,
    EMAIL_RECIPIENTS,
    NOTIFICATION_POOL_SIZE,
    NOTIFY_WEBHOOK_URL,
    SEVERITY_CRITICAL,
    SEVERITY_INFO,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_USE_TLS,
    SMTP_USERNAME,
    WEBHOOK_TIMEOUT,
)

from .models import Alert

logger = logging.getLogger(__name__)

URGENCY_COLORS = {"critical": "#ff0000", "normal": "#ffa500", "low": "#36a64f"}


def urgency_for(severity: str) -> str:
    """Map alert severity to notification urgency."""
    if severity == SEVERITY_CRITICAL:
        return "critical"
    if severity == SEVERITY_INFO:
        return "low"
    return "normal"


def _color(urgency: str) -> str:
    return URGENCY_COLORS.get(urgency, URGENCY_COLORS["normal"])


# ─── Backend Interface ────────────────────────────────────────────────────────


class NotifierBackend(ABC):
    """A destination for alert notifications."""

    @abstractmethod
    def send(
        self,
        title: str,
        message: str,
        urgency: str = "normal",
        alert: Optional[Alert] = None,
        **kwargs,
    ) -> bool:
        """Deliver one notification.

        Args:
            title: Short notification title.
            message: Notification body.
            urgency: One of 'low', 'normal', 'critical'.
            alert: The alert being delivered, if any.

        Returns:
            True if the destination accepted it.
        """


# ─── Webhook Backend ──────────────────────────────────────────────────────────


def _slack_payload(title: str, message: str, urgency: str, alert: Optional[Alert]) -> Dict:
    return {"attachments": [{
        "color": _color(urgency), "title": title, "text": message, "footer": APP_NAME,
    }]}


def _discord_payload(title: str, message: str, urgency: str, alert: Optional[Alert]) -> Dict:
    return {"embeds": [{
        "title": title,
        "description": message,
        "color": int(_color(urgency)[1:], 16),
        "footer": {"text": APP_NAME},
    }]}


def _teams_payload(title: str, message: str, urgency: str, alert: Optional[Alert]) -> Dict:
    return {
        "@type": "MessageCard",
        "@context": "http://schema.org/extensions",
        "themeColor": _color(urgency)[1:],
        "summary": title,
        "sections": [{"activityTitle": title, "text": message}],
    }


def _generic_payload(title: str, message: str, urgency: str, alert: Optional[Alert]) -> Dict:
    payload = {"title": title, "message": message, "urgency": urgency, "source": APP_NAME}
    if alert is not None:
        payload["alert"] = alert.to_dict()
    return payload


PAYLOAD_BUILDERS: Dict[str, Callable[..., Dict]] = {
    "slack": _slack_payload,
    "discord": _discord_payload,
    "teams": _teams_payload,
    "generic": _generic_payload,
}

# URL fragment -> service, first match wins
SERVICE_MARKERS = (
    ("hooks.slack.com", "slack"),
    ("discord.com/api/webhooks", "discord"),
    ("discordapp.com/api/webhooks", "discord"),
    ("webhook.office.com", "teams"),
    ("outlook.office.com", "teams"),
)


class WebhookBackend(NotifierBackend):
    """HTTP POST to a webhook.

    Slack, Discord and Teams URLs get their native message format; any
    other URL gets a generic JSON body carrying the full alert.
    """

    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: int = WEBHOOK_TIMEOUT,
        service: Optional[str] = None,
    ):
        self.url = url
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self.timeout = timeout
        self.service = service or next(
            (name for marker, name in SERVICE_MARKERS if marker in url), "generic"
        )

    def _build_payload(
        self, title: str, message: str, urgency: str, alert: Optional[Alert] = None
    ) -> Dict:
        builder = PAYLOAD_BUILDERS.get(self.service, _generic_payload)
        return builder(title, message, urgency, alert)

    def send(
        self,
        title: str,
        message: str,
        urgency: str = "normal",
        alert: Optional[Alert] = None,
        **kwargs,
    ) -> bool:
        try:
            response = requests.post(
                self.url,
                json=self._build_payload(title, message, urgency, alert),
                headers=self.headers,
                timeout=self.timeout,
            )
        except requests.Timeout:
            logger.error("Webhook %s timed out after %ss", self.url, self.timeout)
            return False
        except requests.RequestException as e:
            logger.error(f"Webhook {self.url} unreachable: {e}")
            return False

        if response.status_code >= 300:
            logger.warning("Webhook %s returned %d: %s", self.url, response.status_code, response.text[:200])
            return False
        logger.debug(f"Webhook ({self.service}) delivered: {title}")
        return True


# ─── Email Backend ────────────────────────────────────────────────────────────


class EmailBackend(NotifierBackend):
    """SMTP delivery with a plain-text body and an HTML alternative."""

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int = 587,
        username: str = "",
        password: str = "",
        recipients: Optional[List[str]] = None,
        from_addr: Optional[str] = None,
        use_tls: bool = True,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.username = username
        self.password = password
        self.recipients = recipients or []
        self.from_addr = from_addr or username
        self.use_tls = use_tls

    def _compose(self, title: str, message: str, urgency: str, alert: Optional[Alert]) -> EmailMessage:
        lines = [message]
        if alert is not None:
            lines += [
                "",
                f"Job: {alert.job_name}",
                f"MAC: {alert.device.mac}",
                f"IP: {alert.device.ip}",
                f"Time: {alert.timestamp.isoformat()}",
            ]
        body = "\n".join(lines)

        msg = EmailMessage()
        msg["Subject"] = f"[{APP_NAME}] [{urgency.upper()}] {title}"
        msg["From"] = self.from_addr
        msg["To"] = ", ".join(self.recipients)
        msg.set_content(body)
        msg.add_alternative(
            f'<h2 style="color: {_color(urgency)};">{title}</h2>'
            f'<pre>{body}</pre><small>{APP_NAME}</small>',
            subtype="html",
        )
        return msg

    def send(
        self,
        title: str,
        message: str,
        urgency: str = "normal",
        alert: Optional[Alert] = None,
        **kwargs,
    ) -> bool:
        if not self.recipients:
            logger.warning("Email backend has no recipients, skipping")
            return False

        msg = self._compose(title, message, urgency, alert)
        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.sendmail(self.from_addr, self.recipients, msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email via {self.smtp_host} failed: {e}")
            return False

        logger.debug(f"Email delivered to {len(self.recipients)} recipient(s): {title}")
        return True


# ─── Main Notifier ────────────────────────────────────────────────────────────


class Notifier:
    """Alert notification manager with pluggable backends.

    Global backends receive every alert; a job's own webhook URL is added
    per call.
    """

    def __init__(
        self,
        backends: Optional[List[NotifierBackend]] = None,
        max_workers: int = NOTIFICATION_POOL_SIZE,
        webhook_timeout: int = WEBHOOK_TIMEOUT,
    ):
        self.backends = list(backends or [])
        self.webhook_timeout = webhook_timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="notify"
        )
        self._lock = threading.Lock()
        self._closed = False

    @classmethod
    def from_config(cls) -> "Notifier":
        """Build a notifier from the global webhook and SMTP settings."""
        backends: List[NotifierBackend] = []
        if NOTIFY_WEBHOOK_URL:
            backends.append(WebhookBackend(NOTIFY_WEBHOOK_URL))
        if SMTP_HOST and EMAIL_RECIPIENTS:
            backends.append(EmailBackend(
                SMTP_HOST,
                SMTP_PORT,
                SMTP_USERNAME,
                SMTP_PASSWORD,
                EMAIL_RECIPIENTS,
                use_tls=SMTP_USE_TLS,
            ))
        logger.info(f"Notifier configured with {len(backends)} global backend(s)")
        return cls(backends=backends)

    def _backends_for(self, webhook_url: Optional[str]) -> List[NotifierBackend]:
        backends = list(self.backends)
        if webhook_url and not any(
            isinstance(b, WebhookBackend) and b.url == webhook_url for b in backends
        ):
            backends.append(WebhookBackend(webhook_url, timeout=self.webhook_timeout))
        return backends

    def notify_alert_sync(self, alert: Alert, webhook_url: Optional[str] = None) -> bool:
        """Deliver one alert to every backend.

        Returns:
            True if at least one backend accepted it.
        """
        sent = False
        for backend in self._backends_for(webhook_url):
            try:
                if backend.send(
                    title=alert.title,
                    message=alert.message,
                    urgency=urgency_for(alert.severity),
                    alert=alert,
                ):
                    sent = True
            except Exception as e:
                logger.error(f"Backend {type(backend).__name__} error: {e}")
        return sent

    def notify_alert(self, alert: Alert, webhook_url: Optional[str] = None) -> Optional[Future]:
        """Queue an alert for background delivery.

        Returns:
            The delivery future, or None when nothing is configured to
            receive it or the notifier has been shut down.
        """
        if not self.backends and not webhook_url:
            return None
        with self._lock:
            if self._closed:
                logger.debug("Notifier closed, dropping alert %s", alert.id)
                return None
            return self._executor.submit(self.notify_alert_sync, alert, webhook_url)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)
