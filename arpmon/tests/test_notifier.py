"""
Unit tests for the notifier module.
"""

import smtplib
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
import requests

from arpmon.modules.models import Alert, DeviceSnapshot
from arpmon.modules.notifier import (
    EmailBackend,
    Notifier,
    NotifierBackend,
    WebhookBackend,
    urgency_for,
)

NOW = datetime(2025, 1, 1, 12, 0, 0)


# ---- Helpers ----------------------------------------------------------------


def make_alert(severity="critical"):
    return Alert(
        id="alert-1",
        job_id="job1",
        job_name="Office",
        type="unauthorized_device",
        severity=severity,
        title="Unauthorized Device",
        message="Unauthorized device Acme (aa:bb:cc:dd:ee:ff) detected at 10.0.0.5",
        device=DeviceSnapshot(mac="aa:bb:cc:dd:ee:ff", ip="10.0.0.5", vendor="Acme"),
        timestamp=NOW,
    )


class RecordingBackend(NotifierBackend):
    """Backend that records every call."""

    def __init__(self, result=True, error=None):
        self.calls = []
        self.result = result
        self.error = error

    def send(self, title, message, urgency="normal", alert=None, **kwargs):
        self.calls.append((title, message, urgency, alert))
        if self.error:
            raise self.error
        return self.result


# ---- Urgency ----------------------------------------------------------------


class TestUrgency:

    @pytest.mark.parametrize("severity,urgency", [
        ("critical", "critical"),
        ("warning", "normal"),
        ("info", "low"),
    ])
    def test_mapping(self, severity, urgency):
        assert urgency_for(severity) == urgency


# ---- Webhook Backend ----------------------------------------------------------


class TestWebhookBackend:
    """Tests for WebhookBackend."""

    @pytest.mark.parametrize("url,service", [
        ("https://hooks.slack.com/services/T/B/X", "slack"),
        ("https://discord.com/api/webhooks/1/abc", "discord"),
        ("https://acme.webhook.office.com/webhookb2/x", "teams"),
        ("https://example.com/hook", "generic"),
    ])
    def test_detect_service(self, url, service):
        assert WebhookBackend(url).service == service

    def test_generic_payload_carries_alert(self):
        backend = WebhookBackend("https://example.com/hook")
        alert = make_alert()

        payload = backend._build_payload(alert.title, alert.message, "critical", alert)

        assert payload["title"] == "Unauthorized Device"
        assert payload["urgency"] == "critical"
        assert payload["source"] == "ArpMon"
        assert payload["alert"]["id"] == "alert-1"
        assert payload["alert"]["device"]["mac"] == "aa:bb:cc:dd:ee:ff"

    def test_slack_payload(self):
        backend = WebhookBackend("https://hooks.slack.com/services/T/B/X")
        payload = backend._build_payload("Title", "Body", "critical")

        attachment = payload["attachments"][0]
        assert attachment["color"] == "#ff0000"
        assert attachment["title"] == "Title"
        assert attachment["text"] == "Body"

    def test_discord_payload(self):
        backend = WebhookBackend("https://discord.com/api/webhooks/1/abc")
        payload = backend._build_payload("Title", "Body", "low")

        assert payload["embeds"][0]["color"] == 0x36A64F

    @patch("arpmon.modules.notifier.requests.post")
    def test_send_success(self, mock_post):
        mock_post.return_value = MagicMock(status_code=204)
        backend = WebhookBackend("https://example.com/hook", headers={"Authorization": "Bearer t"})

        assert backend.send("Title", "Body", "normal") is True
        _, kwargs = mock_post.call_args
        assert kwargs["headers"]["Authorization"] == "Bearer t"
        assert kwargs["json"]["message"] == "Body"

    @patch("arpmon.modules.notifier.requests.post")
    def test_send_http_error(self, mock_post):
        mock_post.return_value = MagicMock(status_code=500, text="boom")

        assert WebhookBackend("https://example.com/hook").send("Title", "Body") is False

    @patch("arpmon.modules.notifier.requests.post", side_effect=requests.Timeout())
    def test_send_timeout(self, mock_post):
        assert WebhookBackend("https://example.com/hook").send("Title", "Body") is False

    @patch("arpmon.modules.notifier.requests.post", side_effect=requests.ConnectionError("refused"))
    def test_send_connection_error(self, mock_post):
        assert WebhookBackend("https://example.com/hook").send("Title", "Body") is False


# ---- Email Backend ------------------------------------------------------------


class TestEmailBackend:
    """Tests for EmailBackend."""

    def test_no_recipients(self):
        assert EmailBackend("smtp.example.com").send("Title", "Body") is False

    @patch("arpmon.modules.notifier.smtplib.SMTP")
    def test_send(self, mock_smtp):
        server = mock_smtp.return_value.__enter__.return_value
        backend = EmailBackend(
            "smtp.example.com", 587, "user@example.com", "secret", ["admin@example.com"]
        )

        assert backend.send("Title", "Body", "critical", alert=make_alert()) is True

        server.starttls.assert_called_once()
        server.login.assert_called_once_with("user@example.com", "secret")
        from_addr, recipients, body = server.sendmail.call_args[0]
        assert from_addr == "user@example.com"
        assert recipients == ["admin@example.com"]
        assert "[ArpMon] [CRITICAL] Title" in body

    @patch("arpmon.modules.notifier.smtplib.SMTP", side_effect=smtplib.SMTPException("nope"))
    def test_smtp_error(self, mock_smtp):
        backend = EmailBackend("smtp.example.com", recipients=["admin@example.com"])

        assert backend.send("Title", "Body") is False


# ---- Notifier -----------------------------------------------------------------


class TestNotifier:
    """Tests for the Notifier dispatcher."""

    def test_sync_delivers_to_every_backend(self):
        first, second = RecordingBackend(), RecordingBackend()
        notifier = Notifier(backends=[first, second])
        alert = make_alert()

        assert notifier.notify_alert_sync(alert) is True

        assert first.calls == [(alert.title, alert.message, "critical", alert)]
        assert second.calls == first.calls
        notifier.shutdown()

    def test_backend_exception_does_not_stop_others(self):
        broken = RecordingBackend(error=RuntimeError("boom"))
        working = RecordingBackend()
        notifier = Notifier(backends=[broken, working])

        assert notifier.notify_alert_sync(make_alert()) is True
        assert len(working.calls) == 1
        notifier.shutdown()

    def test_all_backends_fail(self):
        notifier = Notifier(backends=[RecordingBackend(result=False)])

        assert notifier.notify_alert_sync(make_alert()) is False
        notifier.shutdown()

    def test_job_webhook_added_per_call(self):
        notifier = Notifier(backends=[RecordingBackend()])

        backends = notifier._backends_for("https://example.com/job-hook")

        assert len(backends) == 2
        assert isinstance(backends[-1], WebhookBackend)
        assert backends[-1].url == "https://example.com/job-hook"
        assert len(notifier.backends) == 1
        notifier.shutdown()

    def test_job_webhook_not_duplicated(self):
        notifier = Notifier(backends=[WebhookBackend("https://example.com/hook")])

        assert len(notifier._backends_for("https://example.com/hook")) == 1
        notifier.shutdown()

    @patch("arpmon.modules.notifier.requests.post")
    def test_notify_alert_runs_in_background(self, mock_post):
        mock_post.return_value = MagicMock(status_code=200)
        notifier = Notifier()

        future = notifier.notify_alert(make_alert(), "https://example.com/job-hook")

        assert future.result(timeout=5) is True
        assert mock_post.call_args[0][0] == "https://example.com/job-hook"
        notifier.shutdown()

    def test_nothing_configured(self):
        notifier = Notifier()

        assert notifier.notify_alert(make_alert()) is None
        notifier.shutdown()

    def test_dropped_after_shutdown(self):
        backend = RecordingBackend()
        notifier = Notifier(backends=[backend])
        notifier.shutdown()

        assert notifier.notify_alert(make_alert()) is None
        assert backend.calls == []

    @patch("arpmon.modules.notifier.SMTP_HOST", "smtp.example.com")
    @patch("arpmon.modules.notifier.EMAIL_RECIPIENTS", ["admin@example.com"])
    @patch("arpmon.modules.notifier.NOTIFY_WEBHOOK_URL", "https://example.com/hook")
    def test_from_config(self):
        notifier = Notifier.from_config()

        kinds = [type(b) for b in notifier.backends]
        assert kinds == [WebhookBackend, EmailBackend]
        notifier.shutdown()
