"""Notification helpers for broadcast status changes."""

from __future__ import annotations

import datetime as dt
import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Dict, Optional

import requests
from dateutil.tz import tzutc

from .config import NotifierConfig
from .models import BroadcastStatus

logger = logging.getLogger(__name__)

SUBJECTS: Dict[BroadcastStatus, str] = {
    BroadcastStatus.ACTIVE: "Broadcast {id} is live",
    BroadcastStatus.RECONNECTING: "Broadcast {id} is reconnecting",
    BroadcastStatus.COMPLETED: "Broadcast {id} completed",
    BroadcastStatus.FAILED: "Broadcast {id} failed",
    BroadcastStatus.STOPPED: "Broadcast {id} stopped",
}


def format_status_report(
    broadcast_id: str, status: BroadcastStatus, message: Optional[str], occurred_at: dt.datetime
) -> str:
    lines = [
        f"Broadcast: {broadcast_id}",
        f"Status: {status.value}",
        f"Time: {occurred_at.isoformat()}",
    ]
    if message:
        lines += ["", "Details:", message]
    return "\n".join(lines) + "\n"


class Notifier:
    """Send webhook or email notifications for broadcast transitions."""

    def __init__(self, config: NotifierConfig):
        self.config = config

    @property
    def enabled(self) -> bool:
        return bool(self.config.webhook_url or self._email_configured)

    @property
    def _email_configured(self) -> bool:
        return bool(self.config.smtp_host and self.config.email_from and self.config.email_to)

    def wants(self, status: BroadcastStatus) -> bool:
        return status.value in self.config.notify_on

    def notify_status(self, broadcast_id: str, status: BroadcastStatus, message: Optional[str] = None) -> None:
        if not self.wants(status):
            logger.debug("Broadcast %s: %s is not a notified status", broadcast_id, status.value)
            return
        occurred_at = dt.datetime.now(tzutc())
        subject = SUBJECTS.get(status, "Broadcast {id}: {status}").format(id=broadcast_id, status=status.value)
        if self.config.webhook_url:
            self._send_webhook(
                {
                    "broadcast_id": broadcast_id,
                    "status": status.value,
                    "subject": subject,
                    "message": message,
                    "occurred_at": occurred_at.isoformat(),
                }
            )
        if self._email_configured:
            email = EmailMessage()
            email["From"] = self.config.email_from
            email["To"] = self.config.email_to
            email["Subject"] = subject
            email["X-Broadcast-Id"] = broadcast_id
            email["X-Broadcast-Status"] = status.value
            email.set_content(format_status_report(broadcast_id, status, message, occurred_at))
            self._send_email(email)

    def _send_webhook(self, payload: Dict[str, Optional[str]]) -> None:
        try:
            response = requests.post(self.config.webhook_url, json=payload, timeout=10)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Failed to send webhook for broadcast %s: %s", payload["broadcast_id"], exc)

    def _send_email(self, email: EmailMessage) -> None:
        context = ssl.create_default_context()
        try:
            with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=30) as smtp:
                smtp.starttls(context=context)
                if self.config.smtp_username and self.config.smtp_password:
                    smtp.login(self.config.smtp_username, self.config.smtp_password)
                smtp.send_message(email)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send email for broadcast %s: %s", email["X-Broadcast-Id"], exc)
