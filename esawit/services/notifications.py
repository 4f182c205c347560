from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage
import hashlib
import hmac
import json
import logging
import smtplib
from typing import Any

import httpx

from esawit.core.config import Settings
from esawit.core.serialization import json_default


logger = logging.getLogger(__name__)

SERVICE_NAME = "eSawitKu"


@dataclass(frozen=True)
class NotificationResult:
    # Per-channel delivery summary; delivery failures never propagate.
    webhook_sent: bool
    email_sent: bool
    message: str


def build_signature(secret: str, payload: bytes) -> str:
    # HMAC SHA256 over the exact request body.
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


class BackupNotifier:
    """Delivers backup success/failure notices by webhook and/or email."""

    def __init__(
        self,
        *,
        enabled: bool,
        webhook_url: str | None = None,
        webhook_secret: str | None = None,
        webhook_timeout_ms: int = 5000,
        email: str | None = None,
        smtp_host: str | None = None,
        smtp_port: int = 25,
        smtp_sender: str = "noreply@esawitku.com",
    ) -> None:
        self._enabled = enabled
        self._webhook_url = webhook_url
        self._webhook_secret = webhook_secret
        self._timeout = webhook_timeout_ms / 1000.0
        self._email = email
        self._smtp_host = smtp_host
        self._smtp_port = smtp_port
        self._smtp_sender = smtp_sender

    @classmethod
    def from_settings(cls, settings: Settings) -> BackupNotifier:
        return cls(
            enabled=settings.backup_notifications_enabled,
            webhook_url=settings.backup_webhook_url,
            webhook_secret=settings.backup_webhook_secret,
            webhook_timeout_ms=settings.backup_webhook_timeout_ms,
            email=settings.backup_notification_email,
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_sender=settings.smtp_sender,
        )

    async def notify(self, status: str, data: dict[str, Any]) -> NotificationResult:
        if not self._enabled:
            return NotificationResult(webhook_sent=False, email_sent=False, message="Notifications are disabled")
        message = {
            "status": status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            **data,
        }
        webhook_sent = await self._send_webhook(status, message) if self._webhook_url else False
        email_sent = await self._send_email(status, message) if self._email and self._smtp_host else False
        return NotificationResult(
            webhook_sent=webhook_sent,
            email_sent=email_sent,
            message="Notification dispatched" if webhook_sent or email_sent else "No channel delivered",
        )

    async def _send_webhook(self, status: str, message: dict[str, Any]) -> bool:
        assert self._webhook_url is not None
        body = json.dumps(message, default=json_default, separators=(",", ":")).encode("utf-8")
        headers = {"Content-Type": "application/json", "X-Esawit-Event": f"backup.{status}"}
        if self._webhook_secret:
            headers["X-Esawit-Signature"] = build_signature(self._webhook_secret, body)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._webhook_url, content=body, headers=headers)
        except Exception as exc:  # noqa: BLE001 - notification delivery is best-effort
            logger.warning("backup_webhook_failed status=%s", status, exc_info=exc)
            return False
        if response.status_code >= 400:
            logger.warning("backup_webhook_rejected status=%s code=%s", status, response.status_code)
            return False
        return True

    async def _send_email(self, status: str, message: dict[str, Any]) -> bool:
        email = EmailMessage()
        email["Subject"] = f"[{SERVICE_NAME}] Backup {status}"
        email["From"] = self._smtp_sender
        email["To"] = self._email
        email.set_content(json.dumps(message, default=json_default, indent=2))

        def _deliver() -> None:
            with smtplib.SMTP(self._smtp_host, self._smtp_port, timeout=self._timeout) as smtp:
                smtp.send_message(email)

        try:
            await asyncio.to_thread(_deliver)
        except Exception as exc:  # noqa: BLE001 - notification delivery is best-effort
            logger.warning("backup_email_failed status=%s to=%s", status, self._email, exc_info=exc)
            return False
        return True
