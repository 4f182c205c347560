from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from esawit.services import notifications
from esawit.services.notifications import BackupNotifier, build_signature


class _RecordingClient:
    calls: list[dict[str, Any]] = []
    status_code = 200
    error: Exception | None = None

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.timeout = kwargs.get("timeout")

    async def __aenter__(self) -> _RecordingClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None

    async def post(self, url: str, *, content: bytes, headers: dict[str, str]) -> httpx.Response:
        if self.error is not None:
            raise self.error
        self.calls.append({"url": url, "content": content, "headers": headers, "timeout": self.timeout})
        return httpx.Response(self.status_code)


@pytest.fixture
def recording_client(monkeypatch: pytest.MonkeyPatch) -> type[_RecordingClient]:
    _RecordingClient.calls = []
    _RecordingClient.status_code = 200
    _RecordingClient.error = None
    monkeypatch.setattr(notifications.httpx, "AsyncClient", _RecordingClient)
    return _RecordingClient


@pytest.mark.asyncio
async def test_disabled_notifier_sends_nothing(recording_client: type[_RecordingClient]) -> None:
    notifier = BackupNotifier(enabled=False, webhook_url="https://hooks.example.test/backup")

    result = await notifier.notify("success", {"backupId": "backup_1_0a1b2c3d"})

    assert result.webhook_sent is False
    assert result.email_sent is False
    assert recording_client.calls == []


@pytest.mark.asyncio
async def test_webhook_carries_signed_payload(recording_client: type[_RecordingClient]) -> None:
    notifier = BackupNotifier(
        enabled=True,
        webhook_url="https://hooks.example.test/backup",
        webhook_secret="whsec",
        webhook_timeout_ms=2500,
    )

    result = await notifier.notify("success", {"backupId": "backup_1_0a1b2c3d", "size": 10})

    assert result.webhook_sent is True
    call = recording_client.calls[0]
    body = json.loads(call["content"])
    assert body["status"] == "success"
    assert body["service"] == "eSawitKu"
    assert body["backupId"] == "backup_1_0a1b2c3d"
    assert "timestamp" in body
    assert call["headers"]["X-Esawit-Event"] == "backup.success"
    assert call["headers"]["X-Esawit-Signature"] == build_signature("whsec", call["content"])
    assert call["timeout"] == 2.5


@pytest.mark.asyncio
async def test_webhook_without_secret_is_unsigned(recording_client: type[_RecordingClient]) -> None:
    notifier = BackupNotifier(enabled=True, webhook_url="https://hooks.example.test/backup")

    await notifier.notify("failure", {"error": "pg_dump exited with 1"})

    headers = recording_client.calls[0]["headers"]
    assert "X-Esawit-Signature" not in headers
    assert headers["X-Esawit-Event"] == "backup.failure"


@pytest.mark.asyncio
async def test_webhook_rejection_is_reported_not_raised(recording_client: type[_RecordingClient]) -> None:
    recording_client.status_code = 500
    notifier = BackupNotifier(enabled=True, webhook_url="https://hooks.example.test/backup")

    result = await notifier.notify("success", {})

    assert result.webhook_sent is False
    assert result.message == "No channel delivered"


@pytest.mark.asyncio
async def test_webhook_transport_error_is_absorbed(recording_client: type[_RecordingClient]) -> None:
    recording_client.error = httpx.ConnectError("connection refused")
    notifier = BackupNotifier(enabled=True, webhook_url="https://hooks.example.test/backup")

    result = await notifier.notify("success", {})

    assert result.webhook_sent is False


@pytest.mark.asyncio
async def test_email_delivery_failure_is_absorbed(monkeypatch: pytest.MonkeyPatch) -> None:
    def _refuse(*args: Any, **kwargs: Any) -> Any:
        raise ConnectionRefusedError("smtp down")

    monkeypatch.setattr(notifications.smtplib, "SMTP", _refuse)
    notifier = BackupNotifier(enabled=True, email="ops@esawitku.test", smtp_host="smtp.invalid")

    result = await notifier.notify("failure", {"error": "disk full"})

    assert result.email_sent is False
    assert result.webhook_sent is False


@pytest.mark.asyncio
async def test_email_is_sent_through_smtp(monkeypatch: pytest.MonkeyPatch) -> None:
    sent: list[Any] = []

    class _SMTP:
        def __init__(self, host: str, port: int, timeout: float) -> None:
            self.host = host

        def __enter__(self) -> _SMTP:
            return self

        def __exit__(self, *exc: Any) -> None:
            return None

        def send_message(self, message: Any) -> None:
            sent.append(message)

    monkeypatch.setattr(notifications.smtplib, "SMTP", _SMTP)
    notifier = BackupNotifier(enabled=True, email="ops@esawitku.test", smtp_host="smtp.local")

    result = await notifier.notify("success", {"backupId": "backup_1_0a1b2c3d"})

    assert result.email_sent is True
    assert sent[0]["To"] == "ops@esawitku.test"
    assert sent[0]["Subject"] == "[eSawitKu] Backup success"
