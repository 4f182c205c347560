from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from esawit.core.serialization import to_jsonable
from esawit.domain.models import AuditLog


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["password", "token", "secret", "api_key", "key_hash", "authorization"]
_REDACTED_VALUE = "[REDACTED]"

# Audit action taxonomy for compliance bookkeeping.
DATA_ACCESS = "DATA_ACCESS"
DATA_EXPORT = "DATA_EXPORT"
DATA_RECTIFICATION = "DATA_RECTIFICATION"
DATA_ERASURE_REQUEST = "DATA_ERASURE_REQUEST"
DATA_ERASURE_COMPLETED = "DATA_ERASURE_COMPLETED"
CONSENT_RECORDED = "CONSENT_RECORDED"
DATA_PROCESSING_RECORDED = "DATA_PROCESSING_RECORDED"
DATA_BREACH_RECORDED = "DATA_BREACH_RECORDED"
PRIVACY_IMPACT_ASSESSMENT = "PRIVACY_IMPACT_ASSESSMENT"

COMPLIANCE_ACTIONS: tuple[str, ...] = (
    DATA_ACCESS,
    DATA_EXPORT,
    DATA_RECTIFICATION,
    DATA_ERASURE_REQUEST,
    DATA_ERASURE_COMPLETED,
    CONSENT_RECORDED,
    DATA_PROCESSING_RECORDED,
    DATA_BREACH_RECORDED,
    PRIVACY_IMPACT_ASSESSMENT,
)


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_values(value: Any) -> Any:
    # Recursively scrub credential-like fields while preserving structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_values(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_values(item) for item in value]
    return value


def get_request_context(request: Request | None) -> dict[str, str | None]:
    # Client hints recorded on audit rows for HTTP-originated actions.
    if request is None:
        return {"ip_address": None, "user_agent": None}
    ip_address = request.client.host if request.client else None
    return {"ip_address": ip_address, "user_agent": request.headers.get("user-agent")}


def record_audit_log(
    session: AsyncSession,
    *,
    user_id: str | None,
    action: str,
    resource: str,
    resource_id: str | None = None,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    occurred_at: datetime | None = None,
) -> AuditLog:
    """Stage an append-only audit row on ``session``.

    The row is committed by the caller's transaction, so an audit entry and
    the mutation it describes land or roll back together.
    """
    entry = AuditLog(
        user_id=user_id,
        action=action,
        resource=resource,
        resource_id=resource_id,
        old_values=to_jsonable(sanitize_values(old_values)) if old_values is not None else None,
        new_values=to_jsonable(sanitize_values(new_values)) if new_values is not None else None,
        ip_address=ip_address,
        user_agent=user_agent,
        created_at=occurred_at or datetime.now(timezone.utc),
    )
    session.add(entry)
    logger.info("audit_log_staged action=%s user_id=%s resource=%s", action, user_id, resource)
    return entry
