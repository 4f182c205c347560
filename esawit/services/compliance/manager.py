from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
import re
import secrets
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from esawit.core.config import Settings
from esawit.core.errors import UnknownRequestTypeError, UserNotFoundError
from esawit.core.serialization import dumps, row_to_dict, to_jsonable
from esawit.domain.models import (
    Account,
    ApiKey,
    AuditLog,
    Notification,
    Payment,
    Plantation,
    Report,
    Subscription,
    Task,
    User,
    UserSession,
    Worker,
)
from esawit.domain.schemas import (
    REQUEST_TYPES,
    ConsentRecord,
    DataBreachRecord,
    RectificationData,
    export_report_content,
)
from esawit.services import audit
from esawit.services.compliance.retention import RetentionPolicy

if TYPE_CHECKING:
    from esawit.persistence.db import Database
    from esawit.services.cache import CacheManager


logger = logging.getLogger(__name__)

EXPORT_FORMAT = "JSON"
EXPORT_VERSION = "1.0"
ANONYMIZED_NAME = "Deleted User"
ERASURE_REASON = "GDPR_RIGHT_TO_ERASURE"

PERSONAL_DATA_FIELDS: tuple[str, ...] = (
    "id",
    "name",
    "email",
    "image",
    "phone_number",
    "address",
    "personal_id",
    "bank_account",
    "company_name",
    "company_address",
    "tax_id",
    "role",
    "status",
    "created_at",
    "updated_at",
    "last_login_at",
    "preferences",
    "metadata_json",
    "timezone",
    "language",
    "currency",
)
# Cleared on erasure.
_ERASED_FIELDS: tuple[str, ...] = (
    "password_hash",
    "image",
    "phone_number",
    "address",
    "personal_id",
    "bank_account",
    "company_name",
    "company_address",
    "tax_id",
    "preferences",
)
# Child tables first so foreign keys never dangle mid-cascade.
ERASURE_CASCADE: tuple[tuple[str, Any], ...] = (
    ("tasks", Task),
    ("workers", Worker),
    ("reports", Report),
    ("plantations", Plantation),
    ("notifications", Notification),
    ("api_keys", ApiKey),
    ("accounts", Account),
    ("sessions", UserSession),
    ("payments", Payment),
    ("subscriptions", Subscription),
)

SENSITIVE_DATA_TYPES = frozenset({"personal_id", "bank_account", "phone_number", "address"})
HIGH_RISK_PURPOSES = frozenset({"marketing", "profiling", "automated_decision_making"})

EXPORT_SCHEMA: dict[str, str] = {
    "personal_data": "Basic personal information",
    "subscription": "Subscription and billing information",
    "plantations": "Plantation management data",
    "workers": "Worker management data",
    "reports": "Generated reports",
    "tasks": "Task management data",
    "notifications": "System notifications",
    "api_keys": "API access keys without secret material",
    "accounts": "Linked sign-in providers",
    "sessions": "Active sign-in sessions",
    "payments": "Payment history",
    "audit_logs": "Activity history",
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_label(value: str) -> str:
    # Accept camelCase and snake_case labels alike.
    return re.sub(r"(?<!^)(?=[A-Z])", "_", value.strip()).lower()


def _personal_data(user: User) -> dict[str, Any]:
    payload = {field: getattr(user, field) for field in PERSONAL_DATA_FIELDS}
    payload["metadata"] = payload.pop("metadata_json")
    return payload


class ComplianceManager:
    """GDPR/PDPA data subject requests and compliance bookkeeping.

    Every mutation and its audit rows commit in one transaction. Cache
    invalidation runs after commit and is best-effort.
    """

    def __init__(
        self,
        database: Database,
        *,
        cache: CacheManager | None = None,
        retention: RetentionPolicy | None = None,
        audit_log_limit: int = 100,
        report_window_days: int = 30,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._database = database
        self._cache = cache
        self._retention = retention or RetentionPolicy()
        self._audit_log_limit = audit_log_limit
        self._report_window_days = report_window_days
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        database: Database,
        *,
        cache: CacheManager | None = None,
    ) -> ComplianceManager:
        return cls(
            database,
            cache=cache,
            retention=RetentionPolicy.from_settings(settings),
            audit_log_limit=settings.compliance_audit_log_limit,
            report_window_days=settings.compliance_report_window_days,
        )

    async def handle_data_subject_request(
        self,
        user_id: str,
        request_type: str,
        data: dict[str, Any] | None = None,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> dict[str, Any]:
        handlers: dict[str, Callable[..., Awaitable[dict[str, Any]]]] = {
            "access": self._handle_access,
            "portability": self._handle_portability,
            "rectification": self._handle_rectification,
            "erasure": self._handle_erasure,
        }
        context = {"ip_address": ip_address, "user_agent": user_agent}
        try:
            handler = handlers.get(request_type)
            if handler is None:
                raise UnknownRequestTypeError(
                    f"Invalid request type: {request_type}; expected one of {', '.join(REQUEST_TYPES)}"
                )
            if request_type == "rectification":
                result = await handler(user_id, data or {}, context)
            else:
                result = await handler(user_id, context)
        except Exception as exc:
            logger.error(
                "dsar_request_failed user_id=%s request_type=%s error=%s",
                user_id,
                request_type,
                exc,
            )
            raise
        logger.info("dsar_request_completed user_id=%s request_type=%s", user_id, request_type)
        return result

    async def _load_user(self, session: AsyncSession, user_id: str) -> User:
        user = await session.get(User, user_id)
        if user is None:
            raise UserNotFoundError("User not found")
        return user

    async def _collect_subject_record(self, session: AsyncSession, user: User) -> dict[str, Any]:
        async def _rows(model: Any, *, exclude: frozenset[str] = frozenset()) -> list[dict[str, Any]]:
            result = await session.execute(
                select(model).where(model.user_id == user.id).order_by(model.created_at.desc())
            )
            return [row_to_dict(row, exclude=exclude) for row in result.scalars().all()]

        subscription = (
            await session.execute(select(Subscription).where(Subscription.user_id == user.id))
        ).scalar_one_or_none()
        reports = (
            await session.execute(
                select(Report).where(Report.user_id == user.id).order_by(Report.created_at.desc())
            )
        ).scalars().all()
        audit_logs = (
            await session.execute(
                select(AuditLog)
                .where(AuditLog.user_id == user.id)
                .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
                .limit(self._audit_log_limit)
            )
        ).scalars().all()
        return {
            "personal_data": _personal_data(user),
            "subscription": row_to_dict(subscription) if subscription else None,
            "plantations": await _rows(Plantation),
            "workers": await _rows(Worker),
            "reports": [
                {
                    **row_to_dict(report, exclude=frozenset({"content"})),
                    "content": export_report_content(report.type, report.content),
                }
                for report in reports
            ],
            "tasks": await _rows(Task),
            "notifications": await _rows(Notification),
            "api_keys": await _rows(ApiKey, exclude=frozenset({"key_hash"})),
            "accounts": await _rows(Account),
            "sessions": await _rows(UserSession),
            "payments": await _rows(Payment),
            "audit_logs": [row_to_dict(row) for row in audit_logs],
        }

    async def _handle_access(self, user_id: str, context: dict[str, str | None]) -> dict[str, Any]:
        requested_at = self._clock()
        async with self._database.transaction() as session:
            user = await self._load_user(session, user_id)
            record = await self._collect_subject_record(session, user)
            audit.record_audit_log(
                session,
                user_id=user_id,
                action=audit.DATA_ACCESS,
                resource="User",
                resource_id=user_id,
                new_values={"data_types": sorted(record.keys())},
                occurred_at=requested_at,
                **context,
            )
        return to_jsonable(
            {
                **record,
                "request_date": requested_at,
                "request_type": "access",
            }
        )

    async def _handle_portability(self, user_id: str, context: dict[str, str | None]) -> dict[str, Any]:
        payload = await self._handle_access(user_id, context)
        exported_at = self._clock()
        export = {
            **payload,
            "request_type": "portability",
            "export_date": exported_at.isoformat(),
            "export_format": EXPORT_FORMAT,
            "version": EXPORT_VERSION,
            "schema": dict(EXPORT_SCHEMA),
        }
        async with self._database.transaction() as session:
            audit.record_audit_log(
                session,
                user_id=user_id,
                action=audit.DATA_EXPORT,
                resource="User",
                resource_id=user_id,
                new_values={"export_format": EXPORT_FORMAT, "data_size": len(dumps(export))},
                occurred_at=exported_at,
                **context,
            )
        return export

    async def _handle_rectification(
        self,
        user_id: str,
        data: dict[str, Any],
        context: dict[str, str | None],
    ) -> dict[str, Any]:
        # Unknown or malformed fields raise pydantic.ValidationError before any write.
        changes = RectificationData.model_validate(data).model_dump(exclude_unset=True)
        async with self._database.transaction() as session:
            user = await self._load_user(session, user_id)
            old_values: dict[str, Any] = {}
            new_values: dict[str, Any] = {}
            for field, value in changes.items():
                current = getattr(user, field)
                if current == value:
                    continue
                old_values[field] = current
                new_values[field] = value
                setattr(user, field, value)
            changed_fields = sorted(new_values)
            audit.record_audit_log(
                session,
                user_id=user_id,
                action=audit.DATA_RECTIFICATION,
                resource="User",
                resource_id=user_id,
                old_values={"values": old_values},
                new_values={"values": new_values, "changed_fields": changed_fields},
                occurred_at=self._clock(),
                **context,
            )
            await session.flush()
            # updated_at is server-generated; reload before reading it outside IO.
            await session.refresh(user)
            personal_data = _personal_data(user)
        await self._invalidate_cache(user_id)
        return to_jsonable(
            {
                "message": "Data rectified successfully",
                "user_id": user_id,
                "changed_fields": changed_fields,
                "personal_data": personal_data,
            }
        )

    async def _handle_erasure(self, user_id: str, context: dict[str, str | None]) -> dict[str, Any]:
        deleted_at = self._clock()
        deleted_counts: dict[str, int] = {}
        async with self._database.transaction() as session:
            user = await self._load_user(session, user_id)
            audit.record_audit_log(
                session,
                user_id=user_id,
                action=audit.DATA_ERASURE_REQUEST,
                resource="User",
                resource_id=user_id,
                new_values={"requested_at": deleted_at},
                occurred_at=deleted_at,
                **context,
            )
            # The row stays for referential history; identifying data does not.
            user.email = f"deleted_{int(deleted_at.timestamp() * 1000)}_{secrets.token_hex(4)}@deleted.com"
            user.name = ANONYMIZED_NAME
            for field in _ERASED_FIELDS:
                setattr(user, field, None)
            user.is_active = False
            user.status = "INACTIVE"
            user.metadata_json = {"deleted_at": deleted_at.isoformat(), "reason": ERASURE_REASON}
            for label, model in ERASURE_CASCADE:
                result = await session.execute(delete(model).where(model.user_id == user_id))
                deleted_counts[label] = result.rowcount or 0
            audit.record_audit_log(
                session,
                user_id=user_id,
                action=audit.DATA_ERASURE_COMPLETED,
                resource="User",
                resource_id=user_id,
                new_values={"deleted_at": deleted_at, "deleted_counts": deleted_counts},
                occurred_at=self._clock(),
                **context,
            )
        await self._invalidate_cache(user_id)
        logger.info("dsar_erasure_completed user_id=%s deleted=%s", user_id, sum(deleted_counts.values()))
        return to_jsonable(
            {
                "message": "User data has been erased",
                "deleted_at": deleted_at,
                "user_id": user_id,
                "deleted_counts": deleted_counts,
            }
        )

    async def _invalidate_cache(self, user_id: str) -> None:
        if self._cache is not None:
            await self._cache.invalidate_user_cache(user_id)

    async def record_consent(self, user_id: str, consent_type: str, granted: bool, purpose: str) -> int:
        record = ConsentRecord(consent_type=consent_type, granted=granted, purpose=purpose)
        now = self._clock()
        async with self._database.transaction() as session:
            entry = audit.record_audit_log(
                session,
                user_id=user_id,
                action=audit.CONSENT_RECORDED,
                resource="Consent",
                resource_id=record.consent_type,
                new_values={**record.model_dump(), "timestamp": now},
                occurred_at=now,
            )
            await session.flush()
            entry_id = entry.id
        logger.info(
            "consent_recorded user_id=%s consent_type=%s granted=%s purpose=%s",
            user_id,
            consent_type,
            granted,
            purpose,
        )
        return entry_id

    async def record_data_processing(
        self,
        user_id: str,
        purpose: str,
        legal_basis: str,
        data_types: Sequence[str],
    ) -> int:
        now = self._clock()
        async with self._database.transaction() as session:
            entry = audit.record_audit_log(
                session,
                user_id=user_id,
                action=audit.DATA_PROCESSING_RECORDED,
                resource="DataProcessing",
                new_values={
                    "purpose": purpose,
                    "legal_basis": legal_basis,
                    "data_types": list(data_types),
                    "timestamp": now,
                },
                occurred_at=now,
            )
            await session.flush()
            entry_id = entry.id
        logger.info(
            "data_processing_recorded user_id=%s purpose=%s legal_basis=%s",
            user_id,
            purpose,
            legal_basis,
        )
        return entry_id

    async def record_data_breach(
        self,
        description: str,
        affected_users: Sequence[str],
        severity: str,
    ) -> int:
        record = DataBreachRecord(description=description, affected_users=list(affected_users), severity=severity)
        now = self._clock()
        async with self._database.transaction() as session:
            entry = audit.record_audit_log(
                session,
                user_id=None,
                action=audit.DATA_BREACH_RECORDED,
                resource="DataBreach",
                new_values={**record.model_dump(), "timestamp": now, "reported": False},
                occurred_at=now,
            )
            await session.flush()
            entry_id = entry.id
        logger.error(
            "data_breach_recorded severity=%s affected_users=%s description=%s",
            record.severity,
            len(record.affected_users),
            record.description,
        )
        return entry_id

    async def conduct_privacy_impact_assessment(
        self,
        process_name: str,
        data_types: Sequence[str],
        purposes: Sequence[str],
    ) -> dict[str, Any]:
        conducted_at = self._clock()
        assessment = {
            "process_name": process_name,
            "data_types": list(data_types),
            "purposes": list(purposes),
            "risk_level": self.calculate_risk_level(data_types, purposes),
            "recommendations": self.generate_recommendations(data_types, purposes),
            "conducted_at": conducted_at.isoformat(),
            "valid_until": (conducted_at + timedelta(days=365)).isoformat(),
        }
        async with self._database.transaction() as session:
            audit.record_audit_log(
                session,
                user_id=None,
                action=audit.PRIVACY_IMPACT_ASSESSMENT,
                resource="PIA",
                resource_id=process_name,
                new_values=assessment,
                occurred_at=conducted_at,
            )
        logger.info(
            "privacy_impact_assessment_conducted process=%s risk_level=%s",
            process_name,
            assessment["risk_level"],
        )
        return assessment

    @staticmethod
    def calculate_risk_level(data_types: Sequence[str], purposes: Sequence[str]) -> str:
        has_sensitive_data = any(_normalize_label(item) in SENSITIVE_DATA_TYPES for item in data_types)
        has_high_risk_purpose = any(_normalize_label(item) in HIGH_RISK_PURPOSES for item in purposes)
        if has_sensitive_data and has_high_risk_purpose:
            return "high"
        if has_sensitive_data or has_high_risk_purpose:
            return "medium"
        return "low"

    @staticmethod
    def generate_recommendations(data_types: Sequence[str], purposes: Sequence[str]) -> list[str]:
        normalized_types = {_normalize_label(item) for item in data_types}
        normalized_purposes = {_normalize_label(item) for item in purposes}
        recommendations: list[str] = []
        if "personal_id" in normalized_types:
            recommendations.append("Implement additional encryption for personal ID data")
        if "bank_account" in normalized_types:
            recommendations.append("Use PCI DSS compliant storage for bank account data")
        if "marketing" in normalized_purposes:
            recommendations.append("Obtain explicit consent for marketing purposes")
        if "profiling" in normalized_purposes:
            recommendations.append("Implement data subject rights for profiling activities")
        recommendations.append("Regular data retention review")
        recommendations.append("Implement data minimization principles")
        return recommendations

    async def manage_data_retention(self) -> dict[str, int]:
        now = self._clock()
        targets = (
            ("audit_logs", AuditLog, self._retention.audit_logs_days),
            ("sessions", UserSession, self._retention.sessions_days),
            ("notifications", Notification, self._retention.notifications_days),
            ("payments", Payment, self._retention.payments_days),
        )
        counts: dict[str, int] = {}
        async with self._database.transaction() as session:
            for label, model, days in targets:
                cutoff = now - timedelta(days=days)
                result = await session.execute(delete(model).where(model.created_at < cutoff))
                counts[label] = result.rowcount or 0
        # Analytics events live in the document store and are pruned by its own TTL index.
        counts["analytics"] = 0
        for label, count in counts.items():
            logger.info("retention_pruned table=%s deleted=%s", label, count)
        return counts

    async def generate_compliance_report(self) -> dict[str, Any]:
        now = self._clock()
        since = now - timedelta(days=self._report_window_days)
        async with self._database.session() as session:
            rows = (
                await session.execute(
                    select(AuditLog.action, func.count())
                    .where(AuditLog.created_at >= since, AuditLog.action.in_(audit.COMPLIANCE_ACTIONS))
                    .group_by(AuditLog.action)
                )
            ).all()
        counts = {action: 0 for action in audit.COMPLIANCE_ACTIONS}
        counts.update({action: int(count) for action, count in rows})
        return {
            "period": {"start": since.isoformat(), "end": now.isoformat()},
            "data_subject_requests": {
                "access": counts[audit.DATA_ACCESS],
                "portability": counts[audit.DATA_EXPORT],
                "rectification": counts[audit.DATA_RECTIFICATION],
                "erasure": counts[audit.DATA_ERASURE_REQUEST],
            },
            "consent_records": counts[audit.CONSENT_RECORDED],
            "data_processing_records": counts[audit.DATA_PROCESSING_RECORDED],
            "data_breaches": counts[audit.DATA_BREACH_RECORDED],
            "privacy_impact_assessments": counts[audit.PRIVACY_IMPACT_ASSESSMENT],
            "generated_at": now.isoformat(),
        }
