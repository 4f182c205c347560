from __future__ import annotations

from dataclasses import dataclass

from esawit.core.config import Settings


@dataclass(frozen=True)
class RetentionPolicy:
    # Days each record class is kept before pruning.
    audit_logs_days: int = 2555
    sessions_days: int = 30
    notifications_days: int = 90
    analytics_days: int = 730
    payments_days: int = 2555

    @classmethod
    def from_settings(cls, settings: Settings) -> RetentionPolicy:
        return cls(
            audit_logs_days=settings.retention_audit_logs_days,
            sessions_days=settings.retention_sessions_days,
            notifications_days=settings.retention_notifications_days,
            analytics_days=settings.retention_analytics_days,
            payments_days=settings.retention_payments_days,
        )
