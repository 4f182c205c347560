from esawit.services.backup.manager import (
    BackupResult,
    BackupSummary,
    DisasterRecoveryManager,
    IntegrityReport,
    RestoreResult,
)
from esawit.services.backup.plan import DISASTER_RECOVERY_PLAN

__all__ = [
    "BackupResult",
    "BackupSummary",
    "DISASTER_RECOVERY_PLAN",
    "DisasterRecoveryManager",
    "IntegrityReport",
    "RestoreResult",
]
