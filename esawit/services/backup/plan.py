from __future__ import annotations

from typing import Any


# Recovery objectives and runbook published to operators.
DISASTER_RECOVERY_PLAN: dict[str, Any] = {
    "rto": "4 hours",
    "rpo": "1 hour",
    "backup_frequency": {
        "full": "daily",
        "incremental": "hourly",
        "transaction_log": "every 15 minutes",
    },
    "procedures": {
        "database_failure": [
            "Assess the extent of the failure",
            "Switch traffic to a read replica if available",
            "Run scripts/backup_verify.py against the latest bundle",
            "Restore from the latest verified bundle with scripts/backup_restore.py",
            "Verify data integrity",
            "Switch traffic back to the primary",
        ],
        "application_failure": [
            "Check application logs",
            "Restart application services",
            "Roll back to the previous release if needed",
            "Verify functionality through /v1/health",
        ],
        "infrastructure_failure": [
            "Activate the backup infrastructure",
            "Restore the latest bundle on the new infrastructure",
            "Update DNS records",
            "Verify all services",
        ],
        "security_breach": [
            "Isolate affected systems",
            "Assess the breach scope and record it as a data breach",
            "Restore from a bundle created before the breach",
            "Rotate credentials and the backup encryption key",
            "Notify affected users",
        ],
    },
}
