from __future__ import annotations

from esawit.services.compliance.manager import ComplianceManager
from esawit.services.compliance.retention import RetentionPolicy

__all__ = ["ComplianceManager", "RetentionPolicy"]
