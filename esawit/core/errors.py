from __future__ import annotations


class EsawitError(Exception):
    """Base error for eSawit."""


class RateLimitUnavailableError(EsawitError):
    """Rate-limit counter store could not be reached."""


class BackupError(EsawitError):
    """Backup or restore workflow failure."""


class BackupConfigError(BackupError):
    """Missing or invalid backup configuration."""


class BackupNotFoundError(BackupError):
    """Backup bundle directory does not exist."""


class BackupCommandError(BackupError):
    """External dump or restore tool exited unsuccessfully."""


class BackupIntegrityError(BackupError):
    """Backup artifact failed authentication or checksum verification."""


class ManifestError(BackupError):
    """Backup manifest is missing or cannot be parsed."""


class CloudUploadError(BackupError):
    """Uploading a bundle to object storage failed."""


class ComplianceError(EsawitError):
    """Data subject request or compliance bookkeeping failure."""


class UnknownRequestTypeError(ComplianceError):
    """Data subject request type is not supported."""


class UserNotFoundError(ComplianceError):
    """Data subject does not exist."""
