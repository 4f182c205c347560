from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from esawit.core.errors import ManifestError


MANIFEST_FILENAME = "manifest.json"
MANIFEST_VERSION = "1.0"


@dataclass(frozen=True)
class RecoveryInstructions:
    # Human-readable recovery steps shipped inside every bundle.
    databases: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    application: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "databases": list(self.databases),
            "files": list(self.files),
            "application": list(self.application),
        }


DEFAULT_RECOVERY_INSTRUCTIONS = RecoveryInstructions(
    databases=[
        "1. Stop application services",
        "2. Decrypt the *.sql.enc and *.archive.enc artifacts with the backup key",
        "3. Restore PostgreSQL: psql -f postgresql.sql",
        "4. Restore MongoDB: mongorestore --archive=mongodb.archive --gzip",
        "5. Restore MySQL: mysql < mysql.sql",
        "6. Restart application services",
    ],
    files=[
        "1. Decrypt the *.tar.gz.enc archives",
        "2. Extract each archive into its original directory",
        "3. Verify file ownership and permissions",
    ],
    application=[
        "1. Review the copied configuration files",
        "2. Import system_configs.json into the system_configs table",
        "3. Run database migrations (alembic upgrade head)",
        "4. Restart all services and check /v1/health",
    ],
)


@dataclass(frozen=True)
class BackupManifest:
    """Index of one backup bundle.

    Serialized with camelCase keys; that JSON layout is the on-disk contract
    read by restore tooling.
    """

    backup_id: str
    files: list[str]
    size: int
    # Creation duration in milliseconds.
    duration: int
    timestamp: str
    checksums: dict[str, str]
    version: str = MANIFEST_VERSION
    recovery_instructions: RecoveryInstructions = DEFAULT_RECOVERY_INSTRUCTIONS

    def to_dict(self) -> dict[str, Any]:
        return {
            "backupId": self.backup_id,
            "files": list(self.files),
            "size": self.size,
            "duration": self.duration,
            "timestamp": self.timestamp,
            "version": self.version,
            "checksums": dict(self.checksums),
            "recoveryInstructions": self.recovery_instructions.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> BackupManifest:
        try:
            instructions = payload.get("recoveryInstructions") or {}
            return cls(
                backup_id=str(payload["backupId"]),
                files=[str(item) for item in payload["files"]],
                size=int(payload["size"]),
                duration=int(payload["duration"]),
                timestamp=str(payload["timestamp"]),
                version=str(payload.get("version", MANIFEST_VERSION)),
                checksums={str(k): str(v) for k, v in dict(payload["checksums"]).items()},
                recovery_instructions=RecoveryInstructions(
                    databases=list(instructions.get("databases", [])),
                    files=list(instructions.get("files", [])),
                    application=list(instructions.get("application", [])),
                ),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ManifestError(f"invalid manifest: {exc}") from exc


def write_manifest(path: Path, manifest: BackupManifest) -> None:
    # Write to a sibling temp file and rename so readers never see a torn manifest.
    tmp_path = path.with_name(f".{path.name}.tmp")
    with tmp_path.open("w", encoding="utf-8") as handle:
        json.dump(manifest.to_dict(), handle, indent=2, sort_keys=True)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)


def load_manifest(path: Path) -> BackupManifest:
    if not path.exists():
        raise ManifestError(f"manifest not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ManifestError(f"manifest unreadable: {exc}") from exc
    if not isinstance(payload, dict):
        raise ManifestError("manifest root must be an object")
    return BackupManifest.from_dict(payload)
