from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import json
import logging
from pathlib import Path
import re
import secrets
import shutil
import tempfile
import time
from typing import TYPE_CHECKING, Any, Callable, Sequence

from sqlalchemy import func, select

from esawit.core.config import Settings, split_csv
from esawit.core.errors import (
    BackupConfigError,
    BackupIntegrityError,
    BackupNotFoundError,
    ManifestError,
)
from esawit.core.serialization import dumps, row_to_dict
from esawit.domain.models import Subscription, SystemConfig, User
from esawit.services.backup.archive import (
    ARCHIVE_SUFFIX,
    archive_directory,
    archive_name,
    copy_config_file,
    extract_archive,
)
from esawit.services.backup.cloud import CloudUploader, build_cloud_uploader
from esawit.services.backup.crypto import decrypt_file, encrypt_file, resolve_backup_key, sha256_file
from esawit.services.backup.dumpers import DatabaseDumper, build_dumpers
from esawit.services.backup.manifest import (
    MANIFEST_FILENAME,
    BackupManifest,
    load_manifest,
    write_manifest,
)
from esawit.services.notifications import BackupNotifier

if TYPE_CHECKING:
    from esawit.persistence.db import Database


logger = logging.getLogger(__name__)

ENCRYPTED_SUFFIX = ".enc"
BACKUP_ID_PATTERN = re.compile(r"^backup_(\d+)_[0-9a-f]{8}$")
SYSTEM_CONFIGS_FILENAME = "system_configs.json"
USER_STATISTICS_FILENAME = "user_statistics.json"
SUBSCRIPTION_STATISTICS_FILENAME = "subscription_statistics.json"

STATUS_AVAILABLE = "available"
STATUS_CORRUPTED = "corrupted"
STATUS_INCOMPLETE = "incomplete"


@dataclass(frozen=True)
class BackupResult:
    # Summary of a successfully created bundle.
    backup_id: str
    files: list[str]
    size: int
    duration_ms: int
    manifest_path: Path
    uploaded_objects: list[str] = field(default_factory=list)
    pruned_backups: int = 0


@dataclass(frozen=True)
class RestoreResult:
    # Restore never raises for operational failures; callers check success.
    success: bool
    message: str
    backup_id: str
    restored: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class IntegrityReport:
    valid: bool
    errors: list[str]
    warnings: list[str]


@dataclass(frozen=True)
class BackupSummary:
    backup_id: str
    created_at: datetime
    size: int
    files: int
    status: str


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_backup_id(now: datetime) -> str:
    # Millisecond timestamp keeps ids sortable; the random suffix avoids collisions.
    return f"backup_{int(now.timestamp() * 1000)}_{secrets.token_hex(4)}"


def _parse_timestamp(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _timestamp_from_id(backup_id: str) -> datetime | None:
    match = BACKUP_ID_PATTERN.match(backup_id)
    if match is None:
        return None
    return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)


class DisasterRecoveryManager:
    """Creates, verifies, lists, restores and prunes encrypted backup bundles.

    A bundle is ``<backup_dir>/<backup_id>/`` holding ``*.enc`` artifacts and a
    ``manifest.json`` written last. Bundle creation is single-writer; concurrent
    ``create_full_backup`` calls are not coordinated.
    """

    def __init__(
        self,
        *,
        backup_dir: Path | str,
        encryption_key: str | None,
        key_salt: str = "esawit-backup-v1",
        database: Database | None = None,
        dumpers: Sequence[DatabaseDumper] = (),
        archive_dirs: Sequence[Path | str] = (),
        config_files: Sequence[Path | str] = (),
        retention_days: int = 30,
        uploader: CloudUploader | None = None,
        notifier: BackupNotifier | None = None,
        keep_failed: bool = False,
        verify_on_create: bool = True,
        integrity_warn_days: int = 30,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._backup_root = Path(backup_dir)
        self._encryption_key = encryption_key
        self._key_salt = key_salt
        self._database = database
        self._dumpers = list(dumpers)
        self._archive_dirs = [Path(item) for item in archive_dirs]
        self._config_files = [Path(item) for item in config_files]
        self._retention_days = retention_days
        self._uploader = uploader
        self._notifier = notifier
        self._keep_failed = keep_failed
        self._verify_on_create = verify_on_create
        self._integrity_warn_days = integrity_warn_days
        self._clock = clock
        self._check_artifact_names()

    def _check_artifact_names(self) -> None:
        # Every artifact lands in one flat bundle directory, so names must not collide.
        names = [
            *(dumper.artifact_name for dumper in self._dumpers),
            *(archive_name(directory) for directory in self._archive_dirs),
            *(config_file.name for config_file in self._config_files),
            SYSTEM_CONFIGS_FILENAME,
            USER_STATISTICS_FILENAME,
            SUBSCRIPTION_STATISTICS_FILENAME,
        ]
        duplicates = sorted(name for name, count in Counter(names).items() if count > 1)
        if duplicates:
            raise BackupConfigError(f"Backup artifact names collide: {', '.join(duplicates)}")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        database: Database | None,
        dumpers: Sequence[DatabaseDumper] | None = None,
        notifier: BackupNotifier | None = None,
    ) -> DisasterRecoveryManager:
        uploader = None
        if settings.cloud_backup_enabled:
            uploader = build_cloud_uploader(
                settings.cloud_provider,
                bucket=settings.cloud_bucket,
                region=settings.cloud_region,
            )
        return cls(
            backup_dir=settings.backup_dir,
            encryption_key=settings.backup_encryption_key,
            key_salt=settings.backup_key_salt,
            database=database,
            dumpers=build_dumpers(settings) if dumpers is None else dumpers,
            archive_dirs=split_csv(settings.backup_archive_dirs),
            config_files=split_csv(settings.backup_config_files),
            retention_days=settings.backup_retention_days,
            uploader=uploader,
            notifier=notifier or BackupNotifier.from_settings(settings),
            keep_failed=settings.backup_keep_failed,
            verify_on_create=settings.backup_verify_on_create,
            integrity_warn_days=settings.backup_integrity_warn_days,
        )

    @property
    def backup_root(self) -> Path:
        return self._backup_root

    def _bundle_dir(self, backup_id: str) -> Path:
        # Ids are validated before touching the filesystem to rule out path traversal.
        if BACKUP_ID_PATTERN.match(backup_id) is None:
            raise BackupNotFoundError(f"Invalid backup id: {backup_id}")
        return self._backup_root / backup_id

    async def _resolve_key(self) -> bytes:
        return await asyncio.to_thread(
            resolve_backup_key, self._encryption_key, salt=self._key_salt
        )

    async def create_full_backup(self) -> BackupResult:
        started = time.monotonic()
        created_at = self._clock()
        backup_id = generate_backup_id(created_at)
        bundle_dir = self._backup_root / backup_id
        created_dir = False
        logger.info("backup_started backup_id=%s", backup_id)
        try:
            key = await self._resolve_key()
            bundle_dir.mkdir(parents=True, exist_ok=False)
            created_dir = True

            artifacts: list[Path] = []
            artifacts.extend(await self._dump_databases(bundle_dir))
            artifacts.extend(await self._archive_directories(bundle_dir))
            artifacts.extend(await asyncio.to_thread(self._copy_config_files, bundle_dir))
            artifacts.extend(await self._export_application_state(bundle_dir))

            encrypted = await asyncio.to_thread(self._encrypt_artifacts, artifacts, key)
            checksums = await asyncio.to_thread(
                lambda: {path.name: sha256_file(path) for path in encrypted}
            )
            manifest = BackupManifest(
                backup_id=backup_id,
                files=[path.name for path in encrypted],
                size=sum(path.stat().st_size for path in encrypted),
                duration=int((time.monotonic() - started) * 1000),
                timestamp=created_at.isoformat(),
                checksums=checksums,
            )
            manifest_path = bundle_dir / MANIFEST_FILENAME
            await asyncio.to_thread(write_manifest, manifest_path, manifest)

            if self._verify_on_create:
                report = await self.test_backup_integrity(backup_id)
                if report.errors:
                    raise BackupIntegrityError("; ".join(report.errors))

            uploaded: list[str] = []
            if self._uploader is not None:
                uploaded = await self._uploader.upload(backup_id, [*encrypted, manifest_path])

            pruned = await self.cleanup_old_backups(exclude={backup_id})
        except Exception as exc:
            duration_ms = int((time.monotonic() - started) * 1000)
            logger.error(
                "backup_failed backup_id=%s duration_ms=%s error=%s",
                backup_id,
                duration_ms,
                exc,
                exc_info=exc,
            )
            await self._notify("failure", {"backupId": backup_id, "error": str(exc), "duration": duration_ms})
            if created_dir and not self._keep_failed:
                await asyncio.to_thread(shutil.rmtree, bundle_dir, True)
            raise

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "backup_completed backup_id=%s files=%s size=%s duration_ms=%s",
            backup_id,
            len(manifest.files),
            manifest.size,
            duration_ms,
        )
        await self._notify(
            "success",
            {
                "backupId": backup_id,
                "files": len(manifest.files),
                "size": manifest.size,
                "duration": duration_ms,
            },
        )
        return BackupResult(
            backup_id=backup_id,
            files=list(manifest.files),
            size=manifest.size,
            duration_ms=duration_ms,
            manifest_path=manifest_path,
            uploaded_objects=uploaded,
            pruned_backups=pruned,
        )

    async def _dump_databases(self, bundle_dir: Path) -> list[Path]:
        outputs: list[Path] = []
        for dumper in self._dumpers:
            output = await asyncio.to_thread(dumper.dump, bundle_dir)
            logger.info("backup_database_dumped engine=%s artifact=%s", dumper.name, output.name)
            outputs.append(output)
        return outputs

    async def _archive_directories(self, bundle_dir: Path) -> list[Path]:
        outputs: list[Path] = []
        for directory in self._archive_dirs:
            if not directory.is_dir():
                logger.info("backup_archive_skipped path=%s reason=missing", directory)
                continue
            destination = bundle_dir / archive_name(directory)
            outputs.append(await asyncio.to_thread(archive_directory, directory, destination))
        return outputs

    def _copy_config_files(self, bundle_dir: Path) -> list[Path]:
        outputs: list[Path] = []
        for config_file in self._config_files:
            if not config_file.is_file():
                continue
            outputs.append(copy_config_file(config_file, bundle_dir))
        return outputs

    async def _export_application_state(self, bundle_dir: Path) -> list[Path]:
        if self._database is None:
            return []
        async with self._database.session() as session:
            configs = (await session.execute(select(SystemConfig).order_by(SystemConfig.key))).scalars().all()
            user_stats = (
                await session.execute(
                    select(User.role, User.status, func.count())
                    .group_by(User.role, User.status)
                    .order_by(User.role, User.status)
                )
            ).all()
            subscription_stats = (
                await session.execute(
                    select(Subscription.plan, Subscription.status, func.count())
                    .group_by(Subscription.plan, Subscription.status)
                    .order_by(Subscription.plan, Subscription.status)
                )
            ).all()
        exports = {
            SYSTEM_CONFIGS_FILENAME: [row_to_dict(row) for row in configs],
            USER_STATISTICS_FILENAME: [
                {"role": role, "status": status, "count": int(count)} for role, status, count in user_stats
            ],
            SUBSCRIPTION_STATISTICS_FILENAME: [
                {"plan": plan, "status": status, "count": int(count)}
                for plan, status, count in subscription_stats
            ],
        }
        outputs: list[Path] = []
        for filename, payload in exports.items():
            path = bundle_dir / filename
            path.write_text(dumps(payload, indent=2), encoding="utf-8")
            outputs.append(path)
        return outputs

    @staticmethod
    def _encrypt_artifacts(artifacts: Sequence[Path], key: bytes) -> list[Path]:
        # The plaintext name is bound as associated data so artifacts cannot be swapped.
        encrypted: list[Path] = []
        for artifact in artifacts:
            destination = artifact.with_name(f"{artifact.name}{ENCRYPTED_SUFFIX}")
            encrypt_file(artifact, destination, key, associated_data=artifact.name.encode("utf-8"))
            artifact.unlink()
            encrypted.append(destination)
        return encrypted

    @staticmethod
    def _decrypt_artifacts(bundle_dir: Path, files: Sequence[str], staging_dir: Path, key: bytes) -> list[str]:
        restored: list[str] = []
        for name in files:
            if not name.endswith(ENCRYPTED_SUFFIX):
                continue
            plain_name = name[: -len(ENCRYPTED_SUFFIX)]
            decrypt_file(
                bundle_dir / name,
                staging_dir / plain_name,
                key,
                associated_data=plain_name.encode("utf-8"),
            )
            restored.append(plain_name)
        return restored

    async def restore_from_backup(self, backup_id: str) -> RestoreResult:
        logger.info("backup_restore_started backup_id=%s", backup_id)
        try:
            bundle_dir = self._bundle_dir(backup_id)
            if not bundle_dir.is_dir():
                raise BackupNotFoundError(f"Backup not found: {backup_id}")
            manifest = load_manifest(bundle_dir / MANIFEST_FILENAME)
            report = await self.test_backup_integrity(backup_id)
            if not report.valid:
                return RestoreResult(
                    success=False,
                    message=f"Backup integrity check failed: {'; '.join(report.errors)}",
                    backup_id=backup_id,
                )
            key = await self._resolve_key()
            restored: list[str] = []
            # Plaintext only ever exists inside this staging directory.
            with tempfile.TemporaryDirectory(prefix=".restore-", dir=bundle_dir) as staging:
                staging_dir = Path(staging)
                await asyncio.to_thread(self._decrypt_artifacts, bundle_dir, manifest.files, staging_dir, key)
                for dumper in self._dumpers:
                    if await asyncio.to_thread(dumper.restore, staging_dir):
                        restored.append(dumper.name)
                restored.extend(await asyncio.to_thread(self._extract_archives, staging_dir))
                config_count = await self._restore_system_configs(staging_dir)
                if config_count is not None:
                    restored.append(f"system_configs:{config_count}")
        except Exception as exc:  # noqa: BLE001 - restore reports failures through RestoreResult
            logger.error("backup_restore_failed backup_id=%s error=%s", backup_id, exc, exc_info=exc)
            return RestoreResult(success=False, message=str(exc), backup_id=backup_id)
        logger.info("backup_restore_completed backup_id=%s restored=%s", backup_id, ",".join(restored))
        return RestoreResult(
            success=True,
            message="Restore completed successfully",
            backup_id=backup_id,
            restored=restored,
        )

    def _extract_archives(self, staging_dir: Path) -> list[str]:
        targets = {archive_name(directory): directory for directory in self._archive_dirs}
        extracted: list[str] = []
        for archive in sorted(staging_dir.glob(f"*{ARCHIVE_SUFFIX}")):
            target = targets.get(archive.name)
            if target is None:
                logger.warning("backup_restore_archive_unmapped archive=%s", archive.name)
                continue
            extract_archive(archive, target)
            extracted.append(str(target))
        return extracted

    async def _restore_system_configs(self, staging_dir: Path) -> int | None:
        source = staging_dir / SYSTEM_CONFIGS_FILENAME
        if self._database is None or not source.exists():
            return None
        rows: list[dict[str, Any]] = json.loads(source.read_text(encoding="utf-8"))
        # All rows land in one transaction or none do.
        async with self._database.transaction() as session:
            for row in rows:
                existing = await session.get(SystemConfig, row["key"])
                if existing is None:
                    session.add(
                        SystemConfig(
                            key=row["key"],
                            value=row["value"],
                            type=row.get("type", "string"),
                            is_public=bool(row.get("is_public", False)),
                        )
                    )
                else:
                    existing.value = row["value"]
                    existing.type = row.get("type", existing.type)
                    existing.is_public = bool(row.get("is_public", existing.is_public))
        return len(rows)

    async def test_backup_integrity(self, backup_id: str) -> IntegrityReport:
        errors: list[str] = []
        warnings: list[str] = []
        try:
            bundle_dir = self._bundle_dir(backup_id)
        except BackupNotFoundError as exc:
            return IntegrityReport(valid=False, errors=[str(exc)], warnings=[])
        if not bundle_dir.is_dir():
            return IntegrityReport(valid=False, errors=["Backup directory not found"], warnings=[])
        try:
            manifest = load_manifest(bundle_dir / MANIFEST_FILENAME)
        except ManifestError as exc:
            return IntegrityReport(valid=False, errors=[str(exc)], warnings=[])

        for name in manifest.files:
            path = bundle_dir / name
            if not path.is_file():
                errors.append(f"missing file: {name}")
                continue
            expected = manifest.checksums.get(name)
            if expected is None:
                errors.append(f"missing checksum: {name}")
                continue
            actual = await asyncio.to_thread(sha256_file, path)
            if actual != expected:
                errors.append(f"checksum mismatch: {name}")

        created_at = _parse_timestamp(manifest.timestamp)
        if created_at is None:
            warnings.append("manifest timestamp is not ISO-8601")
        elif self._clock() - created_at > timedelta(days=self._integrity_warn_days):
            warnings.append(f"backup is older than {self._integrity_warn_days} days")
        return IntegrityReport(valid=not errors, errors=errors, warnings=warnings)

    async def list_backups(self) -> list[BackupSummary]:
        return await asyncio.to_thread(self._list_backups_sync)

    def _list_backups_sync(self) -> list[BackupSummary]:
        if not self._backup_root.is_dir():
            return []
        summaries: list[BackupSummary] = []
        for entry in self._backup_root.iterdir():
            if not entry.is_dir() or not entry.name.startswith("backup_"):
                continue
            summaries.append(self._summarize(entry))
        summaries.sort(key=lambda item: item.created_at, reverse=True)
        return summaries

    def _summarize(self, bundle_dir: Path) -> BackupSummary:
        fallback_created = _timestamp_from_id(bundle_dir.name) or datetime.fromtimestamp(
            bundle_dir.stat().st_mtime, tz=timezone.utc
        )
        manifest_path = bundle_dir / MANIFEST_FILENAME
        if not manifest_path.exists():
            on_disk = [path for path in bundle_dir.iterdir() if path.is_file()]
            return BackupSummary(
                backup_id=bundle_dir.name,
                created_at=fallback_created,
                size=sum(path.stat().st_size for path in on_disk),
                files=len(on_disk),
                status=STATUS_INCOMPLETE,
            )
        try:
            manifest = load_manifest(manifest_path)
        except ManifestError:
            return BackupSummary(
                backup_id=bundle_dir.name,
                created_at=fallback_created,
                size=0,
                files=0,
                status=STATUS_CORRUPTED,
            )
        return BackupSummary(
            backup_id=bundle_dir.name,
            created_at=_parse_timestamp(manifest.timestamp) or fallback_created,
            size=manifest.size,
            files=len(manifest.files),
            status=STATUS_AVAILABLE,
        )

    async def cleanup_old_backups(self, *, exclude: set[str] | None = None) -> int:
        cutoff = self._clock() - timedelta(days=self._retention_days)
        deleted = 0
        for summary in await self.list_backups():
            if exclude and summary.backup_id in exclude:
                continue
            if summary.created_at >= cutoff:
                continue
            try:
                await asyncio.to_thread(shutil.rmtree, self._backup_root / summary.backup_id)
            except OSError as exc:
                logger.warning("backup_prune_failed backup_id=%s", summary.backup_id, exc_info=exc)
                continue
            deleted += 1
            logger.info("backup_pruned backup_id=%s created_at=%s", summary.backup_id, summary.created_at.isoformat())
        return deleted

    async def _notify(self, status: str, data: dict[str, Any]) -> None:
        if self._notifier is None:
            return
        await self._notifier.notify(status, data)
