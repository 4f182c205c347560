from __future__ import annotations

import json
from pathlib import Path

import pytest

from esawit.core.errors import ManifestError
from esawit.services.backup.manifest import (
    MANIFEST_FILENAME,
    BackupManifest,
    load_manifest,
    write_manifest,
)


def _manifest() -> BackupManifest:
    return BackupManifest(
        backup_id="backup_1760000000000_0a1b2c3d",
        files=["postgresql.sql.enc", "uploads.tar.gz.enc"],
        size=2048,
        duration=1534,
        timestamp="2026-10-19T03:00:00+00:00",
        checksums={"postgresql.sql.enc": "aa" * 32, "uploads.tar.gz.enc": "bb" * 32},
    )


def test_manifest_serializes_with_camel_case_keys(tmp_path: Path) -> None:
    path = tmp_path / MANIFEST_FILENAME

    write_manifest(path, _manifest())
    payload = json.loads(path.read_text(encoding="utf-8"))

    assert payload["backupId"] == "backup_1760000000000_0a1b2c3d"
    assert payload["version"] == "1.0"
    assert set(payload["recoveryInstructions"]) == {"databases", "files", "application"}
    assert payload["checksums"]["uploads.tar.gz.enc"] == "bb" * 32
    assert not list(tmp_path.glob(".*.tmp"))


def test_load_manifest_reads_written_file(tmp_path: Path) -> None:
    path = tmp_path / MANIFEST_FILENAME
    write_manifest(path, _manifest())

    loaded = load_manifest(path)

    assert loaded == _manifest()


def test_load_manifest_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ManifestError):
        load_manifest(tmp_path / MANIFEST_FILENAME)


def test_load_manifest_rejects_garbage(tmp_path: Path) -> None:
    path = tmp_path / MANIFEST_FILENAME
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ManifestError):
        load_manifest(path)


def test_load_manifest_rejects_missing_fields(tmp_path: Path) -> None:
    path = tmp_path / MANIFEST_FILENAME
    path.write_text(json.dumps({"backupId": "backup_1_00000000", "files": []}), encoding="utf-8")

    with pytest.raises(ManifestError):
        load_manifest(path)


def test_load_manifest_rejects_non_object_root(tmp_path: Path) -> None:
    path = tmp_path / MANIFEST_FILENAME
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(ManifestError):
        load_manifest(path)
