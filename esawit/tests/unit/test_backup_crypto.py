from __future__ import annotations

import base64
from pathlib import Path

import pytest

from esawit.core.errors import BackupConfigError, BackupIntegrityError
from esawit.services.backup.crypto import (
    NONCE_SIZE,
    TAG_SIZE,
    decode_key_material,
    decrypt_file,
    encrypt_file,
    resolve_backup_key,
    sha256_file,
)

_KEY = bytes(range(32))


def _write(path: Path, data: bytes) -> Path:
    path.write_bytes(data)
    return path


def test_decrypt_restores_plaintext(tmp_path: Path) -> None:
    plaintext = b"INSERT INTO users VALUES (1);\n" * 5000
    source = _write(tmp_path / "postgresql.sql", plaintext)
    encrypted = tmp_path / "postgresql.sql.enc"
    restored = tmp_path / "restored.sql"

    encrypt_file(source, encrypted, _KEY, associated_data=b"postgresql.sql")
    decrypt_file(encrypted, restored, _KEY, associated_data=b"postgresql.sql")

    assert encrypted.stat().st_size == len(plaintext) + NONCE_SIZE + TAG_SIZE
    assert encrypted.read_bytes()[NONCE_SIZE:NONCE_SIZE + 32] != plaintext[:32]
    assert restored.read_bytes() == plaintext


def test_each_encryption_uses_a_fresh_nonce(tmp_path: Path) -> None:
    source = _write(tmp_path / "data.json", b"{}")

    encrypt_file(source, tmp_path / "a.enc", _KEY)
    encrypt_file(source, tmp_path / "b.enc", _KEY)

    assert (tmp_path / "a.enc").read_bytes() != (tmp_path / "b.enc").read_bytes()


def test_tampered_ciphertext_is_rejected_and_output_removed(tmp_path: Path) -> None:
    source = _write(tmp_path / "users.json", b'{"users": 42}' * 100)
    encrypted = tmp_path / "users.json.enc"
    encrypt_file(source, encrypted, _KEY)
    data = bytearray(encrypted.read_bytes())
    data[NONCE_SIZE + 3] ^= 0xFF
    encrypted.write_bytes(bytes(data))
    restored = tmp_path / "out.json"

    with pytest.raises(BackupIntegrityError):
        decrypt_file(encrypted, restored, _KEY)

    assert not restored.exists()


def test_wrong_associated_data_is_rejected(tmp_path: Path) -> None:
    source = _write(tmp_path / "mysql.sql", b"select 1;")
    encrypted = tmp_path / "mysql.sql.enc"
    encrypt_file(source, encrypted, _KEY, associated_data=b"mysql.sql")

    with pytest.raises(BackupIntegrityError):
        decrypt_file(encrypted, tmp_path / "out.sql", _KEY, associated_data=b"postgresql.sql")


def test_wrong_key_is_rejected(tmp_path: Path) -> None:
    source = _write(tmp_path / "config.json", b"{}")
    encrypted = tmp_path / "config.json.enc"
    encrypt_file(source, encrypted, _KEY)

    with pytest.raises(BackupIntegrityError):
        decrypt_file(encrypted, tmp_path / "out.json", bytes(32))


def test_truncated_artifact_is_rejected(tmp_path: Path) -> None:
    encrypted = _write(tmp_path / "short.enc", b"\x00" * (NONCE_SIZE + TAG_SIZE - 1))

    with pytest.raises(BackupIntegrityError):
        decrypt_file(encrypted, tmp_path / "out", _KEY)


def test_decode_key_material_accepts_hex_and_base64() -> None:
    assert decode_key_material(_KEY.hex()) == _KEY
    assert decode_key_material(base64.b64encode(_KEY[:16]).decode()) == _KEY[:16]
    assert decode_key_material("correct horse battery staple") is None
    # Valid hex of an unsupported length is not a raw key.
    assert decode_key_material("abcd") is None


def test_passphrase_derivation_is_deterministic_per_salt() -> None:
    first = resolve_backup_key("correct horse battery staple", salt="esawit-backup-v1")
    second = resolve_backup_key("correct horse battery staple", salt="esawit-backup-v1")
    other_salt = resolve_backup_key("correct horse battery staple", salt="another-salt")

    assert len(first) == 32
    assert first == second
    assert first != other_salt


def test_raw_key_is_used_verbatim() -> None:
    assert resolve_backup_key(_KEY.hex(), salt="ignored") == _KEY


def test_missing_key_is_a_config_error() -> None:
    with pytest.raises(BackupConfigError):
        resolve_backup_key(None, salt="esawit-backup-v1")
    with pytest.raises(BackupConfigError):
        resolve_backup_key("", salt="esawit-backup-v1")


def test_sha256_file_matches_known_digest(tmp_path: Path) -> None:
    path = _write(tmp_path / "empty", b"")

    assert sha256_file(path) == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
