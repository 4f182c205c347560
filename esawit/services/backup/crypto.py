from __future__ import annotations

import base64
import binascii
import hashlib
import os
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from esawit.core.errors import BackupConfigError, BackupIntegrityError


NONCE_SIZE = 12
TAG_SIZE = 16
_CHUNK_SIZE = 1024 * 1024
_VALID_KEY_LENGTHS = {16, 24, 32}


def decode_key_material(raw: str) -> bytes | None:
    # Accept hex or base64 raw keys; anything else is treated as a passphrase.
    cleaned = raw.strip()
    try:
        decoded = bytes.fromhex(cleaned)
    except ValueError:
        try:
            decoded = base64.b64decode(cleaned, validate=True)
        except (binascii.Error, ValueError):
            return None
    return decoded if len(decoded) in _VALID_KEY_LENGTHS else None


def resolve_backup_key(raw: str | None, *, salt: str) -> bytes:
    """Return the AES key used for backup artifacts.

    Raw 128/192/256-bit keys are used as-is. Any other value is a passphrase
    stretched to 256 bits with scrypt, so the same passphrase and salt always
    yield the same key across backup and restore.
    """
    if not raw:
        raise BackupConfigError("BACKUP_ENCRYPTION_KEY is required for backups")
    key = decode_key_material(raw)
    if key is not None:
        return key
    kdf = Scrypt(salt=salt.encode("utf-8"), length=32, n=2**14, r=8, p=1)
    return kdf.derive(raw.encode("utf-8"))


def sha256_file(path: Path) -> str:
    # Compute streaming checksums for large backup artifacts.
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def encrypt_file(source: Path, destination: Path, key: bytes, *, associated_data: bytes = b"") -> None:
    # Layout: 12-byte random nonce, ciphertext, 16-byte GCM tag.
    nonce = os.urandom(NONCE_SIZE)
    encryptor = Cipher(algorithms.AES(key), modes.GCM(nonce)).encryptor()
    if associated_data:
        encryptor.authenticate_additional_data(associated_data)
    with source.open("rb") as input_handle, destination.open("wb") as output_handle:
        output_handle.write(nonce)
        for chunk in iter(lambda: input_handle.read(_CHUNK_SIZE), b""):
            output_handle.write(encryptor.update(chunk))
        output_handle.write(encryptor.finalize())
        output_handle.write(encryptor.tag)


def decrypt_file(source: Path, destination: Path, key: bytes, *, associated_data: bytes = b"") -> None:
    """Decrypt ``source`` into ``destination`` and verify the GCM tag.

    Plaintext is streamed before the tag can be checked, so on any
    authentication failure the partial output is removed before raising.
    """
    total_size = source.stat().st_size
    if total_size < NONCE_SIZE + TAG_SIZE:
        raise BackupIntegrityError(f"encrypted artifact too small: {source.name}")
    try:
        with source.open("rb") as input_handle:
            nonce = input_handle.read(NONCE_SIZE)
            input_handle.seek(total_size - TAG_SIZE)
            tag = input_handle.read(TAG_SIZE)
            input_handle.seek(NONCE_SIZE)
            decryptor = Cipher(algorithms.AES(key), modes.GCM(nonce, tag)).decryptor()
            if associated_data:
                decryptor.authenticate_additional_data(associated_data)
            remaining = total_size - NONCE_SIZE - TAG_SIZE
            with destination.open("wb") as output_handle:
                while remaining > 0:
                    chunk = input_handle.read(min(_CHUNK_SIZE, remaining))
                    if not chunk:
                        break
                    remaining -= len(chunk)
                    output_handle.write(decryptor.update(chunk))
                output_handle.write(decryptor.finalize())
    except InvalidTag as exc:
        destination.unlink(missing_ok=True)
        raise BackupIntegrityError(f"authentication failed for {source.name}") from exc
