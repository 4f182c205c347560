from __future__ import annotations

import hashlib
import shutil
import tarfile
from pathlib import Path


ARCHIVE_SUFFIX = ".tar.gz"


def archive_name(directory: Path) -> str:
    # Same-named directories in different locations get distinct archives.
    resolved = directory.resolve()
    digest = hashlib.sha256(str(resolved).encode("utf-8")).hexdigest()[:8]
    return f"{resolved.name}-{digest}{ARCHIVE_SUFFIX}"


def archive_directory(source: Path, destination: Path) -> Path:
    # Members are stored relative to the directory root.
    with tarfile.open(destination, "w:gz") as tar:
        tar.add(source, arcname=".")
    return destination


def extract_archive(source: Path, target: Path) -> None:
    # The data filter rejects absolute paths, links outside target and device files.
    target.mkdir(parents=True, exist_ok=True)
    with tarfile.open(source, "r:gz") as tar:
        tar.extractall(target, filter="data")


def copy_config_file(source: Path, target_dir: Path) -> Path:
    destination = target_dir / source.name
    shutil.copy2(source, destination)
    return destination
