from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Protocol, Sequence

from esawit.core.errors import BackupConfigError, CloudUploadError


logger = logging.getLogger(__name__)


class CloudUploader(Protocol):
    provider: str

    async def upload(self, backup_id: str, files: Sequence[Path]) -> list[str]: ...


def object_key(backup_id: str, path: Path) -> str:
    # Objects mirror the local layout: <backup_id>/<artifact>.
    return f"{backup_id}/{path.name}"


class S3Uploader:
    provider = "aws"

    def __init__(self, *, bucket: str, region: str, client: Any | None = None) -> None:
        self._bucket = bucket
        self._region = region
        self._client = client

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        try:
            import boto3
        except Exception as exc:  # pragma: no cover - environment-specific import
            raise BackupConfigError("AWS SDK not available. Install boto3.") from exc

        self._client = boto3.client("s3", region_name=self._region)
        return self._client

    async def upload(self, backup_id: str, files: Sequence[Path]) -> list[str]:
        client = self._get_client()
        keys: list[str] = []
        for path in files:
            key = object_key(backup_id, path)
            try:
                await asyncio.to_thread(
                    client.upload_file,
                    str(path),
                    self._bucket,
                    key,
                    ExtraArgs={"ServerSideEncryption": "AES256"},
                )
            except Exception as exc:
                raise CloudUploadError(f"s3 upload failed for {key}: {exc}") from exc
            keys.append(key)
        logger.info("backup_cloud_uploaded provider=aws bucket=%s objects=%s", self._bucket, len(keys))
        return keys


class GcsUploader:
    provider = "gcp"

    def __init__(self, *, bucket: str, client: Any | None = None) -> None:
        self._bucket = bucket
        self._client = client

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        try:
            from google.cloud import storage
        except Exception as exc:  # pragma: no cover - environment-specific import
            raise BackupConfigError(
                "Google Cloud Storage client not available. Install google-cloud-storage."
            ) from exc

        self._client = storage.Client()
        return self._client

    async def upload(self, backup_id: str, files: Sequence[Path]) -> list[str]:
        bucket = self._get_client().bucket(self._bucket)
        keys: list[str] = []
        for path in files:
            key = object_key(backup_id, path)
            try:
                await asyncio.to_thread(bucket.blob(key).upload_from_filename, str(path))
            except Exception as exc:
                raise CloudUploadError(f"gcs upload failed for {key}: {exc}") from exc
            keys.append(key)
        logger.info("backup_cloud_uploaded provider=gcp bucket=%s objects=%s", self._bucket, len(keys))
        return keys


def build_cloud_uploader(provider: str, *, bucket: str, region: str) -> CloudUploader:
    normalized = provider.strip().lower()
    if normalized in {"aws", "s3"}:
        return S3Uploader(bucket=bucket, region=region)
    if normalized in {"gcp", "gcs"}:
        return GcsUploader(bucket=bucket)
    raise BackupConfigError(f"Unsupported cloud provider: {provider}")
