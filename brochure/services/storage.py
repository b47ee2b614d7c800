"""
Blob storage for extracted brochure images (S3-compatible, e.g. Cloudflare R2).

The pipeline only needs ``upload_file`` and ``delete_file``.  When storage is
not configured every call raises ``StorageError`` and callers fall back to
inline data URLs.
"""

from __future__ import annotations

import logging

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from brochure.config import Settings, settings as default_settings
from brochure.errors import StorageError

logger = logging.getLogger(__name__)


class BlobStorage:
    """Uploads objects under a public base URL."""

    def __init__(self, config: Settings | None = None):
        self._config = config or default_settings
        self._client = None

    @property
    def is_configured(self) -> bool:
        cfg = self._config
        return all(
            [
                cfg.storage_bucket,
                cfg.storage_access_key_id,
                cfg.storage_secret_access_key,
                cfg.storage_public_url,
            ]
        )

    def _get_client(self):
        if not self.is_configured:
            raise StorageError("Blob storage is not configured")
        if self._client is None:
            cfg = self._config
            self._client = boto3.client(
                "s3",
                endpoint_url=cfg.storage_endpoint_url or None,
                aws_access_key_id=cfg.storage_access_key_id,
                aws_secret_access_key=cfg.storage_secret_access_key,
                config=Config(
                    region_name=cfg.storage_region,
                    retries={"max_attempts": 3, "mode": "adaptive"},
                ),
            )
            logger.info("Blob storage client ready (bucket=%s)", cfg.storage_bucket)
        return self._client

    def public_url(self, key: str) -> str:
        return f"{self._config.storage_public_url.rstrip('/')}/{key}"

    def key_from_url(self, url_or_key: str) -> str:
        base = self._config.storage_public_url.rstrip("/") + "/"
        if base != "/" and url_or_key.startswith(base):
            return url_or_key[len(base):]
        return url_or_key

    def upload_file(self, buffer: bytes, name: str, content_type: str, folder: str) -> str:
        """Store *buffer* as ``{folder}/{name}`` and return its public URL."""
        client = self._get_client()
        key = f"{folder.strip('/')}/{name}"
        try:
            client.put_object(
                Bucket=self._config.storage_bucket,
                Key=key,
                Body=buffer,
                ContentType=content_type,
                CacheControl="public, max-age=31536000",
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Upload failed for {key}: {exc}") from exc
        logger.debug("Uploaded %s (%d bytes)", key, len(buffer))
        return self.public_url(key)

    def delete_file(self, key: str) -> None:
        """Delete an object by key or by its public URL."""
        client = self._get_client()
        key = self.key_from_url(key)
        try:
            client.delete_object(Bucket=self._config.storage_bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Delete failed for {key}: {exc}") from exc
        logger.debug("Deleted %s", key)
