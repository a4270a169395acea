# fleetdesk/infra/s3_storage.py
"""
S3-compatible blob store for dispatch images and profile photos.

Supports AWS S3, Cloudflare R2, MinIO or any S3-compatible endpoint.

Configuration:

    S3_ENDPOINT_URL=https://s3.amazonaws.com (or R2/MinIO endpoint)
    S3_PUBLIC_URL=https://cdn.example.com/bucket (optional public/CDN prefix)
    S3_BUCKET_NAME=fleetdesk
    S3_ACCESS_KEY=...
    S3_SECRET_KEY=...

Returned URLs use S3_PUBLIC_URL when set, otherwise the raw
endpoint/bucket URL.  ``delete`` accepts either a key or any URL this
store handed out.

boto3 is synchronous, so every call runs in the default executor.
"""
from __future__ import annotations

import asyncio
from functools import partial
from typing import Optional
from urllib.parse import unquote, urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from fleetdesk.config import settings
from fleetdesk.infra.logging_config import get_logger
from fleetdesk.infra.metrics import FleetMetrics, inc_counter

logger = get_logger(__name__)


class S3BlobStore:
    """BlobStore over an S3-compatible bucket."""

    def __init__(self, client=None, bucket: str | None = None, public_url: str | None = None):
        if client is None:
            if not settings.s3_enabled:
                raise RuntimeError("S3 storage not configured")
            client = boto3.client(
                "s3",
                endpoint_url=settings.s3_endpoint_url,
                aws_access_key_id=settings.s3_access_key,
                aws_secret_access_key=settings.s3_secret_key,
                region_name=settings.s3_region,
                config=Config(
                    signature_version="s3v4",
                    retries={"max_attempts": 3, "mode": "adaptive"},
                    s3={"addressing_style": "path" if settings.s3_force_path_style else "virtual"}
                ),
            )
        self._client = client
        self._bucket = bucket or settings.s3_bucket_name
        self._public_url = public_url if public_url is not None else settings.s3_public_url
        self._endpoint_url = settings.s3_endpoint_url or ""

        logger.info(f"S3 blob store initialized: bucket={self._bucket}")

    def url_for(self, key: str) -> str:
        if self._public_url:
            return f"{self._public_url.rstrip('/')}/{key}"
        return f"{self._endpoint_url.rstrip('/')}/{self._bucket}/{key}"

    def key_from_url(self, url_or_path: str) -> str:
        """Recover the object key from a URL this store produced (or a bare key)."""
        for prefix in filter(None, [
            self._public_url and self._public_url.rstrip("/") + "/",
            self._endpoint_url and f"{self._endpoint_url.rstrip('/')}/{self._bucket}/",
        ]):
            if url_or_path.startswith(prefix):
                return unquote(url_or_path[len(prefix):])

        parsed = urlparse(url_or_path)
        if parsed.scheme in ("http", "https"):
            path = unquote(parsed.path.lstrip("/"))
            bucket_prefix = f"{self._bucket}/"
            return path[len(bucket_prefix):] if path.startswith(bucket_prefix) else path
        return url_or_path.lstrip("/")

    async def _call(self, fn, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, **kwargs))

    async def upload(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """Upload bytes to ``path``. Returns the retrieval URL."""
        try:
            await self._call(
                self._client.put_object,
                Bucket=self._bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
                CacheControl="public, max-age=31536000",
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 upload failed: key={path}, error={e}", exc_info=True)
            inc_counter("blob_uploads_failed")
            raise

        logger.info(f"Blob uploaded: key={path}, size={len(data)}")
        inc_counter("blob_uploads_success")
        return self.url_for(path)

    async def download(self, path: str) -> Optional[bytes]:
        """Returns the object bytes, or None if not found."""
        key = self.key_from_url(path)
        try:
            response = await self._call(self._client.get_object, Bucket=self._bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            if e.response["Error"]["Code"] in ("NoSuchKey", "404"):
                return None
            logger.error(f"S3 download failed: key={key}, error={e}", exc_info=True)
            raise

    async def delete(self, url_or_path: str) -> bool:
        """Best-effort delete; failures are logged and reported as False."""
        key = self.key_from_url(url_or_path)
        try:
            await self._call(self._client.delete_object, Bucket=self._bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"S3 delete failed (ignored): key={key}, error={e}")
            FleetMetrics.blob_delete_failed()
            return False

        logger.info(f"Blob deleted: key={key}")
        return True


class InMemoryBlobStore:
    """BlobStore kept in process memory, for dev and tests."""

    def __init__(self, base_url: str = "memory://blobs"):
        self.base_url = base_url.rstrip("/")
        self.objects: dict[str, bytes] = {}

    def _key(self, url_or_path: str) -> str:
        prefix = self.base_url + "/"
        if url_or_path.startswith(prefix):
            return url_or_path[len(prefix):]
        return url_or_path.lstrip("/")

    async def upload(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        self.objects[path] = bytes(data)
        return f"{self.base_url}/{path}"

    async def download(self, path: str) -> Optional[bytes]:
        return self.objects.get(self._key(path))

    async def delete(self, url_or_path: str) -> bool:
        return self.objects.pop(self._key(url_or_path), None) is not None
