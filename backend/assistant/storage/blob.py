"""
Blob Storage Service — S3 / S3-compatible

Raw uploads are stored flat in one bucket under a server-generated key:

    {unix_millis}-{original name with [^A-Za-z0-9.-] replaced by "_"}

The key is built here, never accepted from the client. Metadata about the
object lives in the relational store (documents.filename holds the key).
"""

from __future__ import annotations

import logging
import re
import time

import aioboto3
from botocore.exceptions import ClientError

from assistant.core.config import Settings

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS_RE = re.compile(r"[^a-zA-Z0-9.-]")


def generate_key(original_name: str, now_ms: int | None = None) -> str:
    """Collision-resistant storage key for an uploaded file."""
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{stamp}-{_UNSAFE_KEY_CHARS_RE.sub('_', original_name)}"


class BlobStorageService:
    """
    Async S3 operations against the configured bucket.

    One instance per process is fine: aioboto3 sessions are cheap and a
    client is opened per call.
    """

    def __init__(self, settings: Settings) -> None:
        self._bucket   = settings.s3_bucket
        self._region   = settings.aws_region
        self._endpoint = settings.s3_endpoint_url or None
        self._session  = aioboto3.Session()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self):
        """Return a scoped async S3 client context manager."""
        return self._session.client(
            "s3",
            region_name=self._region,
            endpoint_url=self._endpoint,
        )

    def _url(self, key: str) -> str:
        if self._endpoint:
            return f"{self._endpoint.rstrip('/')}/{self._bucket}/{key}"
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/{key}"

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def upload(self, key: str, body: bytes, content_type: str) -> str:
        """Store bytes under key and return the object URL."""
        async with self._client() as s3:
            await s3.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
            )
        logger.info("Blob upload ok | key=%s size=%d", key, len(body))
        return self._url(key)

    async def download(self, key: str) -> bytes:
        """
        Fetch an object's bytes.

        Raises:
            FileNotFoundError: if the key does not exist.
        """
        async with self._client() as s3:
            try:
                resp = await s3.get_object(Bucket=self._bucket, Key=key)
                return await resp["Body"].read()
            except ClientError as exc:
                code = exc.response["Error"]["Code"]
                if code in ("NoSuchKey", "404"):
                    raise FileNotFoundError(f"Object not found: {key}") from exc
                raise

    async def delete(self, key: str) -> None:
        async with self._client() as s3:
            await s3.delete_object(Bucket=self._bucket, Key=key)
        logger.info("Blob delete ok | key=%s", key)
