"""
Content Store — S3 / MinIO object access

Raw document bytes live under:
    s3://<BUCKET>/documents/<document_id><ext>

The key is built server-side from the document id; clients never supply one.

Error mapping:
  NoSuchKey / 404           → ContentNotFoundError  (permanent, not retried)
  other ClientError / I/O   → ContentStoreError     (transient, envelope retries)

A client is opened per call. Each Celery task runs on its own event loop, and
an aioboto3 client must not outlive the loop that opened it.
"""

from __future__ import annotations

import logging
import mimetypes
from uuid import UUID

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from docpipe.core.exceptions import ContentNotFoundError, ContentStoreError
from docpipe.schemas.events import ContentReference

logger = logging.getLogger(__name__)

DOCUMENT_PREFIX = "documents"

_NOT_FOUND_CODES = ("NoSuchKey", "404", "NotFound")


def document_key(document_id: UUID, filename: str) -> str:
    """documents/<document_id><ext> — extension taken from the original filename."""
    safe_name = filename.replace("/", "_").replace("..", "_")
    ext = ""
    if "." in safe_name:
        ext = "." + safe_name.rsplit(".", 1)[-1].lower()
    return f"{DOCUMENT_PREFIX}/{document_id}{ext}"


class ContentStore:
    """Async get/put against one bucket."""

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        endpoint_url: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
    ) -> None:
        self.bucket = bucket
        self._region = region
        self._endpoint_url = endpoint_url or None
        self._session = aioboto3.Session(
            aws_access_key_id=access_key_id or None,
            aws_secret_access_key=secret_access_key or None,
        )

    @classmethod
    def from_settings(cls, settings) -> "ContentStore":
        return cls(
            bucket=settings.s3_bucket,
            region=settings.aws_region,
            endpoint_url=settings.s3_endpoint_url,
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
        )

    def _client(self):
        """Return a scoped async S3 client context manager."""
        return self._session.client(
            "s3",
            region_name=self._region,
            endpoint_url=self._endpoint_url,   # MinIO in local dev; None = AWS
        )

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str | None = None,
    ) -> ContentReference:
        ct = content_type or mimetypes.guess_type(key)[0] or "application/octet-stream"
        try:
            async with self._client() as s3:
                await s3.put_object(Bucket=self.bucket, Key=key, Body=body, ContentType=ct)
        except (ClientError, BotoCoreError) as exc:
            raise ContentStoreError(f"Upload failed for {key}: {exc}") from exc

        logger.info("S3 upload ok | bucket=%s key=%s size=%d", self.bucket, key, len(body))
        return ContentReference(bucket=self.bucket, key=key, content_type=ct, size_bytes=len(body))

    async def get_object(self, key: str) -> bytes:
        try:
            async with self._client() as s3:
                resp = await s3.get_object(Bucket=self.bucket, Key=key)
                data = await resp["Body"].read()
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in _NOT_FOUND_CODES:
                raise ContentNotFoundError(key) from exc
            raise ContentStoreError(f"Download failed for {key}: {code or exc}") from exc
        except BotoCoreError as exc:
            raise ContentStoreError(f"Download failed for {key}: {exc}") from exc

        logger.debug("S3 download ok | bucket=%s key=%s size=%d", self.bucket, key, len(data))
        return data
