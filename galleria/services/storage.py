"""
S3 object storage.

Every photo is stored as three objects under one prefix:

    galleries/{gallery_id}/{photo_id}/original.{ext}
    galleries/{gallery_id}/{photo_id}/web.webp
    galleries/{gallery_id}/{photo_id}/thumb.webp

The key layout is shared with already deployed buckets and must not change.
"""

from __future__ import annotations

import logging
from typing import NamedTuple, Optional

import aioboto3

from ..config import Settings

logger = logging.getLogger(__name__)

WEB_EXT = "webp"
DEFAULT_ORIGINAL_EXT = "jpg"


class StorageNotConfigured(RuntimeError):
    """Raised when an S3 operation is attempted without credentials/bucket."""


class StorageKeys(NamedTuple):
    original: str
    web: str
    thumbnail: str

    @classmethod
    def for_photo(cls, photo) -> "StorageKeys":
        return cls(photo.s3_key, photo.s3_web_key, photo.s3_thumbnail_key)


def allocate_storage_keys(
    gallery_id: str, photo_id: str, original_ext: str = DEFAULT_ORIGINAL_EXT
) -> StorageKeys:
    """Deterministic keys for a photo's three renditions."""
    base = f"galleries/{gallery_id}/{photo_id}"
    return StorageKeys(
        original=f"{base}/original.{original_ext}",
        web=f"{base}/web.{WEB_EXT}",
        thumbnail=f"{base}/thumb.{WEB_EXT}",
    )


def original_extension(key: str) -> str:
    return key.rsplit(".", 1)[-1] if "." in key else DEFAULT_ORIGINAL_EXT


class S3ObjectStore:
    """
    Async S3 client wrapper. A client context is opened per call; aioboto3
    sessions are cheap and this keeps the store free of connection state.
    """

    def __init__(
        self,
        bucket: str,
        region: str,
        access_key_id: str,
        secret_access_key: str,
        endpoint_url: Optional[str] = None,
    ):
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self.configured = bool(bucket and region and access_key_id and secret_access_key)
        self.session = (
            aioboto3.Session(
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                region_name=region,
            )
            if self.configured
            else None
        )
        if self.configured:
            logger.info("S3 storage initialized - bucket: %s", bucket)

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3ObjectStore":
        return cls(
            bucket=settings.AWS_S3_BUCKET,
            region=settings.AWS_REGION,
            access_key_id=settings.AWS_ACCESS_KEY_ID,
            secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            endpoint_url=settings.AWS_S3_ENDPOINT_URL,
        )

    def _client(self):
        if not self.configured:
            raise StorageNotConfigured("S3 is not configured. Check AWS environment variables.")
        return self.session.client("s3", endpoint_url=self.endpoint_url)

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        async with self._client() as s3:
            await s3.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        logger.debug("Uploaded %s (%d bytes)", key, len(data))

    async def get(self, key: str) -> bytes:
        async with self._client() as s3:
            response = await s3.get_object(Bucket=self.bucket, Key=key)
            async with response["Body"] as stream:
                return await stream.read()

    async def delete(self, key: str) -> None:
        async with self._client() as s3:
            await s3.delete_object(Bucket=self.bucket, Key=key)
        logger.debug("Deleted %s", key)

    async def copy(self, source_key: str, dest_key: str) -> None:
        async with self._client() as s3:
            await s3.copy_object(
                Bucket=self.bucket,
                CopySource={"Bucket": self.bucket, "Key": source_key},
                Key=dest_key,
            )

    async def presign(self, key: str, expires_in: int) -> str:
        """Time-limited GET URL for a private object."""
        async with self._client() as s3:
            return await s3.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
