"""S3-compatible object store (AWS S3, Cloudflare R2, MinIO)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from filmweekly.pipeline.domain.storage import ObjectStore, StoredObject

logger = logging.getLogger(__name__)

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class S3ObjectStore(ObjectStore):
    """boto3 client wrapped for asyncio; blocking calls run in a worker thread."""

    def __init__(self, client: Any, bucket: str) -> None:
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_settings(cls, settings) -> "S3ObjectStore":
        client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            region_name=settings.s3_region,
            aws_access_key_id=settings.s3_access_key_id,
            aws_secret_access_key=settings.s3_secret_access_key,
            config=Config(retries={"max_attempts": 3, "mode": "standard"}),
        )
        return cls(client, settings.s3_bucket)

    async def get(self, key: str) -> StoredObject | None:
        return await asyncio.to_thread(self._get_sync, key)

    async def put(self, key: str, data: bytes, *, content_type: str, cache_control: str | None = None) -> None:
        await asyncio.to_thread(self._put_sync, key, data, content_type, cache_control)

    def _get_sync(self, key: str) -> StoredObject | None:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_CODES:
                logger.debug("object missing: key=%s", key)
                return None
            raise
        body = response["Body"]
        try:
            data = body.read()
        finally:
            body.close()
        return StoredObject(
            key=key,
            data=data,
            content_type=response.get("ContentType"),
            cache_control=response.get("CacheControl"),
        )

    def _put_sync(self, key: str, data: bytes, content_type: str, cache_control: str | None) -> None:
        params: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type,
        }
        if cache_control:
            params["CacheControl"] = cache_control
        self.client.put_object(**params)
