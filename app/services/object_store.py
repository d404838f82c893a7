"""
Object store client for generated media (any S3-compatible bucket).

boto3 is synchronous, so each call runs in a worker thread to keep the
event loop free for other requests.
"""
import asyncio
import logging

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from app.errors import StorageError

logger = logging.getLogger(__name__)


def create_s3_client(settings):
    """Build a path-style S3 client from settings."""
    return boto3.client(
        "s3",
        region_name=settings.S3_REGION,
        endpoint_url=settings.S3_ENDPOINT or None,
        aws_access_key_id=settings.S3_ACCESS_KEY or None,
        aws_secret_access_key=settings.S3_SECRET_KEY or None,
        config=BotoConfig(s3={"addressing_style": "path"}),
    )


class ObjectStore:
    """Put, delete, and address objects in one bucket."""

    def __init__(self, client, bucket: str, cdn_url: str):
        self.client = client
        self.bucket = bucket
        self.cdn_url = cdn_url.rstrip("/")

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        """
        Upload an object readable by anyone holding its URL.

        Raises:
            StorageError: If the upload fails
        """
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                ACL="public-read",
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 upload failed: {e}") from e
        logger.debug(f"Uploaded s3://{self.bucket}/{key} ({len(data)} bytes)")

    async def delete(self, key: str) -> None:
        """
        Delete an object.

        Raises:
            StorageError: If the deletion fails
        """
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 delete failed: {e}") from e

    def public_url(self, key: str) -> str:
        return f"{self.cdn_url}/{key}"
