from dataclasses import dataclass
from typing import Optional

import boto3
from botocore.client import Config
from botocore.exceptions import ClientError

from omnigate.config import Settings
from omnigate.logging_config import get_logger

logger = get_logger("storage_service")


class ObjectNotFoundError(Exception):
    pass


@dataclass
class StoredObject:
    body: bytes
    content_type: str
    content_length: int


class ObjectStorage:
    """S3-compatible object store (AWS, R2, MinIO) for media blobs."""

    def __init__(self, client, bucket: str, prefix: str = "media/"):
        self.client = client
        self.bucket = bucket
        self.prefix = prefix

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStorage":
        session = boto3.session.Session()
        client = session.client(
            service_name="s3",
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.s3_access_key_id,
            aws_secret_access_key=settings.s3_secret_access_key,
            region_name=settings.s3_region,
            config=Config(signature_version="s3v4"),
        )
        return cls(client, settings.s3_bucket, settings.s3_media_prefix)

    def object_key(self, storage_key: str) -> str:
        return f"{self.prefix}{storage_key}"

    def put(self, storage_key: str, data: bytes, content_type: Optional[str] = None) -> str:
        key = self.object_key(storage_key)
        self.client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type or "application/octet-stream",
        )
        logger.debug(f"Stored {len(data)} bytes at {key}")
        return key

    def get(self, storage_key: str) -> StoredObject:
        key = self.object_key(storage_key)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise ObjectNotFoundError(storage_key) from e
            raise
        body = response["Body"].read()
        return StoredObject(
            body=body,
            content_type=response.get("ContentType") or "application/octet-stream",
            content_length=response.get("ContentLength", len(body)),
        )
