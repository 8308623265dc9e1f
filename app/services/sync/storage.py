"""
S3 Object Storage
Destination for mirrored files, shared by the API process and workers
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import settings
from app.services.sync.errors import StorageNotConfiguredError

logger = logging.getLogger(__name__)


@dataclass
class UploadedObject:
    bucket: str
    key: str


class ObjectStorage:
    """
    Thin wrapper over a boto3 S3 client.

    Server-side encryption is always requested: aws:kms when a KMS key is
    configured, AES256 otherwise.
    """

    def __init__(
        self,
        bucket_name: Optional[str] = None,
        region: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        kms_key_id: Optional[str] = None,
        client=None
    ):
        self.bucket_name = bucket_name
        self.kms_key_id = kms_key_id
        self._region = region
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._client = client

    @classmethod
    def from_settings(cls) -> "ObjectStorage":
        return cls(
            bucket_name=settings.aws_s3_bucket_name,
            region=settings.aws_region,
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
            kms_key_id=settings.aws_s3_kms_key_id,
        )

    @property
    def client(self):
        """Lazily create the boto3 client (IAM role credentials when no keys are set)."""
        if self._client is None:
            kwargs = {"region_name": self._region}
            if self._access_key_id and self._secret_access_key:
                kwargs["aws_access_key_id"] = self._access_key_id
                kwargs["aws_secret_access_key"] = self._secret_access_key
            self._client = boto3.client("s3", **kwargs)
        return self._client

    def _sse_params(self) -> Dict[str, str]:
        if self.kms_key_id:
            return {"ServerSideEncryption": "aws:kms", "SSEKMSKeyId": self.kms_key_id}
        return {"ServerSideEncryption": "AES256"}

    def upload_object(
        self,
        key: str,
        body: bytes,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        bucket_name: Optional[str] = None
    ) -> UploadedObject:
        """
        Put one object.

        Raises:
            StorageNotConfiguredError: If no bucket is configured
            botocore ClientError / BotoCoreError: On S3 failures
        """
        bucket = bucket_name or self.bucket_name
        if not bucket:
            raise StorageNotConfiguredError("AWS S3 is not configured")

        params = {
            "Bucket": bucket,
            "Key": key,
            "Body": body,
            "Metadata": {k: str(v) for k, v in (metadata or {}).items() if v is not None},
            **self._sse_params(),
        }
        if content_type:
            params["ContentType"] = content_type

        self.client.put_object(**params)
        logger.debug(f"Uploaded s3://{bucket}/{key} ({len(body)} bytes)")
        return UploadedObject(bucket=bucket, key=key)

    def delete_object(self, bucket: str, key: str) -> bool:
        """Best-effort delete; returns False (and logs) if S3 refuses."""
        try:
            self.client.delete_object(Bucket=bucket, Key=key)
            logger.info(f"🗑️  Deleted s3://{bucket}/{key}")
            return True
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to delete s3://{bucket}/{key}: {e}")
            return False
