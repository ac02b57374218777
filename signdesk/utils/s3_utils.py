### signdesk/utils/s3_utils.py

# Standard library imports
import os
from typing import List, Optional

# Third party imports
import boto3
from botocore.exceptions import BotoCoreError, ClientError

# Local imports
from signdesk.core.config import settings
from signdesk.core.exceptions import UpstreamFailureException
from signdesk.utils.logger import get_logger

logger = get_logger(__name__)

CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}


class S3Utils:
    """Object storage over S3. The workflow only ever keeps keys."""
    def __init__(self, bucket_name: Optional[str] = None, client=None):
        """Initialize S3 client with AWS credentials"""
        self.s3_client = client or boto3.client(
            's3',
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region
        )
        self.bucket_name = bucket_name or settings.s3_bucket_name

    def put(self, key: str, body: bytes, content_type: Optional[str] = None) -> str:
        """
        Store an object

        Args:
            key: S3 key (path) where the object will be stored
            body: Object content
            content_type: Optional content type, guessed from the extension otherwise

        Returns:
            str: The key that was written
        """
        content_type = content_type or CONTENT_TYPES.get(os.path.splitext(key)[1].lower())
        extra_args = {"ContentType": content_type} if content_type else {}
        try:
            self.s3_client.put_object(Bucket=self.bucket_name, Key=key, Body=body, **extra_args)
        except (ClientError, BotoCoreError) as e:
            logger.error("Error uploading object to S3", key=key, error=str(e))
            raise UpstreamFailureException("Object storage upload failed", {"key": key}) from e
        return key

    def get(self, key: str) -> bytes:
        """Read an object"""
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
            return response['Body'].read()
        except (ClientError, BotoCoreError) as e:
            logger.error("Error downloading object from S3", key=key, error=str(e))
            raise UpstreamFailureException("Object storage download failed", {"key": key}) from e

    def delete(self, key: str) -> None:
        """Delete an object; callers decide whether a failure matters"""
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise UpstreamFailureException("Object storage delete failed", {"key": key}) from e

    def list(self, prefix: str) -> List[str]:
        """Keys under a prefix"""
        keys = []
        try:
            paginator = self.s3_client.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                keys.extend(item['Key'] for item in page.get('Contents', []))
        except (ClientError, BotoCoreError) as e:
            logger.error("Error listing objects in S3", prefix=prefix, error=str(e))
            raise UpstreamFailureException("Object storage listing failed", {"prefix": prefix}) from e
        return keys

    def presign(self, key: str, ttl: int = 3600) -> str:
        """
        Generate a presigned URL for temporary read access

        Args:
            key: S3 key (path) of the object
            ttl: URL lifetime in seconds (default: 1 hour)
        """
        try:
            return self.s3_client.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket_name, 'Key': key},
                ExpiresIn=ttl
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Error generating presigned URL", key=key, error=str(e))
            raise UpstreamFailureException("Could not generate document URL", {"key": key}) from e


s3_utils = S3Utils()


def get_storage() -> S3Utils:
    """FastAPI dependency, overridden in tests"""
    return s3_utils
