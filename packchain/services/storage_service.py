"""
Object Storage Service for S3-compatible storage (MinIO, AWS S3, DigitalOcean Spaces).

Orders reference delivery notes and non-conformity photos by object key.
This service removes those objects in bulk when orders are deleted and lists
the bucket for orphaned-document cleanup.

Architecture:
- Uses boto3 (AWS SDK for Python)
- Compatible with MinIO (local), AWS S3, DigitalOcean Spaces
- Keys may be stored as full public URLs; they are normalized to object keys
"""
import logging
from typing import Iterable, List, Optional
from urllib.parse import urlparse

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app

logger = logging.getLogger(__name__)


class StorageService:
    """
    S3-compatible object storage service.

    Usage:
        storage = StorageService()
        failed = storage.remove_objects(['orders/12/delivery-note.pdf'])
        keys = storage.list_keys('orders/')
    """

    def __init__(self, config=None, client=None, ensure_bucket=True):
        """Initialize S3 client from Flask config (or an explicit mapping)."""
        config = config if config is not None else current_app.config
        self.endpoint = config['S3_ENDPOINT']
        self.access_key = config['S3_ACCESS_KEY']
        self.secret_key = config['S3_SECRET_KEY']
        self.bucket = config['S3_BUCKET']
        self.region = config['S3_REGION']
        self.public_url = config['S3_PUBLIC_URL'].rstrip('/')
        self.batch_size = int(config.get('S3_DELETE_BATCH_SIZE', 1000))

        # Initialize boto3 S3 client
        self.client = client or boto3.client(
            's3',
            endpoint_url=self.endpoint,
            aws_access_key_id=self.access_key,
            aws_secret_access_key=self.secret_key,
            region_name=self.region,
            config=BotoConfig(signature_version='s3v4')
        )

        if ensure_bucket:
            self._ensure_bucket_exists()

    def _ensure_bucket_exists(self):
        """Create bucket if it doesn't exist."""
        try:
            self.client.head_bucket(Bucket=self.bucket)
            logger.info(f"[STORAGE] Bucket '{self.bucket}' exists")
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code')
            if error_code in ('404', 'NoSuchBucket'):
                try:
                    self.client.create_bucket(Bucket=self.bucket)
                    logger.info(f"[STORAGE] Bucket '{self.bucket}' created")
                except ClientError as create_error:
                    logger.error(f"[STORAGE] Failed to create bucket: {create_error}")
                    raise
            else:
                logger.error(f"[STORAGE] Failed to check bucket: {e}")
                raise

    def object_key(self, key_or_url: str) -> str:
        """
        Normalize a stored reference to an object key.

        Accepts plain keys, public URLs ('http://host/bucket/path') and
        endpoint URLs.
        """
        value = (key_or_url or '').strip()
        public_prefix = f"{self.public_url}/{self.bucket}/"
        if value.startswith(public_prefix):
            return value[len(public_prefix):]

        if value.startswith(('http://', 'https://')):
            path = urlparse(value).path.lstrip('/')
            bucket_prefix = f"{self.bucket}/"
            if path.startswith(bucket_prefix):
                path = path[len(bucket_prefix):]
            return path

        return value.lstrip('/')

    def remove_objects(self, keys: Iterable[str]) -> List[str]:
        """
        Delete many objects with DeleteObjects batches.

        Args:
            keys: Object keys or public URLs

        Returns:
            Keys that could not be deleted (empty when everything went through)
        """
        normalized = []
        seen = set()
        for key in keys:
            object_key = self.object_key(key)
            if object_key and object_key not in seen:
                seen.add(object_key)
                normalized.append(object_key)

        if not normalized:
            return []

        failed = []
        for start in range(0, len(normalized), self.batch_size):
            batch = normalized[start:start + self.batch_size]
            try:
                logger.info(f"[STORAGE] Deleting {len(batch)} object(s) from bucket '{self.bucket}'...")
                response = self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={'Objects': [{'Key': key} for key in batch], 'Quiet': True}
                )
            except (ClientError, BotoCoreError) as e:
                logger.exception(f"[STORAGE] Bulk delete failed: {e}")
                failed.extend(batch)
                continue

            for error in response.get('Errors', []):
                logger.error(
                    f"[STORAGE] Could not delete '{error.get('Key')}': "
                    f"{error.get('Code')} {error.get('Message')}"
                )
                failed.append(error.get('Key'))

        logger.info(f"[STORAGE] Bulk delete done: {len(normalized) - len(failed)} removed, {len(failed)} failed")
        return failed

    def list_keys(self, prefix: str = '') -> List[str]:
        """List every object key under a prefix."""
        keys = []
        paginator = self.client.get_paginator('list_objects_v2')
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            keys.extend(item['Key'] for item in page.get('Contents', []))
        return keys

    def get_public_url(self, object_name: str) -> str:
        """
        Get public URL for an object.

        Returns:
            Public URL (e.g., 'http://localhost:9000/documents/orders/12/note.pdf')
        """
        return f"{self.public_url}/{self.bucket}/{object_name}"


# Singleton instance
_storage_service: Optional[StorageService] = None


def get_storage_service() -> StorageService:
    """
    Get or create StorageService singleton.

    Returns:
        StorageService instance
    """
    global _storage_service
    if _storage_service is None:
        _storage_service = StorageService()
    return _storage_service
