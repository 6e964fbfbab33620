"""
MinIO S3 Client wrapper.
Handles all S3 operations used by the video service: single-shot and block
(multipart) uploads, deletes, listings with metadata, and presigned URLs.
"""

import asyncio
import functools
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.client import Config
from botocore.exceptions import ClientError

from app.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class StoredObject:
    """One object as seen in a bucket listing, with its user metadata."""

    key: str
    size: int
    last_modified: Optional[datetime] = None
    content_type: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


class S3Client:
    """Wrapper for MinIO S3 operations."""

    def __init__(self, client: Any = None, executor_workers: Optional[int] = None):
        """
        Initialize S3 client with MinIO configuration.

        Args:
            client: Pre-built boto3 S3 client (tests inject a fake here)
            executor_workers: Thread count for blocking boto3 calls
        """
        # Parse endpoint to extract protocol and host
        endpoint_url = settings.MINIO_ENDPOINT
        if not endpoint_url.startswith(('http://', 'https://')):
            protocol = 'https' if settings.MINIO_SECURE else 'http'
            endpoint_url = f"{protocol}://{endpoint_url}"

        if client is None:
            client = boto3.client(
                's3',
                endpoint_url=endpoint_url,
                aws_access_key_id=settings.MINIO_ACCESS_KEY,
                aws_secret_access_key=settings.MINIO_SECRET_KEY,
                config=Config(signature_version='s3v4'),
                region_name=settings.S3_REGION
            )

        self.client = client
        self.endpoint_url = endpoint_url

        # Shared executor for blocking boto3 calls (keeps the event loop free)
        self.upload_executor = ThreadPoolExecutor(
            max_workers=executor_workers or settings.S3_EXECUTOR_WORKERS,
            thread_name_prefix="s3-upload"
        )

        logger.info(f"S3 client initialized with endpoint: {endpoint_url}")

    async def run(self, func: Callable, *args, **kwargs):
        """Run a blocking S3 call in the upload executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self.upload_executor,
            functools.partial(func, *args, **kwargs)
        )

    def put_object(
        self,
        bucket: str,
        key: str,
        body: bytes,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None
    ) -> dict:
        """
        Upload a whole object in a single request.

        Args:
            bucket: Bucket name
            key: Object key
            body: Object bytes
            content_type: MIME type of the object
            metadata: User metadata (x-amz-meta-*)

        Returns:
            Dict with upload result

        Raises:
            ClientError: If upload fails
        """
        extra_args = {}
        if content_type:
            extra_args['ContentType'] = content_type
        if metadata:
            extra_args['Metadata'] = metadata

        response = self.client.put_object(Bucket=bucket, Key=key, Body=body, **extra_args)
        logger.info(f"Uploaded object: {bucket}/{key} ({len(body)} bytes)")

        return {
            "bucket": bucket,
            "key": key,
            "url": self.get_object_url(bucket, key),
            "etag": response.get("ETag")
        }

    def create_multipart_upload(
        self,
        bucket: str,
        key: str,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None
    ) -> str:
        """
        Start a block upload. Metadata must be attached here; it becomes
        visible when the upload is completed.

        Returns:
            Storage-side multipart upload id
        """
        extra_args = {}
        if content_type:
            extra_args['ContentType'] = content_type
        if metadata:
            extra_args['Metadata'] = metadata

        response = self.client.create_multipart_upload(Bucket=bucket, Key=key, **extra_args)
        upload_id = response['UploadId']
        logger.info(f"Started multipart upload for {bucket}/{key}: {upload_id}")
        return upload_id

    def upload_part(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        part_number: int,
        body: bytes
    ) -> str:
        """
        Upload one block.

        Returns:
            ETag of the stored block
        """
        response = self.client.upload_part(
            Bucket=bucket,
            Key=key,
            UploadId=upload_id,
            PartNumber=part_number,
            Body=body
        )
        return response['ETag']

    def complete_multipart_upload(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        parts: List[Dict[str, Any]]
    ) -> dict:
        """
        Commit uploaded blocks into a single object.

        Args:
            parts: List of {"PartNumber": n, "ETag": etag}, any order

        Returns:
            Dict with upload result
        """
        ordered = sorted(parts, key=lambda part: part['PartNumber'])
        self.client.complete_multipart_upload(
            Bucket=bucket,
            Key=key,
            UploadId=upload_id,
            MultipartUpload={'Parts': ordered}
        )
        logger.info(f"Committed {len(ordered)} blocks into {bucket}/{key}")

        return {
            "bucket": bucket,
            "key": key,
            "url": self.get_object_url(bucket, key)
        }

    def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        """Discard all blocks of an unfinished upload."""
        self.client.abort_multipart_upload(Bucket=bucket, Key=key, UploadId=upload_id)
        logger.info(f"Aborted multipart upload {upload_id} for {bucket}/{key}")

    def delete_object(self, bucket: str, key: str) -> None:
        """Remove an object. Deleting a key that does not exist succeeds."""
        self.client.delete_object(Bucket=bucket, Key=key)
        logger.info(f"Deleted object {bucket}/{key}")

    def generate_presigned_url(
        self,
        bucket: str,
        key: str,
        expiration: int = 3600,
        download_name: Optional[str] = None
    ) -> str:
        """
        Generate a presigned URL for temporary read access to a file.

        Args:
            bucket: Bucket name
            key: Object key
            expiration: URL expiration time in seconds (default: 1 hour)
            download_name: If set, the response is served as an attachment with this filename

        Returns:
            Presigned URL string

        Raises:
            ClientError: If URL generation fails
        """
        params = {'Bucket': bucket, 'Key': key}
        if download_name:
            safe_name = download_name.replace('"', '')
            params['ResponseContentDisposition'] = f'attachment; filename="{safe_name}"'

        try:
            url = self.client.generate_presigned_url(
                'get_object',
                Params=params,
                ExpiresIn=expiration
            )

            logger.debug(f"Generated presigned URL for {bucket}/{key} (expires in {expiration}s)")
            return url

        except ClientError as e:
            logger.error(f"Failed to generate presigned URL for {bucket}/{key}: {e}")
            raise

    def get_object_url(self, bucket: str, key: str) -> str:
        """Construct the canonical (unsigned) URL of an object."""
        return f"{self.endpoint_url}/{bucket}/{key}"

    def get_object_properties(self, bucket: str, key: str) -> StoredObject:
        """
        Read size, type and user metadata of one object.

        Raises:
            ClientError: If the object is missing or storage fails
        """
        head = self.client.head_object(Bucket=bucket, Key=key)
        return StoredObject(
            key=key,
            size=head.get('ContentLength', 0),
            last_modified=head.get('LastModified'),
            content_type=head.get('ContentType'),
            metadata=head.get('Metadata', {}) or {}
        )

    def list_objects_with_metadata(self, bucket: str, prefix: str = "") -> List[StoredObject]:
        """
        List every object in a bucket together with its user metadata.

        Listing responses do not carry user metadata, so each object costs
        one extra HEAD request.

        Raises:
            ClientError: If listing fails
        """
        objects: List[StoredObject] = []
        kwargs = {'Bucket': bucket, 'Prefix': prefix}

        try:
            while True:
                response = self.client.list_objects_v2(**kwargs)

                for entry in response.get('Contents', []):
                    try:
                        objects.append(self.get_object_properties(bucket, entry['Key']))
                    except ClientError as e:
                        # Deleted between list and head
                        logger.warning(f"Skipping {bucket}/{entry['Key']}: {e}")

                if not response.get('IsTruncated'):
                    break
                kwargs['ContinuationToken'] = response['NextContinuationToken']

        except ClientError as e:
            logger.error(f"Failed to list files in {bucket}: {e}")
            raise

        return objects

    def set_bucket_policy(self, bucket: str) -> None:
        """
        Set a private policy (no anonymous access) on a bucket.

        Raises:
            ClientError: If policy setting fails
        """
        policy = {
            "Version": "2012-10-17",
            "Statement": []
        }

        try:
            self.client.put_bucket_policy(
                Bucket=bucket,
                Policy=json.dumps(policy)
            )
            logger.info(f"Set private policy for bucket: {bucket}")

        except ClientError as e:
            logger.error(f"Failed to set policy for {bucket}: {e}")
            raise

    def ensure_bucket_exists(self, bucket: str) -> bool:
        """
        Create the bucket with a private policy unless it is already there.

        Returns:
            True if the bucket was created by this call
        """
        try:
            self.client.head_bucket(Bucket=bucket)
            return False
        except ClientError as e:
            if e.response['Error']['Code'] not in ('404', 'NoSuchBucket'):
                raise

        self.client.create_bucket(Bucket=bucket)
        self.set_bucket_policy(bucket)
        logger.info(f"Created private bucket {bucket}")
        return True


# Global S3 client instance
s3_client = S3Client()
