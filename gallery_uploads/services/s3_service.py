"""
S3 service wrapping the multipart upload protocol and presigned URL issuance
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from gallery_uploads.config import Settings, get_settings
from gallery_uploads.core.exceptions import IncompletePartSet, StoreUnavailable, UploadValidationError

logger = logging.getLogger(__name__)

# Error codes S3 returns when the submitted part list does not match what it holds
INCOMPLETE_PART_ERROR_CODES = {"InvalidPart", "InvalidPartOrder", "EntityTooSmall", "NoSuchUpload"}
NOT_FOUND_ERROR_CODES = {"NoSuchKey", "404", "NotFound"}


class CompletedPart(NamedTuple):
    """Part number and etag pair submitted when completing a multipart upload."""

    part_number: int
    etag: str


class S3Service:
    """Service for S3 multipart, presigned URL, copy and delete operations."""

    def __init__(self, settings: Optional[Settings] = None, s3_client: Any = None):
        """
        Initialize S3 client with configuration.

        Args:
            settings: Application settings, defaults to the process settings
            s3_client: Pre-built boto3 client (used by tests)
        """
        self.settings = settings or get_settings()

        if s3_client is None:
            if not self.settings.s3_configured:
                raise ValueError("AWS credentials and S3 temp/final bucket names must be configured")

            # Configure boto3 with retry and timeout settings
            config = Config(
                region_name=self.settings.aws_region,
                retries={'max_attempts': 3, 'mode': 'adaptive'},
                max_pool_connections=50,
                s3={'addressing_style': 'path'} if self.settings.aws_endpoint_url else None
            )

            s3_client = boto3.client(
                's3',
                aws_access_key_id=self.settings.aws_access_key_id,
                aws_secret_access_key=self.settings.aws_secret_access_key,
                endpoint_url=self.settings.aws_endpoint_url,
                config=config
            )

        self.s3_client = s3_client
        self.temp_bucket = self.settings.s3_temp_bucket
        self.final_bucket = self.settings.s3_final_bucket

    def generate_storage_key(self, owner_id: Any, filename: str) -> str:
        """
        Generate storage key for an upload.

        Returns:
            Key in format: owner_id/timestamp_ms-filename
        """
        timestamp = int(time.time() * 1000)
        return f"{owner_id}/{timestamp}-{filename}"

    async def begin_multipart(
        self,
        owner_id: Any,
        filename: str,
        content_type: str,
        total_size: int
    ) -> Tuple[str, str]:
        """
        Initiate a multipart upload in the temp bucket.

        Args:
            owner_id: Owner of the upload
            filename: Original filename
            content_type: MIME type of the object
            total_size: Declared object size in bytes

        Returns:
            Tuple of (store upload id, storage key)

        Raises:
            StoreUnavailable: If S3 rejects the initiation
        """
        key = self.generate_storage_key(owner_id, filename)

        try:
            response = await asyncio.to_thread(
                self.s3_client.create_multipart_upload,
                Bucket=self.temp_bucket,
                Key=key,
                ContentType=content_type,
                Metadata={
                    'user-id': str(owner_id),
                    'original-filename': filename,
                    'total-size': str(total_size)
                }
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to initiate multipart upload for {key}: {e}")
            raise StoreUnavailable("Failed to initiate upload") from e

        store_upload_id = response.get('UploadId')
        if not store_upload_id:
            raise StoreUnavailable("Failed to initiate upload")

        return store_upload_id, key

    async def presign_part_url(
        self,
        bucket: str,
        key: str,
        store_upload_id: str,
        part_number: int,
        expiration: Optional[int] = None
    ) -> str:
        """
        Generate a presigned URL for uploading one part.

        Raises:
            UploadValidationError: If part_number is outside the S3 range
            StoreUnavailable: If URL generation fails
        """
        if not 1 <= part_number <= self.settings.max_part_number:
            raise UploadValidationError(
                f"Part number must be between 1 and {self.settings.max_part_number}"
            )

        return await self._presign(
            'upload_part',
            {'Bucket': bucket, 'Key': key, 'UploadId': store_upload_id, 'PartNumber': part_number},
            expiration
        )

    async def presign_put_url(
        self,
        bucket: str,
        key: str,
        content_type: str,
        expiration: Optional[int] = None
    ) -> str:
        """Generate a presigned PUT URL for a single-part upload."""
        return await self._presign(
            'put_object',
            {'Bucket': bucket, 'Key': key, 'ContentType': content_type},
            expiration
        )

    async def presign_get_url(self, bucket: str, key: str, expiration: Optional[int] = None) -> str:
        """Generate a presigned GET URL for downstream readers."""
        return await self._presign('get_object', {'Bucket': bucket, 'Key': key}, expiration)

    async def _presign(self, method: str, params: Dict[str, Any], expiration: Optional[int]) -> str:
        try:
            return await asyncio.to_thread(
                self.s3_client.generate_presigned_url,
                method,
                Params=params,
                ExpiresIn=expiration or self.settings.s3_presigned_url_expiry
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to generate presigned {method} URL for {params.get('Key')}: {e}")
            raise StoreUnavailable("Failed to generate upload URL") from e

    async def complete_multipart(
        self,
        bucket: str,
        key: str,
        store_upload_id: str,
        parts: Sequence[CompletedPart]
    ) -> None:
        """
        Complete a multipart upload.

        Parts are submitted sorted ascending by part number.

        Raises:
            IncompletePartSet: If S3 reports missing or mismatched parts
            StoreUnavailable: For any other S3 failure
        """
        ordered = sorted(parts, key=lambda part: part.part_number)

        try:
            await asyncio.to_thread(
                self.s3_client.complete_multipart_upload,
                Bucket=bucket,
                Key=key,
                UploadId=store_upload_id,
                MultipartUpload={
                    'Parts': [{'PartNumber': part.part_number, 'ETag': part.etag} for part in ordered]
                }
            )
        except ClientError as e:
            code = e.response.get('Error', {}).get('Code', '')
            logger.error(f"Failed to complete multipart upload {store_upload_id} ({code}): {e}")
            if code in INCOMPLETE_PART_ERROR_CODES:
                raise IncompletePartSet() from e
            raise StoreUnavailable("Failed to complete upload") from e
        except BotoCoreError as e:
            logger.error(f"Failed to complete multipart upload {store_upload_id}: {e}")
            raise StoreUnavailable("Failed to complete upload") from e

    async def abort_multipart(self, bucket: str, key: str, store_upload_id: str) -> bool:
        """
        Abort a multipart upload.

        Failures are logged and never raised so callers can always move on.

        Returns:
            True if S3 accepted the abort
        """
        try:
            await asyncio.to_thread(
                self.s3_client.abort_multipart_upload,
                Bucket=bucket,
                Key=key,
                UploadId=store_upload_id
            )
            return True
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Failed to abort multipart upload {store_upload_id} for {key}: {e}")
            return False

    async def list_parts(self, bucket: str, key: str, store_upload_id: str) -> List[Dict[str, Any]]:
        """
        List the parts S3 holds for a multipart upload.

        Returns:
            List of dicts with part_number, etag and size, ordered by part number
        """
        parts: List[Dict[str, Any]] = []
        marker = 0

        try:
            while True:
                response = await asyncio.to_thread(
                    self.s3_client.list_parts,
                    Bucket=bucket,
                    Key=key,
                    UploadId=store_upload_id,
                    PartNumberMarker=marker
                )
                for part in response.get('Parts', []):
                    parts.append({
                        'part_number': part['PartNumber'],
                        'etag': part.get('ETag', '').strip('"'),
                        'size': part.get('Size', 0)
                    })
                if not response.get('IsTruncated'):
                    break
                marker = response.get('NextPartNumberMarker', 0)
        except ClientError as e:
            code = e.response.get('Error', {}).get('Code', '')
            logger.error(f"Failed to list parts for {store_upload_id} ({code}): {e}")
            if code == 'NoSuchUpload':
                raise IncompletePartSet() from e
            raise StoreUnavailable("Failed to list uploaded parts") from e
        except BotoCoreError as e:
            logger.error(f"Failed to list parts for {store_upload_id}: {e}")
            raise StoreUnavailable("Failed to list uploaded parts") from e

        return sorted(parts, key=lambda part: part['part_number'])

    async def copy_object(self, source_bucket: str, source_key: str, target_bucket: str, target_key: str) -> None:
        """
        Server-side copy preserving object metadata.

        Raises:
            StoreUnavailable: If the copy fails
        """
        try:
            await asyncio.to_thread(
                self.s3_client.copy_object,
                Bucket=target_bucket,
                Key=target_key,
                CopySource={'Bucket': source_bucket, 'Key': source_key},
                MetadataDirective='COPY'
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to copy {source_bucket}/{source_key} to {target_bucket}/{target_key}: {e}")
            raise StoreUnavailable("Failed to copy object") from e

    async def put_object(
        self,
        bucket: str,
        key: str,
        body: bytes,
        content_type: str,
        metadata: Optional[Dict[str, str]] = None
    ) -> None:
        """Upload a small object (derived assets) directly."""
        try:
            await asyncio.to_thread(
                self.s3_client.put_object,
                Bucket=bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
                Metadata=metadata or {}
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to upload {bucket}/{key}: {e}")
            raise StoreUnavailable("Failed to store object") from e

    async def delete_object(self, bucket: str, key: str) -> None:
        """
        Delete an object. A missing object is not an error.

        Raises:
            StoreUnavailable: If S3 fails for any other reason
        """
        try:
            await asyncio.to_thread(
                self.s3_client.delete_object,
                Bucket=bucket,
                Key=key
            )
        except ClientError as e:
            code = e.response.get('Error', {}).get('Code', '')
            if code in NOT_FOUND_ERROR_CODES:
                return
            logger.error(f"Failed to delete {bucket}/{key}: {e}")
            raise StoreUnavailable("Failed to delete object") from e
        except BotoCoreError as e:
            logger.error(f"Failed to delete {bucket}/{key}: {e}")
            raise StoreUnavailable("Failed to delete object") from e

    def object_url(self, bucket: str, key: str) -> str:
        """Public URL of an object, honouring a custom endpoint."""
        if self.settings.aws_endpoint_url:
            return f"{self.settings.aws_endpoint_url.rstrip('/')}/{bucket}/{key}"
        return f"https://{bucket}.s3.{self.settings.aws_region}.amazonaws.com/{key}"
