"""
Read-side view of uploads: status, progress, active listings and download URLs
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from gallery_uploads.config import Settings, get_settings
from gallery_uploads.core.exceptions import RecordNotFound, UploadValidationError
from gallery_uploads.models.upload import UploadRecord, UploadStatus
from gallery_uploads.repositories.upload_repository import UploadRepository
from gallery_uploads.schemas.upload import (
    ActiveUpload,
    ActiveUploadList,
    SignedUrlResponse,
    UploadPartResponse,
    UploadProgressResponse,
    UploadStatusResponse,
)
from gallery_uploads.services.s3_service import S3Service


def to_status_response(record: UploadRecord) -> UploadStatusResponse:
    return UploadStatusResponse(
        upload_status=record.status,
        processing_status=record.processing_status,
        processing_progress=record.processing_progress or 0,
        processing_message=record.processing_message,
        ready_for_display=record.ready_for_display
    )


class UploadStatusService:
    """Service answering status queries for an owner's uploads."""

    def __init__(
        self,
        repository: UploadRepository,
        s3_service: S3Service,
        settings: Optional[Settings] = None
    ):
        self.repository = repository
        self.s3_service = s3_service
        self.settings = settings or get_settings()

    async def get_status(self, upload_id: str, owner_id: UUID) -> UploadStatusResponse:
        """
        Get consolidated status of one upload.

        Raises:
            RecordNotFound: If the upload does not exist for this owner
        """
        record = await self.repository.get_by_upload_id(upload_id, owner_id)
        if record is None:
            raise RecordNotFound()
        return to_status_response(record)

    async def get_bulk_status(self, upload_ids: List[str], owner_id: UUID) -> Dict[str, UploadStatusResponse]:
        """
        Get status of several uploads at once.

        Unknown ids and ids owned by someone else are left out of the result.

        Raises:
            UploadValidationError: If more ids are requested than bulk_status_limit
        """
        if len(upload_ids) > self.settings.bulk_status_limit:
            raise UploadValidationError(
                f"At most {self.settings.bulk_status_limit} upload ids can be queried at once"
            )

        records = await self.repository.get_many(upload_ids, owner_id)
        return {upload_id: to_status_response(record) for upload_id, record in records.items()}

    async def get_progress(self, upload_id: str, owner_id: UUID) -> UploadProgressResponse:
        """
        Get byte-level progress including acknowledged parts.

        Raises:
            RecordNotFound: If the upload does not exist for this owner
        """
        record = await self.repository.get_by_upload_id(upload_id, owner_id)
        if record is None:
            raise RecordNotFound()

        return UploadProgressResponse(
            upload_id=record.upload_id,
            status=record.status,
            upload_kind=record.upload_kind,
            uploaded_parts=[UploadPartResponse.model_validate(part) for part in record.parts],
            total_parts=record.total_parts,
            uploaded_size=record.uploaded_size,
            total_size=record.total_size,
            progress=record.progress
        )

    async def list_active(self, owner_id: UUID) -> ActiveUploadList:
        """List the owner's in-progress uploads, newest first."""
        records = await self.repository.list_active(owner_id)
        return ActiveUploadList(
            uploads=[ActiveUpload.model_validate(record) for record in records]
        )

    async def get_download_url(
        self,
        upload_id: str,
        owner_id: UUID,
        thumbnail: bool = False,
        expires: Optional[int] = None
    ) -> SignedUrlResponse:
        """
        Issue a presigned GET URL for a completed upload or its thumbnail.

        Raises:
            RecordNotFound: If the upload does not exist, is not completed or has no thumbnail
            UploadValidationError: If expires exceeds the configured maximum
        """
        expires = self._check_expiry(expires)
        record = await self.repository.get_by_upload_id(upload_id, owner_id)
        if record is None or record.status != UploadStatus.COMPLETED.value:
            raise RecordNotFound()

        bucket, key = self._download_location(record, thumbnail)
        if key is None:
            raise RecordNotFound("Thumbnail not found")

        return await self._sign(bucket, key, expires)

    async def get_bulk_download_urls(
        self,
        upload_ids: List[str],
        owner_id: UUID,
        thumbnail: bool = False,
        expires: Optional[int] = None
    ) -> Dict[str, SignedUrlResponse]:
        """
        Issue presigned GET URLs for several completed uploads.

        Uploads that are missing, foreign, not completed or lack the requested
        thumbnail are left out of the result.
        """
        if len(upload_ids) > self.settings.bulk_signed_url_limit:
            raise UploadValidationError(
                f"At most {self.settings.bulk_signed_url_limit} signed URLs can be requested at once"
            )
        expires = self._check_expiry(expires)

        records = await self.repository.get_many(upload_ids, owner_id)
        urls: Dict[str, SignedUrlResponse] = {}
        for upload_id, record in records.items():
            if record.status != UploadStatus.COMPLETED.value:
                continue
            bucket, key = self._download_location(record, thumbnail)
            if key is None:
                continue
            urls[upload_id] = await self._sign(bucket, key, expires)

        return urls

    def _check_expiry(self, expires: Optional[int]) -> int:
        maximum = self.settings.s3_max_download_url_expiry
        if expires is None:
            return maximum
        if not 1 <= expires <= maximum:
            raise UploadValidationError(f"Expiry must be between 1 and {maximum} seconds")
        return expires

    def _download_location(self, record: UploadRecord, thumbnail: bool) -> Tuple[str, Optional[str]]:
        bucket = record.final_bucket or self.s3_service.final_bucket
        if thumbnail:
            return bucket, record.thumbnail_key
        if record.final_storage_key is None:
            # Not promoted yet, the object is still in the temp bucket
            return record.bucket, record.storage_key
        return bucket, record.final_storage_key

    async def _sign(self, bucket: str, key: str, expires: int) -> SignedUrlResponse:
        url = await self.s3_service.presign_get_url(bucket, key, expires)
        return SignedUrlResponse(
            url=url,
            expires_in=expires,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires)
        )
