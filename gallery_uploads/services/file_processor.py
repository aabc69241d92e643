"""
Promotion of completed uploads from the temp bucket to the final bucket
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple
from uuid import UUID

from gallery_uploads.core.exceptions import UploadError
from gallery_uploads.models.upload import ProcessingStatus, UploadStatus
from gallery_uploads.repositories.upload_repository import UploadRepository
from gallery_uploads.services.content_scanner import ContentScanner, PassThroughScanner
from gallery_uploads.services.s3_service import S3Service
from gallery_uploads.services.thumbnail_service import (
    DisabledThumbnailGenerator,
    ThumbnailGenerator,
    ThumbnailResult,
)

logger = logging.getLogger(__name__)

COPYING_MESSAGE = "Copying to final storage"
THUMBNAIL_MESSAGE = "Generating thumbnail"
SCANNING_MESSAGE = "Scanning content"
READY_MESSAGE = "Ready"
SCAN_FAILED_MESSAGE = "File failed content scan"
PROCESSING_FAILED_MESSAGE = "Processing failed"


@dataclass
class ProcessingResult:
    """Outcome of promoting one upload."""

    success: bool
    final_storage_key: Optional[str] = None
    thumbnail_key: Optional[str] = None
    error: Optional[str] = None


class FileProcessor:
    """Copies completed uploads to permanent storage and attaches derived assets."""

    def __init__(
        self,
        s3_service: S3Service,
        repository: UploadRepository,
        thumbnail_generator: Optional[ThumbnailGenerator] = None,
        content_scanner: Optional[ContentScanner] = None
    ):
        self.s3_service = s3_service
        self.repository = repository
        self.thumbnail_generator = thumbnail_generator or DisabledThumbnailGenerator()
        self.content_scanner = content_scanner or PassThroughScanner()

    async def process_upload(self, upload_id: str, owner_id: UUID) -> ProcessingResult:
        """
        Promote a completed upload.

        The object is copied under the same key into the final bucket, a thumbnail
        is derived, the content is scanned and the record is updated with the final
        location. Any failure removes the partial artifacts and leaves the record
        failed; errors never propagate to the caller.

        Args:
            upload_id: Upload id of a completed record
            owner_id: Owner of the upload

        Returns:
            ProcessingResult describing the outcome
        """
        record = await self.repository.get_by_upload_id(upload_id, owner_id)
        if record is None:
            logger.warning(f"Skipping processing for unknown upload {upload_id}")
            return ProcessingResult(success=False, error="Upload not found")
        if record.status != UploadStatus.COMPLETED.value:
            logger.warning(f"Skipping processing for upload {upload_id} in status {record.status}")
            return ProcessingResult(success=False, error=f"Upload is {record.status}")

        source_bucket = record.bucket
        final_bucket = self.s3_service.final_bucket
        final_key = record.storage_key
        thumbnail: Optional[ThumbnailResult] = None

        logger.info(f"Processing upload {upload_id}: {source_bucket}/{final_key} -> {final_bucket}")

        try:
            await self.repository.update_processing_status(
                upload_id, owner_id, ProcessingStatus.PROCESSING, 10, COPYING_MESSAGE
            )
            await self.s3_service.copy_object(source_bucket, final_key, final_bucket, final_key)

            await self.repository.update_processing_status(
                upload_id, owner_id, ProcessingStatus.PROCESSING, 50, THUMBNAIL_MESSAGE
            )
            thumbnail = await self.thumbnail_generator.generate(
                final_bucket, final_key, record.content_type, record.total_size
            )

            await self.repository.update_processing_status(
                upload_id, owner_id, ProcessingStatus.PROCESSING, 80, SCANNING_MESSAGE
            )
            scan = await self.content_scanner.scan(final_bucket, final_key)
            if not scan.clean:
                logger.warning(f"Upload {upload_id} failed content scan: {scan.details}")
                await self._remove_artifacts(self._promoted_objects(final_bucket, final_key, thumbnail))
                await self.repository.mark_processing_failed(upload_id, owner_id, SCAN_FAILED_MESSAGE)
                return ProcessingResult(success=False, error=SCAN_FAILED_MESSAGE)

            await self.repository.record_promotion(
                upload_id,
                owner_id,
                final_storage_key=final_key,
                final_bucket=final_bucket,
                thumbnail_key=thumbnail.thumbnail_key if thumbnail else None,
                thumbnail_url=thumbnail.thumbnail_url if thumbnail else None,
                thumbnail_source_url=thumbnail.source_url if thumbnail else None
            )
            await self.repository.update_processing_status(
                upload_id, owner_id, ProcessingStatus.PROCESSED, 100, READY_MESSAGE
            )
        except Exception as e:
            logger.error(f"Processing failed for upload {upload_id}: {e}")
            await self._remove_artifacts(self._promoted_objects(final_bucket, final_key, thumbnail))
            if source_bucket != final_bucket:
                await self._remove_artifacts([(source_bucket, final_key)])
            await self._fail(upload_id, owner_id)
            return ProcessingResult(success=False, error=PROCESSING_FAILED_MESSAGE)

        if source_bucket != final_bucket:
            await self._remove_artifacts([(source_bucket, final_key)])

        logger.info(f"Upload {upload_id} promoted to {final_bucket}/{final_key}")
        return ProcessingResult(
            success=True,
            final_storage_key=final_key,
            thumbnail_key=thumbnail.thumbnail_key if thumbnail else None
        )

    async def _remove_artifacts(self, objects: List[Tuple[str, str]]) -> None:
        """Best-effort delete; failures are logged and never replace the original error."""
        for bucket, key in objects:
            try:
                await self.s3_service.delete_object(bucket, key)
            except Exception as e:
                logger.warning(f"Failed to clean up {bucket}/{key}: {e}")

    async def _fail(self, upload_id: str, owner_id: UUID) -> None:
        try:
            await self.repository.mark_processing_failed(upload_id, owner_id, PROCESSING_FAILED_MESSAGE)
        except UploadError as e:
            logger.error(f"Could not mark upload {upload_id} as failed: {e.detail}")

    @staticmethod
    def _promoted_objects(
        bucket: str,
        key: str,
        thumbnail: Optional[ThumbnailResult]
    ) -> List[Tuple[str, str]]:
        objects = [(bucket, key)]
        if thumbnail is not None:
            objects.append((bucket, thumbnail.thumbnail_key))
        return objects
