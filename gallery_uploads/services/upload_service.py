"""
Upload lifecycle service: initiation, part tracking, completion and abort
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from gallery_uploads.config import Settings, get_settings
from gallery_uploads.core.exceptions import (
    IncompletePartSet,
    NotActive,
    RecordNotFound,
    StoreUnavailable,
    UploadError,
    UploadValidationError,
)
from gallery_uploads.models.upload import UploadKind, UploadRecord
from gallery_uploads.repositories.upload_repository import UploadRepository
from gallery_uploads.schemas.upload import (
    CompletedPartIn,
    CompleteUploadResponse,
    InitiateUploadRequest,
    InitiateUploadResponse,
    PartAcknowledgement,
    UploadUrlResponse,
)
from gallery_uploads.services.file_processor import FileProcessor
from gallery_uploads.services.processing_queue import ProcessingQueue
from gallery_uploads.services.s3_service import CompletedPart, S3Service

logger = logging.getLogger(__name__)


class UploadService:
    """Service driving uploads from initiation to a terminal status."""

    def __init__(
        self,
        s3_service: S3Service,
        repository: UploadRepository,
        file_processor: FileProcessor,
        processing_queue: ProcessingQueue,
        settings: Optional[Settings] = None
    ):
        self.s3_service = s3_service
        self.repository = repository
        self.file_processor = file_processor
        self.processing_queue = processing_queue
        self.settings = settings or get_settings()

    async def initiate_upload(self, owner_id: UUID, request: InitiateUploadRequest) -> InitiateUploadResponse:
        """
        Start a new upload.

        Files at or above the multipart threshold get a store-side multipart upload
        split into chunk_size parts; smaller files are uploaded with one PUT.

        Args:
            owner_id: Owner of the upload
            request: Validated initiation data

        Returns:
            InitiateUploadResponse with the upload id and chunking plan

        Raises:
            UploadValidationError: If the size exceeds the configured maximum
            StoreUnavailable: If the store or record store fails
        """
        if request.total_size > self.settings.max_upload_size_bytes:
            raise UploadValidationError(
                f"File too large. Maximum size: {self.settings.max_upload_size_bytes} bytes"
            )

        if request.total_size >= self.settings.multipart_threshold_bytes:
            chunk_size = request.chunk_size or self.settings.default_chunk_size_bytes
            total_chunks = math.ceil(request.total_size / chunk_size)
            if total_chunks > self.settings.max_part_number:
                raise UploadValidationError(
                    f"Chunk size too small: upload would need more than {self.settings.max_part_number} parts"
                )

            store_upload_id, storage_key = await self.s3_service.begin_multipart(
                owner_id, request.filename, request.content_type, request.total_size
            )
            record = await self._create_record(
                owner_id, request, storage_key, UploadKind.MULTIPART, store_upload_id
            )
        else:
            chunk_size = request.total_size
            total_chunks = 1
            storage_key = self.s3_service.generate_storage_key(owner_id, request.filename)
            record = await self._create_record(owner_id, request, storage_key, UploadKind.SINGLE)

        logger.info(
            f"Initiated {record.upload_kind} upload {record.upload_id} for owner {owner_id} "
            f"({request.total_size} bytes, {total_chunks} chunks)"
        )

        return InitiateUploadResponse(
            upload_id=record.upload_id,
            storage_key=record.storage_key,
            upload_kind=record.upload_kind,
            chunk_size=chunk_size,
            total_chunks=total_chunks
        )

    async def get_upload_url(
        self,
        owner_id: UUID,
        upload_id: str,
        part_number: Optional[int] = None
    ) -> UploadUrlResponse:
        """
        Issue a presigned URL for uploading a part, or the whole file for single uploads.

        Raises:
            RecordNotFound: If the upload does not exist for this owner
            NotActive: If the upload is no longer active
            UploadValidationError: If a multipart upload is missing part_number
        """
        record = await self._get_active_record(upload_id, owner_id)
        expiry = self.settings.s3_presigned_url_expiry

        if record.is_multipart:
            if part_number is None:
                raise UploadValidationError("Part number is required for multipart uploads")
            url = await self.s3_service.presign_part_url(
                record.bucket, record.storage_key, record.upload_id, part_number, expiry
            )
        else:
            url = await self.s3_service.presign_put_url(
                record.bucket, record.storage_key, record.content_type, expiry
            )

        return UploadUrlResponse(
            upload_url=url,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expiry)
        )

    async def acknowledge_part(self, owner_id: UUID, acknowledgement: PartAcknowledgement) -> None:
        """
        Record a part the client finished uploading.

        Reporting the same part number again replaces the earlier report.

        Raises:
            RecordNotFound: If the upload does not exist for this owner
            NotActive: If the upload is no longer active
            UploadValidationError: If the upload is not multipart
        """
        record = await self._get_record(acknowledgement.upload_id, owner_id)
        if not record.is_multipart:
            raise UploadValidationError("Part acknowledgement is only supported for multipart uploads")
        if not record.is_active:
            raise NotActive()

        try:
            await self.repository.upsert_part(
                record.upload_id,
                owner_id,
                acknowledgement.part_number,
                acknowledgement.etag,
                acknowledgement.size
            )
        except RecordNotFound as e:
            # Record left the active status between the read and the upsert
            raise NotActive() from e

    async def complete_upload(
        self,
        owner_id: UUID,
        upload_id: str,
        parts: Optional[Sequence[CompletedPartIn]] = None
    ) -> CompleteUploadResponse:
        """
        Complete an upload and schedule its promotion.

        Multipart uploads are finalized on the store with the supplied parts,
        sorted by part number. A store rejection marks the record failed.
        Promotion runs in the background; this call never waits for it.

        Raises:
            RecordNotFound: If the upload does not exist for this owner
            NotActive: If the upload already reached a terminal status
            UploadValidationError: If a multipart upload is completed without parts
            IncompletePartSet: If the store rejects the part list
            StoreUnavailable: If the store or the record store fails
        """
        record = await self._get_active_record(upload_id, owner_id)

        if record.is_multipart:
            if not parts:
                raise UploadValidationError("Parts are required to complete a multipart upload")

            completed_parts = [CompletedPart(part.part_number, part.etag) for part in parts]
            try:
                if self.settings.verify_parts_before_complete:
                    await self._reconcile_parts(record, completed_parts)
                await self.s3_service.complete_multipart(
                    record.bucket, record.storage_key, record.upload_id, completed_parts
                )
            except (IncompletePartSet, StoreUnavailable) as e:
                logger.error(f"Completion of upload {upload_id} failed: {e.detail}")
                await self._mark_failed(record, owner_id)
                raise

        try:
            await self.repository.mark_completed(record.upload_id, owner_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to mark upload {upload_id} completed: {e}")
            await self._fail_after_record_error(record, owner_id)
            # The assembled object has no usable record anymore
            await self._discard_temp_object(record)
            raise StoreUnavailable("Failed to complete upload") from e
        logger.info(f"Upload {upload_id} completed, scheduling processing")

        self.processing_queue.submit(
            record.upload_id,
            lambda: self.file_processor.process_upload(record.upload_id, owner_id)
        )

        return CompleteUploadResponse(
            storage_key=record.storage_key,
            bucket=record.bucket,
            upload_kind=record.upload_kind
        )

    async def abort_upload(self, owner_id: UUID, upload_id: str) -> None:
        """
        Abort an active upload.

        The store-side abort is best-effort; the record is aborted either way and
        is never promoted.

        Raises:
            RecordNotFound: If the upload does not exist for this owner
            NotActive: If the upload already reached a terminal status
            StoreUnavailable: If the record could not be updated
        """
        record = await self._get_active_record(upload_id, owner_id)

        if record.is_multipart:
            aborted = await self.s3_service.abort_multipart(record.bucket, record.storage_key, record.upload_id)
            if not aborted:
                logger.warning(f"Store abort failed for upload {upload_id}, aborting record anyway")

        try:
            await self.repository.mark_aborted(record.upload_id, owner_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to mark upload {upload_id} aborted: {e}")
            await self._fail_after_record_error(record, owner_id)
            raise StoreUnavailable("Failed to abort upload") from e
        logger.info(f"Upload {upload_id} aborted by owner {owner_id}")

    async def reap_stale_uploads(self, max_age: Optional[timedelta] = None) -> int:
        """
        Mark active uploads older than max_age as failed.

        Args:
            max_age: Age threshold, defaults to the configured stale_upload_hours

        Returns:
            Number of uploads marked failed
        """
        max_age = max_age or timedelta(hours=self.settings.stale_upload_hours)
        return await self.repository.reap_stale(max_age)

    async def _create_record(
        self,
        owner_id: UUID,
        request: InitiateUploadRequest,
        storage_key: str,
        upload_kind: UploadKind,
        store_upload_id: Optional[str] = None
    ) -> UploadRecord:
        try:
            return await self.repository.create(
                owner_id=owner_id,
                storage_key=storage_key,
                bucket=self.s3_service.temp_bucket,
                filename=request.filename,
                content_type=request.content_type,
                total_size=request.total_size,
                upload_kind=upload_kind,
                upload_id=store_upload_id
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to create upload record for {storage_key}: {e}")
            if store_upload_id is not None:
                await self.s3_service.abort_multipart(self.s3_service.temp_bucket, storage_key, store_upload_id)
            raise StoreUnavailable("Failed to initiate upload") from e

    async def _get_record(self, upload_id: str, owner_id: UUID) -> UploadRecord:
        record = await self.repository.get_by_upload_id(upload_id, owner_id)
        if record is None:
            raise RecordNotFound()
        return record

    async def _get_active_record(self, upload_id: str, owner_id: UUID) -> UploadRecord:
        record = await self._get_record(upload_id, owner_id)
        if not record.is_active:
            raise NotActive()
        return record

    async def _reconcile_parts(self, record: UploadRecord, parts: List[CompletedPart]) -> None:
        """Check the supplied parts against what the store actually holds."""
        stored = await self.s3_service.list_parts(record.bucket, record.storage_key, record.upload_id)
        stored_etags = {part["part_number"]: part["etag"] for part in stored}

        for part in parts:
            if stored_etags.get(part.part_number) != part.etag.strip('"'):
                logger.warning(
                    f"Part {part.part_number} of upload {record.upload_id} does not match the store"
                )
                raise IncompletePartSet()

    async def _mark_failed(self, record: UploadRecord, owner_id: UUID) -> None:
        """
        Fail the record after a store rejection.

        Raises:
            NotActive: If a concurrent call already moved the record to a terminal status
        """
        try:
            await self.repository.mark_failed(record.upload_id, owner_id)
        except NotActive:
            logger.info(f"Upload {record.upload_id} already terminal, not marking failed")
            raise

    async def _fail_after_record_error(self, record: UploadRecord, owner_id: UUID) -> None:
        """Best-effort move to failed once a terminal write did not go through."""
        try:
            await self.repository.mark_failed(record.upload_id, owner_id)
        except (SQLAlchemyError, UploadError) as e:
            logger.error(f"Could not mark upload {record.upload_id} failed: {e}")

    async def _discard_temp_object(self, record: UploadRecord) -> None:
        try:
            await self.s3_service.delete_object(record.bucket, record.storage_key)
        except StoreUnavailable as e:
            logger.warning(f"Failed to remove object {record.storage_key} of failed upload: {e.detail}")
        except UploadError as e:
            logger.error(f"Could not mark upload {record.upload_id} as failed: {e.detail}")
