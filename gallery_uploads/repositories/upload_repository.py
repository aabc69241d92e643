"""
Upload repository for database operations
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Integer, String, and_, desc, literal, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from gallery_uploads.core.exceptions import NotActive, RecordNotFound, UploadValidationError
from gallery_uploads.models.upload import (
    ProcessingStatus,
    UploadKind,
    UploadPart,
    UploadRecord,
    UploadStatus,
    utcnow,
)

logger = logging.getLogger(__name__)


def generate_single_upload_id() -> str:
    """Correlation id for single-part uploads, which S3 never assigns."""
    timestamp = int(utcnow().timestamp() * 1000)
    return f"single-{timestamp}-{uuid4().hex[:9]}"


def clamp_progress(progress: int) -> int:
    return max(0, min(100, int(progress)))


class UploadRepository:
    """Repository for upload record operations, always scoped by owner."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(
        self,
        owner_id: UUID,
        storage_key: str,
        bucket: str,
        filename: str,
        content_type: str,
        total_size: int,
        upload_kind: UploadKind,
        upload_id: Optional[str] = None
    ) -> UploadRecord:
        """
        Create a new active upload record.

        Args:
            owner_id: Owner of the upload
            storage_key: Key in the temp bucket
            bucket: Temp bucket name
            filename: Original filename
            content_type: MIME type
            total_size: Declared size in bytes
            upload_kind: Single or multipart
            upload_id: Store-assigned id; synthesized for single-part uploads

        Returns:
            Created upload record
        """
        upload_kind = UploadKind(upload_kind)
        if total_size <= 0:
            raise UploadValidationError("Total size must be positive")

        if upload_id is None:
            if upload_kind is UploadKind.MULTIPART:
                raise UploadValidationError("Multipart uploads require a store-assigned upload id")
            upload_id = generate_single_upload_id()

        record = UploadRecord(
            owner_id=owner_id,
            upload_id=upload_id,
            storage_key=storage_key,
            bucket=bucket,
            filename=filename,
            content_type=content_type,
            total_size=total_size,
            upload_kind=upload_kind.value,
            status=UploadStatus.ACTIVE.value,
            processing_status=ProcessingStatus.PENDING.value,
            processing_progress=0,
            parts=[]
        )

        async with self.session_factory.begin() as session:
            session.add(record)

        return record

    async def get_by_upload_id(self, upload_id: str, owner_id: UUID) -> Optional[UploadRecord]:
        """
        Get upload record by upload id for specific owner.

        Returns:
            UploadRecord if found and owned by owner, None otherwise
        """
        query = select(UploadRecord).where(
            and_(
                UploadRecord.upload_id == upload_id,
                UploadRecord.owner_id == owner_id
            )
        )

        async with self.session_factory() as session:
            result = await session.execute(query)
            return result.scalar_one_or_none()

    async def get_by_storage_key(self, storage_key: str, owner_id: UUID) -> Optional[UploadRecord]:
        """
        Get upload record by temp storage key for specific owner.

        Returns:
            UploadRecord if found and owned by owner, None otherwise
        """
        query = select(UploadRecord).where(
            and_(
                UploadRecord.storage_key == storage_key,
                UploadRecord.owner_id == owner_id
            )
        ).order_by(desc(UploadRecord.created_at)).limit(1)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return result.scalar_one_or_none()

    async def get_many(self, upload_ids: Iterable[str], owner_id: UUID) -> Dict[str, UploadRecord]:
        """
        Get several records owned by owner in one query.

        Returns:
            Mapping of upload id to record; unknown or foreign ids are absent
        """
        upload_ids = list(dict.fromkeys(upload_ids))
        if not upload_ids:
            return {}

        query = select(UploadRecord).where(
            and_(
                UploadRecord.upload_id.in_(upload_ids),
                UploadRecord.owner_id == owner_id
            )
        )

        async with self.session_factory() as session:
            result = await session.execute(query)
            return {record.upload_id: record for record in result.scalars().all()}

    async def upsert_part(
        self,
        upload_id: str,
        owner_id: UUID,
        part_number: int,
        etag: str,
        size: int
    ) -> None:
        """
        Record an acknowledged part, replacing any previous report of the same number.

        The merge runs as a single INSERT ... SELECT ... ON CONFLICT statement so
        concurrent reports for different parts of one upload never overwrite each other.

        Raises:
            RecordNotFound: If no active multipart record matches
        """
        now = utcnow()
        source = select(
            UploadRecord.id,
            literal(part_number, Integer),
            literal(etag, String),
            literal(size, BigInteger),
            literal(now, DateTime(timezone=True))
        ).where(
            and_(
                UploadRecord.upload_id == upload_id,
                UploadRecord.owner_id == owner_id,
                UploadRecord.status == UploadStatus.ACTIVE.value,
                UploadRecord.upload_kind == UploadKind.MULTIPART.value
            )
        )

        async with self.session_factory.begin() as session:
            insert = self._insert_for(session)
            stmt = insert(UploadPart).from_select(
                ["upload_record_id", "part_number", "etag", "size", "uploaded_at"],
                source
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["upload_record_id", "part_number"],
                set_={
                    "etag": stmt.excluded.etag,
                    "size": stmt.excluded.size,
                    "uploaded_at": stmt.excluded.uploaded_at
                }
            )
            result = await session.execute(stmt)
            if result.rowcount == 0:
                raise RecordNotFound()

            await session.execute(
                update(UploadRecord)
                .where(
                    and_(
                        UploadRecord.upload_id == upload_id,
                        UploadRecord.owner_id == owner_id
                    )
                )
                .values(updated_at=now)
            )

    async def mark_completed(
        self,
        upload_id: str,
        owner_id: UUID,
        final_storage_key: Optional[str] = None,
        final_bucket: Optional[str] = None,
        thumbnail_key: Optional[str] = None,
        thumbnail_url: Optional[str] = None,
        thumbnail_source_url: Optional[str] = None
    ) -> None:
        """
        Transition an active record to completed.

        Raises:
            RecordNotFound: If no record matches for this owner
            NotActive: If the record already reached a terminal status
        """
        now = utcnow()
        values: Dict[str, Any] = {
            "status": UploadStatus.COMPLETED.value,
            "completed_at": now,
            "updated_at": now
        }
        optional_fields = {
            "final_storage_key": final_storage_key,
            "final_bucket": final_bucket,
            "thumbnail_key": thumbnail_key,
            "thumbnail_url": thumbnail_url,
            "thumbnail_source_url": thumbnail_source_url
        }
        values.update({field: value for field, value in optional_fields.items() if value is not None})

        await self._transition(upload_id, owner_id, UploadStatus.ACTIVE, values)

    async def mark_aborted(self, upload_id: str, owner_id: UUID) -> None:
        """
        Transition an active record to aborted.

        Raises:
            RecordNotFound: If no record matches for this owner
            NotActive: If the record already reached a terminal status
        """
        await self._transition(
            upload_id,
            owner_id,
            UploadStatus.ACTIVE,
            {"status": UploadStatus.ABORTED.value, "updated_at": utcnow()}
        )

    async def mark_failed(self, upload_id: str, owner_id: UUID) -> None:
        """
        Transition an active record to failed.

        Raises:
            RecordNotFound: If no record matches for this owner
            NotActive: If the record already reached a terminal status
        """
        await self._transition(
            upload_id,
            owner_id,
            UploadStatus.ACTIVE,
            {"status": UploadStatus.FAILED.value, "updated_at": utcnow()}
        )

    async def mark_processing_failed(self, upload_id: str, owner_id: UUID, message: str) -> None:
        """
        Fail a completed record whose promotion did not succeed.

        This is the only way out of the completed status.
        """
        await self._transition(
            upload_id,
            owner_id,
            UploadStatus.COMPLETED,
            {
                "status": UploadStatus.FAILED.value,
                "processing_status": ProcessingStatus.FAILED.value,
                "processing_message": message,
                "updated_at": utcnow()
            }
        )

    async def record_promotion(
        self,
        upload_id: str,
        owner_id: UUID,
        final_storage_key: str,
        final_bucket: str,
        thumbnail_key: Optional[str] = None,
        thumbnail_url: Optional[str] = None,
        thumbnail_source_url: Optional[str] = None
    ) -> None:
        """Persist the final location and derived assets of a completed record."""
        await self._transition(
            upload_id,
            owner_id,
            UploadStatus.COMPLETED,
            {
                "final_storage_key": final_storage_key,
                "final_bucket": final_bucket,
                "thumbnail_key": thumbnail_key,
                "thumbnail_url": thumbnail_url,
                "thumbnail_source_url": thumbnail_source_url,
                "updated_at": utcnow()
            }
        )

    async def update_processing_status(
        self,
        upload_id: str,
        owner_id: UUID,
        processing_status: ProcessingStatus,
        progress: Optional[int] = None,
        message: Optional[str] = None
    ) -> None:
        """
        Update processing status independently of the upload status.

        Progress is clamped into [0, 100].

        Raises:
            RecordNotFound: If no record matches for this owner
        """
        values: Dict[str, Any] = {
            "processing_status": ProcessingStatus(processing_status).value,
            "updated_at": utcnow()
        }
        if progress is not None:
            values["processing_progress"] = clamp_progress(progress)
        if message is not None:
            values["processing_message"] = message

        stmt = (
            update(UploadRecord)
            .where(
                and_(
                    UploadRecord.upload_id == upload_id,
                    UploadRecord.owner_id == owner_id
                )
            )
            .values(**values)
        )

        async with self.session_factory.begin() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                raise RecordNotFound()

    async def list_active(self, owner_id: UUID) -> List[UploadRecord]:
        """
        Get active uploads for owner, newest first.
        """
        query = select(UploadRecord).where(
            and_(
                UploadRecord.owner_id == owner_id,
                UploadRecord.status == UploadStatus.ACTIVE.value
            )
        ).order_by(desc(UploadRecord.created_at))

        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def reap_stale(self, max_age: timedelta) -> int:
        """
        Fail every active record older than max_age.

        Returns:
            Number of records transitioned
        """
        now = utcnow()
        cutoff: datetime = now - max_age
        stmt = (
            update(UploadRecord)
            .where(
                and_(
                    UploadRecord.status == UploadStatus.ACTIVE.value,
                    UploadRecord.created_at < cutoff
                )
            )
            .values(status=UploadStatus.FAILED.value, updated_at=now)
        )

        async with self.session_factory.begin() as session:
            result = await session.execute(stmt)
            count = result.rowcount

        if count:
            logger.info(f"Marked {count} stale uploads as failed (older than {max_age})")
        return count

    async def _transition(
        self,
        upload_id: str,
        owner_id: UUID,
        expected: UploadStatus,
        values: Dict[str, Any]
    ) -> None:
        """Compare-and-set update guarded by the expected current status."""
        stmt = (
            update(UploadRecord)
            .where(
                and_(
                    UploadRecord.upload_id == upload_id,
                    UploadRecord.owner_id == owner_id,
                    UploadRecord.status == expected.value
                )
            )
            .values(**values)
        )

        async with self.session_factory.begin() as session:
            result = await session.execute(stmt)
            if result.rowcount:
                return

            exists = await session.execute(
                select(UploadRecord.status).where(
                    and_(
                        UploadRecord.upload_id == upload_id,
                        UploadRecord.owner_id == owner_id
                    )
                )
            )
            current = exists.scalar_one_or_none()

        if current is None:
            raise RecordNotFound()
        if expected is UploadStatus.ACTIVE:
            raise NotActive()
        raise NotActive(f"Upload is {current}, expected {expected.value}")

    @staticmethod
    def _insert_for(session: AsyncSession):
        """Dialect specific INSERT construct supporting ON CONFLICT."""
        if session.get_bind().dialect.name == "postgresql":
            return postgresql.insert
        return sqlite.insert
