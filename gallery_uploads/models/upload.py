"""
Upload models for tracking resumable uploads and their parts
"""

from datetime import datetime, timezone
from enum import Enum
from math import ceil
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gallery_uploads.database import Base

# Part size the progress view assumes when estimating the part count
PROGRESS_CHUNK_SIZE = 10 * 1024 * 1024


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UploadStatus(str, Enum):
    """Lifecycle status of an upload attempt."""

    ACTIVE = "active"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


class ProcessingStatus(str, Enum):
    """Post-completion processing status."""

    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class UploadKind(str, Enum):
    """Upload strategy chosen at initiation."""

    SINGLE = "single"
    MULTIPART = "multipart"


class UploadPart(Base):
    """One acknowledged part of a multipart upload."""

    __tablename__ = "upload_parts"
    __table_args__ = (
        UniqueConstraint("upload_record_id", "part_number", name="uq_upload_parts_record_part"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    upload_record_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("uploads.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    part_number: Mapped[int] = mapped_column(Integer, nullable=False)
    etag: Mapped[str] = mapped_column(String(255), nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<UploadPart(part_number={self.part_number}, etag='{self.etag}', size={self.size})>"


class UploadRecord(Base):
    """Upload record tracking one upload attempt from initiation to promotion."""

    __tablename__ = "uploads"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Ownership and correlation
    owner_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    upload_id: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True, index=True)

    # Temp storage location
    storage_key: Mapped[str] = mapped_column(String(1024), nullable=False, index=True)
    bucket: Mapped[str] = mapped_column(String(255), nullable=False)

    # File details
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    total_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    upload_kind: Mapped[str] = mapped_column(String(20), nullable=False, default=UploadKind.MULTIPART.value)

    # Status
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=UploadStatus.ACTIVE.value, index=True)
    processing_status: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        default=ProcessingStatus.PENDING.value,
        index=True
    )
    processing_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processing_message: Mapped[Optional[str]] = mapped_column(String(500))

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Final storage and derived assets
    final_storage_key: Mapped[Optional[str]] = mapped_column(String(1024))
    final_bucket: Mapped[Optional[str]] = mapped_column(String(255))
    thumbnail_key: Mapped[Optional[str]] = mapped_column(String(1024))
    thumbnail_url: Mapped[Optional[str]] = mapped_column(String(2048))
    thumbnail_source_url: Mapped[Optional[str]] = mapped_column(String(2048))

    # Relationships
    parts: Mapped[List[UploadPart]] = relationship(
        UploadPart,
        order_by=UploadPart.part_number,
        lazy="selectin",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<UploadRecord(upload_id='{self.upload_id}', status='{self.status}', kind='{self.upload_kind}')>"

    @property
    def is_multipart(self) -> bool:
        return self.upload_kind == UploadKind.MULTIPART.value

    @property
    def is_active(self) -> bool:
        return self.status == UploadStatus.ACTIVE.value

    @property
    def ready_for_display(self) -> bool:
        """Whether clients may fetch and display the uploaded object."""
        return (
            self.status == UploadStatus.COMPLETED.value
            and self.processing_status in (ProcessingStatus.PROCESSED.value, None)
            and self.final_storage_key is not None
        )

    @property
    def uploaded_size(self) -> int:
        """Bytes acknowledged so far."""
        if self.is_multipart:
            return sum(part.size for part in self.parts)
        # Single uploads are all-or-nothing
        return self.total_size if self.status == UploadStatus.COMPLETED.value else 0

    @property
    def total_parts(self) -> int:
        if self.is_multipart:
            return ceil(self.total_size / PROGRESS_CHUNK_SIZE)
        return 1

    @property
    def progress(self) -> float:
        """Upload progress as a percentage rounded to 2 decimals."""
        if self.total_size <= 0:
            return 0.0
        return round(self.uploaded_size / self.total_size * 100, 2)
