"""
Pydantic schemas for upload operations
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

MAX_UPLOAD_SIZE_BYTES = 5 * 1024 * 1024 * 1024  # 5GB
MIN_CHUNK_SIZE_BYTES = 1024
MAX_CHUNK_SIZE_BYTES = 100 * 1024 * 1024
MAX_PART_NUMBER = 10000
BULK_STATUS_LIMIT = 100
BULK_SIGNED_URL_LIMIT = 50


class InitiateUploadRequest(BaseModel):
    """Schema for initiating an upload; the service picks single or multipart."""

    filename: str = Field(..., min_length=1, max_length=255)
    content_type: str = Field(
        ...,
        pattern=r"^(image|video)/",
        description="Must be image/* or video/* MIME type"
    )
    total_size: int = Field(..., ge=1, le=MAX_UPLOAD_SIZE_BYTES, description="File size in bytes")
    chunk_size: Optional[int] = Field(
        None,
        ge=MIN_CHUNK_SIZE_BYTES,
        le=MAX_CHUNK_SIZE_BYTES,
        description="Chunk size in bytes (only used for multipart uploads)"
    )

    @field_validator("filename")
    @classmethod
    def validate_filename(cls, v: str) -> str:
        """Reject names that would escape the owner's key prefix."""
        if "/" in v or "\\" in v or not v.strip():
            raise ValueError("Filename must not contain path separators")
        return v


class InitiateUploadResponse(BaseModel):
    """Schema for upload initiation response."""

    upload_id: str
    storage_key: str
    upload_kind: str
    chunk_size: int
    total_chunks: int


class UploadUrlRequest(BaseModel):
    """Schema for requesting a presigned upload URL."""

    upload_id: str = Field(..., min_length=1)
    part_number: Optional[int] = Field(None, ge=1, le=MAX_PART_NUMBER)


class UploadUrlResponse(BaseModel):
    """Schema for presigned upload URL response."""

    upload_url: str
    expires_at: datetime


class PartAcknowledgement(BaseModel):
    """Schema for reporting an uploaded part."""

    upload_id: str = Field(..., min_length=1)
    part_number: int = Field(..., ge=1, le=MAX_PART_NUMBER)
    etag: str = Field(..., min_length=1)
    size: int = Field(..., ge=1)


class CompletedPartIn(BaseModel):
    """Part number and etag pair supplied on completion."""

    part_number: int = Field(..., ge=1, le=MAX_PART_NUMBER)
    etag: str = Field(..., min_length=1)


class CompleteUploadRequest(BaseModel):
    """Schema for completing an upload."""

    upload_id: str = Field(..., min_length=1)
    parts: Optional[List[CompletedPartIn]] = Field(
        None,
        description="Required for multipart uploads"
    )


class CompleteUploadResponse(BaseModel):
    """Schema for upload completion response."""

    success: bool = True
    storage_key: str
    bucket: str
    upload_kind: str


class AbortUploadRequest(BaseModel):
    """Schema for aborting an upload."""

    upload_id: str = Field(..., min_length=1)


class AckResponse(BaseModel):
    """Plain acknowledgement."""

    success: bool = True


class UploadStatusResponse(BaseModel):
    """Consolidated upload and processing status."""

    upload_status: str
    processing_status: Optional[str] = None
    processing_progress: int = 0
    processing_message: Optional[str] = None
    ready_for_display: bool

    class Config:
        from_attributes = True


class BulkStatusRequest(BaseModel):
    """Schema for bulk status lookup."""

    upload_ids: List[str] = Field(..., max_length=BULK_STATUS_LIMIT)


class UploadPartResponse(BaseModel):
    """Schema for an acknowledged part."""

    part_number: int
    etag: str
    size: int
    uploaded_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UploadProgressResponse(BaseModel):
    """Byte-level upload progress."""

    upload_id: str
    status: str
    upload_kind: str
    uploaded_parts: List[UploadPartResponse]
    total_parts: int
    uploaded_size: int
    total_size: int
    progress: float


class ActiveUpload(BaseModel):
    """In-progress upload with computed progress."""

    upload_id: str
    filename: str
    content_type: str
    total_size: int
    uploaded_size: int
    progress: float
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ActiveUploadList(BaseModel):
    """Schema for the active uploads listing."""

    uploads: List[ActiveUpload]


class SignedUrlResponse(BaseModel):
    """Schema for a presigned download URL."""

    url: str
    expires_in: int
    expires_at: datetime


class BulkSignedUrlRequest(BaseModel):
    """Schema for bulk signed URL generation."""

    upload_ids: List[str] = Field(..., max_length=BULK_SIGNED_URL_LIMIT)
    thumbnail: bool = False
    expires: int = Field(3600, ge=300, le=3600)


class HealthCheck(BaseModel):
    """Schema for health check response."""

    status: str
    timestamp: datetime
    version: str
    database_connected: bool
    storage_configured: bool
    pending_processing: int = 0
