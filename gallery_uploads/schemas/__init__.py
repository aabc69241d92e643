"""
Pydantic schemas for gallery uploads
"""

from gallery_uploads.schemas.upload import (
    AbortUploadRequest,
    AckResponse,
    ActiveUpload,
    ActiveUploadList,
    BulkSignedUrlRequest,
    BulkStatusRequest,
    CompletedPartIn,
    CompleteUploadRequest,
    CompleteUploadResponse,
    HealthCheck,
    InitiateUploadRequest,
    InitiateUploadResponse,
    PartAcknowledgement,
    SignedUrlResponse,
    UploadPartResponse,
    UploadProgressResponse,
    UploadStatusResponse,
    UploadUrlRequest,
    UploadUrlResponse,
)

__all__ = [
    "AbortUploadRequest",
    "AckResponse",
    "ActiveUpload",
    "ActiveUploadList",
    "BulkSignedUrlRequest",
    "BulkStatusRequest",
    "CompletedPartIn",
    "CompleteUploadRequest",
    "CompleteUploadResponse",
    "HealthCheck",
    "InitiateUploadRequest",
    "InitiateUploadResponse",
    "PartAcknowledgement",
    "SignedUrlResponse",
    "UploadPartResponse",
    "UploadProgressResponse",
    "UploadStatusResponse",
    "UploadUrlRequest",
    "UploadUrlResponse",
]
