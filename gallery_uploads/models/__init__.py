"""
Database models for gallery uploads
"""

from gallery_uploads.models.upload import (
    ProcessingStatus,
    UploadKind,
    UploadPart,
    UploadRecord,
    UploadStatus,
)

__all__ = ["ProcessingStatus", "UploadKind", "UploadPart", "UploadRecord", "UploadStatus"]
