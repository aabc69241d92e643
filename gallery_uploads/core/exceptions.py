"""
Error taxonomy for the upload lifecycle
"""

from fastapi import status


class UploadError(Exception):
    """Base exception for upload lifecycle failures.

    ``detail`` is safe to return to clients; the underlying cause stays in logs.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail: str = "Upload operation failed"

    def __init__(self, detail: str = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class UploadValidationError(UploadError):
    """Malformed input, rejected before touching the store or the record."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid upload request"


class RecordNotFound(UploadError):
    """No upload record matches for this owner."""

    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Upload not found"


class NotActive(UploadError):
    """Operation attempted on an upload that is no longer active."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Upload is not active"


class IncompletePartSet(UploadError):
    """The store rejected completion because the part list does not match."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Uploaded parts are incomplete"


class StoreUnavailable(UploadError):
    """An object store call failed."""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Storage service unavailable"


class DerivationFailed(UploadError):
    """Promotion or thumbnail pipeline failure."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Failed to process upload"
