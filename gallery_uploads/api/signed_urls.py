"""
Signed download URL endpoints for completed uploads
"""

from typing import Dict
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from gallery_uploads.core.dependencies import get_current_owner, get_status_service
from gallery_uploads.schemas.upload import BulkSignedUrlRequest, SignedUrlResponse
from gallery_uploads.services.status_service import UploadStatusService

router = APIRouter()


@router.post("/bulk", response_model=Dict[str, SignedUrlResponse])
async def get_bulk_signed_urls(
    request: BulkSignedUrlRequest,
    owner_id: UUID = Depends(get_current_owner),
    status_service: UploadStatusService = Depends(get_status_service)
) -> Dict[str, SignedUrlResponse]:
    """
    Get signed URLs for up to 50 completed uploads.

    Uploads that are not completed, or lack a thumbnail when one is requested,
    are omitted from the response.
    """
    return await status_service.get_bulk_download_urls(
        request.upload_ids,
        owner_id,
        thumbnail=request.thumbnail,
        expires=request.expires
    )


@router.get("/{upload_id}", response_model=SignedUrlResponse)
async def get_signed_url(
    upload_id: str,
    thumbnail: bool = Query(False, description="Sign the thumbnail instead of the original"),
    expires: int = Query(3600, ge=1, le=3600, description="URL lifetime in seconds"),
    owner_id: UUID = Depends(get_current_owner),
    status_service: UploadStatusService = Depends(get_status_service)
) -> SignedUrlResponse:
    """
    Get a signed URL for a completed upload or its thumbnail.

    Args:
        upload_id: Upload id
        thumbnail: Whether to sign the thumbnail
        expires: URL lifetime in seconds, at most one hour
        owner_id: Current owner
        status_service: Status service

    Returns:
        Signed URL with its expiry
    """
    return await status_service.get_download_url(upload_id, owner_id, thumbnail=thumbnail, expires=expires)
