"""
Upload status endpoints
"""

from typing import Dict
from uuid import UUID

from fastapi import APIRouter, Depends

from gallery_uploads.core.dependencies import get_current_owner, get_status_service
from gallery_uploads.schemas.upload import BulkStatusRequest, UploadStatusResponse
from gallery_uploads.services.status_service import UploadStatusService

router = APIRouter()


@router.post("/bulk", response_model=Dict[str, UploadStatusResponse])
async def get_bulk_upload_status(
    request: BulkStatusRequest,
    owner_id: UUID = Depends(get_current_owner),
    status_service: UploadStatusService = Depends(get_status_service)
) -> Dict[str, UploadStatusResponse]:
    """
    Get status of up to 100 uploads.

    Unknown upload ids are omitted from the response.
    """
    return await status_service.get_bulk_status(request.upload_ids, owner_id)


@router.get("/{upload_id}", response_model=UploadStatusResponse)
async def get_upload_status(
    upload_id: str,
    owner_id: UUID = Depends(get_current_owner),
    status_service: UploadStatusService = Depends(get_status_service)
) -> UploadStatusResponse:
    """
    Get upload and processing status of one upload.

    Args:
        upload_id: Upload id returned by initiation
        owner_id: Current owner
        status_service: Status service

    Returns:
        Consolidated status with the ready_for_display flag
    """
    return await status_service.get_status(upload_id, owner_id)
