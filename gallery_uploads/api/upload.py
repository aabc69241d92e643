"""
Upload API endpoints: direct-to-S3 uploads driven through presigned URLs
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status

from gallery_uploads.core.dependencies import get_current_owner, get_status_service, get_upload_service
from gallery_uploads.schemas.upload import (
    AbortUploadRequest,
    AckResponse,
    ActiveUploadList,
    CompleteUploadRequest,
    CompleteUploadResponse,
    InitiateUploadRequest,
    InitiateUploadResponse,
    PartAcknowledgement,
    UploadProgressResponse,
    UploadUrlRequest,
    UploadUrlResponse,
)
from gallery_uploads.services.status_service import UploadStatusService
from gallery_uploads.services.upload_service import UploadService

router = APIRouter()


@router.post("/initiate", response_model=InitiateUploadResponse, status_code=status.HTTP_201_CREATED)
async def initiate_upload(
    request: InitiateUploadRequest,
    owner_id: UUID = Depends(get_current_owner),
    upload_service: UploadService = Depends(get_upload_service)
) -> InitiateUploadResponse:
    """
    Start an upload.

    Files of 5MB and more are uploaded in parts; the response carries the
    chunk size and number of parts the client should send.

    Args:
        request: Filename, content type, size and optional chunk size
        owner_id: Current owner
        upload_service: Upload lifecycle service

    Returns:
        Upload id, storage key and chunking plan
    """
    return await upload_service.initiate_upload(owner_id, request)


@router.post("/url", response_model=UploadUrlResponse)
async def get_upload_url(
    request: UploadUrlRequest,
    owner_id: UUID = Depends(get_current_owner),
    upload_service: UploadService = Depends(get_upload_service)
) -> UploadUrlResponse:
    """
    Get a presigned URL for uploading one part, or the whole file for small uploads.
    """
    return await upload_service.get_upload_url(owner_id, request.upload_id, request.part_number)


@router.post("/part", response_model=AckResponse)
async def acknowledge_part(
    request: PartAcknowledgement,
    owner_id: UUID = Depends(get_current_owner),
    upload_service: UploadService = Depends(get_upload_service)
) -> AckResponse:
    """
    Report an uploaded part with the etag S3 returned for it.
    """
    await upload_service.acknowledge_part(owner_id, request)
    return AckResponse()


@router.post("/complete", response_model=CompleteUploadResponse)
async def complete_upload(
    request: CompleteUploadRequest,
    owner_id: UUID = Depends(get_current_owner),
    upload_service: UploadService = Depends(get_upload_service)
) -> CompleteUploadResponse:
    """
    Complete an upload.

    Processing into permanent storage continues in the background; poll the
    status endpoint until the upload is ready for display.

    Args:
        request: Upload id and, for multipart uploads, the uploaded parts
        owner_id: Current owner
        upload_service: Upload lifecycle service

    Returns:
        Storage location of the completed upload
    """
    return await upload_service.complete_upload(owner_id, request.upload_id, request.parts)


@router.post("/abort", response_model=AckResponse)
async def abort_upload(
    request: AbortUploadRequest,
    owner_id: UUID = Depends(get_current_owner),
    upload_service: UploadService = Depends(get_upload_service)
) -> AckResponse:
    """
    Abort an active upload.
    """
    await upload_service.abort_upload(owner_id, request.upload_id)
    return AckResponse()


@router.get("/progress/{upload_id}", response_model=UploadProgressResponse)
async def get_upload_progress(
    upload_id: str,
    owner_id: UUID = Depends(get_current_owner),
    status_service: UploadStatusService = Depends(get_status_service)
) -> UploadProgressResponse:
    """
    Get byte-level progress of an upload, including acknowledged parts.
    """
    return await status_service.get_progress(upload_id, owner_id)


@router.get("/active", response_model=ActiveUploadList)
async def list_active_uploads(
    owner_id: UUID = Depends(get_current_owner),
    status_service: UploadStatusService = Depends(get_status_service)
) -> ActiveUploadList:
    """
    List in-progress uploads, newest first.
    """
    return await status_service.list_active(owner_id)
