"""
FastAPI dependencies for owner identity and service access
"""

from typing import Optional
from uuid import UUID

from fastapi import Header, HTTPException, Request, status

from gallery_uploads.services.status_service import UploadStatusService
from gallery_uploads.services.upload_service import UploadService


async def get_current_owner(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id")
) -> UUID:
    """
    Get the owner of the request.

    Authentication happens upstream; the gateway forwards the authenticated
    user id in the X-User-Id header.

    Raises:
        HTTPException: If the header is missing or not a UUID
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials"
    )

    if not x_user_id:
        raise credentials_exception

    try:
        return UUID(x_user_id)
    except ValueError:
        raise credentials_exception


def get_upload_service(request: Request) -> UploadService:
    """Upload lifecycle service built during application startup."""
    return request.app.state.upload_service


def get_status_service(request: Request) -> UploadStatusService:
    """Status service built during application startup."""
    return request.app.state.status_service
