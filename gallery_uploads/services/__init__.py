"""
Business logic services for gallery uploads
"""

from gallery_uploads.services.content_scanner import ContentScanner, PassThroughScanner
from gallery_uploads.services.file_processor import FileProcessor
from gallery_uploads.services.processing_queue import ProcessingQueue
from gallery_uploads.services.s3_service import S3Service
from gallery_uploads.services.status_service import UploadStatusService
from gallery_uploads.services.thumbnail_service import ThumbnailGenerator, build_thumbnail_generator
from gallery_uploads.services.upload_service import UploadService

__all__ = [
    "ContentScanner",
    "PassThroughScanner",
    "FileProcessor",
    "ProcessingQueue",
    "S3Service",
    "UploadStatusService",
    "ThumbnailGenerator",
    "build_thumbnail_generator",
    "UploadService"
]
