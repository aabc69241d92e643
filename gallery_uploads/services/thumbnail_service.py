"""
Thumbnail generation for promoted uploads
"""

import asyncio
import io
import logging
import os
from abc import ABC, abstractmethod
from typing import NamedTuple, Optional, Tuple

import httpx
from PIL import Image, ImageOps, UnidentifiedImageError

from gallery_uploads.config import Settings, get_settings
from gallery_uploads.core.exceptions import DerivationFailed, StoreUnavailable
from gallery_uploads.services.s3_service import S3Service

logger = logging.getLogger(__name__)


class ThumbnailResult(NamedTuple):
    thumbnail_key: str
    thumbnail_url: str
    source_url: Optional[str] = None


def thumbnail_key_for(storage_key: str) -> str:
    """Thumbnail key stored beside the original: photo.png -> photo_thumb.jpg"""
    base, _ = os.path.splitext(storage_key)
    return f"{base}_thumb.jpg"


def render_thumbnail(data: bytes, size: Tuple[int, int], quality: int = 85) -> bytes:
    """
    Render a centre-cropped JPEG thumbnail.

    Args:
        data: Encoded source image
        size: Target (width, height)
        quality: JPEG quality

    Returns:
        Encoded JPEG bytes

    Raises:
        UnidentifiedImageError: If data is not an image Pillow can read
    """
    with Image.open(io.BytesIO(data)) as image:
        image = ImageOps.exif_transpose(image)

        # JPEG has no alpha channel, flatten onto white
        if image.mode in ("RGBA", "LA", "P"):
            image = image.convert("RGBA")
            background = Image.new("RGB", image.size, (255, 255, 255))
            background.paste(image, mask=image.split()[-1])
            image = background
        elif image.mode != "RGB":
            image = image.convert("RGB")

        thumbnail = ImageOps.fit(image, size, Image.Resampling.LANCZOS)

        output = io.BytesIO()
        thumbnail.save(output, format="JPEG", quality=quality, optimize=True)
        return output.getvalue()


class ThumbnailGenerator(ABC):
    """Abstract thumbnail generator."""

    @abstractmethod
    async def generate(
        self,
        bucket: str,
        storage_key: str,
        content_type: str,
        size: int
    ) -> Optional[ThumbnailResult]:
        """
        Produce a thumbnail for a promoted object.

        Args:
            bucket: Bucket holding the promoted object
            storage_key: Key of the promoted object
            content_type: MIME type of the object
            size: Object size in bytes

        Returns:
            ThumbnailResult, or None when no thumbnail is produced

        Raises:
            DerivationFailed: If generation fails
        """
        pass


class DisabledThumbnailGenerator(ThumbnailGenerator):
    """Generator used when thumbnails are switched off."""

    async def generate(
        self,
        bucket: str,
        storage_key: str,
        content_type: str,
        size: int
    ) -> Optional[ThumbnailResult]:
        return None


class ImageThumbnailGenerator(ThumbnailGenerator):
    """Renders image thumbnails with Pillow and stores them beside the original."""

    def __init__(
        self,
        s3_service: S3Service,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize thumbnail generator.

        Args:
            s3_service: Store used to read the source and write the thumbnail
            settings: Application settings
            http_client: Client used to download the source image
        """
        self.settings = settings or get_settings()
        self.s3_service = s3_service
        self.http_client = http_client

    async def generate(
        self,
        bucket: str,
        storage_key: str,
        content_type: str,
        size: int
    ) -> Optional[ThumbnailResult]:
        if not content_type.startswith("image/"):
            logger.debug(f"No thumbnail for {storage_key}: {content_type} is not an image")
            return None
        if size > self.settings.thumbnail_max_source_bytes:
            logger.info(f"No thumbnail for {storage_key}: {size} bytes exceeds the source limit")
            return None

        thumbnail_key = thumbnail_key_for(storage_key)
        dimensions = (self.settings.thumbnail_width, self.settings.thumbnail_height)

        try:
            source_url = await self.s3_service.presign_get_url(bucket, storage_key)
            data = await self._download(source_url)
            thumbnail = await asyncio.to_thread(
                render_thumbnail, data, dimensions, self.settings.thumbnail_quality
            )
            await self.s3_service.put_object(
                bucket,
                thumbnail_key,
                thumbnail,
                "image/jpeg",
                metadata={"source-key": storage_key}
            )
        except (StoreUnavailable, httpx.HTTPError, UnidentifiedImageError, OSError) as e:
            logger.error(f"Thumbnail generation failed for {storage_key}: {e}")
            raise DerivationFailed() from e

        logger.info(f"Generated thumbnail {thumbnail_key} for {storage_key}")
        return ThumbnailResult(
            thumbnail_key=thumbnail_key,
            thumbnail_url=self.s3_service.object_url(bucket, thumbnail_key),
            source_url=self.s3_service.object_url(bucket, storage_key)
        )

    async def _download(self, url: str) -> bytes:
        if self.http_client is not None:
            response = await self.http_client.get(url)
            response.raise_for_status()
            return response.content

        async with httpx.AsyncClient(timeout=60.0) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.content


def build_thumbnail_generator(s3_service: S3Service, settings: Optional[Settings] = None) -> ThumbnailGenerator:
    """Pick the generator matching the configuration."""
    settings = settings or get_settings()
    if settings.thumbnails_enabled:
        return ImageThumbnailGenerator(s3_service, settings)
    return DisabledThumbnailGenerator()
