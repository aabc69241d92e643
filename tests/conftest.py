"""Pytest configuration and shared fixtures."""

import hashlib
from typing import Dict, List, Optional, Sequence, Set, Tuple
from uuid import uuid4

import pytest
import pytest_asyncio

from gallery_uploads.config import Settings
from gallery_uploads.core.exceptions import IncompletePartSet, StoreUnavailable, UploadValidationError
from gallery_uploads.database import close_database, create_engine, create_session_factory, init_database
from gallery_uploads.models.upload import UploadKind
from gallery_uploads.repositories.upload_repository import UploadRepository
from gallery_uploads.services.s3_service import CompletedPart

TEMP_BUCKET = "gallery-temp"
FINAL_BUCKET = "gallery-final"


class FakeObjectStore:
    """In-memory stand-in for S3Service that also simulates client-side part uploads."""

    def __init__(self, temp_bucket: str = TEMP_BUCKET, final_bucket: str = FINAL_BUCKET):
        self.temp_bucket = temp_bucket
        self.final_bucket = final_bucket
        self.objects: Dict[Tuple[str, str], bytes] = {}
        self.multipart: Dict[str, dict] = {}
        self.completed: List[List[int]] = []
        self.aborted: List[str] = []
        self.deleted: List[Tuple[str, str]] = []
        self.fail_begin = False
        self.fail_copy = False
        self.fail_abort = False
        self.finished: Set[str] = set()
        self._counter = 0

    # Client side simulation

    def upload_part(self, store_upload_id: str, part_number: int, data: bytes) -> str:
        etag = hashlib.md5(data).hexdigest()
        self.multipart[store_upload_id]["parts"][part_number] = (etag, data)
        return etag

    def put(self, bucket: str, key: str, data: bytes) -> None:
        self.objects[(bucket, key)] = data

    # S3Service interface

    def generate_storage_key(self, owner_id, filename: str) -> str:
        self._counter += 1
        return f"{owner_id}/{self._counter}-{filename}"

    async def begin_multipart(self, owner_id, filename, content_type, total_size):
        if self.fail_begin:
            raise StoreUnavailable("Failed to initiate upload")
        key = self.generate_storage_key(owner_id, filename)
        store_upload_id = f"mpu-{uuid4().hex}"
        self.multipart[store_upload_id] = {"bucket": self.temp_bucket, "key": key, "parts": {}}
        return store_upload_id, key

    async def presign_part_url(self, bucket, key, store_upload_id, part_number, expiration=None):
        if not 1 <= part_number <= 10000:
            raise UploadValidationError("Part number must be between 1 and 10000")
        return f"https://s3.test/{bucket}/{key}?uploadId={store_upload_id}&partNumber={part_number}"

    async def presign_put_url(self, bucket, key, content_type, expiration=None):
        return f"https://s3.test/{bucket}/{key}?put"

    async def presign_get_url(self, bucket, key, expiration=None):
        return f"https://s3.test/{bucket}/{key}?get&expires={expiration}"

    async def complete_multipart(self, bucket, key, store_upload_id, parts: Sequence[CompletedPart]):
        if store_upload_id in self.finished:
            # S3 answers a repeated completion of an assembled upload with success
            return
        upload = self.multipart.get(store_upload_id)
        if upload is None:
            raise IncompletePartSet()

        ordered = sorted(parts, key=lambda part: part.part_number)
        for part in ordered:
            stored = upload["parts"].get(part.part_number)
            if stored is None or stored[0] != part.etag:
                raise IncompletePartSet()

        self.completed.append([part.part_number for part in ordered])
        self.objects[(bucket, key)] = b"".join(upload["parts"][part.part_number][1] for part in ordered)
        del self.multipart[store_upload_id]
        self.finished.add(store_upload_id)

    async def abort_multipart(self, bucket, key, store_upload_id) -> bool:
        self.aborted.append(store_upload_id)
        if self.fail_abort:
            return False
        self.multipart.pop(store_upload_id, None)
        return True

    async def list_parts(self, bucket, key, store_upload_id):
        upload = self.multipart.get(store_upload_id)
        if upload is None:
            raise IncompletePartSet()
        return [
            {"part_number": number, "etag": etag, "size": len(data)}
            for number, (etag, data) in sorted(upload["parts"].items())
        ]

    async def copy_object(self, source_bucket, source_key, target_bucket, target_key):
        if self.fail_copy or (source_bucket, source_key) not in self.objects:
            raise StoreUnavailable("Failed to copy object")
        self.objects[(target_bucket, target_key)] = self.objects[(source_bucket, source_key)]

    async def put_object(self, bucket, key, body, content_type, metadata=None):
        self.objects[(bucket, key)] = body

    async def delete_object(self, bucket, key):
        self.deleted.append((bucket, key))
        self.objects.pop((bucket, key), None)

    def object_url(self, bucket, key):
        return f"https://s3.test/{bucket}/{key}"


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite database."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'uploads.db'}",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        s3_temp_bucket=TEMP_BUCKET,
        s3_final_bucket=FINAL_BUCKET,
        stale_upload_sweep_minutes=0
    )


@pytest_asyncio.fixture
async def session_factory(settings):
    engine = create_engine(settings.database_url)
    await init_database(engine)
    yield create_session_factory(engine)
    await close_database(engine)


@pytest.fixture
def repository(session_factory) -> UploadRepository:
    return UploadRepository(session_factory)


@pytest.fixture
def object_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def owner_id():
    return uuid4()


async def create_completed_upload(
    repository: UploadRepository,
    object_store: FakeObjectStore,
    owner_id,
    filename: str = "photo.png",
    content_type: str = "image/png",
    data: bytes = b"image-bytes"
):
    """Create a single-part record whose object sits in the temp bucket, then complete it."""
    key = object_store.generate_storage_key(owner_id, filename)
    object_store.put(object_store.temp_bucket, key, data)
    record = await repository.create(
        owner_id=owner_id,
        storage_key=key,
        bucket=object_store.temp_bucket,
        filename=filename,
        content_type=content_type,
        total_size=len(data),
        upload_kind=UploadKind.SINGLE
    )
    await repository.mark_completed(record.upload_id, owner_id)
    return await repository.get_by_upload_id(record.upload_id, owner_id)
