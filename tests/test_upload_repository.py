"""Tests for the upload record store."""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import update

from gallery_uploads.core.exceptions import NotActive, RecordNotFound, UploadValidationError
from gallery_uploads.models.upload import ProcessingStatus, UploadKind, UploadRecord, UploadStatus, utcnow

from conftest import TEMP_BUCKET


async def create_multipart(repository, owner_id, upload_id=None, total_size=50 * 1024 * 1024):
    return await repository.create(
        owner_id=owner_id,
        storage_key=f"{owner_id}/1700000000000-video.mp4",
        bucket=TEMP_BUCKET,
        filename="video.mp4",
        content_type="video/mp4",
        total_size=total_size,
        upload_kind=UploadKind.MULTIPART,
        upload_id=upload_id or f"mpu-{uuid4().hex}"
    )


async def create_single(repository, owner_id, total_size=1000):
    return await repository.create(
        owner_id=owner_id,
        storage_key=f"{owner_id}/1700000000000-photo.png",
        bucket=TEMP_BUCKET,
        filename="photo.png",
        content_type="image/png",
        total_size=total_size,
        upload_kind=UploadKind.SINGLE
    )


async def set_created_at(session_factory, upload_id, created_at):
    async with session_factory.begin() as session:
        await session.execute(
            update(UploadRecord).where(UploadRecord.upload_id == upload_id).values(created_at=created_at)
        )


@pytest.mark.asyncio
async def test_create_single_synthesizes_upload_id(repository, owner_id):
    """Single-part uploads get a generated correlation id."""
    record = await create_single(repository, owner_id)

    assert record.upload_id.startswith("single-")
    assert record.status == UploadStatus.ACTIVE.value
    assert record.processing_status == ProcessingStatus.PENDING.value
    assert record.upload_kind == UploadKind.SINGLE.value


@pytest.mark.asyncio
async def test_single_upload_ids_are_unique(repository, owner_id):
    first = await create_single(repository, owner_id)
    second = await create_single(repository, owner_id)

    assert first.upload_id != second.upload_id


@pytest.mark.asyncio
async def test_create_multipart_requires_upload_id(repository, owner_id):
    with pytest.raises(UploadValidationError):
        await repository.create(
            owner_id=owner_id,
            storage_key="k",
            bucket=TEMP_BUCKET,
            filename="video.mp4",
            content_type="video/mp4",
            total_size=10,
            upload_kind=UploadKind.MULTIPART
        )


@pytest.mark.asyncio
async def test_create_rejects_non_positive_size(repository, owner_id):
    with pytest.raises(UploadValidationError):
        await create_single(repository, owner_id, total_size=0)


@pytest.mark.asyncio
async def test_records_are_scoped_by_owner(repository, owner_id):
    """Another owner sees nothing, and cannot transition the record."""
    record = await create_single(repository, owner_id)
    stranger = uuid4()

    assert await repository.get_by_upload_id(record.upload_id, stranger) is None
    assert await repository.get_many([record.upload_id], stranger) == {}
    with pytest.raises(RecordNotFound):
        await repository.mark_aborted(record.upload_id, stranger)


@pytest.mark.asyncio
async def test_get_by_storage_key(repository, owner_id):
    record = await create_single(repository, owner_id)

    found = await repository.get_by_storage_key(record.storage_key, owner_id)

    assert found is not None
    assert found.upload_id == record.upload_id


@pytest.mark.asyncio
async def test_concurrent_part_acknowledgements_are_all_kept(repository, owner_id):
    """Ten parts reported at once all survive."""
    record = await create_multipart(repository, owner_id)

    await asyncio.gather(*[
        repository.upsert_part(record.upload_id, owner_id, number, f"etag-{number}", 1024)
        for number in range(1, 11)
    ])

    stored = await repository.get_by_upload_id(record.upload_id, owner_id)
    assert [part.part_number for part in stored.parts] == list(range(1, 11))
    assert stored.uploaded_size == 10 * 1024


@pytest.mark.asyncio
async def test_reacknowledging_part_replaces_previous_report(repository, owner_id):
    record = await create_multipart(repository, owner_id)

    await repository.upsert_part(record.upload_id, owner_id, 1, "first", 100)
    await repository.upsert_part(record.upload_id, owner_id, 1, "second", 200)

    stored = await repository.get_by_upload_id(record.upload_id, owner_id)
    assert len(stored.parts) == 1
    assert stored.parts[0].etag == "second"
    assert stored.parts[0].size == 200


@pytest.mark.asyncio
async def test_upsert_part_requires_active_multipart_record(repository, owner_id):
    multipart = await create_multipart(repository, owner_id)
    single = await create_single(repository, owner_id)
    await repository.mark_aborted(multipart.upload_id, owner_id)

    with pytest.raises(RecordNotFound):
        await repository.upsert_part(multipart.upload_id, owner_id, 1, "etag", 10)
    with pytest.raises(RecordNotFound):
        await repository.upsert_part(single.upload_id, owner_id, 1, "etag", 10)
    with pytest.raises(RecordNotFound):
        await repository.upsert_part("missing", owner_id, 1, "etag", 10)


@pytest.mark.asyncio
async def test_terminal_status_is_final(repository, owner_id):
    """Completed records cannot be completed again, aborted or failed."""
    record = await create_single(repository, owner_id)
    await repository.mark_completed(record.upload_id, owner_id)

    with pytest.raises(NotActive):
        await repository.mark_completed(record.upload_id, owner_id)
    with pytest.raises(NotActive):
        await repository.mark_aborted(record.upload_id, owner_id)
    with pytest.raises(NotActive):
        await repository.mark_failed(record.upload_id, owner_id)

    stored = await repository.get_by_upload_id(record.upload_id, owner_id)
    assert stored.status == UploadStatus.COMPLETED.value
    assert stored.completed_at is not None


@pytest.mark.asyncio
async def test_unknown_upload_raises_record_not_found(repository, owner_id):
    with pytest.raises(RecordNotFound):
        await repository.mark_completed("missing", owner_id)
    with pytest.raises(RecordNotFound):
        await repository.update_processing_status("missing", owner_id, ProcessingStatus.PROCESSING, 10)


@pytest.mark.asyncio
async def test_mark_processing_failed_only_from_completed(repository, owner_id):
    record = await create_single(repository, owner_id)

    with pytest.raises(NotActive):
        await repository.mark_processing_failed(record.upload_id, owner_id, "boom")

    await repository.mark_completed(record.upload_id, owner_id)
    await repository.mark_processing_failed(record.upload_id, owner_id, "boom")

    stored = await repository.get_by_upload_id(record.upload_id, owner_id)
    assert stored.status == UploadStatus.FAILED.value
    assert stored.processing_status == ProcessingStatus.FAILED.value
    assert stored.processing_message == "boom"


@pytest.mark.asyncio
async def test_processing_progress_is_clamped(repository, owner_id):
    record = await create_single(repository, owner_id)

    await repository.update_processing_status(record.upload_id, owner_id, ProcessingStatus.PROCESSING, 150, "Copying")
    stored = await repository.get_by_upload_id(record.upload_id, owner_id)
    assert stored.processing_progress == 100
    assert stored.processing_message == "Copying"

    await repository.update_processing_status(record.upload_id, owner_id, ProcessingStatus.PROCESSING, -5)
    stored = await repository.get_by_upload_id(record.upload_id, owner_id)
    assert stored.processing_progress == 0
    assert stored.processing_message == "Copying"


@pytest.mark.asyncio
async def test_record_promotion_requires_completed(repository, owner_id):
    record = await create_single(repository, owner_id)

    with pytest.raises(NotActive):
        await repository.record_promotion(record.upload_id, owner_id, record.storage_key, "final")

    await repository.mark_completed(record.upload_id, owner_id)
    await repository.record_promotion(
        record.upload_id,
        owner_id,
        final_storage_key=record.storage_key,
        final_bucket="final",
        thumbnail_key="thumb.jpg"
    )

    stored = await repository.get_by_upload_id(record.upload_id, owner_id)
    assert stored.final_storage_key == record.storage_key
    assert stored.final_bucket == "final"
    assert stored.thumbnail_key == "thumb.jpg"


@pytest.mark.asyncio
async def test_list_active_newest_first(repository, session_factory, owner_id):
    older = await create_single(repository, owner_id)
    newer = await create_single(repository, owner_id)
    finished = await create_single(repository, owner_id)
    await repository.mark_completed(finished.upload_id, owner_id)
    await set_created_at(session_factory, older.upload_id, utcnow() - timedelta(minutes=5))

    active = await repository.list_active(owner_id)

    assert [record.upload_id for record in active] == [newer.upload_id, older.upload_id]


@pytest.mark.asyncio
async def test_reap_stale_fails_only_old_active_records(repository, session_factory, owner_id):
    """A two hour old upload is reaped with a one hour cutoff; a ten minute old one is not."""
    stale = await create_single(repository, owner_id)
    fresh = await create_single(repository, owner_id)
    old_completed = await create_single(repository, owner_id)
    await repository.mark_completed(old_completed.upload_id, owner_id)

    await set_created_at(session_factory, stale.upload_id, utcnow() - timedelta(hours=2))
    await set_created_at(session_factory, fresh.upload_id, utcnow() - timedelta(minutes=10))
    await set_created_at(session_factory, old_completed.upload_id, utcnow() - timedelta(hours=2))

    reaped = await repository.reap_stale(timedelta(hours=1))

    assert reaped == 1
    assert (await repository.get_by_upload_id(stale.upload_id, owner_id)).status == UploadStatus.FAILED.value
    assert (await repository.get_by_upload_id(fresh.upload_id, owner_id)).status == UploadStatus.ACTIVE.value
    assert (
        await repository.get_by_upload_id(old_completed.upload_id, owner_id)
    ).status == UploadStatus.COMPLETED.value
