"""Tests for the S3 service using botocore's Stubber."""

import boto3
import pytest
from botocore.stub import ANY, Stubber

from gallery_uploads.config import Settings
from gallery_uploads.core.exceptions import IncompletePartSet, StoreUnavailable, UploadValidationError
from gallery_uploads.services.s3_service import CompletedPart, S3Service

from conftest import FINAL_BUCKET, TEMP_BUCKET


@pytest.fixture
def s3_client():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing"
    )


@pytest.fixture
def s3_service(settings, s3_client):
    return S3Service(settings, s3_client=s3_client)


@pytest.fixture
def stubber(s3_client):
    with Stubber(s3_client) as stub:
        yield stub
        stub.assert_no_pending_responses()


def test_requires_configuration_without_client():
    with pytest.raises(ValueError):
        S3Service(Settings(_env_file=None, s3_temp_bucket=None, s3_final_bucket=None))


def test_storage_key_is_owner_prefixed(s3_service):
    key = s3_service.generate_storage_key("owner-1", "photo.png")

    prefix, rest = key.split("/", 1)
    timestamp, filename = rest.split("-", 1)
    assert prefix == "owner-1"
    assert timestamp.isdigit()
    assert filename == "photo.png"


@pytest.mark.asyncio
async def test_begin_multipart_returns_upload_id_and_key(s3_service, stubber):
    stubber.add_response(
        "create_multipart_upload",
        {"Bucket": TEMP_BUCKET, "Key": "owner/1-video.mp4", "UploadId": "mpu-123"},
        expected_params={
            "Bucket": TEMP_BUCKET,
            "Key": ANY,
            "ContentType": "video/mp4",
            "Metadata": {
                "user-id": "owner",
                "original-filename": "video.mp4",
                "total-size": "10000000"
            }
        }
    )

    store_upload_id, key = await s3_service.begin_multipart("owner", "video.mp4", "video/mp4", 10_000_000)

    assert store_upload_id == "mpu-123"
    assert key.startswith("owner/")
    assert key.endswith("-video.mp4")


@pytest.mark.asyncio
async def test_begin_multipart_failure_is_store_unavailable(s3_service, stubber):
    stubber.add_client_error("create_multipart_upload", service_error_code="ServiceUnavailable", http_status_code=503)

    with pytest.raises(StoreUnavailable):
        await s3_service.begin_multipart("owner", "video.mp4", "video/mp4", 10_000_000)


@pytest.mark.asyncio
async def test_complete_multipart_submits_parts_in_order(s3_service, stubber):
    stubber.add_response(
        "complete_multipart_upload",
        {},
        expected_params={
            "Bucket": TEMP_BUCKET,
            "Key": "owner/1-video.mp4",
            "UploadId": "mpu-123",
            "MultipartUpload": {
                "Parts": [
                    {"PartNumber": 1, "ETag": "e1"},
                    {"PartNumber": 2, "ETag": "e2"},
                    {"PartNumber": 3, "ETag": "e3"}
                ]
            }
        }
    )

    await s3_service.complete_multipart(
        TEMP_BUCKET,
        "owner/1-video.mp4",
        "mpu-123",
        [CompletedPart(3, "e3"), CompletedPart(1, "e1"), CompletedPart(2, "e2")]
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["InvalidPart", "InvalidPartOrder", "EntityTooSmall", "NoSuchUpload"])
async def test_complete_multipart_part_errors_are_incomplete_part_set(s3_service, stubber, code):
    stubber.add_client_error("complete_multipart_upload", service_error_code=code, http_status_code=400)

    with pytest.raises(IncompletePartSet):
        await s3_service.complete_multipart(TEMP_BUCKET, "k", "mpu-123", [CompletedPart(1, "e1")])


@pytest.mark.asyncio
async def test_complete_multipart_other_errors_are_store_unavailable(s3_service, stubber):
    stubber.add_client_error("complete_multipart_upload", service_error_code="InternalError", http_status_code=500)

    with pytest.raises(StoreUnavailable):
        await s3_service.complete_multipart(TEMP_BUCKET, "k", "mpu-123", [CompletedPart(1, "e1")])


@pytest.mark.asyncio
async def test_abort_multipart_never_raises(s3_service, stubber):
    stubber.add_response(
        "abort_multipart_upload",
        {},
        expected_params={"Bucket": TEMP_BUCKET, "Key": "k", "UploadId": "mpu-1"}
    )
    stubber.add_client_error("abort_multipart_upload", service_error_code="NoSuchUpload", http_status_code=404)

    assert await s3_service.abort_multipart(TEMP_BUCKET, "k", "mpu-1") is True
    assert await s3_service.abort_multipart(TEMP_BUCKET, "k", "mpu-2") is False


@pytest.mark.asyncio
async def test_list_parts_follows_pagination(s3_service, stubber):
    stubber.add_response(
        "list_parts",
        {
            "Parts": [{"PartNumber": 1, "ETag": '"e1"', "Size": 5}],
            "IsTruncated": True,
            "NextPartNumberMarker": 1
        },
        expected_params={"Bucket": TEMP_BUCKET, "Key": "k", "UploadId": "mpu-1", "PartNumberMarker": 0}
    )
    stubber.add_response(
        "list_parts",
        {
            "Parts": [{"PartNumber": 2, "ETag": '"e2"', "Size": 3}],
            "IsTruncated": False
        },
        expected_params={"Bucket": TEMP_BUCKET, "Key": "k", "UploadId": "mpu-1", "PartNumberMarker": 1}
    )

    parts = await s3_service.list_parts(TEMP_BUCKET, "k", "mpu-1")

    assert parts == [
        {"part_number": 1, "etag": "e1", "size": 5},
        {"part_number": 2, "etag": "e2", "size": 3}
    ]


@pytest.mark.asyncio
async def test_copy_object_preserves_metadata(s3_service, stubber):
    stubber.add_response(
        "copy_object",
        {},
        expected_params={
            "Bucket": FINAL_BUCKET,
            "Key": "owner/1-photo.png",
            "CopySource": ANY,
            "MetadataDirective": "COPY"
        }
    )

    await s3_service.copy_object(TEMP_BUCKET, "owner/1-photo.png", FINAL_BUCKET, "owner/1-photo.png")


@pytest.mark.asyncio
async def test_copy_object_failure_is_store_unavailable(s3_service, stubber):
    stubber.add_client_error("copy_object", service_error_code="NoSuchKey", http_status_code=404)

    with pytest.raises(StoreUnavailable):
        await s3_service.copy_object(TEMP_BUCKET, "missing", FINAL_BUCKET, "missing")


@pytest.mark.asyncio
async def test_delete_missing_object_is_not_an_error(s3_service, stubber):
    stubber.add_client_error("delete_object", service_error_code="NoSuchKey", http_status_code=404)

    await s3_service.delete_object(FINAL_BUCKET, "missing")


@pytest.mark.asyncio
async def test_delete_failure_is_store_unavailable(s3_service, stubber):
    stubber.add_client_error("delete_object", service_error_code="AccessDenied", http_status_code=403)

    with pytest.raises(StoreUnavailable):
        await s3_service.delete_object(FINAL_BUCKET, "k")


@pytest.mark.asyncio
@pytest.mark.parametrize("part_number", [0, 10001])
async def test_presign_part_url_rejects_out_of_range_part(s3_service, part_number):
    with pytest.raises(UploadValidationError):
        await s3_service.presign_part_url(TEMP_BUCKET, "k", "mpu-1", part_number)


@pytest.mark.asyncio
async def test_presign_part_url_targets_part(s3_service):
    url = await s3_service.presign_part_url(TEMP_BUCKET, "owner/1-video.mp4", "mpu-1", 3)

    assert "partNumber=3" in url
    assert "uploadId=mpu-1" in url


def test_object_url_honours_custom_endpoint(settings, s3_client):
    settings.aws_endpoint_url = "http://localhost:9000/"
    service = S3Service(settings, s3_client=s3_client)

    assert service.object_url(FINAL_BUCKET, "a/b.jpg") == f"http://localhost:9000/{FINAL_BUCKET}/a/b.jpg"


def test_object_url_defaults_to_aws(s3_service):
    assert s3_service.object_url(FINAL_BUCKET, "a/b.jpg") == f"https://{FINAL_BUCKET}.s3.us-east-1.amazonaws.com/a/b.jpg"
