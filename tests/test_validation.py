import pytest

from media_ingest.config import settings
from media_ingest.errors import ErrorKind, UploadError
from media_ingest.media.validation import ValidationPolicy, policy_for, validate_file
from media_ingest.models import MediaFile, Purpose

POLICY = ValidationPolicy(max_bytes=5 * 1024 * 1024, allowed_mime_types=("image/jpeg", "image/png", "image/gif"))


def test_oversized_file_names_the_megabyte_limit() -> None:
    file = MediaFile("big.jpg", "image/jpeg", b"x" * (POLICY.max_bytes + 1))

    with pytest.raises(UploadError) as err:
        validate_file(file, POLICY)

    assert err.value.kind is ErrorKind.VALIDATION
    assert str(err.value) == "File size must not exceed 5MB"


def test_file_exactly_at_limit_passes() -> None:
    validate_file(MediaFile("ok.jpg", "image/jpeg", b"x" * POLICY.max_bytes), POLICY)


def test_fractional_limit_is_printed_without_rounding() -> None:
    policy = ValidationPolicy(max_bytes=int(2.5 * 1024 * 1024), allowed_mime_types=("image/png",))

    with pytest.raises(UploadError, match="2.5MB"):
        validate_file(MediaFile("a.png", "image/png", b"x" * (policy.max_bytes + 10)), policy)


def test_disallowed_type_lists_accepted_formats() -> None:
    with pytest.raises(UploadError) as err:
        validate_file(MediaFile("doc.pdf", "application/pdf", b"%PDF-1.7"), POLICY)

    assert err.value.kind is ErrorKind.VALIDATION
    assert "Allowed formats: JPEG, PNG, GIF" in str(err.value)


def test_empty_file_is_rejected() -> None:
    with pytest.raises(UploadError, match="empty"):
        validate_file(MediaFile("empty.jpg", "image/jpeg", b""), POLICY)


@pytest.mark.parametrize("purpose", [Purpose.LISTING, Purpose.PROFILE])
def test_both_purposes_share_the_configured_policy(purpose: Purpose) -> None:
    policy = policy_for(purpose, settings)

    assert policy.max_bytes == settings.max_upload_bytes
    assert policy.allowed_mime_types == settings.allowed_image_types


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["upload_listing_image", "upload_profile_photo"])
async def test_pipeline_rejects_oversized_file_before_any_io(make_pipeline, storage, method) -> None:
    pipeline = make_pipeline(max_upload_bytes=1024 * 1024)
    progress: list[int] = []

    with pytest.raises(UploadError) as err:
        await getattr(pipeline, method)("owner-1", MediaFile("a.jpg", "image/jpeg", b"x" * (1024 * 1024 + 1)), progress.append)

    assert str(err.value) == "File size must not exceed 1MB"
    assert storage.upload_calls == []
    assert progress == []


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["upload_listing_image", "upload_profile_photo"])
async def test_pipeline_rejects_disallowed_type_before_any_io(make_pipeline, storage, method) -> None:
    pipeline = make_pipeline()

    with pytest.raises(UploadError) as err:
        await getattr(pipeline, method)("owner-1", MediaFile("a.webp", "image/webp", b"RIFF0000WEBP"))

    assert err.value.kind is ErrorKind.VALIDATION
    assert "JPEG, PNG, GIF" in str(err.value)
    assert storage.upload_calls == []
