from dataclasses import dataclass

from media_ingest.config import Settings
from media_ingest.errors import ErrorKind, UploadError
from media_ingest.models import MediaFile, Purpose


@dataclass(frozen=True)
class ValidationPolicy:
    max_bytes: int
    allowed_mime_types: tuple[str, ...]

    def max_megabytes(self) -> str:
        return f"{self.max_bytes / 1024 / 1024:g}"

    def allowed_formats(self) -> str:
        return ", ".join(mime.split("/")[-1].upper() for mime in self.allowed_mime_types)


def policy_for(purpose: Purpose, settings: Settings) -> ValidationPolicy:
    # Listing images and profile photos currently share one policy.
    return ValidationPolicy(
        max_bytes=settings.max_upload_bytes,
        allowed_mime_types=tuple(settings.allowed_image_types),
    )


def validate_file(file: MediaFile, policy: ValidationPolicy) -> None:
    if file.size == 0:
        raise UploadError("File is empty", kind=ErrorKind.VALIDATION)

    if file.size > policy.max_bytes:
        raise UploadError(
            f"File size must not exceed {policy.max_megabytes()}MB",
            kind=ErrorKind.VALIDATION,
        )

    if file.content_type not in policy.allowed_mime_types:
        raise UploadError(
            f"Unsupported file format. Allowed formats: {policy.allowed_formats()}",
            kind=ErrorKind.VALIDATION,
        )
