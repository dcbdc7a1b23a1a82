import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable, Sequence
from dataclasses import dataclass

from media_ingest.config import Settings
from media_ingest.config import settings as default_settings
from media_ingest.errors import ErrorKind, StorageError, UploadError
from media_ingest.media.naming import build_storage_path, generate_unique_filename, sanitize_path
from media_ingest.media.validation import policy_for, validate_file
from media_ingest.media.watermark import apply_watermark
from media_ingest.models import MediaFile, Purpose, Session, UploadRequest, UploadResult
from media_ingest.observability import metrics_registry
from media_ingest.ports import SessionPort, StoragePort
from media_ingest.retry import retry_async

ProgressCallback = Callable[[int], None]

_logger = logging.getLogger("media_ingest.pipeline")


@dataclass(frozen=True)
class ProgressPlan:
    after_validation: int | None
    after_transform: int | None
    attempt_base: int
    attempt_step: int

    def for_attempt(self, attempt: int) -> int:
        # 100 is reserved for a confirmed upload.
        return min(99, self.attempt_base + self.attempt_step * attempt)


PROGRESS_PLANS = {
    Purpose.LISTING: ProgressPlan(after_validation=10, after_transform=30, attempt_base=40, attempt_step=20),
    Purpose.PROFILE: ProgressPlan(after_validation=None, after_transform=None, attempt_base=25, attempt_step=25),
}


def classify_storage_error(exc: StorageError, bucket: str) -> UploadError:
    if exc.status_code == 404:
        return UploadError(
            f"Storage bucket not found. Please ensure the {bucket} bucket exists.",
            kind=ErrorKind.CONFIGURATION,
        )
    # Row-level security rejections arrive as HTTP 400 with statusCode "403" in the body.
    if exc.status_code in (400, 403):
        return UploadError(
            "Permission denied. Please check storage policies.",
            kind=ErrorKind.CONFIGURATION,
        )
    return UploadError(exc.message, kind=ErrorKind.TRANSIENT)


class MediaPipeline:
    """Validate, watermark, name and store user images.

    Stages run strictly in order: validation, watermark (listing images
    only), naming, session check, then the upload with bounded retries.
    Every attempt of one call writes to the same storage path.
    """

    def __init__(
        self,
        storage: StoragePort,
        sessions: SessionPort,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._storage = storage
        self._sessions = sessions
        self._settings = settings or default_settings
        self._sleep = sleep

    def bucket_for(self, purpose: Purpose) -> str:
        if purpose is Purpose.LISTING:
            return self._settings.listings_bucket
        return self._settings.profile_bucket

    def retryable_kinds(self) -> frozenset[ErrorKind]:
        if self._settings.retry_configuration_errors:
            return frozenset({ErrorKind.TRANSIENT, ErrorKind.CONFIGURATION})
        return frozenset({ErrorKind.TRANSIENT})

    async def upload_listing_image(
        self,
        owner_id: str,
        file: MediaFile,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        request = UploadRequest(owner_id=owner_id, file=file, purpose=Purpose.LISTING)
        return (await self.ingest(request, on_progress)).unwrap()

    async def upload_profile_photo(
        self,
        owner_id: str,
        file: MediaFile,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        request = UploadRequest(owner_id=owner_id, file=file, purpose=Purpose.PROFILE)
        return (await self.ingest(request, on_progress)).unwrap()

    def check_batch_size(self, count: int) -> None:
        if count == 0:
            raise UploadError("At least one image is required", kind=ErrorKind.VALIDATION)
        limit = self._settings.max_listing_images
        if count > limit:
            raise UploadError(f"You can upload at most {limit} images per listing", kind=ErrorKind.VALIDATION)

    async def upload_listing_images(
        self,
        owner_id: str,
        files: Sequence[MediaFile],
        on_progress: ProgressCallback | None = None,
    ) -> list[str]:
        """Upload several listing images one after another.

        Per-file progress is folded into one overall percentage, each file
        owning an equal share.
        """
        self.check_batch_size(len(files))

        total = len(files)
        urls: list[str] = []
        for index, file in enumerate(files):

            def file_progress(percent: int, index: int = index) -> None:
                if on_progress is not None:
                    on_progress((index * 100 + percent) // total)

            try:
                urls.append(await self.upload_listing_image(owner_id, file, file_progress))
            except UploadError as exc:
                raise UploadError(
                    f"Failed to upload image {index + 1}: {exc.message}",
                    kind=exc.kind,
                ) from exc
        return urls

    async def ingest(
        self,
        request: UploadRequest,
        on_progress: ProgressCallback | None = None,
    ) -> UploadResult:
        extra = {"owner_id": request.owner_id, "purpose": request.purpose.value}
        try:
            url, path = await self._run(request, on_progress, extra)
        except UploadError as exc:
            _logger.error(
                "upload_failed: %s",
                exc.message,
                extra={**extra, "error_kind": exc.kind.value},
            )
            metrics_registry.record_upload_result(exc.kind.value)
            return UploadResult(error=exc)

        metrics_registry.record_upload_result(None)
        _logger.info("upload_complete", extra={**extra, "storage_path": path})
        return UploadResult(url=url, path=path)

    async def stream(self, request: UploadRequest) -> AsyncGenerator[dict, None]:
        channel: asyncio.Queue[int | None] = asyncio.Queue()

        async def produce() -> UploadResult:
            try:
                return await self.ingest(request, on_progress=channel.put_nowait)
            finally:
                channel.put_nowait(None)

        task = asyncio.create_task(produce())
        try:
            while True:
                percent = await channel.get()
                if percent is None:
                    break
                yield {"type": "progress", "percent": percent}
            result = await task
        finally:
            if not task.done():
                task.cancel()

        if result.error is not None:
            yield {"type": "error", "kind": result.error.kind.value, "message": result.error.message}
        else:
            yield {"type": "final", "data": {"url": result.url, "path": result.path}}

    async def delete_file(self, bucket: str, path: str) -> None:
        if bucket not in self._settings.buckets:
            raise UploadError(f"Unknown storage bucket: {bucket}", kind=ErrorKind.VALIDATION)
        sanitized = sanitize_path(path)
        if not sanitized:
            raise UploadError("Invalid file path", kind=ErrorKind.VALIDATION)

        session = await self._require_session()
        owner_id = sanitized.split("/", 1)[0]
        self._require_owner(session, owner_id)

        try:
            await self._storage.remove(bucket, [sanitized], session=session)
        except Exception as exc:  # noqa: BLE001
            _logger.error(
                "delete_failed: %s",
                exc,
                extra={"bucket": bucket, "storage_path": sanitized},
            )
            raise UploadError("Failed to delete file. Please try again.", kind=ErrorKind.TRANSIENT) from exc

    async def _run(
        self,
        request: UploadRequest,
        on_progress: ProgressCallback | None,
        extra: dict,
    ) -> tuple[str, str]:
        plan = PROGRESS_PLANS[request.purpose]

        def report(percent: int | None) -> None:
            if on_progress is not None and percent is not None:
                on_progress(percent)

        validate_file(request.file, policy_for(request.purpose, self._settings))
        report(plan.after_validation)

        file = request.file
        if request.purpose is Purpose.LISTING:
            file = await asyncio.to_thread(
                apply_watermark,
                file,
                self._settings.watermark_text,
                self._settings.watermark_font_path,
            )
            report(plan.after_transform)

        filename = generate_unique_filename(file.content_type)
        path = build_storage_path(request.owner_id, request.purpose, filename)
        bucket = self.bucket_for(request.purpose)
        extra = {**extra, "bucket": bucket, "storage_path": path}

        session = await self._require_session()
        self._require_owner(session, request.owner_id)

        async def attempt_upload(attempt: int) -> str:
            metrics_registry.record_upload_attempt()
            try:
                stored = await self._storage.upload(
                    bucket,
                    path,
                    file.content,
                    content_type=file.content_type,
                    cache_control=self._settings.upload_cache_control,
                    upsert=True,
                    session=session,
                )
            except StorageError as exc:
                raise classify_storage_error(exc, bucket) from exc
            if stored is None:
                raise UploadError("Upload failed - no data returned", kind=ErrorKind.TRANSIENT)
            return self._storage.get_public_url(bucket, stored.path)

        url = await retry_async(
            attempt_upload,
            max_attempts=self._settings.upload_max_retries,
            base_delay_s=self._settings.upload_retry_delay_ms / 1000,
            retryable_kinds=self.retryable_kinds(),
            sleep=self._sleep,
            on_attempt=lambda attempt: report(plan.for_attempt(attempt)),
            log_extra=extra,
        )
        report(100)
        return url, path

    async def _require_session(self) -> Session:
        try:
            session = await self._sessions.get_session()
        except Exception as exc:  # noqa: BLE001
            raise UploadError("Authentication required for upload", kind=ErrorKind.AUTH) from exc
        if session is None:
            raise UploadError("Authentication required for upload", kind=ErrorKind.AUTH)
        return session

    def _require_owner(self, session: Session, owner_id: str) -> None:
        if session.user_id != owner_id:
            _logger.warning(
                "owner_mismatch",
                extra={"owner_id": owner_id, "user_id": session.user_id},
            )
            raise UploadError("You can only manage files in your own folder", kind=ErrorKind.AUTH)
