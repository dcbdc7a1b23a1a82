import json

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from media_ingest.config import settings
from media_ingest.dependencies import get_pipeline
from media_ingest.errors import ErrorKind, UploadError
from media_ingest.models import MediaFile, Purpose, UploadRequest
from media_ingest.observability import (
    ERROR_KIND_HEADER,
    RequestMetricsAndLoggingMiddleware,
    configure_logging,
    metrics_registry,
)
from media_ingest.schemas import BatchUploadResponse, DeleteResponse, ErrorResponse, UploadResponse
from media_ingest.security import require_owner, require_verified_user
from media_ingest.services.upload_service import MediaPipeline

ERROR_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTH: 401,
    ErrorKind.TRANSFORM: 422,
    ErrorKind.CONFIGURATION: 502,
    ErrorKind.TRANSIENT: 503,
}

configure_logging()

app = FastAPI(title="Media Ingest API", version="0.1.0")
app.add_middleware(RequestMetricsAndLoggingMiddleware)


@app.exception_handler(UploadError)
async def upload_error_handler(_: Request, exc: UploadError) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.kind, 500),
        content=ErrorResponse(detail=exc.message, kind=exc.kind.value).model_dump(),
        headers={ERROR_KIND_HEADER: exc.kind.value},
    )


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok", "storage_backend": settings.storage_backend}


@app.get("/metrics", include_in_schema=False)
def metrics() -> PlainTextResponse:
    return PlainTextResponse(metrics_registry.render_prometheus())


@app.post("/uploads/listing-images", response_model=UploadResponse)
async def upload_listing_image(
    file: UploadFile = File(...),
    owner_id: str = Depends(require_owner),
    pipeline: MediaPipeline = Depends(get_pipeline),
) -> UploadResponse:
    request = UploadRequest(owner_id=owner_id, file=await _read_media(file), purpose=Purpose.LISTING)
    result = await pipeline.ingest(request)
    return UploadResponse(url=result.unwrap(), path=result.path or "")


@app.post("/uploads/listing-images/batch", response_model=BatchUploadResponse)
async def upload_listing_images(
    files: list[UploadFile] = File(...),
    owner_id: str = Depends(require_owner),
    pipeline: MediaPipeline = Depends(get_pipeline),
) -> BatchUploadResponse:
    pipeline.check_batch_size(len(files))
    media = [await _read_media(file) for file in files]
    urls = await pipeline.upload_listing_images(owner_id, media)
    return BatchUploadResponse(urls=urls)


@app.post("/uploads/listing-images/stream")
async def upload_listing_image_stream(
    file: UploadFile = File(...),
    owner_id: str = Depends(require_owner),
    pipeline: MediaPipeline = Depends(get_pipeline),
) -> StreamingResponse:
    request = UploadRequest(owner_id=owner_id, file=await _read_media(file), purpose=Purpose.LISTING)

    async def event_generator():
        async for event in pipeline.stream(request):
            yield json.dumps(event, ensure_ascii=False) + "\n"

    return StreamingResponse(event_generator(), media_type="application/x-ndjson")


@app.post("/uploads/profile-photo", response_model=UploadResponse)
async def upload_profile_photo(
    file: UploadFile = File(...),
    owner_id: str = Depends(require_owner),
    pipeline: MediaPipeline = Depends(get_pipeline),
) -> UploadResponse:
    request = UploadRequest(owner_id=owner_id, file=await _read_media(file), purpose=Purpose.PROFILE)
    result = await pipeline.ingest(request)
    return UploadResponse(url=result.unwrap(), path=result.path or "")


@app.delete("/uploads/{bucket}/{path:path}", response_model=DeleteResponse)
async def delete_file(
    bucket: str,
    path: str,
    _: str | None = Depends(require_verified_user),
    pipeline: MediaPipeline = Depends(get_pipeline),
) -> DeleteResponse:
    await pipeline.delete_file(bucket, path)
    return DeleteResponse()


async def _read_media(file: UploadFile, max_bytes: int | None = None) -> MediaFile:
    # One byte past the limit is enough for validation to reject the file.
    limit = settings.max_upload_bytes if max_bytes is None else max_bytes
    content = await file.read(limit + 1)
    return MediaFile(
        filename=file.filename or "upload",
        content_type=file.content_type or "application/octet-stream",
        content=content,
    )
