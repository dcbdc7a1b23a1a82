import json
import logging
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock

from fastapi import Request
from fastapi.responses import Response
from starlette.middleware.base import BaseHTTPMiddleware

from media_ingest.config import settings

ERROR_KIND_HEADER = "x-error-kind"
UPLOAD_PATH_PREFIX = "/uploads"

# Chatty at INFO: Pillow logs every decoder plugin it tries, httpx every request line.
_QUIET_LOGGERS = ("PIL", "httpx", "httpcore", "multipart")
_UNLOGGED_PATHS = {"/health", "/metrics"}
_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line; anything passed through `extra` becomes a field."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key.startswith("_") or value is None:
                continue
            payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level_name: str | None = None) -> None:
    root = logging.getLogger()
    if root.handlers:
        return
    level = getattr(logging, (level_name or settings.log_level).upper(), logging.INFO)
    handler = logging.StreamHandler()
    if settings.log_json:
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    root.setLevel(level)
    root.addHandler(handler)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


@dataclass
class MetricsRegistry:
    requests_total: int = 0
    requests_inflight: int = 0
    requests_by_status: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    request_latency_ms_sum: float = 0.0
    request_latency_ms_count: int = 0
    upload_request_bytes_total: int = 0
    upload_attempts_total: int = 0
    uploads_succeeded_total: int = 0
    uploads_failed_by_kind: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    _lock: Lock = field(default_factory=Lock)

    def record_request(self, status_code: int, latency_ms: float, upload_bytes: int | None = None) -> None:
        with self._lock:
            self.requests_total += 1
            self.requests_by_status[str(status_code)] += 1
            self.request_latency_ms_sum += latency_ms
            self.request_latency_ms_count += 1
            if upload_bytes:
                self.upload_request_bytes_total += upload_bytes

    def set_inflight(self, delta: int) -> None:
        with self._lock:
            self.requests_inflight = max(0, self.requests_inflight + delta)

    def record_upload_attempt(self) -> None:
        with self._lock:
            self.upload_attempts_total += 1

    def record_upload_result(self, error_kind: str | None) -> None:
        with self._lock:
            if error_kind is None:
                self.uploads_succeeded_total += 1
            else:
                self.uploads_failed_by_kind[error_kind] += 1

    def reset(self) -> None:
        with self._lock:
            self.requests_total = 0
            self.requests_inflight = 0
            self.requests_by_status.clear()
            self.request_latency_ms_sum = 0.0
            self.request_latency_ms_count = 0
            self.upload_request_bytes_total = 0
            self.upload_attempts_total = 0
            self.uploads_succeeded_total = 0
            self.uploads_failed_by_kind.clear()

    def render_prometheus(self) -> str:
        with self._lock:
            lines = [
                "# TYPE http_requests_total counter",
                f"http_requests_total {self.requests_total}",
                "# TYPE http_requests_inflight gauge",
                f"http_requests_inflight {self.requests_inflight}",
                "# TYPE http_request_latency_ms_sum counter",
                f"http_request_latency_ms_sum {self.request_latency_ms_sum}",
                "# TYPE http_request_latency_ms_count counter",
                f"http_request_latency_ms_count {self.request_latency_ms_count}",
                "# TYPE http_requests_by_status_total counter",
            ]
            for code, count in sorted(self.requests_by_status.items()):
                lines.append(f'http_requests_by_status_total{{status="{code}"}} {count}')
            lines.extend(
                [
                    "# TYPE media_upload_request_bytes_total counter",
                    f"media_upload_request_bytes_total {self.upload_request_bytes_total}",
                    "# TYPE media_upload_attempts_total counter",
                    f"media_upload_attempts_total {self.upload_attempts_total}",
                    "# TYPE media_uploads_succeeded_total counter",
                    f"media_uploads_succeeded_total {self.uploads_succeeded_total}",
                    "# TYPE media_uploads_failed_total counter",
                ]
            )
            for kind, count in sorted(self.uploads_failed_by_kind.items()):
                lines.append(f'media_uploads_failed_total{{kind="{kind}"}} {count}')
            return "\n".join(lines) + "\n"


metrics_registry = MetricsRegistry()
_access_logger = logging.getLogger("media_ingest.access")


def _upload_bytes(request: Request) -> int | None:
    if not request.url.path.startswith(UPLOAD_PATH_PREFIX) or request.method != "POST":
        return None
    try:
        return int(request.headers.get("content-length", ""))
    except ValueError:
        return None


class RequestMetricsAndLoggingMiddleware(BaseHTTPMiddleware):
    """Access log and request metrics.

    Upload requests also report their body size and, when the pipeline
    rejected them, the error kind the exception handler put on the response.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id
        upload_bytes = _upload_bytes(request)
        start = time.perf_counter()
        metrics_registry.set_inflight(1)

        response: Response | None = None
        try:
            response = await call_next(request)
        except Exception:  # noqa: BLE001
            if settings.enable_metrics:
                metrics_registry.record_request(500, (time.perf_counter() - start) * 1000.0, upload_bytes=upload_bytes)
            _access_logger.exception(
                "request_failed",
                extra={"request_id": request_id, "method": request.method, "path": request.url.path},
            )
            raise
        finally:
            metrics_registry.set_inflight(-1)

        latency_ms = (time.perf_counter() - start) * 1000.0
        if settings.enable_metrics:
            metrics_registry.record_request(response.status_code, latency_ms, upload_bytes=upload_bytes)

        response.headers["x-request-id"] = request_id
        if request.url.path in _UNLOGGED_PATHS:
            return response

        _access_logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "latency_ms": round(latency_ms, 2),
                "owner_id": request.headers.get("x-user-id"),
                "upload_bytes": upload_bytes,
                "error_kind": response.headers.get(ERROR_KIND_HEADER),
            },
        )
        return response
