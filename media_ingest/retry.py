import asyncio
import logging
from collections.abc import Awaitable, Callable, Collection
from typing import TypeVar

from media_ingest.errors import ErrorKind, RetriesExhaustedError, UploadError

T = TypeVar("T")

_logger = logging.getLogger("media_ingest.retry")


def backoff_delay(base_delay_s: float, attempt: int) -> float:
    # attempt is the 0-based index of the attempt that just failed
    return base_delay_s * (2 ** (attempt + 1))


async def retry_async(
    operation: Callable[[int], Awaitable[T]],
    *,
    max_attempts: int,
    base_delay_s: float,
    retryable_kinds: Collection[ErrorKind],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_attempt: Callable[[int], None] | None = None,
    log_extra: dict | None = None,
) -> T:
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(max_attempts):
        if on_attempt is not None:
            on_attempt(attempt)
        try:
            return await operation(attempt)
        except UploadError as exc:
            error = exc
        except Exception as exc:  # noqa: BLE001
            error = UploadError(str(exc) or exc.__class__.__name__, kind=ErrorKind.TRANSIENT)
            error.__cause__ = exc

        extra = {**(log_extra or {}), "attempt": attempt + 1, "error_kind": error.kind.value}
        _logger.warning("upload_attempt_failed: %s", error.message, extra=extra)

        if error.kind not in retryable_kinds:
            raise error
        if attempt + 1 >= max_attempts:
            raise RetriesExhaustedError(error, attempts=max_attempts) from error

        delay = backoff_delay(base_delay_s, attempt)
        _logger.info("upload_retry_scheduled", extra={**extra, "delay_ms": int(delay * 1000)})
        await sleep(delay)

    raise RuntimeError("retry loop exited without a result")
