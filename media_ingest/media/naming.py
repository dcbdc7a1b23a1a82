import re
import secrets
import time

from media_ingest.models import Purpose

MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
_ILLEGAL_CHARS = re.compile(r"[^a-zA-Z0-9\-_./]")
_DOT_RUNS = re.compile(r"\.{2,}")
_SLASH_RUNS = re.compile(r"/+")


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def extension_for(content_type: str) -> str:
    if content_type in MIME_EXTENSIONS:
        return MIME_EXTENSIONS[content_type]
    subtype = content_type.split("/", 1)[1] if "/" in content_type else ""
    return subtype or "jpg"


def generate_unique_filename(content_type: str, now_ms: int | None = None) -> str:
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    token = _base36(secrets.randbits(64))
    return f"{timestamp}-{token}.{extension_for(content_type)}"


def sanitize_path(path: str) -> str:
    """Make a storage key safe to use in a bucket path and a URL.

    Illegal characters are stripped before the dot/slash collapsing so they
    cannot be used to assemble a traversal sequence afterwards.
    """
    cleaned = _ILLEGAL_CHARS.sub("", path)
    cleaned = _DOT_RUNS.sub(".", cleaned)
    cleaned = _SLASH_RUNS.sub("/", cleaned)
    return cleaned.strip("/")


def build_storage_path(owner_id: str, purpose: Purpose, filename: str) -> str:
    return sanitize_path(f"{owner_id}/{purpose.folder}/{filename}")
