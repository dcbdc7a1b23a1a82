import io
import os
from dataclasses import dataclass, field, replace

# Keep tests offline: in-memory storage, plain log lines, no user allow-list.
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["LOG_JSON"] = "false"
os.environ["VERIFIED_USER_IDS"] = ""

import pytest
from PIL import Image

from media_ingest.adapter.memory import InMemoryStorage, TokenSessionProvider
from media_ingest.config import settings
from media_ingest.errors import StorageError
from media_ingest.models import MediaFile, Session, StoredObject
from media_ingest.observability import metrics_registry
from media_ingest.services.upload_service import MediaPipeline


@dataclass
class FlakyStorage(InMemoryStorage):
    """Fails the first `failures` uploads with `error`, then behaves normally."""

    failures: int = 0
    error: StorageError = field(default_factory=lambda: StorageError("network unreachable"))
    upload_calls: list[str] = field(default_factory=list)
    remove_calls: list[list[str]] = field(default_factory=list)

    async def upload(self, bucket: str, path: str, content: bytes, **kwargs) -> StoredObject | None:
        self.upload_calls.append(path)
        if len(self.upload_calls) <= self.failures:
            raise self.error
        return await super().upload(bucket, path, content, **kwargs)

    async def remove(self, bucket: str, paths: list[str], session: Session | None = None) -> None:
        self.remove_calls.append(list(paths))
        await super().remove(bucket, paths, session=session)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class RaisingSessionProvider:
    async def get_session(self) -> Session | None:
        raise RuntimeError("auth service unreachable")


def encode_image(
    fmt: str = "JPEG",
    size: tuple[int, int] = (400, 300),
    color: tuple[int, ...] = (20, 20, 20),
    mode: str = "RGB",
) -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics_registry.reset()
    yield


@pytest.fixture
def encode():
    return encode_image


@pytest.fixture
def raising_sessions() -> RaisingSessionProvider:
    return RaisingSessionProvider()


@pytest.fixture
def jpeg_file() -> MediaFile:
    return MediaFile(filename="photo.jpg", content_type="image/jpeg", content=encode_image("JPEG"))


@pytest.fixture
def png_file() -> MediaFile:
    return MediaFile(filename="avatar.png", content_type="image/png", content=encode_image("PNG"))


@pytest.fixture
def storage() -> FlakyStorage:
    return FlakyStorage()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_pipeline(storage: FlakyStorage, sleep: RecordingSleep):
    def _make(
        storage_override: InMemoryStorage | None = None,
        sessions=None,
        **overrides,
    ) -> MediaPipeline:
        return MediaPipeline(
            storage_override if storage_override is not None else storage,
            sessions if sessions is not None else TokenSessionProvider("test-token", user_id="owner-1"),
            replace(settings, **overrides),
            sleep=sleep,
        )

    return _make
