from dataclasses import dataclass, field
from enum import Enum

from media_ingest.errors import UploadError


class Purpose(str, Enum):
    LISTING = "listing"
    PROFILE = "profile"

    @property
    def folder(self) -> str:
        return "listings" if self is Purpose.LISTING else "profile"


@dataclass(frozen=True)
class MediaFile:
    filename: str
    content_type: str
    content: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class UploadRequest:
    owner_id: str
    file: MediaFile
    purpose: Purpose


@dataclass(frozen=True)
class Session:
    user_id: str
    access_token: str = field(repr=False)


@dataclass(frozen=True)
class StoredObject:
    bucket: str
    path: str


@dataclass(frozen=True)
class UploadResult:
    url: str | None = None
    path: str | None = None
    error: UploadError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.url is not None

    def unwrap(self) -> str:
        if self.error is not None:
            raise self.error
        if self.url is None:
            raise UploadError("Upload failed - no data returned")
        return self.url
