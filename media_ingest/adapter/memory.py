from dataclasses import dataclass, field

from media_ingest.errors import StorageError
from media_ingest.models import Session, StoredObject


@dataclass
class StoredBlob:
    content: bytes
    content_type: str
    cache_control: str


@dataclass
class InMemoryStorage:
    """Process-local object store used for local runs and tests."""

    public_base_url: str = "memory://storage"
    objects: dict[tuple[str, str], StoredBlob] = field(default_factory=dict)

    async def upload(
        self,
        bucket: str,
        path: str,
        content: bytes,
        *,
        content_type: str,
        cache_control: str,
        upsert: bool,
        session: Session | None = None,
    ) -> StoredObject | None:
        key = (bucket, path)
        if key in self.objects and not upsert:
            raise StorageError("The resource already exists", status_code=409)
        self.objects[key] = StoredBlob(content=content, content_type=content_type, cache_control=cache_control)
        return StoredObject(bucket=bucket, path=path)

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url.rstrip('/')}/{bucket}/{path}"

    async def remove(self, bucket: str, paths: list[str], session: Session | None = None) -> None:
        for path in paths:
            self.objects.pop((bucket, path), None)

    def clear(self) -> None:
        self.objects.clear()


@dataclass(frozen=True)
class TokenSessionProvider:
    access_token: str | None
    user_id: str = "local"

    async def get_session(self) -> Session | None:
        if not self.access_token:
            return None
        return Session(user_id=self.user_id, access_token=self.access_token)
