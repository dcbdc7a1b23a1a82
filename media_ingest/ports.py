from typing import Protocol

from media_ingest.models import Session, StoredObject


class StoragePort(Protocol):
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
    ) -> StoredObject | None: ...

    def get_public_url(self, bucket: str, path: str) -> str: ...

    async def remove(self, bucket: str, paths: list[str], session: Session | None = None) -> None: ...


class SessionPort(Protocol):
    async def get_session(self) -> Session | None: ...
