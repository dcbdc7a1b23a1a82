from functools import lru_cache

from fastapi import Depends

from media_ingest.adapter.memory import InMemoryStorage, TokenSessionProvider
from media_ingest.adapter.supabase import SupabaseSessionProvider, SupabaseStorage
from media_ingest.config import settings
from media_ingest.ports import SessionPort, StoragePort
from media_ingest.security import bearer_token
from media_ingest.services.upload_service import MediaPipeline


@lru_cache(maxsize=1)
def get_storage() -> StoragePort:
    if settings.storage_backend == "memory":
        return InMemoryStorage()
    return SupabaseStorage(
        settings.supabase_url,
        settings.supabase_anon_key,
        timeout_s=settings.storage_timeout_seconds,
    )


def get_session_provider(access_token: str | None = Depends(bearer_token)) -> SessionPort:
    if settings.storage_backend == "memory":
        # Local runs have no auth server: the bearer token is the user id.
        return TokenSessionProvider(access_token, user_id=access_token or "")
    return SupabaseSessionProvider(
        settings.supabase_url,
        settings.supabase_anon_key,
        access_token,
        timeout_s=settings.storage_timeout_seconds,
    )


def get_pipeline(
    storage: StoragePort = Depends(get_storage),
    sessions: SessionPort = Depends(get_session_provider),
) -> MediaPipeline:
    return MediaPipeline(storage, sessions, settings)
