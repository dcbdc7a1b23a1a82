import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _csv(raw: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    supabase_url: str = os.getenv("SUPABASE_URL", "")
    supabase_anon_key: str = os.getenv("SUPABASE_ANON_KEY", "")
    storage_backend: str = os.getenv("STORAGE_BACKEND", "supabase")
    storage_timeout_seconds: float = float(os.getenv("STORAGE_TIMEOUT_SECONDS", "30"))
    listings_bucket: str = os.getenv("LISTINGS_BUCKET", "listings")
    # Profile photos share the listings bucket unless told otherwise.
    profile_bucket: str = os.getenv("PROFILE_BUCKET", "listings")
    max_upload_bytes: int = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))
    allowed_image_types: tuple[str, ...] = _csv(
        os.getenv("ALLOWED_IMAGE_TYPES", "image/jpeg,image/png,image/gif")
    )
    max_listing_images: int = int(os.getenv("MAX_LISTING_IMAGES", "10"))
    upload_max_retries: int = int(os.getenv("UPLOAD_MAX_RETRIES", "3"))
    upload_retry_delay_ms: int = int(os.getenv("UPLOAD_RETRY_DELAY_MS", "2000"))
    retry_configuration_errors: bool = os.getenv("RETRY_CONFIGURATION_ERRORS", "true").lower() == "true"
    upload_cache_control: str = os.getenv("UPLOAD_CACHE_CONTROL", "3600")
    watermark_text: str = os.getenv("WATERMARK_TEXT", "goodeaal.com")
    watermark_font_path: str = os.getenv("WATERMARK_FONT_PATH", "DejaVuSans.ttf")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_json: bool = os.getenv("LOG_JSON", "true").lower() == "true"
    enable_metrics: bool = os.getenv("ENABLE_METRICS", "true").lower() == "true"

    @property
    def buckets(self) -> set[str]:
        return {self.listings_bucket, self.profile_bucket}


settings = Settings()


def get_verified_user_ids() -> set[str]:
    raw = os.getenv("VERIFIED_USER_IDS", "")
    return {user_id.strip() for user_id in raw.split(",") if user_id.strip()}
