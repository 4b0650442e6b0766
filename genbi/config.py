"""
GenBI Ingest Configuration
==========================

PURPOSE:
    Pydantic-Settings based configuration for the ingestion service.
    All settings can be overridden via environment variables (GENBI_ prefix)
    or a local .env file.

NOTES:
    DATABASE_URL is read directly from the environment by
    genbi.core.database (no prefix), defaulting to SQLite under
    data_directory.
"""

import logging
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Nil UUID used as the owner when no authenticated user is supplied (demo mode)
_SYSTEM_USER_ID = "00000000-0000-0000-0000-000000000000"


class Settings(BaseSettings):
    """Runtime settings for the ingestion pipeline and its HTTP surface."""

    app_name: str = "GenBI Ingest"
    debug: bool = False

    # Local directories
    data_directory: str = "/data"
    storage_directory: str = "/data/storage"   # Root for the local object store
    log_directory: str = "logs"

    # Object store backend
    storage_backend: Literal["local", "supabase"] = "local"
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    storage_timeout_s: float = 30.0
    # Base URL used to build public links for the local backend
    public_base_url: str = "http://localhost:8000/storage"

    # Buckets: hot (user-facing), secure, cold (archival)
    hot_bucket: str = "datasets"
    secure_bucket: str = "secure"
    cold_bucket: str = "cold_storage"

    # Upload limits
    max_upload_size_mb: int = 100
    direct_upload_max_mb: int = 50     # Files above this get retried, and go chunked
    chunk_size_mb: int = 50
    upload_max_attempts: int = 3       # Only for files above direct_upload_max_mb
    upload_retry_delay_s: float = 1.0
    upload_deadline_s: float = 300.0   # No new attempt starts after this

    # Simulated progress while a transfer is in flight
    progress_tick_s: float = 0.3
    progress_cutoff_s: float = 30.0

    # Schema inference / preview
    schema_sample_rows: int = 20
    preview_rows: int = 50
    preview_cache_ttl_s: int = 1800
    preview_cache_maxsize: int = 256
    recovery_cache_ttl_s: int = 3600
    recovery_cache_maxsize: int = 1024

    # Auth context
    system_user_id: str = _SYSTEM_USER_ID
    allow_system_user: bool = True  # Set GENBI_ALLOW_SYSTEM_USER=false to require X-User-Id

    # CORS
    cors_origins: List[str] = ["http://localhost:5173", "http://localhost:8080"]

    class Config:
        env_file = ".env"
        env_prefix = "GENBI_"

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def direct_upload_max_bytes(self) -> int:
        return self.direct_upload_max_mb * 1024 * 1024

    @property
    def chunk_size_bytes(self) -> int:
        return self.chunk_size_mb * 1024 * 1024

    def required_buckets(self) -> List[str]:
        return [self.hot_bucket, self.secure_bucket, self.cold_bucket]


settings = Settings()

if settings.storage_backend == "supabase" and not (settings.supabase_url and settings.supabase_service_key):
    logger.warning(
        "GENBI_STORAGE_BACKEND=supabase but GENBI_SUPABASE_URL / GENBI_SUPABASE_SERVICE_KEY "
        "are not set. Storage calls will fail until they are configured."
    )
