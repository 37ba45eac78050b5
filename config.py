import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        redis_url: str,
        cache_timeout_secs: float,
        cache_schema_version: str,
        cache_delete_batch_size: int,
        cache_compress_min_bytes: int,
        metrics_window_minutes: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.redis_url = redis_url
        self.cache_timeout_secs = cache_timeout_secs
        self.cache_schema_version = cache_schema_version
        self.cache_delete_batch_size = cache_delete_batch_size
        self.cache_compress_min_bytes = cache_compress_min_bytes
        self.metrics_window_minutes = metrics_window_minutes


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv(
        "LEDGER_DATABASE_URL", f"sqlite+aiosqlite:///{default_db}"
    )
    timezone = os.getenv("LEDGER_TIMEZONE", "Europe/Berlin")
    redis_url = os.getenv("LEDGER_REDIS_URL", "redis://localhost:6379/0")
    cache_timeout_secs = float(os.getenv("LEDGER_CACHE_TIMEOUT_SECS", "0.25"))
    cache_schema_version = os.getenv("LEDGER_CACHE_SCHEMA_VERSION", "v1")
    cache_delete_batch_size = int(os.getenv("LEDGER_CACHE_DELETE_BATCH_SIZE", "100"))
    cache_compress_min_bytes = int(
        os.getenv("LEDGER_CACHE_COMPRESS_MIN_BYTES", "1024")
    )
    metrics_window_minutes = int(os.getenv("LEDGER_METRICS_WINDOW_MINUTES", "60"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        redis_url=redis_url,
        cache_timeout_secs=cache_timeout_secs,
        cache_schema_version=cache_schema_version,
        cache_delete_batch_size=cache_delete_batch_size,
        cache_compress_min_bytes=cache_compress_min_bytes,
        metrics_window_minutes=metrics_window_minutes,
    )
