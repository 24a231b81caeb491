"""Application settings loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings

from tripsync.state import ApprovalPolicy

# Values shipped in the example .env; treated the same as "not set"
PLACEHOLDER_URL = "https://your-project.supabase.co"
PLACEHOLDER_KEY = "your-anon-key"


class Settings(BaseSettings):
    """Central configuration — all values from .env or environment."""

    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: str = ""
    LOCAL_DATABASE_URL: str = "sqlite+aiosqlite:///./data/trip_cache.db"
    LOG_LEVEL: str = "INFO"

    REMOTE_TIMEOUT: float = 10.0
    SYNC_INTERVAL: float = 10.0
    RETENTION_DAYS: int = 30

    SHARE_BASE_URL: str = "http://localhost:5173"
    DEFAULT_CURRENCY: str = "EUR"
    ACTIVITY_APPROVAL_POLICY: str = "independent"
    MAX_IMAGE_BYTES: int = 5 * 1024 * 1024

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def remote_configured(self) -> bool:
        """All-or-nothing: both values present and not the shipped placeholders."""
        url = self.SUPABASE_URL.strip()
        key = self.SUPABASE_ANON_KEY.strip()
        if not url or not key:
            return False
        return url != PLACEHOLDER_URL and key != PLACEHOLDER_KEY

    @property
    def approval_policy(self) -> ApprovalPolicy:
        return ApprovalPolicy(self.ACTIVITY_APPROVAL_POLICY.strip().lower())


@lru_cache
def get_settings() -> Settings:
    return Settings()
