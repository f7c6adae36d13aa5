"""Application configuration."""

from pydantic import field_validator
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://portal:portal123@db:5432/portal"

    # ClientTether API
    CLIENTTETHER_API_URL: str = "https://api.clienttether.com"
    CLIENTTETHER_TIMEOUT_SECONDS: float = 30.0

    # Retry policy for remote fetches
    SYNC_RETRY_ATTEMPTS: int = 3
    SYNC_RETRY_BASE_DELAY_SECONDS: float = 1.0

    # Scheduling
    SYNC_CRON: str = "0 * * * *"  # hourly, top of the hour
    SYNC_RUN_ON_STARTUP: bool = True
    SYNC_CONCURRENCY: int = 1
    SYNC_TENANT_TIMEOUT_SECONDS: Optional[float] = None
    ENABLE_SCHEDULER: bool = False

    # Weekly snapshots (date.weekday(): Monday=0 ... Sunday=6)
    SNAPSHOT_WEEKDAY: int = 6

    # Sync status
    SYNC_STALE_AFTER_HOURS: float = 2.0

    # Normalization rules
    HOT_LIST_RULE: str = "stage"
    HOT_LIST_STAGES: List[str] = [
        "FDD Sent",
        "FDD Review",
        "Discovery Day",
        "Validation",
        "Approved",
        "Awarded",
    ]
    HOT_LIST_MIN_PROBABILITY: int = 50
    LEAD_PROSPECT_CONTACT_TYPE: str = "1"

    # Security
    SYNC_ADMIN_TOKEN: Optional[str] = None

    @field_validator("SYNC_RETRY_ATTEMPTS", "SYNC_CONCURRENCY")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @field_validator("SNAPSHOT_WEEKDAY")
    @classmethod
    def _valid_weekday(cls, value: int) -> int:
        if not 0 <= value <= 6:
            raise ValueError("must be between 0 (Monday) and 6 (Sunday)")
        return value

    @field_validator("HOT_LIST_RULE")
    @classmethod
    def _valid_hot_list_rule(cls, value: str) -> str:
        value = value.lower()
        if value not in ("stage", "probability"):
            raise ValueError("must be 'stage' or 'probability'")
        return value

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
