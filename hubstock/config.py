from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./hubstock.db"

    # Database Connection Pool Settings (ignored for SQLite)
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Hubstock Distribution Core"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Availability Cache Settings
    REDIS_URL: Optional[str] = None  # e.g., "redis://localhost:6379/0"
    CACHE_ENABLED: bool = True
    CACHE_NAMESPACE: str = "hubstock"
    AVAILABILITY_CACHE_TTL: int = 3600  # Seconds a VALID snapshot is kept in the backend
    AVAILABILITY_SERVE_STALE: bool = False  # True: readers of BUILDING/STALE keys get the last snapshot

    # Fee Settings
    FEE_DECIMAL_PLACES: int = 2

    # Background Jobs
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "UTC"
    ORDER_CYCLE_TEARDOWN_INTERVAL_MINUTES: int = 10
    CACHE_WARM_INTERVAL_MINUTES: int = 30

    @field_validator('LOG_LEVEL', mode='before')
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator('FEE_DECIMAL_PLACES')
    @classmethod
    def check_fee_places(cls, v):
        if v < 0 or v > 6:
            raise ValueError("FEE_DECIMAL_PLACES must be between 0 and 6")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
