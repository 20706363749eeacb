"""
Configuration module - Central access point for environment variables.

CRITICAL: Access ALL environment variables through this module.
NEVER use os.getenv() directly in application code.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings

# Environments where transactional sessions are skipped entirely
BYPASS_ENVIRONMENTS = ("test",)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = Field(
        default="",
        description="Primary connection string (postgresql+asyncpg://...). Empty disables the data store."
    )
    DATABASE_REPLICA_URL: str = Field(
        default="",
        description="Optional read replica used by sessions with the 'nearest' read preference"
    )
    DATABASE_POOL_SIZE: int = Field(default=10, ge=1)
    DATABASE_MAX_OVERFLOW: int = Field(default=5, ge=0)
    DATABASE_ECHO: bool = Field(default=False)

    # Transactions
    ENVIRONMENT: str = Field(
        default="production",
        description="Deployment environment. 'test' skips opening real sessions"
    )
    TRANSACTIONS_BYPASS: bool = Field(
        default=False,
        description="Force bypass mode regardless of ENVIRONMENT"
    )

    # Application Settings
    LOG_LEVEL: str = Field(default="INFO")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    @property
    def transactions_bypassed(self) -> bool:
        """True when handlers should run without a live data store."""
        return self.TRANSACTIONS_BYPASS or self.ENVIRONMENT.lower() in BYPASS_ENVIRONMENTS


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    """
    return Settings()
