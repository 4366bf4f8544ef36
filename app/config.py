"""Application configuration using pydantic-settings.

Import engine tuning lives under the ``IMPORT_`` variables; the wizard reads
them through ``WizardOptions.from_settings``.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "Rosterly"
    app_env: Literal["development", "staging", "production", "test"] = "development"
    app_base_url: str = "http://localhost:8000"
    app_debug: bool = False
    app_log_level: str = "INFO"

    database_url: str = "postgresql://localhost:5432/rosterly"
    database_pool_size: int = 20
    database_max_overflow: int = 10

    max_upload_size_mb: int = Field(10, gt=0)

    # Rows written per batch, and the pause between batches
    import_batch_size: int = Field(10, ge=1)
    import_batch_delay_ms: int = Field(100, ge=0)
    import_operation_timeout_seconds: float = Field(30.0, gt=0)
    import_max_rows: int = Field(5000, ge=1)
    import_search_min_term_length: int = Field(2, ge=1)
    import_failure_detail_limit: int = Field(5, ge=0)
    import_preview_rows: int = Field(5, ge=0)
    import_session_ttl_minutes: int = Field(60, ge=1)

    @field_validator("app_log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def async_database_url(self) -> str:
        """Get database URL with the asyncpg driver for async SQLAlchemy."""
        url = self.database_url
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        return url

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def import_batch_delay_seconds(self) -> float:
        return self.import_batch_delay_ms / 1000


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
