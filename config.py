"""
Configuration settings for the examdeck study engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default="sqlite:///./data/examdeck.db",
        description="SQLAlchemy connection string (SQLite or PostgreSQL)",
    )
    db_pool_size: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Connection pool size (ignored for SQLite)",
    )
    db_pool_timeout: float = Field(
        default=5.0,
        ge=0,
        description="Seconds to wait for a pooled connection",
    )
    db_echo: bool = Field(
        default=False,
        description="Echo SQL statements to the log",
    )

    # ========================================
    # Storage Behavior
    # ========================================
    storage_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Default per-transaction statement/lock timeout",
    )
    conflict_retries: int = Field(
        default=1,
        ge=0,
        description="Automatic retries of a grading unit of work after a card version conflict",
    )
    transient_retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Caller-side attempts for operations failing with a transient storage error",
    )
    transient_retry_base_delay: float = Field(
        default=0.2,
        ge=0,
        description="Initial backoff delay in seconds (doubles per attempt)",
    )

    # ========================================
    # Progress Snapshots
    # ========================================
    snapshot_version: str = Field(
        default="1.0.0",
        description="Format version stamped on exported snapshots",
    )
    supported_snapshot_versions: list[str] = Field(
        default_factory=lambda: ["1.0.0"],
        description="Snapshot format versions accepted on import",
    )
    import_batch_size: int = Field(
        default=500,
        ge=1,
        description="Maximum snapshot entries replayed per transaction",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    # ========================================
    # API Server
    # ========================================
    api_host: str = Field(
        default="127.0.0.1",
        description="API server host",
    )
    api_port: int = Field(
        default=8100,
        description="API server port",
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed CORS origins for the web front end",
    )

    # ========================================
    # Helper Methods
    # ========================================
    def is_sqlite(self) -> bool:
        """Check if the configured database is SQLite."""
        return self.database_url.startswith("sqlite")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
