"""Application configuration using Pydantic Settings.

Values are read from the process environment and an optional ``.env`` file.
Engine defaults (timeouts, retry delays, parallelism, job retention) live
here so the orchestrator and job processor share a single source.
"""

from functools import lru_cache
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    All settings can be overridden via environment variables.
    Environment variables take precedence over .env file values.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    PROJECT_NAME: str = "Blockflow Workflow Engine"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    API_V1_PREFIX: str = "/api/v1"

    # CORS
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def parse_allowed_origins(cls, v: Any) -> list[str]:
        """Parse ALLOWED_ORIGINS from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, list):
            return v
        return ["http://localhost:3000"]

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./blockflow.db"
    DATABASE_ECHO: bool = False

    # Workflow engine
    WORKFLOW_DEFAULT_NODE_TIMEOUT: float = 60.0  # seconds
    WORKFLOW_MAX_PARALLEL_NODES: int = 10
    WORKFLOW_DEFAULT_RETRY_DELAY: float = 1.0  # seconds
    WORKFLOW_MAX_RETRY_DELAY: float = 60.0  # seconds

    # Job processor
    JOB_MAX_JOBS: int = 100
    JOB_MAX_AGE_HOURS: int = 24
    JOB_CLEANUP_INTERVAL_SECONDS: int = 300

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str | None = None  # Defaults to logs/blockflow.log
    LOG_JSON_FORMAT: bool = True
    LOG_SENSITIVE_FILTER: bool = True

    @field_validator("WORKFLOW_MAX_PARALLEL_NODES", "JOB_MAX_JOBS")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Reject non-positive limits."""
        if v < 1:
            raise ValueError("must be at least 1")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Settings are cached after first load for performance.
    """
    return Settings()


# Global settings instance
settings = get_settings()
