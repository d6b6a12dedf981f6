"""Shared configuration management for the invoicing backend.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_LOG_LEVEL=debug
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="invoice-admin-backend",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Database configuration
    database_url: str = Field(
        default="sqlite:///./invoices.db",
        description="SQLAlchemy database URL (PostgreSQL or SQLite)",
    )

    # HTTP surface
    admin_token: str = Field(
        default="",
        description="Bearer token required on /api/admin routes (empty disables the check)",
    )
    cors_origins: str = Field(
        default="",
        description="Comma-separated list of allowed CORS origins (empty allows all)",
    )

    # Storage configuration (S3-compatible object storage, e.g. MinIO or Cloudflare R2)
    storage_enabled: bool = Field(
        default=False,
        description="Enable invoice document storage in S3-compatible storage",
    )
    storage_endpoint: str = Field(
        default="localhost:9000",
        description="S3-compatible storage endpoint (host:port)",
    )
    storage_access_key: str = Field(
        default="",
        description="Storage access key (use env var APP_STORAGE_ACCESS_KEY)",
    )
    storage_secret_key: str = Field(
        default="",
        description="Storage secret key (use env var APP_STORAGE_SECRET_KEY)",
    )
    storage_bucket: str = Field(
        default="invoices",
        description="Bucket name for generated invoice documents",
    )
    storage_secure: bool = Field(
        default=False,
        description="Use HTTPS for storage connections",
    )
    storage_region: str | None = Field(
        default=None,
        description="Storage region (R2 expects 'auto')",
    )

    # Transactional email (Resend)
    resend_api_key: str = Field(
        default="",
        description="Resend API key (use env var APP_RESEND_API_KEY)",
    )

    # Queue configuration (arq worker running the scheduled-send sweep)
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL used by the arq worker",
    )
    queue_max_jobs: int = Field(
        default=10,
        ge=1,
        description="Maximum concurrent jobs per worker",
    )
    queue_job_timeout: int = Field(
        default=1800,
        ge=1,
        description="Job timeout in seconds (bounds a whole sweep run)",
    )

    @property
    def cors_origin_list(self) -> list[str]:
        """Allowed CORS origins parsed from the comma-separated setting."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
