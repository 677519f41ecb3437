"""Environment-based configuration for discintake."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from DISCINTAKE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DISCINTAKE_",
        case_sensitive=False,
    )

    # Authentication (None = disabled)
    api_key: str | None = None

    # Intake limits
    bucket: str = "listing-images"
    max_items: int = Field(default=10, ge=1)
    max_file_mb: float = Field(default=12.0, gt=0)

    # Image output
    max_edge_px: int = Field(default=1600, ge=1)
    jpeg_quality: float = Field(default=0.85, gt=0, le=1)
    heif_quality: float = Field(default=0.92, gt=0, le=1)
    preview_width: int = Field(default=800, ge=1)
    preview_height: int = Field(default=600, ge=1)
    transform_workers: int = Field(default=1, ge=1)
    retain_source_bytes: bool = True

    # Upload
    upload_timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=1)
    backoff_step: float = Field(default=0.8, ge=0)
    progress_interval: float = Field(default=0.6, gt=0)
    cache_control: str = "31536000, immutable"
    signed_url_ttl: int = Field(default=3600, ge=1)

    # Object storage (S3-compatible)
    use_in_memory_storage: bool = False
    s3_endpoint: str | None = None
    s3_region: str | None = None
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    public_base_url: str | None = None

    @property
    def max_file_bytes(self) -> int:
        return int(self.max_file_mb * 1024 * 1024)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
