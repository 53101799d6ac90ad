"""Configuration management."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings pulled from WGEN_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="WGEN_", env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Live pipeline
    preview_size: int = Field(default=128, ge=16, le=2048, description="Side of the live preview map")
    default_seed: int = Field(default=0xDEADBEEF, ge=0, description="Seed of a new project")
    min_progress_step: float = Field(
        default=0.01, gt=0.0, le=1.0, description="Smallest progress change reported by long steps"
    )
    fbm_workers: Optional[int] = Field(default=None, ge=1, description="Fbm thread count (default: cpu count)")

    # Export
    export_dir: str = Field(default=".", description="Default directory for exported tiles")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Logging format (console or json)")


settings = Settings()
