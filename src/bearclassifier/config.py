"""Environment-based configuration for BearClassifier."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from BEARCLASSIFIER_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BEARCLASSIFIER_",
        case_sensitive=False,
    )

    # Remote inference service
    base_url: str = "https://qasimkhan001-bear-classifier.hf.space/gradio_api"

    # Per-stage timeouts in seconds
    upload_timeout: float = Field(default=30.0, gt=0)
    submit_timeout: float = Field(default=15.0, gt=0)
    fetch_timeout: float = Field(default=60.0, gt=0)

    # How the result body is decoded
    fetch_mode: Literal["structured", "verbatim"] = "structured"

    # Upload envelope
    upload_filename: str = "uploaded_image.jpg"
    default_media_type: str = "image/jpeg"

    # Input limits
    max_file_size: int = Field(default=20_971_520, ge=1)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
