"""
Configuration management using Pydantic Settings.
All parameters are loaded from environment variables with sensible defaults.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


import os

# Persistent base path shared by the .env file, logs and uploads
APP_BASE_PATH = Path(os.environ.get(
    "MOVEMENT_INTAKE_BASE_PATH",
    Path.home() / "Documents" / "movement_intake"
))
ENV_FILE_PATH = APP_BASE_PATH / ".env"

ACCEPTED_MEDIA_TYPES = [
    "application/xml",
    "text/xml",
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/webp",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/plain",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: str = Field(default="development")
    app_debug: bool = Field(default=False)
    app_log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)

    # Upload validation
    max_upload_bytes: int = Field(default=10 * 1024 * 1024)
    accepted_media_types: List[str] = Field(
        default_factory=lambda: list(ACCEPTED_MEDIA_TYPES)
    )

    # Draft rules
    default_structured_vat_code: str = Field(default="iva_22")
    enforce_date_order: bool = Field(default=True)

    # AI document analyzer
    analyzer_api_url: str = Field(default="http://127.0.0.1:5000")
    analyzer_timeout_seconds: float = Field(default=60.0)
    analyzer_api_key: str = Field(default="")

    # Storage
    upload_dir: Path = Field(default=Path("./data/uploads"))
    reports_dir: Path = Field(default=Path("./data/reports"))
    registry_path: Optional[Path] = Field(default=None)

    def accepts_media_type(self, media_type: str) -> bool:
        """Check a declared media type against the accepted set (parameters ignored)."""
        base = (media_type or "").split(";", 1)[0].strip().lower()
        return base in {m.lower() for m in self.accepted_media_types}

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
