"""Application configuration settings."""

import os
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _get_default_database_url() -> str:
    """Get the default database URL, using the mounted volume path if available."""
    if os.path.isdir("/data"):
        return "sqlite:////data/settlement.db"
    return "sqlite:///./settlement.db"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    PROJECT_NAME: str = "Settlement"
    VERSION: str = "0.1.0"
    DEBUG: bool = True
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    DATABASE_URL: str = _get_default_database_url()

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str | None = None

    # Engine behaviour
    FORMULA_STRICTNESS: Literal["abort", "skip"] = "abort"
    MISSING_PARAMETER_POLICY: Literal["error", "zero"] = "error"
    ENGINE_MAX_WORKERS: int = Field(default=1, ge=1)  # Threads for base resolution


settings = Settings()
