"""
config.py
Application settings (env / .env) and logging setup.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = Field(default="Gym POS")
    LOG_LEVEL: str = Field(default="INFO")

    # SQLite file; relative paths are resolved against the code directory
    DATABASE_PATH: str = Field(default="pos.db")

    # Members
    EXPIRING_SOON_DAYS: int = Field(default=7)
    HISTORY_LIMIT: int = Field(default=50)
    CURRENCY: str = Field(default="DT")

    # Auth
    BCRYPT_ROUNDS: int = Field(default=12)
    DEFAULT_ADMIN_USERNAME: str = Field(default="admin")
    DEFAULT_ADMIN_PASSWORD: str = Field(default="admin123")

    @property
    def database_file(self) -> Path:
        path = Path(self.DATABASE_PATH)
        if not path.is_absolute():
            path = BASE_DIR / path
        return path


settings = Settings()

_configured = False


def setup_logging() -> None:
    global _configured
    if _configured:
        return
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _configured = True
