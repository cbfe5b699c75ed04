"""Runtime settings for metbreed, read from METBREED_* environment variables."""

from __future__ import annotations

import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    LOG_LEVEL: str = "INFO"
    VERBOSE: bool = True
    DIGITS: int = Field(default=4, ge=1)
    ALPHA: float = Field(default=0.05, gt=0, lt=1)
    EXPORT_DIR: str = "."
    IMPUTE_MAX_ITER: int = Field(default=1000, ge=1)
    IMPUTE_TOL: float = Field(default=1e-10, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="METBREED_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
