"""
Centralized service settings.

Values are read once from the environment (prefix ``SITEPDF_``) or a ``.env``
file and validated by pydantic.
"""

from __future__ import annotations

import logging
import sys
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/120 Safari/537.36"
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SITEPDF_", env_file=".env", extra="ignore")

    OUTPUT_DIR: Path = Field(default=Path("./output"))

    # ---- Crawl ----
    DEFAULT_MAX_PAGES: int = Field(default=10, ge=1)
    MAX_PAGES_LIMIT: int = Field(default=200, ge=1)
    MAX_LINKS_PER_PAGE: int = Field(default=20, ge=1)
    CRAWL_TIMEOUT_S: float = Field(default=30.0, gt=0)
    CRAWL_ENGINE: Literal["playwright", "http"] = "playwright"

    # ---- Render ----
    RENDER_TIMEOUT_S: float = Field(default=45.0, gt=0)
    RENDER_SETTLE_MS: int = Field(default=3000, ge=0)

    USER_AGENT: str = DEFAULT_USER_AGENT

    # ---- Jobs ----
    MAX_CONCURRENT_JOBS: int = Field(default=2, ge=1)
    EVENT_QUEUE_SIZE: int = Field(default=1000, ge=1)

    LOG_LEVEL: str = "INFO"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    """Install a single stdout handler on the root logger.

    Safe to call repeatedly (e.g. under reload).
    """
    root = logging.getLogger()
    root.setLevel(level.upper())

    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
    )
    root.addHandler(handler)
