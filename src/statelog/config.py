"""
Settings are read from the environment (a ``.env`` file is honoured).

    STATELOG_DATABASE_URL   falls back to DATABASE_URL
    STATELOG_NAMESPACE      schema holding the shared log infrastructure
    STATELOG_LOG_LEVEL
    STATELOG_HOST / STATELOG_PORT   used by ``statelog serve``
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_NAMESPACE = "statelog"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="STATELOG_",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    database_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("STATELOG_DATABASE_URL", "DATABASE_URL"),
    )
    namespace: str = DEFAULT_NAMESPACE
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000


def get_settings() -> Settings:
    load_dotenv()
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
