"""Environment settings and logging setup."""

from __future__ import annotations

import sys
from typing import List, Optional

from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function} - {message}"


class Settings(BaseSettings):
    """Process-wide settings, read from the environment or a ``.env`` file."""

    PROJECT_NAME: str = "traffic-density"
    VERSION: str = "1.0.0"

    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None
    LOG_ROTATION: str = "10 MB"

    model_config = SettingsConfigDict(
        env_prefix="TRAFFIC_DENSITY_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


def configure_logging(settings: Optional[Settings] = None) -> List[int]:
    """Replace loguru's default sink; returns the ids of the installed handlers."""

    settings = settings or Settings()
    logger.remove()
    handlers = [logger.add(sys.stderr, level=settings.LOG_LEVEL.upper(), format=LOG_FORMAT)]
    if settings.LOG_FILE:
        handlers.append(
            logger.add(
                settings.LOG_FILE,
                level=settings.LOG_LEVEL.upper(),
                format=LOG_FORMAT,
                rotation=settings.LOG_ROTATION,
            )
        )
    logger.debug("{} {} logging at {}", settings.PROJECT_NAME, settings.VERSION, settings.LOG_LEVEL)
    return handlers
