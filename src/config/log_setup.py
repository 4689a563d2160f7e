"""Logging setup for the form engine packages."""

import logging
from typing import Optional

from .settings import FormEngineSettings, get_settings

ENGINE_LOGGERS = ("forms", "validation", "config")


def configure_logging(settings: Optional[FormEngineSettings] = None) -> None:
    """
    Apply the configured log level to the engine's package loggers.

    Handlers are left to the host application; this only sets levels so
    the engine does not override the embedding UI's logging setup.

    Args:
        settings: Settings to read the level from (defaults to cached settings)
    """
    settings = settings or get_settings()
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level)

    for name in ENGINE_LOGGERS:
        logging.getLogger(name).setLevel(level)

    logging.getLogger(__name__).debug(f"Engine log level set to {logging.getLevelName(level)}")
