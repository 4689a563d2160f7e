"""Configuration module for the form engine."""

from .settings import FormEngineSettings, get_settings
from .log_setup import configure_logging

__all__ = [
    "FormEngineSettings",
    "get_settings",
    "configure_logging",
]
