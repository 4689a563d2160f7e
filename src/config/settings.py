"""Application settings using Pydantic Settings.

Centralized configuration for the form engine. Every value can be
overridden through a ``FORMS_``-prefixed environment variable or a
``.env`` file, e.g.::

    FORMS_LOOKUP_DEBOUNCE_MS=250
    FORMS_TRAVEL_KM_RATE=1.35
"""

import logging
from decimal import Decimal
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class FormEngineSettings(BaseSettings):
    """Main form engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="FORMS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application info
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level for the engine packages")

    # Enrichment
    lookup_debounce_ms: int = Field(
        default=400,
        ge=0,
        description="Quiet period before a lookup fires after the trigger field completes",
    )
    postal_code_length: int = Field(default=8, description="Digits in a complete postal code")

    # Display
    currency_symbol: str = Field(default="R$", description="Symbol used when rendering money")

    # Derived fields
    travel_km_rate: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Cost per travelled km; 0 disables the travel cost computation",
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {value}")
        return level

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment in ("production", "prod", "staging")


@lru_cache
def get_settings() -> FormEngineSettings:
    """
    Get cached form engine settings instance.

    Returns:
        FormEngineSettings: Cached settings loaded from environment.
    """
    return FormEngineSettings()
