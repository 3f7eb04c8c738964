"""Base configuration with pydantic-settings.

This module provides a base Settings class that components inherit from.
Each component defines its own Settings with the fields specific to it.

Usage:
    from shared.config import BaseSettings
    from pydantic import Field

    class Settings(BaseSettings):
        api_url: str = api_url_field(required=True)

    settings = Settings()
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings as PydanticBaseSettings, SettingsConfigDict


class BaseSettings(PydanticBaseSettings):
    """Base application settings.

    All fields here are optional with sensible defaults.
    Components inherit this and make required fields mandatory.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # === Optional fields with defaults ===

    # Logging configuration
    service_name: str = Field(
        default="fleet-console",
        description="Component name for structured logging",
    )
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log output format",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v


# === Field definitions for reuse in component configs ===


def redis_url_field(required: bool = True, alias: str = "REDIS_URL"):
    """Redis URL field definition (push invalidation channel)."""
    if required:
        return Field(
            ...,
            alias=alias,
            description="Redis connection URL",
            examples=["redis://redis:6379"],
        )
    return Field(
        default=None,
        alias=alias,
        description="Redis connection URL (optional)",
    )


def api_url_field(required: bool = True, alias: str = "API_URL"):
    """Control plane API URL field definition."""
    if required:
        return Field(
            ...,
            alias=alias,
            description="Control plane API base URL (without trailing /api)",
            examples=["https://panel.example.com"],
        )
    return Field(
        default=None,
        alias=alias,
        description="Control plane API base URL (optional)",
    )


def interval_field(default: float, alias: str, description: str):
    """Polling interval field definition, in seconds."""
    return Field(default=default, gt=0, alias=alias, description=description)
