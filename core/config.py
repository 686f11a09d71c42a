"""
BILDIT Pixel Configuration Module

Configuration parser with YAML/ENV support and validation.
Uses Pydantic for type validation and settings management.
"""

from __future__ import annotations

import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PIXEL_URL = "https://ai-pixel.bildit.co/pixel.gif"
DEFAULT_ALT = "BILDIT AI Pixel Tracker"

# Absolute http(s) URL that is safe to place in an HTML attribute
PIXEL_URL_PATTERN = r"""^https?://[^\s"'<>]+$"""


class PixelConfig(BaseSettings):
    """Pixel endpoint and rendering defaults."""

    model_config = SettingsConfigDict(env_prefix="BILDIT_PIXEL_")

    url: str = DEFAULT_PIXEL_URL
    alt: str = DEFAULT_ALT
    script_id: str = "bildit-ai-pixel"

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not re.fullmatch(PIXEL_URL_PATTERN, v):
            raise ValueError("Pixel URL must be an absolute http(s) URL")
        return v


class RecorderConfig(BaseSettings):
    """Mouse/click/scroll recorder timings."""

    model_config = SettingsConfigDict(env_prefix="BILDIT_RECORDER_")

    duration: int = 5000
    throttle: int = 1000
    max_movements: int = 10

    @field_validator("duration", "throttle", "max_movements")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Recorder settings must be positive")
        return v


class DispatchConfig(BaseSettings):
    """Server-side beacon dispatch defaults."""

    model_config = SettingsConfigDict(env_prefix="BILDIT_DISPATCH_")

    event: str = "server-bot"
    component: str = "server"
    framework: str = "python"
    source: str = "bildit-ai-pixel"
    source_header: str = "nextjs-server"
    network_enabled: bool = True


class SignatureSpec(BaseModel):
    """A configured bot signature (slug + regular expression)."""

    slug: str
    pattern: str

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as exc:
            raise ValueError(f"Invalid signature pattern: {exc}") from exc
        return v


class BotConfig(BaseSettings):
    """Bot classification settings."""

    model_config = SettingsConfigDict(env_prefix="BILDIT_BOTS_")

    # None keeps the built-in signature list
    signatures: Optional[list[SignatureSpec]] = None


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = "INFO"
    format: str = "json"
    file: Optional[str] = None
    max_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = True

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v.lower() not in ("json", "text"):
            raise ValueError("Log format must be 'json' or 'text'")
        return v.lower()


class APIConfig(BaseSettings):
    """API configuration."""

    model_config = SettingsConfigDict(env_prefix="API_")

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    track_bots: bool = True


class Config(BaseSettings):
    """Main configuration class aggregating all settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="development", alias="BILDIT_ENV")
    debug: bool = Field(default=False, alias="BILDIT_DEBUG")

    # Sub-configurations
    pixel: PixelConfig = Field(default_factory=PixelConfig)
    recorder: RecorderConfig = Field(default_factory=RecorderConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    bots: BotConfig = Field(default_factory=BotConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    api: APIConfig = Field(default_factory=APIConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path) as f:
            yaml_config = yaml.safe_load(f)

        return cls(**yaml_config) if yaml_config else cls()

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()


_config: Optional[Config] = None


def load_config(yaml_path: Optional[str | Path] = None) -> Config:
    """Load and cache the configuration."""
    global _config

    if yaml_path:
        _config = Config.from_yaml(yaml_path)
    else:
        config_path = os.getenv("BILDIT_CONFIG")
        if config_path and Path(config_path).exists():
            _config = Config.from_yaml(config_path)
        else:
            _config = Config.from_env()

    return _config


@lru_cache
def get_config() -> Config:
    """Get the cached configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config(yaml_path: Optional[str | Path] = None) -> Config:
    """Reload configuration (clears cache)."""
    global _config
    get_config.cache_clear()
    _config = None
    return load_config(yaml_path)


def env_debug_enabled() -> bool:
    """Live ``BILDIT_DEBUG`` flag, read on every call rather than cached."""
    return os.getenv("BILDIT_DEBUG", "").strip().lower() in ("1", "true", "yes", "on")
