"""BILDIT Pixel Core Module - Configuration, logging and beacon primitives."""

from core.config import Config, get_config
from core.logger import get_logger, setup_logging
from core.params import build_url, normalize_params
from core.surfaces import Surface, resolve_surfaces, resolve_surfaces_without_script

__all__ = [
    "Config",
    "get_config",
    "get_logger",
    "setup_logging",
    "build_url",
    "normalize_params",
    "Surface",
    "resolve_surfaces",
    "resolve_surfaces_without_script",
]
