"""Configuration helpers for pixelsuite."""

from .loader import DEFAULT_CONFIG_PATH, SECTIONS, get_section, load_config, validate_config

__all__ = ["DEFAULT_CONFIG_PATH", "SECTIONS", "load_config", "validate_config", "get_section"]
