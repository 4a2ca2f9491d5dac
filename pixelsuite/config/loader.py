"""YAML configuration loading for pixelsuite.

A user configuration file only needs the keys it changes: it is layered over
the bundled ``config.yaml``, and command line overrides are layered over both.
"""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional, Union

import yaml

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "config.yaml"
SECTIONS = ("logging", "watermark", "compression", "batch")


def _merge_dicts(base: MutableMapping[str, Any], overrides: Mapping[str, Any]) -> None:
    """Recursively merge ``overrides`` into ``base`` in-place."""
    for key, value in overrides.items():
        current = base.get(key)
        if isinstance(current, MutableMapping) and isinstance(value, Mapping):
            _merge_dicts(current, value)
        else:
            base[key] = copy.deepcopy(value)


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration root must be a mapping: {path}")
    return data


def validate_config(config: MutableMapping[str, Any], source: str = "<config>") -> None:
    """Check the section layout in place; empty sections become ``{}``."""
    for name in SECTIONS:
        section = config.get(name)
        if section is None:
            config[name] = {}
        elif not isinstance(section, Mapping):
            raise ValueError(f"Section '{name}' in {source} must be a mapping, got {type(section).__name__}.")
    unknown = sorted(str(key) for key in config if key not in SECTIONS)
    if unknown:
        logger.warning("Ignoring unknown configuration section(s) in %s: %s", source, ", ".join(unknown))


def load_config(path: Optional[PathLike] = None, *, overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Return the bundled defaults, updated by the YAML file at ``path`` and then by ``overrides``."""
    config = _read_yaml(DEFAULT_CONFIG_PATH)
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if config_path.resolve() != DEFAULT_CONFIG_PATH:
        user = _read_yaml(config_path)
        validate_config(user, str(config_path))
        _merge_dicts(config, user)
    if overrides:
        _merge_dicts(config, overrides)
    validate_config(config, str(config_path))
    return config


def get_section(config: Mapping[str, Any], section: str, default: Optional[Any] = None) -> Any:
    """Return a deep copy of one configuration section."""
    return copy.deepcopy(config.get(section, default))


__all__ = ["load_config", "validate_config", "get_section", "DEFAULT_CONFIG_PATH", "SECTIONS"]
