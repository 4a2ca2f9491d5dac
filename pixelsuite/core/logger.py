"""Logging setup driven by the ``logging`` section of the YAML configuration."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Mapping

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
CONSOLE_FORMAT = "%(levelname)s | %(name)s | %(message)s"
FALLBACK_LOG_DIR = Path("./logs")


def _resolve_log_path(filename: str) -> Path:
    expanded = Path(os.path.expandvars(filename)).expanduser()
    try:
        expanded.parent.mkdir(parents=True, exist_ok=True)
        return expanded
    except OSError:
        FALLBACK_LOG_DIR.mkdir(parents=True, exist_ok=True)
        return FALLBACK_LOG_DIR / expanded.name


def _has_console_handler(root: logging.Logger) -> bool:
    # FileHandler subclasses StreamHandler, so it must not count here.
    return any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in root.handlers
    )


def _add_console_handler(root: logging.Logger, settings: Mapping[str, object]) -> None:
    if _has_console_handler(root):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(str(settings.get("format", CONSOLE_FORMAT))))
    if settings.get("level"):
        handler.setLevel(str(settings["level"]).upper())
    root.addHandler(handler)


def _add_file_handler(root: logging.Logger, settings: Mapping[str, object]) -> None:
    filename = settings.get("filename")
    if not filename:
        raise ValueError("File logging enabled but no filename provided.")
    log_path = _resolve_log_path(str(filename))
    for handler in root.handlers:
        if isinstance(handler, RotatingFileHandler) and Path(handler.baseFilename).resolve() == log_path.resolve():
            return
    handler = RotatingFileHandler(
        log_path,
        maxBytes=int(settings.get("rotate_bytes", 1_048_576)),  # type: ignore[arg-type]
        backupCount=int(settings.get("backups", 5)),  # type: ignore[arg-type]
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(str(settings.get("format", DEFAULT_FORMAT))))
    root.addHandler(handler)


def setup_logging(settings: Mapping[str, object], *, force: bool = False) -> None:
    """Configure root logging handlers from configuration settings.

    With ``force`` every existing root handler is closed and removed first,
    which lets the CLI re-run configuration within one process.
    """
    root = logging.getLogger()
    root.setLevel(str(settings.get("level", "INFO")).upper())

    if force:
        for handler in list(root.handlers):
            handler.close()
            root.removeHandler(handler)

    console = settings.get("console", {}) or {}
    if console.get("enabled", True):  # type: ignore[union-attr]
        _add_console_handler(root, console)  # type: ignore[arg-type]

    file_settings = settings.get("file", {}) or {}
    if file_settings.get("enabled", False):  # type: ignore[union-attr]
        _add_file_handler(root, file_settings)  # type: ignore[arg-type]


__all__ = ["setup_logging", "DEFAULT_FORMAT"]
