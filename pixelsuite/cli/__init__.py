"""Command-line entry point for pixelsuite."""

from .main import main

__all__ = ["main"]
