"""Utility helpers for sceneify."""

from .logging import configure_logging, resolve_level

__all__ = ["configure_logging", "resolve_level"]
