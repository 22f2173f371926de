"""High-level configuration management for alttext-tools."""
from __future__ import annotations

from .constants import (
    DEFAULT_API_URL,
    DEFAULT_BATCH_SIZE,
    DEFAULT_MODEL,
    DEFAULT_REVIEW_THRESHOLD,
    MAX_BATCH_SIZE,
)
from .loader import export_configuration, get_settings, load_configuration, reset_settings
from .settings import AltTextSettings, EnvironmentOverrides


def get_generation_config():
    """Return a :class:`~alttext.models.GenerationConfig` snapshot of the active settings."""

    return get_settings().to_generation_config()


def clamp_batch_size(value) -> int:
    """Clamp a requested queue batch size to ``1..MAX_BATCH_SIZE``."""

    try:
        size = int(value)
    except (TypeError, ValueError):
        size = DEFAULT_BATCH_SIZE
    if size <= 0:
        size = DEFAULT_BATCH_SIZE
    return min(MAX_BATCH_SIZE, size)


__all__ = [
    "AltTextSettings",
    "DEFAULT_API_URL",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_MODEL",
    "DEFAULT_REVIEW_THRESHOLD",
    "EnvironmentOverrides",
    "MAX_BATCH_SIZE",
    "clamp_batch_size",
    "export_configuration",
    "get_generation_config",
    "get_settings",
    "load_configuration",
    "reset_settings",
]
