"""Accessibility alt text generation with quality review and a background queue."""

from .environment import load_environment

# Load .env files on import so entry points and embedded callers see the same
# ALTTEXT_* variables.
load_environment()

__version__ = "1.0.0"

__all__ = ["__version__", "load_environment"]
