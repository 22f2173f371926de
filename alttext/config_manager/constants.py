"""Shared constants for the configuration manager package."""
from __future__ import annotations

import os
from pathlib import Path

CONF_DIR = Path(os.environ.get("ALTTEXT_CONF_DIR", "conf"))
DEFAULT_CONFIG_PATH = CONF_DIR / "config.json"
DEFAULT_LOCAL_CONFIG_PATH = CONF_DIR / "config.local.json"
CONFIG_FILE_ENV = "ALTTEXT_CONFIG_FILE"

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_API_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_LANGUAGE = "en"
DEFAULT_TONE = "professional, accessible"
DEFAULT_MAX_WORDS = 16
MIN_MAX_WORDS = 4
DEFAULT_REVIEW_THRESHOLD = 70
DEFAULT_MAX_INLINE_BYTES = 2 * 1024 * 1024
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_TEMPERATURE = 0.3
DEFAULT_MAX_TOKENS = 80
DEFAULT_BATCH_SIZE = 5
MAX_BATCH_SIZE = 20
DEFAULT_STORAGE_RELATIVE = Path("storage")

SENSITIVE_CONFIG_KEYS = {"api_key"}

__all__ = [
    "CONF_DIR",
    "CONFIG_FILE_ENV",
    "DEFAULT_API_URL",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_LANGUAGE",
    "DEFAULT_LOCAL_CONFIG_PATH",
    "DEFAULT_MAX_INLINE_BYTES",
    "DEFAULT_MAX_TOKENS",
    "DEFAULT_MAX_WORDS",
    "DEFAULT_MODEL",
    "DEFAULT_REQUEST_TIMEOUT",
    "DEFAULT_REVIEW_THRESHOLD",
    "DEFAULT_STORAGE_RELATIVE",
    "DEFAULT_TEMPERATURE",
    "DEFAULT_TONE",
    "MAX_BATCH_SIZE",
    "MIN_MAX_WORDS",
    "SENSITIVE_CONFIG_KEYS",
]
