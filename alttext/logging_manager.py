"""Structured JSON logging shared by every alttext module.

Modules log through child loggers of ``alttext``::

    logger = logging_manager.get_logger().getChild("generation")
    logger.info("Generated", extra={"event": "generation.success"})

Values pushed with :func:`log_context` (asset id, queue stage and so on) are
copied onto each record by :class:`LogContextFilter`, so nested calls do not
have to thread them through ``extra`` themselves.
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Iterator, List, Optional

LOGGER_NAME = "alttext"
LOG_DIR_ENV_VAR = "ALTTEXT_LOG_DIR"
LOG_FILENAME = "alttext.log"
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 5
DEFAULT_LOG_LEVEL = logging.INFO

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_STANDARD_ATTRIBUTES = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}

_context: contextvars.ContextVar[Dict[str, object]] = contextvars.ContextVar(
    "alttext_log_context", default={}
)
_configured: Optional[logging.Logger] = None


class JSONLogFormatter(logging.Formatter):
    """One JSON object per record with the pipeline fields promoted to the top level."""

    DEFAULT_FIELDS: tuple[str, ...] = ("asset_id", "event", "stage", "scope", "strategy", "status")

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: Dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extra: Dict[str, object] = {}
        for key, value in vars(record).items():
            if key in self.DEFAULT_FIELDS:
                if value is not None:
                    payload[key] = value
            elif key not in _STANDARD_ATTRIBUTES:
                extra[key] = value
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class LogContextFilter(logging.Filter):
    """Copy the active :func:`log_context` values onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        for key, value in _context.get().items():
            setattr(record, key, value)
        return True


def _handlers() -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    log_dir = os.environ.get(LOG_DIR_ENV_VAR)
    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                directory / LOG_FILENAME,
                maxBytes=LOG_FILE_MAX_BYTES,
                backupCount=LOG_FILE_BACKUPS,
            )
        )
    return handlers


def setup_logging(log_level: int = DEFAULT_LOG_LEVEL) -> logging.Logger:
    """Attach the JSON handlers to the ``alttext`` logger once and set its level."""
    global _configured

    if _configured is None:
        configured = logging.getLogger(LOGGER_NAME)
        configured.propagate = False
        configured.addFilter(LogContextFilter())
        formatter = JSONLogFormatter()
        for handler in _handlers():
            handler.setFormatter(formatter)
            configured.addHandler(handler)
        _configured = configured
    configure_logging_level(log_level=log_level)
    return _configured


def get_logger() -> logging.Logger:
    return _configured if _configured is not None else setup_logging()


def configure_logging_level(debug_enabled: bool = False, log_level: Optional[int] = None) -> int:
    """Set the level on the ``alttext`` logger and its handlers; returns the level applied."""

    if log_level is None:
        log_level = logging.DEBUG if debug_enabled else DEFAULT_LOG_LEVEL
    target = get_logger()
    target.setLevel(log_level)
    for handler in target.handlers:
        handler.setLevel(log_level)
    return log_level


def get_log_context() -> Dict[str, object]:
    return dict(_context.get())


def push_log_context(**values: object) -> contextvars.Token[Dict[str, object]]:
    """Layer ``values`` over the current context, ignoring ``None`` entries."""

    merged = {**_context.get(), **{key: value for key, value in values.items() if value is not None}}
    return _context.set(merged)


def pop_log_context(token: contextvars.Token[Dict[str, object]]) -> None:
    _context.reset(token)


@contextlib.contextmanager
def log_context(**values: object) -> Iterator[None]:
    token = push_log_context(**values)
    try:
        yield
    finally:
        pop_log_context(token)


__all__ = [
    "DEFAULT_LOG_LEVEL",
    "JSONLogFormatter",
    "LOG_DIR_ENV_VAR",
    "LogContextFilter",
    "configure_logging_level",
    "get_log_context",
    "get_logger",
    "log_context",
    "pop_log_context",
    "push_log_context",
    "setup_logging",
]
