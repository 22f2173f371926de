"""Filesystem-backed persistence for queue state and the usage ledger."""

from __future__ import annotations

import copy
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol

from .. import logging_manager
from ..config_manager.constants import DEFAULT_STORAGE_RELATIVE

_LOGGER = logging_manager.get_logger().getChild("jobs.persistence")
_STORAGE_ENV_VAR = "ALTTEXT_STORAGE_DIR"


class StateStore(Protocol):
    """Read-modify-write store for small JSON records keyed by name."""

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    def save(self, key: str, payload: Mapping[str, Any]) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


def _resolve_storage_dir(storage_dir: Optional[os.PathLike[str] | str] = None) -> Path:
    """Return the directory where state records should be stored."""

    if storage_dir is not None:
        candidate = Path(storage_dir)
    else:
        override = os.environ.get(_STORAGE_ENV_VAR)
        candidate = Path(override) if override else DEFAULT_STORAGE_RELATIVE
    if not candidate.is_absolute():
        candidate = Path.cwd() / candidate
    candidate.mkdir(parents=True, exist_ok=True)
    return candidate


def _sanitize_key(key: str) -> str:
    allowed = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_")
    return "".join(ch if ch in allowed else "_" for ch in key)


class JsonStateStore:
    """Persist each record as ``<storage>/<key>.json`` using atomic writes."""

    def __init__(self, storage_dir: Optional[os.PathLike[str] | str] = None) -> None:
        self._root = _resolve_storage_dir(storage_dir)
        self._lock = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        return self._root / f"{_sanitize_key(key)}.json"

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        path = self.path_for(key)
        try:
            with path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as exc:
            _LOGGER.warning(
                "Ignoring corrupt state record %s",
                path,
                extra={"event": "state.corrupt", "error": str(exc)},
            )
            return None
        if not isinstance(payload, dict):
            return None
        return payload

    def save(self, key: str, payload: Mapping[str, Any]) -> None:
        path = self.path_for(key)
        serialized = json.dumps(dict(payload), ensure_ascii=False, sort_keys=True, indent=2)
        temp_path: Path | None = None
        with self._lock:
            try:
                with tempfile.NamedTemporaryFile(
                    "w", encoding="utf-8", dir=path.parent, delete=False
                ) as handle:
                    handle.write(serialized)
                    handle.flush()
                    os.fsync(handle.fileno())
                    temp_path = Path(handle.name)
                os.replace(temp_path, path)
            except Exception:
                if temp_path is not None:
                    try:
                        temp_path.unlink()
                    except OSError:
                        pass
                raise
        _LOGGER.debug("State %s persisted to %s", key, path)

    def delete(self, key: str) -> None:
        path = self.path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        _LOGGER.debug("State %s removed from %s", key, path)


class InMemoryStateStore:
    """Process-local store used by tests and embedded callers."""

    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._records.get(key)
            return copy.deepcopy(record) if record is not None else None

    def save(self, key: str, payload: Mapping[str, Any]) -> None:
        with self._lock:
            self._records[key] = copy.deepcopy(dict(payload))

    def delete(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)


__all__ = ["InMemoryStateStore", "JsonStateStore", "StateStore"]
