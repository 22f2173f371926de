"""Load ``.env`` files before configuration is read."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, Optional, Tuple

from dotenv import load_dotenv

# Files already processed; importing the package twice must not reload them.
_LOADED_FILES: Tuple[Path, ...] | None = None


def _iter_candidate_files(root: Path) -> Iterable[Path]:
    """Yield dotenv files in order of precedence."""

    explicit_paths = os.environ.get("ALTTEXT_ENV_FILE")
    if explicit_paths:
        for value in explicit_paths.split(os.pathsep):
            if value.strip():
                yield Path(value).expanduser().resolve()

    target = os.environ.get("ALTTEXT_ENV")
    candidate_names = [".env"]
    if target:
        candidate_names.append(f".env.{target}")
    candidate_names.append(".env.local")

    for name in candidate_names:
        yield (root / name).resolve()


def load_environment(*, force: bool = False, root: Optional[Path] = None) -> Tuple[Path, ...]:
    """Load variables from dotenv files without overriding the real environment."""

    global _LOADED_FILES
    if _LOADED_FILES is not None and not force:
        return _LOADED_FILES

    loaded: list[Path] = []
    seen: set[Path] = set()
    for path in _iter_candidate_files(root or Path.cwd()):
        if path in seen or not path.is_file():
            continue
        seen.add(path)
        if load_dotenv(path, override=False):
            loaded.append(path)
    _LOADED_FILES = tuple(loaded)
    return _LOADED_FILES


__all__ = ["load_environment"]
