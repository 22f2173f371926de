import os
from pathlib import Path
from typing import Iterator

import pytest

from alttext.config_manager import reset_settings

_ISOLATED_ENV_PREFIXES = ("ALTTEXT_",)
_ISOLATED_ENV_NAMES = ("OPENAI_API_KEY",)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[Path]:
    """Run every test from an empty directory with no alt text settings in the environment."""

    for name in list(os.environ):
        if name.startswith(_ISOLATED_ENV_PREFIXES) or name in _ISOLATED_ENV_NAMES:
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    reset_settings()
    yield tmp_path
    reset_settings()
