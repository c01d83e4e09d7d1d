"""Pytest configuration for test isolation.

Settings are read from ``STATEMENT_IMPORT_*`` environment variables and the
database client caches one engine per URL. A developer's shell (or a local
``.env`` loaded by an earlier CLI test) must not leak into other tests, so an
autouse fixture clears those variables and disposes cached engines after each
test.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
# `packages/` and `libs/db/src` hold the import packages and the repo root makes
# `tests.helpers` importable; workspace copies win over installed distributions.
_PATHS = (str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT))
sys.path[:0] = [p for p in _PATHS if p not in sys.path]

_MANAGED_PREFIXES = ("STATEMENT_IMPORT_",)
_MANAGED_NAMES = ("DATABASE_URL", "OPENAI_API_KEY")


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in list(os.environ):
        if name.startswith(_MANAGED_PREFIXES) or name in _MANAGED_NAMES:
            monkeypatch.delenv(name, raising=False)
    yield
    from db.client import dispose_engines

    dispose_engines()


@pytest.fixture()
def data_dir() -> Path:
    return Path(__file__).resolve().parent / "data"
