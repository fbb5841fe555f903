"""Test fixtures for PrepMint."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("PMNT_DB_PATH", str(tmp_path / "pmnt.db"))
    monkeypatch.setenv("PMNT_UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("PMNT_BACKEND", "sqlite")
    monkeypatch.setenv("PMNT_CONFIG", str(tmp_path / "missing.yaml"))

    from prepmint.api import dependencies as deps
    from prepmint.core.config import get_settings

    get_settings.cache_clear()
    deps.reset_state()
    yield
    if deps._BACKEND is not None:
        deps._BACKEND.db.close()
    get_settings.cache_clear()
    deps.reset_state()


@pytest.fixture
def backend(tmp_path: Path):
    from prepmint.db.sqlite import SQLiteDatabase
    from prepmint.store.backends import SQLiteBackend

    instance = SQLiteBackend(
        SQLiteDatabase(tmp_path / "store.db"),
        required_fields={"users": ["email"], "notifications": ["userId", "title", "message"]},
    )
    yield instance
    instance.db.close()
