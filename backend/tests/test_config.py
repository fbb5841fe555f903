"""Settings loading from YAML and environment."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError as SettingsError

from prepmint.core.config import Settings


def test_yaml_then_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "config.yaml"
    config.write_text(
        "storage:\n"
        "  backend: sqlite\n"
        "api:\n"
        "  base_url: http://api.example.com/\n"
        "poll:\n"
        "  interval: 5\n"
        "upload:\n"
        "  max_mb: 4\n"
        "required_fields:\n"
        "  users: [email, role]\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("PMNT_POLL_MAX_ERRORS", "9")
    settings = Settings.from_yaml(config)
    assert settings.api_base_url == "http://api.example.com"
    assert settings.poll_interval_seconds == 5
    assert settings.poll_max_errors == 9
    assert settings.upload_max_bytes == 4 * 1024 * 1024
    assert settings.required_fields == {"users": ["email", "role"]}
    assert settings.db_path == tmp_path / "pmnt.db"


def test_missing_file_uses_defaults(tmp_path: Path) -> None:
    settings = Settings.from_yaml(tmp_path / "absent.yaml")
    assert settings.backend == "sqlite"
    assert settings.page_size == 20


def test_invalid_values_are_rejected(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("PMNT_BACKEND", "mongodb")
    with pytest.raises(SettingsError):
        Settings.from_yaml(tmp_path / "absent.yaml")
