"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "PMNT_"
DEFAULT_CONFIG_PATH = Path("~/.config/prepmint/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "backend"): "backend",
    ("storage", "db_path"): "db_path",
    ("supabase", "url"): "supabase_url",
    ("supabase", "key"): "supabase_key",
    ("firebase", "credentials"): "firebase_credentials",
    ("api", "base_url"): "api_base_url",
    ("api", "timeout"): "http_timeout_seconds",
    ("store", "page_size"): "page_size",
    ("store", "realtime"): "realtime",
    ("upload", "max_mb"): "upload_max_mb",
    ("upload", "dir"): "upload_dir",
    ("poll", "interval"): "poll_interval_seconds",
    ("poll", "max_errors"): "poll_max_errors",
    ("gamify", "use_backend"): "use_backend_gamify",
    ("session", "cache_ttl"): "profile_cache_ttl_seconds",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    backend: Literal["sqlite", "supabase", "firestore"] = "sqlite"
    db_path: Path = Field(default=Path.home() / ".prepmint" / "prepmint.db")
    supabase_url: str | None = None
    supabase_key: str | None = None
    firebase_credentials: Path | None = None
    api_base_url: str = "http://127.0.0.1:8000"
    http_timeout_seconds: float = 30.0
    page_size: int = Field(default=20, gt=0)
    realtime: bool = True
    upload_max_mb: int = Field(default=10, gt=0)
    upload_dir: Path = Field(default=Path.home() / ".prepmint" / "uploads")
    poll_interval_seconds: float = Field(default=2.0, gt=0)
    poll_max_errors: int = Field(default=5, ge=1)
    use_backend_gamify: bool = False
    profile_cache_ttl_seconds: float = 300.0
    required_fields: dict[str, list[str]] = Field(
        default_factory=lambda: {
            "users": ["email"],
            "institutions": ["name"],
            "evaluation_jobs": ["owner_user_id", "status"],
            "notifications": ["userId", "title", "message"],
        }
    )

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", "upload_dir", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("path settings must be a path or string")

    @field_validator("api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def upload_max_bytes(self) -> int:
        return self.upload_max_mb * 1024 * 1024

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if key == "required_fields" and not prefix:
            flat[key] = value
        elif isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with PMNT_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields and field_name != "required_fields":
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
