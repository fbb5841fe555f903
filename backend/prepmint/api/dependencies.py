"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, Header

from prepmint.auth.session import SessionProvider
from prepmint.core.config import Settings, get_settings
from prepmint.core.errors import NotFoundError, PermissionDeniedError
from prepmint.evaluation.jobs import EvaluationJobStore
from prepmint.gamify.xp import GamificationService
from prepmint.models.entities import UserProfile
from prepmint.notifications import NotificationService
from prepmint.store.backends import Backend, create_backend

_BACKEND: Backend | None = None
_SESSIONS: SessionProvider | None = None
_JOBS: EvaluationJobStore | None = None
_GAMIFY: GamificationService | None = None
_NOTIFICATIONS: NotificationService | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_backend() -> Backend:
    global _BACKEND
    if _BACKEND is None:
        _BACKEND = create_backend(get_app_settings())
    return _BACKEND


def get_session_provider() -> SessionProvider:
    global _SESSIONS
    if _SESSIONS is None:
        _SESSIONS = SessionProvider.from_settings(get_app_settings(), get_backend())
    return _SESSIONS


def get_job_store() -> EvaluationJobStore:
    global _JOBS
    if _JOBS is None:
        _JOBS = EvaluationJobStore(get_backend(), get_app_settings().upload_dir)
    return _JOBS


def get_gamification_service() -> GamificationService:
    global _GAMIFY
    if _GAMIFY is None:
        _GAMIFY = GamificationService(get_backend())
    return _GAMIFY


def get_notification_service() -> NotificationService:
    global _NOTIFICATIONS
    if _NOTIFICATIONS is None:
        _NOTIFICATIONS = NotificationService.from_settings(get_app_settings(), get_backend())
    return _NOTIFICATIONS


async def get_caller(
    x_user_id: str | None = Header(default=None),
    sessions: SessionProvider = Depends(get_session_provider),
) -> UserProfile | None:
    """Profile of the caller named by ``X-User-Id``, as vouched for by the auth proxy."""
    if not x_user_id:
        return None
    try:
        return await sessions.load_profile(x_user_id)
    except NotFoundError as exc:
        raise PermissionDeniedError(f"Unknown caller {x_user_id}") from exc


def reset_state() -> None:
    """Drop cached singletons; used by tests and on shutdown."""
    global _BACKEND, _SESSIONS, _JOBS, _GAMIFY, _NOTIFICATIONS
    _BACKEND = None
    _SESSIONS = None
    _JOBS = None
    _GAMIFY = None
    _NOTIFICATIONS = None
    get_app_settings.cache_clear()


__all__ = [
    "get_app_settings",
    "get_backend",
    "get_session_provider",
    "get_job_store",
    "get_gamification_service",
    "get_notification_service",
    "get_caller",
    "reset_state",
]
