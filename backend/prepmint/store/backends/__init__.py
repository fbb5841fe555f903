"""Backend adapters for the collection store."""

from __future__ import annotations

from prepmint.core.config import Settings
from prepmint.core.errors import ConfigurationError
from prepmint.db.sqlite import SQLiteDatabase

from .base import Backend, ChangeCallback, ChangeEvent, ChangeType, Subscription
from .sqlite import SQLiteBackend


def create_backend(settings: Settings) -> Backend:
    """Build the backend named by ``settings.backend``.

    The Supabase and Firestore adapters live behind optional extras and are
    imported only when selected.
    """
    if settings.backend == "sqlite":
        return SQLiteBackend(SQLiteDatabase(settings.db_path), required_fields=settings.required_fields)
    if settings.backend == "supabase":
        if not settings.supabase_url or not settings.supabase_key:
            raise ConfigurationError("supabase backend needs supabase_url and supabase_key")
        from .supabase import SupabaseBackend

        return SupabaseBackend.from_credentials(
            settings.supabase_url,
            settings.supabase_key,
            required_fields=settings.required_fields,
        )
    if settings.backend == "firestore":
        from .firestore import FirestoreBackend

        return FirestoreBackend.from_credentials(
            settings.firebase_credentials,
            required_fields=settings.required_fields,
        )
    raise ConfigurationError(f"Unknown backend: {settings.backend!r}")


__all__ = [
    "Backend",
    "ChangeCallback",
    "ChangeEvent",
    "ChangeType",
    "Subscription",
    "SQLiteBackend",
    "create_backend",
]
