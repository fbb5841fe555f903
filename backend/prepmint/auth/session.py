"""Profile loading for an already authenticated user."""

from __future__ import annotations

from prepmint.auth.cache import TTLCache
from prepmint.auth.capabilities import USERS_SOURCE, Capability, has_capability
from prepmint.core.config import Settings
from prepmint.core.logging import get_logger
from prepmint.models.entities import UserProfile
from prepmint.store.backends.base import Backend

logger = get_logger(__name__)


class SessionProvider:
    """Holds the signed-in profile and a profile cache for its lifetime.

    Identity is established by the external auth provider; this class only
    trusts the user id it is given and reads ``users/{id}``.
    """

    def __init__(self, backend: Backend, cache: TTLCache[UserProfile] | None = None) -> None:
        self.backend = backend
        self.cache: TTLCache[UserProfile] = cache if cache is not None else TTLCache()
        self.current: UserProfile | None = None

    @classmethod
    def from_settings(cls, settings: Settings, backend: Backend) -> "SessionProvider":
        return cls(backend, TTLCache(settings.profile_cache_ttl_seconds))

    async def load_profile(self, user_id: str, *, force: bool = False) -> UserProfile:
        if not force:
            entry = self.cache.get(user_id)
            if entry is not None:
                return entry.value
        profile = UserProfile.from_record(await self.backend.get(USERS_SOURCE, user_id))
        self.cache.put(user_id, profile)
        logger.debug("Loaded profile %s (%s)", user_id, profile.role)
        return profile

    async def sign_in(self, user_id: str) -> UserProfile:
        self.current = await self.load_profile(user_id, force=True)
        logger.info("Session started for %s", user_id)
        return self.current

    def invalidate(self, user_id: str) -> None:
        self.cache.invalidate(user_id)

    def sign_out(self) -> None:
        if self.current is not None:
            logger.info("Session ended for %s", self.current.id)
        self.current = None
        self.cache.clear()

    def can(self, capability: Capability) -> bool:
        return has_capability(self.current, capability)


__all__ = ["SessionProvider"]
