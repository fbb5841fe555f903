"""Capabilities, profile cache and session provider."""

from __future__ import annotations

import asyncio

import pytest

from prepmint.auth.cache import TTLCache
from prepmint.auth.capabilities import (
    Capability,
    Role,
    capabilities_for,
    has_capability,
    require_capability,
    require_write,
    write_capabilities,
)
from prepmint.auth.session import SessionProvider
from prepmint.core.errors import ConfigurationError, NotFoundError, PermissionDeniedError
from prepmint.models.entities import UserProfile


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_role_capabilities() -> None:
    assert has_capability("student", Capability.UPLOAD_ANSWER_SHEET)
    assert not has_capability("student", Capability.AWARD_XP)
    assert has_capability("teacher", Capability.AWARD_XP)
    assert not has_capability("teacher", Capability.MANAGE_USERS)
    assert has_capability("institution", Capability.MANAGE_TEACHERS)
    assert has_capability(Role.ADMIN, Capability.MANAGE_INSTITUTIONS)
    assert not has_capability("admin", Capability.VIEW_DEV_TOOLS)
    assert capabilities_for("dev") == frozenset(Capability)
    assert capabilities_for("janitor") == frozenset()
    assert not has_capability(None, Capability.VIEW_LEADERBOARD)


def test_require_capability() -> None:
    teacher = UserProfile(id="t1", role="teacher")
    assert require_capability(teacher, Capability.AWARD_BADGES) is teacher
    with pytest.raises(PermissionDeniedError, match="s1 is not allowed to award xp"):
        require_capability(UserProfile(id="s1", role="student"), Capability.AWARD_XP)
    with pytest.raises(PermissionDeniedError, match="anonymous"):
        require_capability(None, Capability.AWARD_XP)


def test_write_capabilities_follow_the_affected_role() -> None:
    assert write_capabilities("users") == {Capability.MANAGE_USERS, Capability.MANAGE_STUDENTS}
    assert write_capabilities("users", "teacher") == {Capability.MANAGE_USERS, Capability.MANAGE_TEACHERS}
    assert write_capabilities("users", "admin") == {Capability.MANAGE_USERS}
    assert write_capabilities("users", "janitor") == {Capability.MANAGE_USERS}
    assert write_capabilities("institutions") == {Capability.MANAGE_INSTITUTIONS}
    assert write_capabilities("audit_log") == {Capability.MANAGE_USERS}


def test_require_write() -> None:
    institution = UserProfile(id="i1", role="institution")
    assert require_write(institution, "users", roles=["student", None, "teacher"]) is institution
    with pytest.raises(PermissionDeniedError, match="i1 is not allowed to modify admin profiles in users"):
        require_write(institution, "users", roles=["student", "admin"])
    with pytest.raises(PermissionDeniedError, match="anonymous"):
        require_write(None, "users", roles=[])
    with pytest.raises(PermissionDeniedError):
        require_write(UserProfile(id="t1", role="teacher"), "institutions")
    assert require_write(UserProfile(id="a1", role="admin"), "institutions").id == "a1"


def test_ttl_cache_expiry() -> None:
    clock = FakeClock()
    cache: TTLCache[str] = TTLCache(10, clock=clock)
    cache.put("a", "alpha")
    cache.put("b", "beta", ttl=30)
    assert cache.get("a").value == "alpha"
    clock.now += 10
    assert cache.get("a") is None
    assert "b" in cache
    assert len(cache) == 1
    assert cache.invalidate("b") is True
    assert cache.invalidate("b") is False
    with pytest.raises(ConfigurationError):
        cache.put("c", "gamma", ttl=0)
    with pytest.raises(ConfigurationError):
        TTLCache(0)


def test_session_reads_through_cache(backend) -> None:
    clock = FakeClock()
    sessions = SessionProvider(backend, TTLCache(60, clock=clock))

    async def scenario():
        user = await backend.insert("users", {"email": "t@x.io", "role": "teacher", "name": "Ms T"})
        profile = await sessions.sign_in(user.id)
        await backend.update("users", user.id, {"role": "admin"})
        cached = await sessions.load_profile(user.id)
        clock.now += 61
        fresh = await sessions.load_profile(user.id)
        return profile, cached, fresh

    profile, cached, fresh = asyncio.run(scenario())
    assert profile.display_name == "Ms T"
    assert cached.role == "teacher"
    assert fresh.role == "admin"
    assert sessions.can(Capability.AWARD_XP)

    sessions.sign_out()
    assert sessions.current is None
    assert len(sessions.cache) == 0
    assert not sessions.can(Capability.AWARD_XP)


def test_session_unknown_user(backend) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(SessionProvider(backend).sign_in("ghost"))
