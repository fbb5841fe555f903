"""Role to capability table; the only place roles are compared."""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Mapping

from prepmint.core.errors import PermissionDeniedError
from prepmint.models.entities import UserProfile


class Role(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    INSTITUTION = "institution"
    ADMIN = "admin"
    DEV = "dev"


class Capability(str, Enum):
    UPLOAD_ANSWER_SHEET = "upload_answer_sheet"
    VIEW_OWN_RESULTS = "view_own_results"
    VIEW_LEADERBOARD = "view_leaderboard"
    EVALUATE_SUBMISSIONS = "evaluate_submissions"
    VIEW_ANALYTICS = "view_analytics"
    SEND_NOTIFICATIONS = "send_notifications"
    AWARD_XP = "award_xp"
    AWARD_BADGES = "award_badges"
    MANAGE_STUDENTS = "manage_students"
    MANAGE_TEACHERS = "manage_teachers"
    MANAGE_INSTITUTIONS = "manage_institutions"
    MANAGE_USERS = "manage_users"
    VIEW_DEV_TOOLS = "view_dev_tools"


_STAFF = frozenset(
    {
        Capability.UPLOAD_ANSWER_SHEET,
        Capability.VIEW_LEADERBOARD,
        Capability.EVALUATE_SUBMISSIONS,
        Capability.VIEW_ANALYTICS,
        Capability.SEND_NOTIFICATIONS,
    }
)

ROLE_CAPABILITIES: Mapping[Role, frozenset[Capability]] = {
    Role.STUDENT: frozenset(
        {
            Capability.UPLOAD_ANSWER_SHEET,
            Capability.VIEW_OWN_RESULTS,
            Capability.VIEW_LEADERBOARD,
        }
    ),
    Role.TEACHER: _STAFF | {Capability.AWARD_XP, Capability.AWARD_BADGES},
    Role.INSTITUTION: _STAFF | {Capability.MANAGE_STUDENTS, Capability.MANAGE_TEACHERS},
    Role.ADMIN: frozenset(Capability) - {Capability.VIEW_DEV_TOOLS},
    Role.DEV: frozenset(Capability),
}


def capabilities_for(role: str | Role | None) -> frozenset[Capability]:
    try:
        return ROLE_CAPABILITIES[Role(role)]
    except ValueError:
        return frozenset()


def has_capability(user: UserProfile | str | None, capability: Capability) -> bool:
    """True when the user's role grants ``capability``; unknown roles get nothing."""
    if user is None:
        return False
    role = user.role if isinstance(user, UserProfile) else user
    return capability in capabilities_for(role)


def require_capability(user: UserProfile | None, capability: Capability) -> UserProfile:
    if user is None or not has_capability(user, capability):
        who = user.id if user is not None else "anonymous caller"
        raise PermissionDeniedError(f"{who} is not allowed to {capability.value.replace('_', ' ')}")
    return user


USERS_SOURCE = "users"

# Sources not listed here are writable only with MANAGE_USERS.
SOURCE_WRITE_CAPABILITIES: Mapping[str, Capability] = {
    "institutions": Capability.MANAGE_INSTITUTIONS,
    "tests": Capability.EVALUATE_SUBMISSIONS,
    "evaluation_jobs": Capability.EVALUATE_SUBMISSIONS,
    "notifications": Capability.SEND_NOTIFICATIONS,
}

_ROLE_MANAGERS: Mapping[Role, Capability] = {
    Role.STUDENT: Capability.MANAGE_STUDENTS,
    Role.TEACHER: Capability.MANAGE_TEACHERS,
}


def write_capabilities(source: str, role: str | None = None) -> frozenset[Capability]:
    """Capabilities, any one of which allows writing ``source``.

    For ``users`` the role of the affected profile counts: institutions may
    manage students and teachers, while other roles need MANAGE_USERS.
    """
    if source != USERS_SOURCE:
        return frozenset({SOURCE_WRITE_CAPABILITIES.get(source, Capability.MANAGE_USERS)})
    try:
        manager = _ROLE_MANAGERS.get(Role(role or Role.STUDENT.value))
    except ValueError:
        manager = None
    if manager is None:
        return frozenset({Capability.MANAGE_USERS})
    return frozenset({Capability.MANAGE_USERS, manager})


def require_write(user: UserProfile | None, source: str, roles: Iterable[str | None] = (None,)) -> UserProfile:
    """Raise unless ``user`` may write ``source`` for every affected role."""
    if user is None:
        raise PermissionDeniedError(f"anonymous caller is not allowed to modify {source}", source=source)
    for role in roles:
        if not any(has_capability(user, cap) for cap in write_capabilities(source, role)):
            target = f"{role or Role.STUDENT.value} profiles in {source}" if source == USERS_SOURCE else source
            raise PermissionDeniedError(f"{user.id} is not allowed to modify {target}", source=source)
    return user


__all__ = [
    "Role",
    "Capability",
    "ROLE_CAPABILITIES",
    "capabilities_for",
    "has_capability",
    "require_capability",
    "SOURCE_WRITE_CAPABILITIES",
    "USERS_SOURCE",
    "write_capabilities",
    "require_write",
]
