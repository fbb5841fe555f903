"""XP, levels, badges and the leaderboard."""

from __future__ import annotations

import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

from prepmint.client import ApiClient
from prepmint.core.config import Settings
from prepmint.core.errors import ConfigurationError, ValidationError
from prepmint.core.logging import get_logger
from prepmint.models.entities import UserProfile
from prepmint.store.backends.base import Backend
from prepmint.store.query import build_query

logger = get_logger(__name__)

XP_REWARDS: dict[str, int] = {
    "SIGNUP": 10,
    "FIRST_UPLOAD": 50,
    "EVALUATION_COMPLETE": 20,
    "PERFECT_SCORE": 100,
    "DAILY_LOGIN": 5,
    "TEACHER_REVIEW": 15,
    "BADGE_EARNED": 30,
}

BADGE_ID_RE = re.compile(r"^[a-z0-9-]{3,50}$")
MAX_XP_PER_AWARD = 1000
MAX_REASON_LENGTH = 200

USERS_SOURCE = "users"
ACTIVITY_SOURCE = "activity"


def calculate_level(xp: int) -> int:
    return math.floor(math.sqrt(max(xp, 0) / 100)) + 1


def xp_for_next_level(level: int) -> int:
    return level**2 * 100


def level_progress(xp: int) -> float:
    """Percent progress from the current level towards the next, clamped to 0..100."""
    level = calculate_level(xp)
    floor_xp = xp_for_next_level(level - 1)
    ceiling_xp = xp_for_next_level(level)
    progress = (xp - floor_xp) / (ceiling_xp - floor_xp) * 100
    return min(max(progress, 0.0), 100.0)


@dataclass(slots=True)
class XpAward:
    user_id: str
    amount: int
    reason: str
    new_xp: int
    new_level: int

    def to_dict(self) -> dict[str, object]:
        return {
            "userId": self.user_id,
            "xpAwarded": self.amount,
            "reason": self.reason,
            "newXp": self.new_xp,
            "newLevel": self.new_level,
        }


def check_award(amount: object, reason: object) -> tuple[int, str]:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("XP amount must be an integer")
    if amount <= 0 or amount > MAX_XP_PER_AWARD:
        raise ValidationError(f"XP amount must be between 1 and {MAX_XP_PER_AWARD}")
    if not isinstance(reason, str) or not reason.strip() or len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(f"Reason must be 1-{MAX_REASON_LENGTH} characters")
    return amount, reason.strip()


class GamificationService:
    """XP and badge bookkeeping on the ``users`` source with an ``activity`` log."""

    def __init__(self, backend: Backend) -> None:
        self.backend = backend

    async def award_xp(self, user_id: str, amount: int, reason: str) -> XpAward:
        amount, reason = check_award(amount, reason)
        user = await self.backend.get(USERS_SOURCE, user_id)
        new_xp = int(user.fields.get("xp") or 0) + amount
        new_level = calculate_level(new_xp)
        await self.backend.update(USERS_SOURCE, user_id, {"xp": new_xp, "level": new_level})
        await self.backend.insert(
            ACTIVITY_SOURCE,
            {"userId": user_id, "type": "xp", "amount": amount, "reason": reason},
        )
        logger.info("Awarded %s XP to %s: %s (total %s, level %s)", amount, user_id, reason, new_xp, new_level)
        return XpAward(user_id, amount, reason, new_xp, new_level)

    async def award_badge(self, user_id: str, badge_id: str) -> bool:
        """Add ``badge_id`` to the user's badges; ``False`` when already held."""
        if not isinstance(badge_id, str) or not BADGE_ID_RE.match(badge_id):
            raise ValidationError("Badge id must be 3-50 lowercase letters, digits or hyphens")
        user = await self.backend.get(USERS_SOURCE, user_id)
        badges = list(user.fields.get("badges") or [])
        if badge_id in badges:
            logger.info("User %s already has badge %s", user_id, badge_id)
            return False
        await self.backend.update(USERS_SOURCE, user_id, {"badges": [*badges, badge_id]})
        await self.backend.insert(ACTIVITY_SOURCE, {"userId": user_id, "type": "badge", "badgeId": badge_id})
        logger.info("Awarded badge %s to %s", badge_id, user_id)
        return True

    async def badges(self, user_id: str) -> list[str]:
        user = await self.backend.get(USERS_SOURCE, user_id)
        return list(user.fields.get("badges") or [])

    async def leaderboard(self, limit: int = 10, institution_id: str | None = None) -> list[UserProfile]:
        if limit <= 0 or limit > 100:
            raise ConfigurationError("Leaderboard limit must be between 1 and 100")
        filters: list[tuple[str, str, object]] = [("role", "eq", "student")]
        if institution_id:
            filters.append(("institution_id", "eq", institution_id))
        query = build_query(
            USERS_SOURCE,
            page_size=limit,
            order_by_field="xp",
            order_direction="desc",
            filters=filters,
        )
        page = await self.backend.select(query)
        return [UserProfile.from_record(record) for record in page.items]


class XpAwarder(ABC):
    """Where workflow XP awards go."""

    @abstractmethod
    async def award(self, user_id: str, amount: int, reason: str) -> None: ...


class LocalXpAwarder(XpAwarder):
    def __init__(self, service: GamificationService) -> None:
        self.service = service

    async def award(self, user_id: str, amount: int, reason: str) -> None:
        await self.service.award_xp(user_id, amount, reason)


class HttpXpAwarder(XpAwarder):
    """Award through ``POST /gamify/xp`` so the server can vet the caller."""

    def __init__(self, client: ApiClient) -> None:
        self.client = client

    async def award(self, user_id: str, amount: int, reason: str) -> None:
        await self.client.award_xp(user_id, amount, reason)


def create_awarder(settings: Settings, *, backend: Backend, client: ApiClient) -> XpAwarder:
    if settings.use_backend_gamify:
        return HttpXpAwarder(client)
    return LocalXpAwarder(GamificationService(backend))


__all__ = [
    "XP_REWARDS",
    "calculate_level",
    "xp_for_next_level",
    "level_progress",
    "check_award",
    "XpAward",
    "GamificationService",
    "XpAwarder",
    "LocalXpAwarder",
    "HttpXpAwarder",
    "create_awarder",
]
