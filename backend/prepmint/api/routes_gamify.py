"""Gamification routes: XP and badge awards, leaderboard."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from prepmint.api.dependencies import get_caller, get_gamification_service
from prepmint.auth.capabilities import Capability, require_capability
from prepmint.core.logging import get_logger
from prepmint.gamify.xp import GamificationService
from prepmint.models.dto import (
    AwardBadgeRequest,
    AwardBadgeResponse,
    AwardXpRequest,
    AwardXpResponse,
    LeaderboardEntry,
)
from prepmint.models.entities import UserProfile

logger = get_logger(__name__)

router = APIRouter()


@router.post("/xp", response_model=AwardXpResponse, summary="Award XP to a user")
async def award_xp(
    request: AwardXpRequest,
    caller: UserProfile | None = Depends(get_caller),
    service: GamificationService = Depends(get_gamification_service),
) -> AwardXpResponse:
    requester = require_capability(caller, Capability.AWARD_XP)
    award = await service.award_xp(request.userId, request.amount, request.reason)
    logger.info("%s awarded %s XP to %s", requester.id, award.amount, award.user_id)
    return AwardXpResponse(data=award.to_dict())


@router.post("/badges", response_model=AwardBadgeResponse, summary="Award a badge to a user")
async def award_badge(
    request: AwardBadgeRequest,
    caller: UserProfile | None = Depends(get_caller),
    service: GamificationService = Depends(get_gamification_service),
) -> AwardBadgeResponse:
    requester = require_capability(caller, Capability.AWARD_BADGES)
    awarded = await service.award_badge(request.userId, request.badgeId)
    logger.info("%s awarded badge %s to %s (new: %s)", requester.id, request.badgeId, request.userId, awarded)
    message = "Badge awarded successfully" if awarded else "User already has this badge"
    return AwardBadgeResponse(awarded=awarded, message=message)


@router.get("/badges/{user_id}", response_model=list[str], summary="Badges held by a user")
async def user_badges(user_id: str, service: GamificationService = Depends(get_gamification_service)) -> list[str]:
    return await service.badges(user_id)


@router.get("/leaderboard", response_model=list[LeaderboardEntry], summary="Top students by XP")
async def leaderboard(
    limit: int = Query(default=10, ge=1, le=100),
    institution_id: str | None = None,
    service: GamificationService = Depends(get_gamification_service),
) -> list[LeaderboardEntry]:
    profiles = await service.leaderboard(limit, institution_id)
    return [LeaderboardEntry.from_profile(rank, profile) for rank, profile in enumerate(profiles, start=1)]


__all__ = ["router"]
