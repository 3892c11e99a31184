"""Gamification API endpoints.

Internal service surface; authentication is left to the platform gateway.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from sips.cache import Cache
from sips.config import Settings
from sips.dependencies import get_app_settings, get_cache, get_db
from sips.gamification.analytics_service import fetch_analytics
from sips.gamification.challenge_service import list_active_challenges
from sips.gamification.leaderboard_service import fetch_leaderboard
from sips.gamification.points_engine import PointsEngine
from sips.gamification.profile_service import fetch_gamification_profile, freeze_streak, update_settings
from sips.gamification.schemas import (
    ActiveChallengesResponse,
    AnalyticsResponse,
    LeaderboardFilters,
    LeaderboardResponse,
    LeaderboardScope,
    ProfilePayload,
    ProfileSummary,
    RecordActionInput,
    RecordActionResult,
    SettingsUpdateRequest,
    StreakFreezeRequest,
)

router = APIRouter(prefix="/api/v1/gamification", tags=["Gamification"])


@router.post("/actions", response_model=RecordActionResult)
async def record_action_endpoint(
    payload: RecordActionInput,
    request: Request,
    db: AsyncSession = Depends(get_db),  # noqa: B008
    cache: Cache = Depends(get_cache),  # noqa: B008
    settings: Settings = Depends(get_app_settings),  # noqa: B008
) -> RecordActionResult:
    """Record an action. Policy rejections come back as 200 with applied=false."""
    if payload.request_id is None:
        payload = payload.model_copy(update={"request_id": getattr(request.state, "request_id", None)})
    engine = PointsEngine(db, cache, settings)
    return await engine.record_action(payload)


@router.get("/profiles/{profile_id}", response_model=ProfilePayload)
async def get_profile_endpoint(
    profile_id: str,
    db: AsyncSession = Depends(get_db),  # noqa: B008
    cache: Cache = Depends(get_cache),  # noqa: B008
    settings: Settings = Depends(get_app_settings),  # noqa: B008
) -> ProfilePayload:
    payload = await fetch_gamification_profile(db, cache, profile_id, settings)
    if payload is None:
        raise HTTPException(status_code=404, detail="Gamification profile not found")
    return payload


@router.patch("/profiles/{profile_id}/settings", response_model=ProfileSummary)
async def update_settings_endpoint(
    profile_id: str,
    body: SettingsUpdateRequest,
    db: AsyncSession = Depends(get_db),  # noqa: B008
    cache: Cache = Depends(get_cache),  # noqa: B008
    settings: Settings = Depends(get_app_settings),  # noqa: B008
) -> ProfileSummary:
    """Consent toggle and free-form settings merge."""
    return await update_settings(db, cache, profile_id, body, settings)


@router.post("/profiles/{profile_id}/streak-freeze", response_model=ProfileSummary)
async def streak_freeze_endpoint(
    profile_id: str,
    body: StreakFreezeRequest,
    db: AsyncSession = Depends(get_db),  # noqa: B008
    cache: Cache = Depends(get_cache),  # noqa: B008
    settings: Settings = Depends(get_app_settings),  # noqa: B008
) -> ProfileSummary:
    return await freeze_streak(db, cache, profile_id, body.hours, settings)


@router.get("/leaderboards", response_model=LeaderboardResponse)
async def leaderboard_endpoint(
    scope: LeaderboardScope = Query("global"),
    category: str | None = Query(None, min_length=1, max_length=64),
    limit: int | None = Query(None),
    db: AsyncSession = Depends(get_db),  # noqa: B008
    cache: Cache = Depends(get_cache),  # noqa: B008
    settings: Settings = Depends(get_app_settings),  # noqa: B008
) -> LeaderboardResponse:
    """Limit is clamped to 1..100."""
    try:
        return await fetch_leaderboard(
            db, cache, LeaderboardFilters(scope=scope, category=category, limit=limit), settings
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.get("/challenges", response_model=ActiveChallengesResponse)
async def challenges_endpoint(
    profile_id: str | None = Query(None),
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> ActiveChallengesResponse:
    return await list_active_challenges(db, profile_id, datetime.now(timezone.utc))


@router.get("/admin/analytics", response_model=AnalyticsResponse)
async def analytics_endpoint(
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> AnalyticsResponse:
    return await fetch_analytics(db)
