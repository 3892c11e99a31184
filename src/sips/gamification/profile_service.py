"""Profile rows and the cached profile read projection."""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sips.cache import Cache, build_cache_key
from sips.config import Settings
from sips.db.models import ChallengeProgress, GamificationAction, GamificationProfile, ProfileBadge
from sips.db.upsert import upsert_rows
from sips.errors import store_operation
from sips.gamification.badge_evaluator import owned_badge_response
from sips.gamification.challenge_service import progress_response
from sips.gamification.constants import LEADERBOARD_CACHE_PREFIX, PROFILE_CACHE_PREFIX
from sips.gamification.level_resolver import LevelDefinition, load_levels, resolve_level
from sips.gamification.schemas import (
    ActionHistoryEntry,
    OwnedBadgeResponse,
    ProfilePayload,
    ProfileSummary,
    SettingsUpdateRequest,
    StreakHistoryEntry,
)

logger = logging.getLogger(__name__)


def profile_cache_key(profile_id: str) -> str:
    return build_cache_key(PROFILE_CACHE_PREFIX, profile_id)


async def invalidate_profile_caches(cache: Cache, profile_id: str) -> None:
    """Drop the profile projection and every cached leaderboard."""
    await cache.delete(profile_cache_key(profile_id))
    await cache.delete_prefix(LEADERBOARD_CACHE_PREFIX)


async def get_profile(db: AsyncSession, profile_id: str) -> GamificationProfile | None:
    async with store_operation("load gamification profile"):
        result = await db.execute(
            select(GamificationProfile)
            .where(GamificationProfile.profile_id == profile_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()


async def get_or_create_profile(
    db: AsyncSession,
    profile_id: str,
    now: datetime | None = None,
) -> GamificationProfile:
    """Load the profile, inserting a zero-valued opted-out row on first use.

    The insert is ON CONFLICT DO NOTHING so concurrent first actions are safe.
    """
    now = now or datetime.now(timezone.utc)
    async with store_operation("create gamification profile"):
        await upsert_rows(
            db,
            GamificationProfile,
            [{
                "profile_id": profile_id,
                "xp_total": 0,
                "level": 1,
                "level_title": None,
                "prestige_level": 0,
                "current_streak": 0,
                "longest_streak": 0,
                "last_action_at": None,
                "streak_frozen_until": None,
                "opted_in": False,
                "settings": {},
                "created_at": now,
                "updated_at": now,
            }],
            conflict_columns=("profile_id",),
        )
    profile = await get_profile(db, profile_id)
    if profile is None:
        raise RuntimeError(f"Gamification profile {profile_id} vanished after insert")
    return profile


def profile_summary(profile: GamificationProfile, levels: list[LevelDefinition]) -> ProfileSummary:
    info = resolve_level(levels, profile.xp_total)
    return ProfileSummary(
        profile_id=profile.profile_id,
        xp_total=profile.xp_total,
        level=profile.level,
        level_title=profile.level_title or info.title or None,
        prestige_level=profile.prestige_level,
        current_streak=profile.current_streak,
        longest_streak=profile.longest_streak,
        next_level_xp=info.next_level_xp,
        progress_percentage=info.progress_percentage,
        opted_in=profile.opted_in,
        last_action_at=profile.last_action_at,
        streak_frozen_until=profile.streak_frozen_until,
        settings=dict(profile.settings or {}),
    )


async def update_settings(
    db: AsyncSession,
    cache: Cache,
    profile_id: str,
    update: SettingsUpdateRequest,
    settings: Settings,
    now: datetime | None = None,
) -> ProfileSummary:
    """Toggle consent and merge the free-form settings map."""
    now = now or datetime.now(timezone.utc)
    try:
        profile = await get_or_create_profile(db, profile_id, now)
        if update.opted_in is not None:
            profile.opted_in = update.opted_in
        if update.settings:
            profile.settings = {**(profile.settings or {}), **update.settings}
        profile.updated_at = now
        async with store_operation("update gamification settings"):
            await db.commit()
    except Exception:
        await db.rollback()
        raise

    await invalidate_profile_caches(cache, profile_id)
    levels = await load_levels(db, cache, settings.level_cache_ttl_seconds)
    logger.info("Gamification settings updated for %s (opted_in=%s)", profile_id, profile.opted_in)
    return profile_summary(profile, levels)


async def freeze_streak(
    db: AsyncSession,
    cache: Cache,
    profile_id: str,
    hours: int,
    settings: Settings,
    now: datetime | None = None,
) -> ProfileSummary:
    """Hold the current streak for ``hours`` from now."""
    now = now or datetime.now(timezone.utc)
    try:
        profile = await get_or_create_profile(db, profile_id, now)
        profile.streak_frozen_until = now + timedelta(hours=hours)
        profile.updated_at = now
        async with store_operation("freeze streak"):
            await db.commit()
    except Exception:
        await db.rollback()
        raise

    await cache.delete(profile_cache_key(profile_id))
    levels = await load_levels(db, cache, settings.level_cache_ttl_seconds)
    logger.info("Streak frozen for %s until %s", profile_id, profile.streak_frozen_until)
    return profile_summary(profile, levels)


def build_streak_history(actions: list[ActionHistoryEntry]) -> list[StreakHistoryEntry]:
    """Group actions by UTC calendar day, oldest first."""
    days: OrderedDict = OrderedDict()
    for action in sorted(actions, key=lambda a: a.awarded_at):
        day = action.awarded_at.astimezone(timezone.utc).date()
        xp, count = days.get(day, (0, 0))
        days[day] = (xp + action.xp_awarded, count + 1)
    return [StreakHistoryEntry(day=day, xp=xp, actions=count) for day, (xp, count) in days.items()]


async def fetch_gamification_profile(
    db: AsyncSession,
    cache: Cache,
    profile_id: str,
    settings: Settings,
) -> ProfilePayload | None:
    """Cache-first profile projection. Returns None for an unknown profile."""
    key = profile_cache_key(profile_id)
    cached = await cache.get(key)
    if cached is not None:
        try:
            return ProfilePayload.model_validate(cached)
        except ValidationError:
            logger.warning("Discarding malformed cached profile %s", profile_id)

    profile = await get_profile(db, profile_id)
    if profile is None:
        return None

    levels = await load_levels(db, cache, settings.level_cache_ttl_seconds)

    async with store_operation("load badge ownership"):
        result = await db.execute(
            select(ProfileBadge)
            .where(ProfileBadge.profile_id == profile_id)
            .order_by(ProfileBadge.awarded_at.desc())
            .execution_options(populate_existing=True)
        )
        owned_rows = result.scalars().all()

    badges: list[OwnedBadgeResponse] = []
    for row in owned_rows:
        if row.badge is None:
            continue
        try:
            badges.append(owned_badge_response(
                row.badge,
                awarded_at=row.awarded_at,
                state=row.state,
                notified_at=row.notified_at,
            ))
        except ValidationError:
            logger.warning("Dropping malformed badge row %s for %s", row.badge_id, profile_id)

    async with store_operation("load recent actions"):
        result = await db.execute(
            select(GamificationAction)
            .where(GamificationAction.profile_id == profile_id)
            .order_by(GamificationAction.awarded_at.desc())
            .limit(settings.recent_actions_limit)
        )
        recent = [
            ActionHistoryEntry(
                action_type=row.action_type,
                action_source=row.action_source,
                xp_awarded=row.xp_awarded,
                points_awarded=row.points_awarded,
                awarded_at=row.awarded_at,
                metadata=row.action_metadata or {},
            )
            for row in result.scalars().all()
        ]

    async with store_operation("load challenge progress"):
        result = await db.execute(
            select(ChallengeProgress)
            .where(ChallengeProgress.profile_id == profile_id)
            .execution_options(populate_existing=True)
        )
        challenges = [
            progress_response(
                row.challenge,
                status=row.status,
                progress=row.progress or {},
                started_at=row.started_at,
                completed_at=row.completed_at,
            )
            for row in result.scalars().all()
            if row.challenge is not None
        ]

    payload = ProfilePayload(
        profile=profile_summary(profile, levels),
        badges=badges,
        recent_actions=recent,
        streak_history=build_streak_history(recent),
        challenges=challenges,
    )
    await cache.set(key, payload.model_dump(mode="json"), settings.profile_cache_ttl_seconds)
    return payload
