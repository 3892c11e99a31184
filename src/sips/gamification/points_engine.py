"""Action recording: policy checks, ledger write, derived state, evaluators.

One ``record_action`` call runs in one database transaction. Badge
evaluation, challenge progress and role sync run after the profile update,
in that order, sharing an ``ActionCycle`` so each stage sees what the
previous one produced.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sips.cache import Cache, build_cache_key
from sips.config import Settings, get_settings
from sips.db.models import GamificationAction, GamificationProfile
from sips.errors import store_operation
from sips.gamification.badge_evaluator import evaluate_badges
from sips.gamification.challenge_service import process_challenges
from sips.gamification.constants import (
    ACTION_DEFINITIONS,
    COOLDOWN_CACHE_PREFIX,
    ActionDefinition,
    ActionType,
    resolve_action_type,
)
from sips.gamification.level_resolver import LevelDefinition, load_levels, resolve_level
from sips.gamification.profile_service import (
    get_or_create_profile,
    invalidate_profile_caches,
    profile_summary,
)
from sips.gamification.role_sync import RoleSyncResult, sync_roles
from sips.gamification.schemas import (
    ChallengeProgressResponse,
    OwnedBadgeResponse,
    RecordActionInput,
    RecordActionResult,
    RejectionReason,
)
from sips.gamification.streak_calculator import compute_streak

logger = logging.getLogger(__name__)

# Range of the ledger's INTEGER award columns
MAX_AWARD = 2_147_483_647


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def cooldown_key(profile_id: str, action_type: ActionType) -> str:
    return build_cache_key(COOLDOWN_CACHE_PREFIX, profile_id, action_type.value)


def metadata_amount(metadata: dict[str, Any], key: str, default: int) -> int:
    """Numeric override from caller metadata, else ``default``.

    Overrides are clamped to the range of the ledger columns.
    """
    value = metadata.get(key)
    if isinstance(value, bool):
        return default
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return default
    if isinstance(value, (int, float)) and math.isfinite(value):
        return max(-MAX_AWARD, min(MAX_AWARD, int(value)))
    return default


@dataclass
class ActionCycle:
    """State threaded through the post-update evaluators."""

    profile: GamificationProfile
    action_type: str
    now: datetime
    newly_earned_badges: list[OwnedBadgeResponse] = field(default_factory=list)
    completed_challenges: list[ChallengeProgressResponse] = field(default_factory=list)
    roles: RoleSyncResult = field(default_factory=RoleSyncResult)


class PointsEngine:
    """Records gamified actions for profiles."""

    def __init__(
        self,
        db: AsyncSession,
        cache: Cache,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.db = db
        self.cache = cache
        self.settings = settings or get_settings()
        self._clock = clock or _utcnow

    async def record_action(self, payload: RecordActionInput) -> RecordActionResult:
        now = self._clock()
        action_type = resolve_action_type(payload.action_type)
        definition = ACTION_DEFINITIONS[action_type]
        marker: str | None = None

        try:
            profile = await get_or_create_profile(self.db, payload.profile_id, now)
            levels = await load_levels(self.db, self.cache, self.settings.level_cache_ttl_seconds)

            if not profile.opted_in and action_type is not ActionType.MANUAL_ADJUSTMENT:
                return await self._reject(profile, levels, action_type, "opted_out")

            if definition.cooldown_seconds > 0:
                key = cooldown_key(profile.profile_id, action_type)
                acquired = await self.cache.set_if_absent(
                    key, now.isoformat(), definition.cooldown_seconds
                )
                if not acquired:
                    return await self._reject(profile, levels, action_type, "cooldown")
                marker = key

            if await self._daily_cap_reached(profile.profile_id, definition, now):
                await self._release(marker)
                return await self._reject(profile, levels, action_type, "daily_cap")

            result = await self._apply(payload, profile, levels, action_type, definition, now)
        except Exception:
            await self.db.rollback()
            await self._release(marker)
            raise

        await invalidate_profile_caches(self.cache, payload.profile_id)
        return result

    async def _apply(
        self,
        payload: RecordActionInput,
        profile: GamificationProfile,
        levels: list[LevelDefinition],
        action_type: ActionType,
        definition: ActionDefinition,
        now: datetime,
    ) -> RecordActionResult:
        metadata = dict(payload.metadata)
        xp_awarded = metadata_amount(metadata, "xp", definition.base_xp)
        points_awarded = metadata_amount(metadata, "points", definition.base_points)
        if payload.action_type != action_type.value:
            metadata.setdefault("requested_action_type", payload.action_type)

        async with store_operation("record gamification action"):
            self.db.add(GamificationAction(
                profile_id=profile.profile_id,
                action_type=action_type.value,
                action_source=payload.action_source,
                action_metadata=metadata,
                xp_awarded=xp_awarded,
                points_awarded=points_awarded,
                awarded_at=now,
                request_id=payload.request_id,
            ))
            await self.db.flush()

        streak = compute_streak(
            last_action_at=profile.last_action_at,
            action_at=now,
            current_streak=profile.current_streak,
            longest_streak=profile.longest_streak,
            frozen_until=profile.streak_frozen_until,
        )
        xp_total = max(0, profile.xp_total + xp_awarded)
        level_info = resolve_level(levels, xp_total)
        old_level = profile.level

        profile.xp_total = xp_total
        profile.level = level_info.level
        profile.level_title = level_info.title or None
        profile.current_streak = streak.current_streak
        profile.longest_streak = max(profile.longest_streak, streak.longest_streak)
        profile.last_action_at = now
        profile.streak_frozen_until = streak.streak_frozen_until
        profile.updated_at = now

        async with store_operation("update gamification profile"):
            await self.db.flush()

        if profile.level != old_level:
            logger.info("Profile %s moved from level %d to %d", profile.profile_id, old_level, profile.level)

        cycle = await self._run_evaluators(ActionCycle(profile=profile, action_type=action_type.value, now=now))
        if cycle.roles.added or cycle.roles.removed:
            logger.info(
                "Roles for %s: added %s, removed %s",
                profile.profile_id, cycle.roles.added, cycle.roles.removed,
            )

        async with store_operation("commit gamification action"):
            await self.db.commit()

        logger.info(
            "Recorded %s for %s: +%d xp, +%d points",
            action_type.value, profile.profile_id, xp_awarded, points_awarded,
        )
        return RecordActionResult(
            applied=True,
            action_type=action_type.value,
            xp_awarded=xp_awarded,
            points_awarded=points_awarded,
            profile=profile_summary(profile, levels),
            newly_earned_badges=cycle.newly_earned_badges,
            completed_challenges=cycle.completed_challenges,
        )

    async def _run_evaluators(self, cycle: ActionCycle) -> ActionCycle:
        """Badges, then challenges, then roles. Role sync needs this cycle's badges."""
        cycle.newly_earned_badges = await evaluate_badges(
            self.db, cycle.profile, cycle.action_type, cycle.now
        )
        cycle.completed_challenges = await process_challenges(
            self.db, cycle.profile, cycle.action_type, cycle.now
        )
        cycle.roles = await sync_roles(
            self.db,
            cycle.profile,
            [badge.slug for badge in cycle.newly_earned_badges],
            cycle.now,
        )
        return cycle

    async def _daily_cap_reached(
        self,
        profile_id: str,
        definition: ActionDefinition,
        now: datetime,
    ) -> bool:
        if definition.max_daily_occurrences is None:
            return False
        day_start = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        async with store_operation("count daily actions"):
            result = await self.db.execute(
                select(func.count(GamificationAction.id)).where(
                    GamificationAction.profile_id == profile_id,
                    GamificationAction.action_type == definition.action_type.value,
                    GamificationAction.awarded_at >= day_start,
                )
            )
            count = int(result.scalar_one())
        return count >= definition.max_daily_occurrences

    async def _reject(
        self,
        profile: GamificationProfile,
        levels: list[LevelDefinition],
        action_type: ActionType,
        reason: RejectionReason,
    ) -> RecordActionResult:
        # Keeps a lazily created profile row
        async with store_operation("commit gamification profile"):
            await self.db.commit()
        logger.info("Rejected %s for %s: %s", action_type.value, profile.profile_id, reason)
        return RecordActionResult(
            applied=False,
            action_type=action_type.value,
            rejection_reason=reason,
            profile=profile_summary(profile, levels),
        )

    async def _release(self, marker: str | None) -> None:
        if marker is not None:
            await self.cache.delete(marker)
