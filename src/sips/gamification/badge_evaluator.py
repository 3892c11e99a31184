"""Badge evaluation — checks unowned catalog badges and awards the qualified ones."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sips.db.models import (
    ChallengeProgress,
    GamificationAction,
    GamificationBadge,
    GamificationChallenge,
    GamificationProfile,
    ProfileBadge,
)
from sips.db.upsert import upsert_rows
from sips.errors import store_operation
from sips.gamification.requirements import (
    ChallengeCompletedRequirement,
    EventRequirement,
    LevelReachedRequirement,
    StreakRequirement,
    TotalActionsRequirement,
    UnparseableRequirement,
    parse_badge_requirement,
)
from sips.gamification.schemas import OwnedBadgeResponse

logger = logging.getLogger(__name__)


def is_badge_available(badge: GamificationBadge, now: datetime) -> bool:
    """Time-limited badges are only awardable inside [available_from, available_to]."""
    if not badge.is_time_limited:
        return True
    if badge.available_from is not None and now < badge.available_from:
        return False
    if badge.available_to is not None and now > badge.available_to:
        return False
    return True


def requirement_met(
    requirement: object,
    *,
    profile: GamificationProfile,
    action_type: str,
    action_counts: dict[str, int],
    completed_challenges: set[str],
) -> bool:
    """Check one parsed requirement against the profile snapshot."""
    if isinstance(requirement, TotalActionsRequirement):
        return action_counts.get(requirement.action_type, 0) >= requirement.threshold
    if isinstance(requirement, LevelReachedRequirement):
        return profile.level >= requirement.level
    if isinstance(requirement, StreakRequirement):
        return profile.longest_streak >= requirement.days
    if isinstance(requirement, EventRequirement):
        # Single-shot: only the action being recorded right now can trigger it
        return action_type == requirement.event_key
    if isinstance(requirement, ChallengeCompletedRequirement):
        return requirement.challenge_slug in completed_challenges
    return False


def owned_badge_response(
    badge: GamificationBadge,
    *,
    awarded_at: datetime,
    state: str = "awarded",
    notified_at: datetime | None = None,
) -> OwnedBadgeResponse:
    return OwnedBadgeResponse(
        id=badge.id,
        slug=badge.slug,
        name=badge.name,
        description=badge.description,
        category=badge.category,
        rarity=badge.rarity,
        reward_points=badge.reward_points,
        is_time_limited=badge.is_time_limited,
        available_from=badge.available_from,
        available_to=badge.available_to,
        awarded_at=awarded_at,
        state=state,
        notified_at=notified_at,
    )


async def get_owned_badge_ids(db: AsyncSession, profile_id: str) -> set[str]:
    async with store_operation("load owned badges"):
        result = await db.execute(select(ProfileBadge.badge_id).where(ProfileBadge.profile_id == profile_id))
        return set(result.scalars().all())


async def _count_actions(db: AsyncSession, profile_id: str, action_types: set[str]) -> dict[str, int]:
    if not action_types:
        return {}
    async with store_operation("count gamification actions"):
        result = await db.execute(
            select(GamificationAction.action_type, func.count(GamificationAction.id))
            .where(
                GamificationAction.profile_id == profile_id,
                GamificationAction.action_type.in_(action_types),
            )
            .group_by(GamificationAction.action_type)
        )
        return {row[0]: int(row[1]) for row in result.all()}


async def _completed_challenge_slugs(db: AsyncSession, profile_id: str, slugs: set[str]) -> set[str]:
    if not slugs:
        return set()
    async with store_operation("load completed challenges"):
        result = await db.execute(
            select(GamificationChallenge.slug)
            .join(ChallengeProgress, ChallengeProgress.challenge_id == GamificationChallenge.id)
            .where(
                ChallengeProgress.profile_id == profile_id,
                ChallengeProgress.status == "completed",
                GamificationChallenge.slug.in_(slugs),
            )
        )
        return set(result.scalars().all())


async def evaluate_badges(
    db: AsyncSession,
    profile: GamificationProfile,
    action_type: str,
    now: datetime,
) -> list[OwnedBadgeResponse]:
    """Award every unowned, available badge whose requirement is now met.

    Safe to call repeatedly or concurrently: awards are upserted on
    (profile_id, badge_id).
    """
    owned = await get_owned_badge_ids(db, profile.profile_id)

    async with store_operation("load badge catalog"):
        result = await db.execute(select(GamificationBadge).order_by(GamificationBadge.slug))
        catalog = result.scalars().all()

    candidates: list[tuple[GamificationBadge, object]] = []
    for badge in catalog:
        if badge.id in owned or not is_badge_available(badge, now):
            continue
        requirement = parse_badge_requirement(badge.requirements)
        if isinstance(requirement, UnparseableRequirement):
            logger.warning("Skipping badge %s with unparseable requirements: %s", badge.slug, requirement.reason)
            continue
        candidates.append((badge, requirement))

    if not candidates:
        return []

    action_counts = await _count_actions(
        db,
        profile.profile_id,
        {r.action_type for _, r in candidates if isinstance(r, TotalActionsRequirement)},
    )
    completed = await _completed_challenge_slugs(
        db,
        profile.profile_id,
        {r.challenge_slug for _, r in candidates if isinstance(r, ChallengeCompletedRequirement)},
    )

    earned: list[GamificationBadge] = []
    responses: list[OwnedBadgeResponse] = []
    for badge, requirement in candidates:
        if not requirement_met(
            requirement,
            profile=profile,
            action_type=action_type,
            action_counts=action_counts,
            completed_challenges=completed,
        ):
            continue
        try:
            responses.append(owned_badge_response(badge, awarded_at=now))
        except ValidationError:
            logger.warning("Skipping malformed badge %s", badge.slug, exc_info=True)
            continue
        earned.append(badge)

    if not earned:
        return []

    async with store_operation("award badges"):
        await upsert_rows(
            db,
            ProfileBadge,
            [
                {
                    "id": str(uuid.uuid4()),
                    "profile_id": profile.profile_id,
                    "badge_id": badge.id,
                    "awarded_at": now,
                    "state": "awarded",
                    "notified_at": None,
                }
                for badge in earned
            ],
            conflict_columns=("profile_id", "badge_id"),
            update_columns=("awarded_at",),
        )

    logger.info("Awarded badges %s to %s", [b.slug for b in earned], profile.profile_id)
    return responses
