"""Reference data seed: levels, badge catalog, challenges and rule roles."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from sips.db.models import GamificationBadge, GamificationChallenge, GamificationLevel, Role
from sips.db.upsert import upsert_rows
from sips.errors import store_operation
from sips.gamification.level_resolver import DEFAULT_LEVELS

logger = logging.getLogger(__name__)

BADGE_SEED_DATA: list[dict] = [
    # Writing
    {
        "slug": "first-post",
        "name": "First Pour",
        "description": "Publish your first post",
        "category": "writing",
        "rarity": "common",
        "reward_points": 25,
        "requirements": {"type": "total_actions", "action_type": "post.published", "threshold": 1},
    },
    {
        "slug": "prolific-writer",
        "name": "Prolific Writer",
        "description": "Publish ten posts",
        "category": "writing",
        "rarity": "rare",
        "reward_points": 100,
        "requirements": {"type": "total_actions", "action_type": "post.published", "threshold": 10},
    },
    # Community
    {
        "slug": "first-comment",
        "name": "Conversation Starter",
        "description": "Have your first comment approved",
        "category": "community",
        "rarity": "common",
        "reward_points": 10,
        "requirements": {"type": "total_actions", "action_type": "comment.approved", "threshold": 1},
    },
    {
        "slug": "regular-voice",
        "name": "Regular Voice",
        "description": "Have 25 comments approved",
        "category": "community",
        "rarity": "uncommon",
        "reward_points": 50,
        "requirements": {"type": "total_actions", "action_type": "comment.approved", "threshold": 25},
    },
    # Consistency
    {
        "slug": "seven-day-streak",
        "name": "Week of Sips",
        "description": "Keep a seven day streak",
        "category": "streak",
        "rarity": "uncommon",
        "reward_points": 40,
        "requirements": {"type": "streak", "days": 7},
    },
    {
        "slug": "thirty-day-streak",
        "name": "Bottomless Cup",
        "description": "Keep a thirty day streak",
        "category": "streak",
        "rarity": "legendary",
        "reward_points": 200,
        "requirements": {"type": "streak", "days": 30},
    },
    # Progression
    {
        "slug": "syntax-sage",
        "name": "Syntax Sage",
        "description": "Reach level 5",
        "category": "progression",
        "rarity": "rare",
        "reward_points": 75,
        "requirements": {"type": "level_reached", "level": 5},
    },
    {
        "slug": "welcome-aboard",
        "name": "Welcome Aboard",
        "description": "Finish onboarding",
        "category": "progression",
        "rarity": "common",
        "reward_points": 10,
        "requirements": {"type": "event", "event_key": "onboarding.completed"},
    },
    {
        "slug": "weekly-champion",
        "name": "Weekly Champion",
        "description": "Complete the weekly commenter challenge",
        "category": "challenge",
        "rarity": "uncommon",
        "reward_points": 60,
        "requirements": {"type": "challenge_completed", "challenge_slug": "weekly-commenter"},
    },
]

CHALLENGE_SEED_DATA: list[dict] = [
    {
        "slug": "weekly-commenter",
        "title": "Weekly Commenter",
        "description": "Get three comments approved",
        "cadence": "weekly",
        "requirements": {"type": "total_actions", "action_type": "comment.approved", "threshold": 3},
        "reward_points": 80,
    },
    {
        "slug": "steady-sipper",
        "title": "Steady Sipper",
        "description": "Hold a five day streak",
        "cadence": "monthly",
        "requirements": {"type": "streak", "days": 5},
        "reward_points": 120,
    },
]

ROLE_SEED_DATA: list[dict] = [
    {"slug": "trusted-contributor", "name": "Trusted Contributor"},
    {"slug": "syntax-sage", "name": "Syntax Sage"},
    {"slug": "community-mentor", "name": "Community Mentor"},
]


async def seed_levels(db: AsyncSession) -> int:
    async with store_operation("seed levels"):
        await upsert_rows(
            db,
            GamificationLevel,
            [{"level": e.level, "min_xp": e.min_xp, "title": e.title} for e in DEFAULT_LEVELS],
            conflict_columns=("level",),
            update_columns=("min_xp", "title"),
        )
    return len(DEFAULT_LEVELS)


async def seed_badges(db: AsyncSession) -> int:
    """Upsert the badge catalog by slug. Existing badge ids are kept."""
    async with store_operation("seed badges"):
        await upsert_rows(
            db,
            GamificationBadge,
            [
                {"id": str(uuid.uuid4()), "is_time_limited": False, **badge}
                for badge in BADGE_SEED_DATA
            ],
            conflict_columns=("slug",),
            update_columns=("name", "description", "category", "rarity", "reward_points", "requirements"),
        )
    return len(BADGE_SEED_DATA)


async def seed_challenges(db: AsyncSession) -> int:
    async with store_operation("seed challenges"):
        await upsert_rows(
            db,
            GamificationChallenge,
            [
                {"id": str(uuid.uuid4()), "is_active": True, **challenge}
                for challenge in CHALLENGE_SEED_DATA
            ],
            conflict_columns=("slug",),
            update_columns=("title", "description", "cadence", "requirements", "reward_points"),
        )
    return len(CHALLENGE_SEED_DATA)


async def seed_roles(db: AsyncSession) -> int:
    async with store_operation("seed roles"):
        await upsert_rows(
            db,
            Role,
            [{"id": str(uuid.uuid4()), **role} for role in ROLE_SEED_DATA],
            conflict_columns=("slug",),
            update_columns=("name",),
        )
    return len(ROLE_SEED_DATA)


async def seed_reference_data(db: AsyncSession) -> None:
    """Idempotently seed every reference table."""
    levels = await seed_levels(db)
    badges = await seed_badges(db)
    challenges = await seed_challenges(db)
    roles = await seed_roles(db)
    await db.commit()
    logger.info(
        "Seeded %d levels, %d badges, %d challenges, %d roles",
        levels, badges, challenges, roles,
    )
