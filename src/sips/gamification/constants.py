"""Static gamification tables: action definitions, role rules, cache keys."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum


class ActionType(str, Enum):
    POST_PUBLISHED = "post.published"
    POST_UPDATED = "post.updated"
    COMMENT_APPROVED = "comment.approved"
    COMMENT_SUBMITTED = "comment.submitted"
    COMMENT_RECEIVED_UPVOTE = "comment.received_upvote"
    ONBOARDING_COMPLETED = "onboarding.completed"
    ACCOUNT_LOGIN_STREAK = "account.login_streak"
    CHALLENGE_COMPLETED = "challenge.completed"
    BADGE_AWARDED = "badge.awarded"
    MANUAL_ADJUSTMENT = "custom.manual_adjustment"


@dataclass(frozen=True)
class ActionDefinition:
    action_type: ActionType
    base_xp: int
    base_points: int
    description: str
    cooldown_seconds: int = 0
    max_daily_occurrences: int | None = None


ACTION_DEFINITIONS: dict[ActionType, ActionDefinition] = {
    d.action_type: d
    for d in [
        ActionDefinition(ActionType.POST_PUBLISHED, 120, 100, "Published a post", cooldown_seconds=3600),
        ActionDefinition(ActionType.POST_UPDATED, 15, 10, "Updated a post", cooldown_seconds=1800, max_daily_occurrences=5),
        ActionDefinition(ActionType.COMMENT_APPROVED, 20, 15, "Comment approved", cooldown_seconds=60),
        ActionDefinition(ActionType.COMMENT_SUBMITTED, 5, 5, "Submitted a comment", max_daily_occurrences=5),
        ActionDefinition(ActionType.COMMENT_RECEIVED_UPVOTE, 2, 2, "Comment upvoted", max_daily_occurrences=25),
        ActionDefinition(ActionType.ONBOARDING_COMPLETED, 80, 60, "Completed onboarding", cooldown_seconds=86400, max_daily_occurrences=1),
        ActionDefinition(ActionType.ACCOUNT_LOGIN_STREAK, 35, 30, "Daily login", cooldown_seconds=72000, max_daily_occurrences=1),
        ActionDefinition(ActionType.CHALLENGE_COMPLETED, 90, 80, "Completed a challenge"),
        ActionDefinition(ActionType.BADGE_AWARDED, 25, 25, "Earned a badge"),
        ActionDefinition(ActionType.MANUAL_ADJUSTMENT, 0, 0, "Manual adjustment"),
    ]
}


def resolve_action_type(value: str | ActionType) -> ActionType:
    """Map a raw action string onto the enum; unknown values become manual adjustments."""
    try:
        return ActionType(value)
    except ValueError:
        return ActionType.MANUAL_ADJUSTMENT


def get_action_definition(value: str | ActionType) -> ActionDefinition:
    return ACTION_DEFINITIONS[resolve_action_type(value)]


# --- Role rules ---


@dataclass(frozen=True)
class RoleRule:
    role_slug: str
    level: int | None = None
    badge_slug: str | None = None


ROLE_ASSIGNMENT_RULES: list[RoleRule] = [
    RoleRule(role_slug="trusted-contributor", level=3),
    RoleRule(role_slug="syntax-sage", level=5),
    RoleRule(role_slug="community-mentor", badge_slug="thirty-day-streak"),
]


# --- Streaks ---

# Gap allowed between two actions before a streak resets (near-24h gaps + timezone slack)
STREAK_TOLERANCE = timedelta(days=1.5)


# --- Levels ---

EXTRAPOLATION_BASE_XP = 500
EXTRAPOLATION_GROWTH = 1.5


# --- Cache keys ---

LEVELS_CACHE_KEY = "gamification:levels"
LEADERBOARD_CACHE_PREFIX = "gamification:leaderboard"
PROFILE_CACHE_PREFIX = "gamification:profile:full"
COOLDOWN_CACHE_PREFIX = "gamification:cooldown"
