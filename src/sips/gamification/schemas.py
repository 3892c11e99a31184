"""Pydantic models for engine inputs/outputs and gamification endpoints."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


# --- Actions ---


class RecordActionInput(BaseModel):
    profile_id: str = Field(min_length=1, max_length=64)
    # Plain str: unknown action types are accepted and treated as manual adjustments
    action_type: str = "custom.manual_adjustment"
    metadata: dict[str, Any] = {}
    action_source: str | None = None
    request_id: str | None = None


RejectionReason = Literal["opted_out", "cooldown", "daily_cap"]


# --- Profile ---


class ProfileSummary(BaseModel):
    profile_id: str
    xp_total: int
    level: int
    level_title: str | None = None
    prestige_level: int = 0
    current_streak: int
    longest_streak: int
    next_level_xp: int
    progress_percentage: float
    opted_in: bool
    last_action_at: datetime | None = None
    streak_frozen_until: datetime | None = None
    settings: dict[str, Any] = {}


class OwnedBadgeResponse(BaseModel):
    id: str
    slug: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str | None = None
    category: str
    rarity: Literal["common", "uncommon", "rare", "legendary"]
    reward_points: int = 0
    is_time_limited: bool = False
    available_from: datetime | None = None
    available_to: datetime | None = None
    awarded_at: datetime
    state: Literal["awarded", "revoked", "suspended"] = "awarded"
    notified_at: datetime | None = None


class ChallengeProgressResponse(BaseModel):
    challenge_id: str
    challenge_slug: str
    title: str | None = None
    status: Literal["active", "completed", "expired"]
    value: int = 0
    target: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    ends_at: datetime | None = None


class RecordActionResult(BaseModel):
    applied: bool
    action_type: str
    xp_awarded: int = 0
    points_awarded: int = 0
    rejection_reason: RejectionReason | None = None
    profile: ProfileSummary
    newly_earned_badges: list[OwnedBadgeResponse] = []
    completed_challenges: list[ChallengeProgressResponse] = []


class ActionHistoryEntry(BaseModel):
    action_type: str
    action_source: str | None = None
    xp_awarded: int
    points_awarded: int
    awarded_at: datetime
    metadata: dict[str, Any] = {}


class StreakHistoryEntry(BaseModel):
    day: date
    xp: int
    actions: int


class ProfilePayload(BaseModel):
    profile: ProfileSummary
    badges: list[OwnedBadgeResponse]
    recent_actions: list[ActionHistoryEntry]
    streak_history: list[StreakHistoryEntry]
    challenges: list[ChallengeProgressResponse] = []


class SettingsUpdateRequest(BaseModel):
    opted_in: bool | None = None
    settings: dict[str, Any] | None = None


class StreakFreezeRequest(BaseModel):
    hours: int = Field(gt=0, le=168)


# --- Leaderboard ---


LeaderboardScope = Literal["global", "seasonal", "category"]


class LeaderboardFilters(BaseModel):
    scope: LeaderboardScope = "global"
    category: str | None = None
    limit: int | None = None


class LeaderboardEntry(BaseModel):
    rank: int
    profile_id: str
    display_name: str
    level: int
    xp: int
    streak: int = 0
    badges: list[str] = []


class LeaderboardResponse(BaseModel):
    scope: LeaderboardScope
    category: str | None = None
    entries: list[LeaderboardEntry]
    captured_at: datetime


# --- Challenges ---


class ActiveChallengeResponse(BaseModel):
    id: str
    slug: str
    title: str
    description: str | None = None
    cadence: str
    reward_points: int
    reward_badge_id: str | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    requirements: dict[str, Any] = {}
    progress: ChallengeProgressResponse | None = None


class ActiveChallengesResponse(BaseModel):
    challenges: list[ActiveChallengeResponse]


# --- Admin analytics ---


class StreakLeader(BaseModel):
    profile_id: str
    streak: int
    level: int
    xp: int


class ProfileAnalytics(BaseModel):
    total: int
    total_xp: int
    average_level: float
    streak_leaders: list[StreakLeader]


class AnalyticsResponse(BaseModel):
    profiles: ProfileAnalytics
    badges: dict[str, int]
    challenges: dict[str, int]
