"""ORM models for the gamification tables.

Profiles themselves (display names, avatars, auth) live in the platform's
``profiles`` table which this service does not own; ``profile_id`` is the
opaque key shared with it.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sips.db.base import Base
from sips.db.types import JSONType, UTCDateTime


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Profiles & ledger
# ---------------------------------------------------------------------------


class GamificationProfile(Base):
    """Denormalized gamification state — one row per platform profile."""

    __tablename__ = "gamification_profiles"

    profile_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    xp_total: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    level_title: Mapped[str | None] = mapped_column(String(64), nullable=True)
    prestige_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_action_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    streak_frozen_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    opted_in: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    settings: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class GamificationAction(Base):
    """Immutable action ledger. Never updated or deleted."""

    __tablename__ = "gamification_actions"
    __table_args__ = (
        Index("idx_gam_actions_profile_type_time", "profile_id", "action_type", "awarded_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    profile_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action_type: Mapped[str] = mapped_column(String(64), nullable=False)
    action_source: Mapped[str | None] = mapped_column(String(128), nullable=True)
    action_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    xp_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    awarded_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    request_id: Mapped[str | None] = mapped_column(String(128), nullable=True)


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------


class GamificationLevel(Base):
    """Level table — min_xp is non-decreasing with level."""

    __tablename__ = "gamification_levels"

    level: Mapped[int] = mapped_column(Integer, primary_key=True)
    min_xp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    title: Mapped[str] = mapped_column(String(64), nullable=False)


class GamificationBadge(Base):
    """Badge catalog. ``requirements`` is parsed by gamification.requirements."""

    __tablename__ = "gamification_badges"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    rarity: Mapped[str] = mapped_column(String(16), nullable=False, default="common")
    requirements: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    reward_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_time_limited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    available_from: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    available_to: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class ProfileBadge(Base):
    """Badges owned by profiles — UNIQUE(profile_id, badge_id) prevents duplicates."""

    __tablename__ = "profile_badges"
    __table_args__ = (
        UniqueConstraint("profile_id", "badge_id", name="profile_badges_profile_badge_key"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    profile_id: Mapped[str] = mapped_column(String(64), nullable=False)
    badge_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("gamification_badges.id", ondelete="CASCADE"), nullable=False
    )
    awarded_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    state: Mapped[str] = mapped_column(String(16), nullable=False, default="awarded")
    notified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    badge: Mapped[GamificationBadge] = relationship("GamificationBadge", lazy="joined")


class GamificationChallenge(Base):
    """Time-windowed challenge catalog."""

    __tablename__ = "gamification_challenges"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    cadence: Mapped[str] = mapped_column(String(16), nullable=False, default="weekly")
    requirements: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    reward_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reward_badge_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("gamification_badges.id", ondelete="SET NULL"), nullable=True
    )
    starts_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class ChallengeProgress(Base):
    """Per-profile challenge progress — one row per (profile, challenge)."""

    __tablename__ = "profile_challenge_progress"
    __table_args__ = (
        UniqueConstraint("profile_id", "challenge_id", name="profile_challenge_progress_pair_key"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    profile_id: Mapped[str] = mapped_column(String(64), nullable=False)
    challenge_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("gamification_challenges.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    progress: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    challenge: Mapped[GamificationChallenge] = relationship("GamificationChallenge", lazy="joined")


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class Role(Base):
    """Platform roles. Only the rule-governed subset is touched by role sync."""

    __tablename__ = "roles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)


class ProfileRole(Base):
    """Role memberships — UNIQUE(profile_id, role_id)."""

    __tablename__ = "profile_roles"
    __table_args__ = (
        UniqueConstraint("profile_id", "role_id", name="profile_roles_profile_role_key"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    profile_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role_id: Mapped[str] = mapped_column(String(36), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    role: Mapped[Role] = relationship("Role", lazy="joined")


# ---------------------------------------------------------------------------
# Leaderboards
# ---------------------------------------------------------------------------


class LeaderboardSnapshot(Base):
    """Point-in-time ranking materialization, pruned per scope after each write."""

    __tablename__ = "leaderboard_snapshots"
    __table_args__ = (
        Index("idx_lb_snapshots_scope_captured", "scope", "captured_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    scope: Mapped[str] = mapped_column(String(96), nullable=False)
    captured_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    payload: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
