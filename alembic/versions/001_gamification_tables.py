"""Gamification tables.

Creates gamification_profiles, gamification_actions, gamification_levels,
gamification_badges, profile_badges, gamification_challenges,
profile_challenge_progress, roles, profile_roles and leaderboard_snapshots.

Revision ID: 001_gamification_tables
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_gamification_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Profiles ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS gamification_profiles (
            profile_id VARCHAR(64) PRIMARY KEY,
            xp_total BIGINT NOT NULL DEFAULT 0 CHECK (xp_total >= 0),
            level INTEGER NOT NULL DEFAULT 1,
            level_title VARCHAR(64),
            prestige_level INTEGER NOT NULL DEFAULT 0,
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            last_action_at TIMESTAMPTZ,
            streak_frozen_until TIMESTAMPTZ,
            opted_in BOOLEAN NOT NULL DEFAULT false,
            settings JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_gam_profiles_xp
        ON gamification_profiles(xp_total DESC) WHERE opted_in
    """)

    # --- Action ledger (append-only) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS gamification_actions (
            id VARCHAR(36) PRIMARY KEY,
            profile_id VARCHAR(64) NOT NULL,
            action_type VARCHAR(64) NOT NULL,
            action_source VARCHAR(128),
            metadata JSONB NOT NULL DEFAULT '{}',
            xp_awarded INTEGER NOT NULL DEFAULT 0,
            points_awarded INTEGER NOT NULL DEFAULT 0,
            awarded_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            request_id VARCHAR(128)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_gam_actions_profile_type_time
        ON gamification_actions(profile_id, action_type, awarded_at)
    """)

    # --- Levels ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS gamification_levels (
            level INTEGER PRIMARY KEY,
            min_xp BIGINT NOT NULL,
            title VARCHAR(64) NOT NULL
        )
    """)

    # --- Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS gamification_badges (
            id VARCHAR(36) PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(128) NOT NULL,
            description TEXT,
            category VARCHAR(32) NOT NULL,
            rarity VARCHAR(16) NOT NULL DEFAULT 'common',
            requirements JSONB,
            reward_points INTEGER NOT NULL DEFAULT 0,
            is_time_limited BOOLEAN NOT NULL DEFAULT false,
            available_from TIMESTAMPTZ,
            available_to TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS profile_badges (
            id VARCHAR(36) PRIMARY KEY,
            profile_id VARCHAR(64) NOT NULL,
            badge_id VARCHAR(36) NOT NULL REFERENCES gamification_badges(id) ON DELETE CASCADE,
            awarded_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            state VARCHAR(16) NOT NULL DEFAULT 'awarded',
            notified_at TIMESTAMPTZ,
            CONSTRAINT profile_badges_profile_badge_key UNIQUE (profile_id, badge_id)
        )
    """)

    # --- Challenges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS gamification_challenges (
            id VARCHAR(36) PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            title VARCHAR(128) NOT NULL,
            description TEXT,
            cadence VARCHAR(16) NOT NULL DEFAULT 'weekly',
            requirements JSONB,
            reward_points INTEGER NOT NULL DEFAULT 0,
            reward_badge_id VARCHAR(36) REFERENCES gamification_badges(id) ON DELETE SET NULL,
            starts_at TIMESTAMPTZ,
            ends_at TIMESTAMPTZ,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS profile_challenge_progress (
            id VARCHAR(36) PRIMARY KEY,
            profile_id VARCHAR(64) NOT NULL,
            challenge_id VARCHAR(36) NOT NULL REFERENCES gamification_challenges(id) ON DELETE CASCADE,
            status VARCHAR(16) NOT NULL DEFAULT 'active',
            progress JSONB NOT NULL DEFAULT '{}',
            started_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            completed_at TIMESTAMPTZ,
            CONSTRAINT profile_challenge_progress_pair_key UNIQUE (profile_id, challenge_id)
        )
    """)

    # --- Roles ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS roles (
            id VARCHAR(36) PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(128) NOT NULL
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS profile_roles (
            id VARCHAR(36) PRIMARY KEY,
            profile_id VARCHAR(64) NOT NULL,
            role_id VARCHAR(36) NOT NULL REFERENCES roles(id) ON DELETE CASCADE,
            assigned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT profile_roles_profile_role_key UNIQUE (profile_id, role_id)
        )
    """)

    # --- Leaderboard snapshots ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_snapshots (
            id VARCHAR(36) PRIMARY KEY,
            scope VARCHAR(96) NOT NULL,
            captured_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            expires_at TIMESTAMPTZ NOT NULL,
            payload JSONB NOT NULL DEFAULT '[]'
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_lb_snapshots_scope_captured
        ON leaderboard_snapshots(scope, captured_at)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS leaderboard_snapshots CASCADE")
    op.execute("DROP TABLE IF EXISTS profile_roles CASCADE")
    op.execute("DROP TABLE IF EXISTS roles CASCADE")
    op.execute("DROP TABLE IF EXISTS profile_challenge_progress CASCADE")
    op.execute("DROP TABLE IF EXISTS gamification_challenges CASCADE")
    op.execute("DROP TABLE IF EXISTS profile_badges CASCADE")
    op.execute("DROP TABLE IF EXISTS gamification_badges CASCADE")
    op.execute("DROP TABLE IF EXISTS gamification_levels CASCADE")
    op.execute("DROP TABLE IF EXISTS gamification_actions CASCADE")
    op.execute("DROP TABLE IF EXISTS gamification_profiles CASCADE")
