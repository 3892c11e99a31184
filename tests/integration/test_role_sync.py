"""Integration tests for rule-governed role membership."""

from __future__ import annotations

import logging

import pytest
from sqlalchemy import select

from sips.db.models import ProfileBadge, ProfileRole, Role
from sips.gamification.role_sync import sync_roles
from sips.gamification.schemas import RecordActionInput

from factories import make_badge, opt_in


async def _held_roles(db, profile_id: str) -> list[str]:
    result = await db.execute(
        select(Role.slug)
        .join(ProfileRole, ProfileRole.role_id == Role.id)
        .where(ProfileRole.profile_id == profile_id)
        .order_by(Role.slug)
    )
    return list(result.scalars().all())


class TestSyncRoles:
    """Rule roles follow level and badges; manual roles are never touched."""

    @pytest.mark.asyncio
    async def test_level_grants_role_and_keeps_manual_role(self, db, clock, reference_data):
        moderator = Role(slug="moderator", name="Moderator")
        db.add(moderator)
        await db.flush()
        db.add(ProfileRole(profile_id="veteran", role_id=moderator.id, assigned_at=clock.now()))
        profile = await opt_in(db, "veteran", level=3, xp_total=300)

        result = await sync_roles(db, profile, now=clock.now())
        await db.commit()

        assert result.added == ["trusted-contributor"]
        assert result.removed == []
        assert await _held_roles(db, "veteran") == ["moderator", "trusted-contributor"]

    @pytest.mark.asyncio
    async def test_demotion_removes_rule_role_only(self, db, clock, reference_data):
        moderator = Role(slug="moderator", name="Moderator")
        db.add(moderator)
        await db.flush()
        db.add(ProfileRole(profile_id="fallen", role_id=moderator.id, assigned_at=clock.now()))
        profile = await opt_in(db, "fallen", level=5, xp_total=1200)
        await sync_roles(db, profile, now=clock.now())
        await db.commit()
        assert await _held_roles(db, "fallen") == ["moderator", "syntax-sage", "trusted-contributor"]

        profile.level = 2
        result = await sync_roles(db, profile, now=clock.now())
        await db.commit()

        assert result.added == []
        assert result.removed == ["syntax-sage", "trusted-contributor"]
        assert await _held_roles(db, "fallen") == ["moderator"]

    @pytest.mark.asyncio
    async def test_badge_rule(self, db, clock, reference_data):
        badge = await make_badge(db, "thirty-day-streak", {"type": "streak", "days": 30})
        profile = await opt_in(db, "marathoner")
        db.add(ProfileBadge(profile_id="marathoner", badge_id=badge.id, awarded_at=clock.now()))
        await db.commit()

        result = await sync_roles(db, profile, now=clock.now())
        assert result.added == ["community-mentor"]

    @pytest.mark.asyncio
    async def test_revoked_badge_grants_nothing(self, db, clock, reference_data):
        badge = await make_badge(db, "thirty-day-streak", {"type": "streak", "days": 30})
        profile = await opt_in(db, "revoked-user")
        db.add(ProfileBadge(profile_id="revoked-user", badge_id=badge.id, awarded_at=clock.now(), state="revoked"))
        await db.commit()

        result = await sync_roles(db, profile, now=clock.now())
        assert "community-mentor" not in result.added
        assert await _held_roles(db, "revoked-user") == []

    @pytest.mark.asyncio
    async def test_revocation_removes_badge_role(self, db, clock, reference_data):
        badge = await make_badge(db, "thirty-day-streak", {"type": "streak", "days": 30})
        profile = await opt_in(db, "mentor")
        owned = ProfileBadge(profile_id="mentor", badge_id=badge.id, awarded_at=clock.now())
        db.add(owned)
        await db.commit()
        await sync_roles(db, profile, now=clock.now())
        await db.commit()
        assert await _held_roles(db, "mentor") == ["community-mentor"]

        owned.state = "suspended"
        await db.commit()
        result = await sync_roles(db, profile, now=clock.now())
        await db.commit()

        assert result.removed == ["community-mentor"]
        assert await _held_roles(db, "mentor") == []

    @pytest.mark.asyncio
    async def test_newly_awarded_slugs_count(self, db, clock, reference_data):
        profile = await opt_in(db, "fresh")
        result = await sync_roles(db, profile, newly_awarded=["thirty-day-streak"], now=clock.now())
        assert result.added == ["community-mentor"]

    @pytest.mark.asyncio
    async def test_missing_roles_are_skipped(self, db, clock):
        profile = await opt_in(db, "orphan", level=9)
        result = await sync_roles(db, profile, now=clock.now())
        await db.commit()

        assert result.added == []
        assert result.removed == []
        assert await _held_roles(db, "orphan") == []

    @pytest.mark.asyncio
    async def test_repeat_sync_is_noop(self, db, clock, reference_data):
        profile = await opt_in(db, "steady", level=3)
        await sync_roles(db, profile, now=clock.now())
        await db.commit()

        result = await sync_roles(db, profile, now=clock.now())
        assert result.added == []
        assert result.removed == []
        assert await _held_roles(db, "steady") == ["trusted-contributor"]


class TestThroughEngine:
    @pytest.mark.asyncio
    async def test_adjustment_grants_role(self, db, points_engine, reference_data):
        await opt_in(db, "boosted")
        result = await points_engine.record_action(
            RecordActionInput(profile_id="boosted", action_type="custom.manual_adjustment", metadata={"xp": 300})
        )
        assert result.profile.level == 3
        assert await _held_roles(db, "boosted") == ["trusted-contributor"]

    @pytest.mark.asyncio
    async def test_role_changes_are_logged(self, db, points_engine, reference_data, caplog):
        await opt_in(db, "announced")
        with caplog.at_level(logging.INFO, logger="sips.gamification.points_engine"):
            await points_engine.record_action(
                RecordActionInput(profile_id="announced", action_type="custom.manual_adjustment", metadata={"xp": 300})
            )
        assert any(
            "Roles for announced" in record.getMessage() and "trusted-contributor" in record.getMessage()
            for record in caplog.records
        )
