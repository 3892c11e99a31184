"""Integration tests for badge evaluation."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from sips.db.models import ChallengeProgress, ProfileBadge
from sips.gamification.badge_evaluator import evaluate_badges
from sips.gamification.profile_service import get_profile

from factories import make_badge, make_challenge, opt_in


async def _owned_count(db, profile_id: str) -> int:
    return int(
        (await db.execute(select(func.count(ProfileBadge.id)).where(ProfileBadge.profile_id == profile_id)))
        .scalar_one()
    )


class TestIdempotency:
    """Evaluating twice never duplicates ownership."""

    @pytest.mark.asyncio
    async def test_second_evaluation_awards_nothing(self, db, clock):
        await make_badge(db, "level-one", {"type": "level_reached", "level": 1})
        profile = await opt_in(db, "p1")

        first = await evaluate_badges(db, profile, "post.published", clock.now())
        second = await evaluate_badges(db, profile, "post.published", clock.now())
        await db.commit()

        assert [b.slug for b in first] == ["level-one"]
        assert second == []
        assert await _owned_count(db, "p1") == 1

    @pytest.mark.asyncio
    async def test_revoked_badge_is_not_reawarded(self, db, clock):
        badge = await make_badge(db, "level-one", {"type": "level_reached", "level": 1})
        profile = await opt_in(db, "p2")
        db.add(ProfileBadge(profile_id="p2", badge_id=badge.id, awarded_at=clock.now(), state="revoked"))
        await db.commit()

        assert await evaluate_badges(db, profile, "post.published", clock.now()) == []


class TestRequirementKinds:
    """Each requirement kind is checked against the profile snapshot."""

    @pytest.mark.asyncio
    async def test_level_threshold(self, db, clock):
        await make_badge(db, "level-three", {"type": "level_reached", "level": 3})
        profile = await opt_in(db, "p3", level=2)
        assert await evaluate_badges(db, profile, "post.published", clock.now()) == []

        profile.level = 3
        assert [b.slug for b in await evaluate_badges(db, profile, "post.published", clock.now())] == [
            "level-three"
        ]

    @pytest.mark.asyncio
    async def test_streak_uses_longest(self, db, clock):
        await make_badge(db, "week-streak", {"type": "streak", "days": 7})
        profile = await opt_in(db, "p4", current_streak=1, longest_streak=7)
        awarded = await evaluate_badges(db, profile, "account.login_streak", clock.now())
        assert [b.slug for b in awarded] == ["week-streak"]

    @pytest.mark.asyncio
    async def test_event_is_single_shot(self, db, clock):
        await make_badge(db, "welcome", {"type": "event", "event_key": "onboarding.completed"})
        profile = await opt_in(db, "p5")
        assert await evaluate_badges(db, profile, "post.published", clock.now()) == []
        awarded = await evaluate_badges(db, profile, "onboarding.completed", clock.now())
        assert [b.slug for b in awarded] == ["welcome"]

    @pytest.mark.asyncio
    async def test_challenge_completed(self, db, clock):
        challenge = await make_challenge(
            db, "weekly-commenter", {"type": "total_actions", "action_type": "comment.approved", "threshold": 3}
        )
        await make_badge(db, "weekly-champion", {"type": "challenge_completed", "challengeSlug": "weekly-commenter"})
        profile = await opt_in(db, "p6")
        assert await evaluate_badges(db, profile, "comment.approved", clock.now()) == []

        db.add(ChallengeProgress(
            profile_id="p6",
            challenge_id=challenge.id,
            status="completed",
            progress={"value": 3, "target": 3},
            started_at=clock.now(),
            completed_at=clock.now(),
        ))
        await db.commit()
        awarded = await evaluate_badges(db, profile, "comment.approved", clock.now())
        assert [b.slug for b in awarded] == ["weekly-champion"]


class TestCatalogQuality:
    """Bad catalog rows are skipped, never fatal."""

    @pytest.mark.asyncio
    async def test_unparseable_requirements_skipped(self, db, clock):
        await make_badge(db, "mystery", {"type": "mystery"})
        await make_badge(db, "no-requirements", None)
        await make_badge(db, "ok", {"type": "level_reached", "level": 1})
        profile = await opt_in(db, "p7")

        awarded = await evaluate_badges(db, profile, "post.published", clock.now())
        assert [b.slug for b in awarded] == ["ok"]

    @pytest.mark.asyncio
    async def test_malformed_rarity_skipped(self, db, clock):
        await make_badge(db, "odd", {"type": "level_reached", "level": 1}, rarity="mythic")
        profile = await opt_in(db, "p8")
        assert await evaluate_badges(db, profile, "post.published", clock.now()) == []
        assert await _owned_count(db, "p8") == 0


class TestTimeLimited:
    """Time-limited badges only award inside their window."""

    @pytest.mark.asyncio
    async def test_window(self, db, clock):
        now = clock.now()
        await make_badge(
            db,
            "spring-festival",
            {"type": "level_reached", "level": 1},
            is_time_limited=True,
            available_from=now - timedelta(days=1),
            available_to=now + timedelta(days=1),
        )
        await make_badge(
            db,
            "last-year",
            {"type": "level_reached", "level": 1},
            is_time_limited=True,
            available_to=now - timedelta(days=300),
        )
        await make_badge(
            db,
            "coming-soon",
            {"type": "level_reached", "level": 1},
            is_time_limited=True,
            available_from=now + timedelta(days=3),
        )
        profile = await opt_in(db, "p9")

        awarded = await evaluate_badges(db, profile, "post.published", now)
        assert [b.slug for b in awarded] == ["spring-festival"]

    @pytest.mark.asyncio
    async def test_persisted_award(self, db, clock):
        await make_badge(db, "level-one", {"type": "level_reached", "level": 1})
        profile = await opt_in(db, "p10")
        await evaluate_badges(db, profile, "post.published", clock.now())
        await db.commit()

        row = (await db.execute(select(ProfileBadge).where(ProfileBadge.profile_id == "p10"))).scalar_one()
        assert row.state == "awarded"
        assert row.awarded_at == clock.now()
        assert row.badge.slug == "level-one"
        assert (await get_profile(db, "p10")).opted_in is True
