"""Integration tests for admin analytics."""

from __future__ import annotations

import pytest

from sips.db.models import ChallengeProgress, ProfileBadge
from sips.gamification.analytics_service import fetch_analytics

from factories import make_badge, make_challenge, opt_in


class TestAnalytics:
    @pytest.mark.asyncio
    async def test_empty(self, db):
        analytics = await fetch_analytics(db)
        assert analytics.profiles.total == 0
        assert analytics.profiles.total_xp == 0
        assert analytics.profiles.average_level == 0.0
        assert analytics.profiles.streak_leaders == []
        assert analytics.badges == {}
        assert analytics.challenges == {}

    @pytest.mark.asyncio
    async def test_aggregates(self, db, clock):
        badge = await make_badge(db, "first-post", {"type": "level_reached", "level": 1})
        challenge = await make_challenge(db, "steady-sipper", {"type": "streak", "days": 5})
        for index, (xp, level, streak) in enumerate([(100, 2, 1), (300, 3, 9), (0, 1, 0)]):
            await opt_in(db, f"p{index}", xp_total=xp, level=level, current_streak=streak)
        for profile_id in ("p0", "p1"):
            db.add(ProfileBadge(profile_id=profile_id, badge_id=badge.id, awarded_at=clock.now()))
        db.add(ChallengeProgress(
            profile_id="p1",
            challenge_id=challenge.id,
            status="completed",
            progress={"value": 9, "target": 5},
            started_at=clock.now(),
            completed_at=clock.now(),
        ))
        db.add(ChallengeProgress(
            profile_id="p0",
            challenge_id=challenge.id,
            status="active",
            progress={"value": 1, "target": 5},
            started_at=clock.now(),
        ))
        await db.commit()

        analytics = await fetch_analytics(db)

        assert analytics.profiles.total == 3
        assert analytics.profiles.total_xp == 400
        assert analytics.profiles.average_level == 2.0
        assert [(s.profile_id, s.streak) for s in analytics.profiles.streak_leaders] == [
            ("p1", 9),
            ("p0", 1),
            ("p2", 0),
        ]
        assert analytics.badges == {"first-post": 2}
        assert analytics.challenges == {"active": 1, "completed": 1}
