"""Integration tests for the profile read projection and settings writes."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from sips.db.models import GamificationProfile, ProfileBadge
from sips.gamification.profile_service import (
    fetch_gamification_profile,
    freeze_streak,
    profile_cache_key,
    update_settings,
)
from sips.gamification.schemas import RecordActionInput, SettingsUpdateRequest

from factories import make_badge, make_challenge, opt_in


class TestFetchProfile:
    """Cache-first read of a profile's gamification state."""

    @pytest.mark.asyncio
    async def test_unknown_profile(self, db, cache, settings, reference_data):
        assert await fetch_gamification_profile(db, cache, "nobody", settings) is None

    @pytest.mark.asyncio
    async def test_payload_contents(self, db, points_engine, cache, settings, clock, reference_data):
        await make_badge(db, "first-post", {"type": "total_actions", "action_type": "post.published", "threshold": 1})
        await make_challenge(
            db, "weekly-commenter", {"type": "total_actions", "action_type": "comment.approved", "threshold": 3}
        )
        await opt_in(db, "reader")

        await points_engine.record_action(RecordActionInput(profile_id="reader", action_type="post.published"))
        clock.advance(days=1)
        await points_engine.record_action(RecordActionInput(profile_id="reader", action_type="comment.approved"))
        clock.advance(minutes=5)
        await points_engine.record_action(RecordActionInput(profile_id="reader", action_type="comment.submitted"))

        payload = await fetch_gamification_profile(db, cache, "reader", settings)

        assert payload.profile.xp_total == 145
        assert payload.profile.level == 2
        assert payload.profile.next_level_xp == 300
        assert payload.profile.current_streak == 2
        assert [b.slug for b in payload.badges] == ["first-post"]
        assert [a.action_type for a in payload.recent_actions] == [
            "comment.submitted",
            "comment.approved",
            "post.published",
        ]
        assert [(h.day, h.xp, h.actions) for h in payload.streak_history] == [
            (date(2026, 5, 12), 120, 1),
            (date(2026, 5, 13), 25, 2),
        ]
        assert [(c.challenge_slug, c.value, c.status) for c in payload.challenges] == [
            ("weekly-commenter", 1, "active")
        ]

    @pytest.mark.asyncio
    async def test_recent_actions_limited(self, db, points_engine, cache, settings, clock, reference_data):
        await opt_in(db, "busy")
        settings.recent_actions_limit = 2
        for _ in range(3):
            await points_engine.record_action(RecordActionInput(profile_id="busy", action_type="comment.approved"))
            clock.advance(minutes=2)

        payload = await fetch_gamification_profile(db, cache, "busy", settings)
        assert len(payload.recent_actions) == 2

    @pytest.mark.asyncio
    async def test_served_from_cache(self, db, cache, settings, reference_data):
        await opt_in(db, "cached")
        first = await fetch_gamification_profile(db, cache, "cached", settings)
        assert await cache.get(profile_cache_key("cached")) is not None

        profile = await db.get(GamificationProfile, "cached")
        profile.xp_total = 999
        await db.commit()

        second = await fetch_gamification_profile(db, cache, "cached", settings)
        assert second.profile.xp_total == first.profile.xp_total == 0

    @pytest.mark.asyncio
    async def test_malformed_cache_entry_is_rebuilt(self, db, cache, settings, reference_data):
        await opt_in(db, "garbled", xp_total=150, level=2)
        await cache.set(profile_cache_key("garbled"), {"profile": "nonsense"}, 60)

        payload = await fetch_gamification_profile(db, cache, "garbled", settings)
        assert payload.profile.xp_total == 150

    @pytest.mark.asyncio
    async def test_malformed_badge_dropped(self, db, cache, settings, clock, reference_data):
        good = await make_badge(db, "good", {"type": "level_reached", "level": 1})
        odd = await make_badge(db, "odd", {"type": "level_reached", "level": 1}, rarity="mythic")
        await opt_in(db, "collector")
        db.add(ProfileBadge(profile_id="collector", badge_id=good.id, awarded_at=clock.now()))
        db.add(ProfileBadge(profile_id="collector", badge_id=odd.id, awarded_at=clock.now()))
        await db.commit()

        payload = await fetch_gamification_profile(db, cache, "collector", settings)
        assert [b.slug for b in payload.badges] == ["good"]


class TestSettings:
    """Consent toggle and settings merge."""

    @pytest.mark.asyncio
    async def test_opt_in_and_merge(self, db, cache, settings, clock, reference_data):
        summary = await update_settings(
            db, cache, "newcomer", SettingsUpdateRequest(opted_in=True, settings={"theme": "dark"}), settings,
            now=clock.now(),
        )
        assert summary.opted_in is True
        assert summary.settings == {"theme": "dark"}

        summary = await update_settings(
            db, cache, "newcomer", SettingsUpdateRequest(settings={"digest": "weekly"}), settings, now=clock.now()
        )
        assert summary.opted_in is True
        assert summary.settings == {"theme": "dark", "digest": "weekly"}

        profile = await db.get(GamificationProfile, "newcomer", populate_existing=True)
        assert profile.settings == {"theme": "dark", "digest": "weekly"}

    @pytest.mark.asyncio
    async def test_opt_out_invalidates_cache(self, db, cache, settings, reference_data):
        await opt_in(db, "leaver")
        await fetch_gamification_profile(db, cache, "leaver", settings)

        await update_settings(db, cache, "leaver", SettingsUpdateRequest(opted_in=False), settings)
        assert await cache.get(profile_cache_key("leaver")) is None

        payload = await fetch_gamification_profile(db, cache, "leaver", settings)
        assert payload.profile.opted_in is False


class TestStreakFreeze:
    @pytest.mark.asyncio
    async def test_freeze_sets_deadline(self, db, cache, settings, clock, reference_data):
        await opt_in(db, "holiday", current_streak=4)
        summary = await freeze_streak(db, cache, "holiday", 48, settings, now=clock.now())

        assert summary.streak_frozen_until == clock.now() + timedelta(hours=48)
        assert summary.current_streak == 4
        profile = await db.get(GamificationProfile, "holiday", populate_existing=True)
        assert profile.streak_frozen_until == clock.now() + timedelta(hours=48)
