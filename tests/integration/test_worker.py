"""Worker job tests, run directly against the test database."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from sips.db.models import ChallengeProgress, LeaderboardSnapshot
from sips.gamification import worker
from sips.gamification.worker import (
    LEADERBOARD_CATEGORIES,
    GamificationWorkerSettings,
    expire_finished_challenges,
    refresh_leaderboard_snapshots,
)

from factories import make_challenge, opt_in


@pytest.fixture
def worker_sessions(monkeypatch, session_factory):
    @asynccontextmanager
    async def _scope():
        async with session_factory() as session:
            yield session

    monkeypatch.setattr(worker, "session_scope", _scope)


class TestWorkerConfig:
    def test_categories_are_action_families(self):
        assert LEADERBOARD_CATEGORIES == ["account", "badge", "challenge", "comment", "onboarding", "post"]

    def test_jobs_registered(self):
        assert refresh_leaderboard_snapshots in GamificationWorkerSettings.functions
        assert expire_finished_challenges in GamificationWorkerSettings.functions
        assert len(GamificationWorkerSettings.cron_jobs) == 2


class TestJobs:
    @pytest.mark.asyncio
    async def test_refresh_all_boards(self, db, cache, worker_sessions):
        await opt_in(db, "alice", xp_total=500)

        refreshed = await refresh_leaderboard_snapshots({"cache": cache})

        assert refreshed == 2 + len(LEADERBOARD_CATEGORIES)
        scopes = set((await db.execute(select(LeaderboardSnapshot.scope))).scalars().all())
        assert scopes == {"global", "seasonal"} | {f"category:{c}" for c in LEADERBOARD_CATEGORIES}

    @pytest.mark.asyncio
    async def test_expire_job(self, db, worker_sessions):
        now = datetime.now(timezone.utc)
        closed = await make_challenge(
            db, "last-week", {"type": "streak", "days": 5}, ends_at=now - timedelta(days=1)
        )
        db.add(ChallengeProgress(
            profile_id="late",
            challenge_id=closed.id,
            status="active",
            progress={"value": 1, "target": 5},
            started_at=now - timedelta(days=8),
        ))
        await db.commit()

        assert await expire_finished_challenges({}) == 1
        row = (
            await db.execute(select(ChallengeProgress).execution_options(populate_existing=True))
        ).scalar_one()
        assert row.status == "expired"
