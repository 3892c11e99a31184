"""Gamification arq worker — leaderboard snapshots and challenge expiry.

Intervals:
- Leaderboard snapshots: every 10 minutes (inside the 15 minute snapshot TTL)
- Challenge expiry: hourly
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from arq import cron
from arq.connections import RedisSettings

from sips.cache import Cache, create_cache
from sips.config import get_settings
from sips.database import close_db, init_db, session_scope
from sips.gamification.challenge_service import expire_challenge_progress
from sips.gamification.constants import ActionType
from sips.gamification.leaderboard_service import refresh_leaderboard_snapshot

logger = logging.getLogger(__name__)

# Action families that get their own category board
LEADERBOARD_CATEGORIES: list[str] = sorted(
    {action.value.split(".", 1)[0] for action in ActionType} - {"custom"}
)


async def refresh_leaderboard_snapshots(ctx: dict) -> int:  # type: ignore[type-arg]
    """Rebuild the global, seasonal and per-category snapshots. Returns boards refreshed."""
    cache: Cache = ctx["cache"]
    settings = get_settings()
    now = datetime.now(timezone.utc)
    boards: list[tuple[str, str | None]] = [("global", None), ("seasonal", None)]
    boards += [("category", category) for category in LEADERBOARD_CATEGORIES]

    async with session_scope() as db:
        for scope, category in boards:
            await refresh_leaderboard_snapshot(db, cache, scope, category, settings, now)

    logger.info("Refreshed %d leaderboard snapshots", len(boards))
    return len(boards)


async def expire_finished_challenges(ctx: dict) -> int:  # type: ignore[type-arg]
    """Mark progress on closed challenges as expired."""
    async with session_scope() as db:
        expired = await expire_challenge_progress(db, datetime.now(timezone.utc))
    if expired:
        logger.info("Expired %d challenge progress rows", expired)
    return expired


async def gamification_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize DB + cache on worker startup."""
    settings = get_settings()
    await init_db(settings)
    ctx["cache"] = create_cache(settings)
    logger.info("Gamification worker started")


async def gamification_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    cache: Cache | None = ctx.get("cache")
    if cache is not None:
        await cache.close()
    await close_db()
    logger.info("Gamification worker shut down")


class GamificationWorkerSettings:
    """arq worker settings for gamification maintenance jobs."""

    functions = [refresh_leaderboard_snapshots, expire_finished_challenges]
    cron_jobs = [
        cron(refresh_leaderboard_snapshots, minute={0, 10, 20, 30, 40, 50}),
        cron(expire_finished_challenges, minute=5),
    ]
    on_startup = gamification_startup
    on_shutdown = gamification_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 2
    job_timeout = 300  # 5 minutes max per job
