"""Leaderboards — fast cache, persisted snapshots, live ranking query.

Reads go cache → unexpired snapshot → live query. A live result is written
back as the scope's snapshot (older snapshots for the scope are pruned) and
into the fast cache.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sips.cache import Cache, build_cache_key
from sips.config import Settings
from sips.db.models import (
    GamificationAction,
    GamificationBadge,
    GamificationProfile,
    LeaderboardSnapshot,
    ProfileBadge,
)
from sips.errors import store_operation
from sips.gamification.constants import LEADERBOARD_CACHE_PREFIX
from sips.gamification.schemas import LeaderboardEntry, LeaderboardFilters, LeaderboardResponse

logger = logging.getLogger(__name__)

MAX_LEADERBOARD_LIMIT = 100


def clamp_limit(limit: int | None, default: int) -> int:
    value = default if limit is None else limit
    return max(1, min(MAX_LEADERBOARD_LIMIT, value))


def snapshot_scope_key(scope: str, category: str | None) -> str:
    """Snapshot/cache scope. Only category boards are keyed by category."""
    if scope == "category":
        if not category:
            raise ValueError("category is required for category leaderboards")
        return f"category:{category}"
    return scope


def leaderboard_cache_key(scope_key: str) -> str:
    return build_cache_key(LEADERBOARD_CACHE_PREFIX, scope_key)


def quarter_start(now: datetime) -> datetime:
    """Start of the calendar quarter containing ``now`` (UTC)."""
    now = now.astimezone(timezone.utc)
    month = 3 * ((now.month - 1) // 3) + 1
    return now.replace(month=month, day=1, hour=0, minute=0, second=0, microsecond=0)


async def get_badge_slugs_batch(db: AsyncSession, profile_ids: list[str]) -> dict[str, list[str]]:
    """Batch-load awarded badge slugs for leaderboard enrichment."""
    if not profile_ids:
        return {}
    async with store_operation("load leaderboard badges"):
        result = await db.execute(
            select(ProfileBadge.profile_id, GamificationBadge.slug)
            .join(GamificationBadge, GamificationBadge.id == ProfileBadge.badge_id)
            .where(
                ProfileBadge.profile_id.in_(profile_ids),
                ProfileBadge.state == "awarded",
            )
        )
        slugs: dict[str, list[str]] = {}
        for profile_id, slug in result.all():
            slugs.setdefault(profile_id, []).append(slug)
    return {pid: sorted(values) for pid, values in slugs.items()}


async def _ranked_rows(
    db: AsyncSession,
    scope: str,
    category: str | None,
    now: datetime,
    size: int,
) -> list[tuple[str, int, int, int]]:
    """(profile_id, xp, level, streak) ordered by rank."""
    if scope == "global":
        query = (
            select(
                GamificationProfile.profile_id,
                GamificationProfile.xp_total,
                GamificationProfile.level,
                GamificationProfile.current_streak,
            )
            .where(GamificationProfile.opted_in.is_(True))
            .order_by(GamificationProfile.xp_total.desc(), GamificationProfile.profile_id.asc())
            .limit(size)
        )
    else:
        xp = func.sum(GamificationAction.xp_awarded).label("xp")
        query = (
            select(
                GamificationProfile.profile_id,
                xp,
                GamificationProfile.level,
                GamificationProfile.current_streak,
            )
            .join(GamificationAction, GamificationAction.profile_id == GamificationProfile.profile_id)
            .where(GamificationProfile.opted_in.is_(True))
            .group_by(
                GamificationProfile.profile_id,
                GamificationProfile.level,
                GamificationProfile.current_streak,
            )
            .having(func.sum(GamificationAction.xp_awarded) > 0)
            .order_by(xp.desc(), GamificationProfile.profile_id.asc())
            .limit(size)
        )
        if scope == "seasonal":
            query = query.where(GamificationAction.awarded_at >= quarter_start(now))
        else:
            query = query.where(GamificationAction.action_type.startswith(f"{category}.", autoescape=True))

    async with store_operation("build leaderboard"):
        result = await db.execute(query)
        return [(row[0], int(row[1] or 0), int(row[2]), int(row[3])) for row in result.all()]


async def build_live_entries(
    db: AsyncSession,
    scope: str,
    category: str | None,
    now: datetime,
    size: int,
) -> list[LeaderboardEntry]:
    rows = await _ranked_rows(db, scope, category, now, size)
    badges = await get_badge_slugs_batch(db, [row[0] for row in rows])
    return [
        LeaderboardEntry(
            rank=index + 1,
            profile_id=profile_id,
            display_name=profile_id,
            level=level,
            xp=xp,
            streak=streak,
            badges=badges.get(profile_id, []),
        )
        for index, (profile_id, xp, level, streak) in enumerate(rows)
    ]


async def load_snapshot(
    db: AsyncSession,
    scope_key: str,
    now: datetime,
) -> tuple[list[LeaderboardEntry], datetime] | None:
    """Latest unexpired snapshot for ``scope_key``."""
    async with store_operation("load leaderboard snapshot"):
        result = await db.execute(
            select(LeaderboardSnapshot)
            .where(
                LeaderboardSnapshot.scope == scope_key,
                LeaderboardSnapshot.expires_at > now,
            )
            .order_by(LeaderboardSnapshot.captured_at.desc())
            .limit(1)
        )
        snapshot = result.scalar_one_or_none()
    if snapshot is None or not isinstance(snapshot.payload, list):
        return None

    entries: list[LeaderboardEntry] = []
    for index, raw in enumerate(snapshot.payload):
        if not isinstance(raw, dict):
            continue
        try:
            entries.append(LeaderboardEntry.model_validate({"rank": index + 1, **raw}))
        except ValidationError:
            logger.warning("Dropping malformed snapshot entry in %s", scope_key)
    return entries, snapshot.captured_at


async def save_snapshot(
    db: AsyncSession,
    scope_key: str,
    entries: list[LeaderboardEntry],
    now: datetime,
    ttl_seconds: int,
) -> None:
    """Persist a snapshot and prune older ones for the same scope."""
    snapshot = LeaderboardSnapshot(
        scope=scope_key,
        captured_at=now,
        expires_at=now + timedelta(seconds=ttl_seconds),
        payload=[entry.model_dump(mode="json") for entry in entries],
    )
    async with store_operation("save leaderboard snapshot"):
        db.add(snapshot)
        await db.flush()
        await db.execute(
            delete(LeaderboardSnapshot).where(
                LeaderboardSnapshot.scope == scope_key,
                LeaderboardSnapshot.id != snapshot.id,
            )
        )
        await db.commit()


async def _cache_board(
    cache: Cache,
    scope_key: str,
    entries: list[LeaderboardEntry],
    captured_at: datetime,
    ttl_seconds: int,
) -> None:
    await cache.set(
        leaderboard_cache_key(scope_key),
        {
            "entries": [entry.model_dump(mode="json") for entry in entries],
            "captured_at": captured_at.isoformat(),
        },
        ttl_seconds,
    )


async def refresh_leaderboard_snapshot(
    db: AsyncSession,
    cache: Cache,
    scope: str,
    category: str | None,
    settings: Settings,
    now: datetime | None = None,
) -> LeaderboardResponse:
    """Rebuild a scope from the live query, persist it and refill the cache."""
    now = now or datetime.now(timezone.utc)
    scope_key = snapshot_scope_key(scope, category)
    entries = await build_live_entries(db, scope, category, now, settings.leaderboard_snapshot_size)
    await save_snapshot(db, scope_key, entries, now, settings.leaderboard_snapshot_ttl_seconds)
    await _cache_board(cache, scope_key, entries, now, settings.leaderboard_cache_ttl_seconds)
    logger.info("Leaderboard %s refreshed: %d entries", scope_key, len(entries))
    return LeaderboardResponse(
        scope=scope,
        category=category if scope == "category" else None,
        entries=entries,
        captured_at=now,
    )


async def fetch_leaderboard(
    db: AsyncSession,
    cache: Cache,
    filters: LeaderboardFilters,
    settings: Settings,
    now: datetime | None = None,
) -> LeaderboardResponse:
    now = now or datetime.now(timezone.utc)
    scope = filters.scope
    category = filters.category if scope == "category" else None
    scope_key = snapshot_scope_key(scope, category)
    limit = clamp_limit(filters.limit, settings.leaderboard_default_limit)

    cached = await cache.get(leaderboard_cache_key(scope_key))
    if isinstance(cached, dict):
        try:
            board = LeaderboardResponse.model_validate({"scope": scope, "category": category, **cached})
        except ValidationError:
            logger.warning("Discarding malformed cached leaderboard %s", scope_key)
        else:
            if len(board.entries) >= limit or len(board.entries) < settings.leaderboard_snapshot_size:
                board.entries = board.entries[:limit]
                return board

    snapshot = await load_snapshot(db, scope_key, now)
    if snapshot is not None and (
        len(snapshot[0]) >= limit or len(snapshot[0]) < settings.leaderboard_snapshot_size
    ):
        entries, captured_at = snapshot
    else:
        size = max(limit, settings.leaderboard_snapshot_size)
        entries = await build_live_entries(db, scope, category, now, size)
        await save_snapshot(db, scope_key, entries, now, settings.leaderboard_snapshot_ttl_seconds)
        captured_at = now

    await _cache_board(cache, scope_key, entries, captured_at, settings.leaderboard_cache_ttl_seconds)
    return LeaderboardResponse(
        scope=scope,
        category=category,
        entries=entries[:limit],
        captured_at=captured_at,
    )
