"""Level resolution from total XP.

The level table is reference data loaded from ``gamification_levels`` and kept
in the cache; ``DEFAULT_LEVELS`` is what the seed writes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sips.cache import Cache
from sips.db.models import GamificationLevel
from sips.errors import store_operation
from sips.gamification.constants import (
    EXTRAPOLATION_BASE_XP,
    EXTRAPOLATION_GROWTH,
    LEVELS_CACHE_KEY,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LevelDefinition:
    level: int
    min_xp: int
    title: str


@dataclass(frozen=True)
class LevelInfo:
    level: int
    title: str
    current_level_xp: int
    next_level_xp: int
    progress_percentage: float


DEFAULT_LEVELS: list[LevelDefinition] = [
    LevelDefinition(1, 0, "Fresh Brew"),
    LevelDefinition(2, 100, "Syntax Sipper"),
    LevelDefinition(3, 300, "Code Barista"),
    LevelDefinition(4, 700, "Refactor Roaster"),
    LevelDefinition(5, 1500, "Syntax Sage"),
    LevelDefinition(6, 3000, "Espresso Engineer"),
    LevelDefinition(7, 5500, "Compiler Connoisseur"),
    LevelDefinition(8, 9000, "Runtime Roastmaster"),
    LevelDefinition(9, 14000, "Kernel Kaffeeklatsch"),
    LevelDefinition(10, 21000, "Grand Brewmaster"),
]


def resolve_level(levels: list[LevelDefinition], total_xp: int) -> LevelInfo:
    """Resolve the level for ``total_xp`` against a table sorted by ascending min_xp.

    Past the top of the table the next threshold is extrapolated as
    ``top.min_xp + 500 * 1.5 ** level`` so progression never plateaus.
    """
    table = levels or [LevelDefinition(1, 0, "")]
    current = table[0]
    next_level: LevelDefinition | None = None

    for entry in table:
        if entry.min_xp <= total_xp:
            current = entry
        else:
            next_level = entry
            break

    if next_level is not None:
        next_level_xp = next_level.min_xp
    else:
        next_level_xp = int(round(current.min_xp + EXTRAPOLATION_BASE_XP * EXTRAPOLATION_GROWTH**current.level))

    span = next_level_xp - current.min_xp
    progress = (total_xp - current.min_xp) / span * 100 if span > 0 else 0.0
    progress = max(0.0, min(100.0, progress))

    return LevelInfo(
        level=current.level,
        title=current.title,
        current_level_xp=current.min_xp,
        next_level_xp=next_level_xp,
        progress_percentage=round(progress, 2),
    )


async def load_levels(db: AsyncSession, cache: Cache, ttl_seconds: int) -> list[LevelDefinition]:
    """Load the level table, cache-first."""
    cached = await cache.get(LEVELS_CACHE_KEY)
    if isinstance(cached, list):
        try:
            return [LevelDefinition(int(r["level"]), int(r["min_xp"]), str(r["title"])) for r in cached]
        except (KeyError, TypeError, ValueError):
            logger.warning("Discarding malformed cached level table")

    async with store_operation("load gamification levels"):
        result = await db.execute(select(GamificationLevel).order_by(GamificationLevel.level.asc()))
        rows = result.scalars().all()

    levels = sorted(
        (LevelDefinition(row.level, int(row.min_xp), row.title) for row in rows),
        key=lambda entry: (entry.min_xp, entry.level),
    )
    await cache.set(
        LEVELS_CACHE_KEY,
        [{"level": e.level, "min_xp": e.min_xp, "title": e.title} for e in levels],
        ttl_seconds,
    )
    return levels
