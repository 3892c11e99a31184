"""Admin analytics over profiles, badge ownership and challenge progress."""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sips.db.models import ChallengeProgress, GamificationBadge, GamificationProfile, ProfileBadge
from sips.errors import store_operation
from sips.gamification.schemas import AnalyticsResponse, ProfileAnalytics, StreakLeader

STREAK_LEADER_COUNT = 5


async def fetch_analytics(db: AsyncSession) -> AnalyticsResponse:
    async with store_operation("load profile analytics"):
        totals = (
            await db.execute(
                select(
                    func.count(GamificationProfile.profile_id),
                    func.coalesce(func.sum(GamificationProfile.xp_total), 0),
                    func.avg(GamificationProfile.level),
                )
            )
        ).one()
        leaders = (
            await db.execute(
                select(
                    GamificationProfile.profile_id,
                    GamificationProfile.current_streak,
                    GamificationProfile.level,
                    GamificationProfile.xp_total,
                )
                .order_by(GamificationProfile.current_streak.desc(), GamificationProfile.profile_id.asc())
                .limit(STREAK_LEADER_COUNT)
            )
        ).all()

    async with store_operation("load badge analytics"):
        badge_rows = (
            await db.execute(
                select(GamificationBadge.slug, func.count(ProfileBadge.id))
                .join(GamificationBadge, GamificationBadge.id == ProfileBadge.badge_id)
                .group_by(GamificationBadge.slug)
            )
        ).all()

    async with store_operation("load challenge analytics"):
        status_rows = (
            await db.execute(
                select(ChallengeProgress.status, func.count(ChallengeProgress.id))
                .group_by(ChallengeProgress.status)
            )
        ).all()

    total, total_xp, average_level = totals
    return AnalyticsResponse(
        profiles=ProfileAnalytics(
            total=int(total),
            total_xp=int(total_xp or 0),
            average_level=round(float(average_level), 2) if total else 0.0,
            streak_leaders=[
                StreakLeader(profile_id=row[0], streak=int(row[1]), level=int(row[2]), xp=int(row[3]))
                for row in leaders
            ],
        ),
        badges={slug: int(count) for slug, count in badge_rows},
        challenges={status: int(count) for status, count in status_rows},
    )
