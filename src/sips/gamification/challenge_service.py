"""Time-windowed challenge tracking.

Progress rows move active → completed one way only; a completed challenge is
never re-opened, even if the underlying count would later regress.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sips.db.models import ChallengeProgress, GamificationAction, GamificationChallenge, GamificationProfile
from sips.db.upsert import upsert_rows
from sips.errors import store_operation
from sips.gamification.requirements import (
    StreakRequirement,
    TotalActionsRequirement,
    UnparseableRequirement,
    parse_challenge_requirement,
    requirement_target,
)
from sips.gamification.schemas import ActiveChallengeResponse, ActiveChallengesResponse, ChallengeProgressResponse

logger = logging.getLogger(__name__)


def is_challenge_open(challenge: GamificationChallenge, now: datetime) -> bool:
    if not challenge.is_active:
        return False
    if challenge.starts_at is not None and now < challenge.starts_at:
        return False
    if challenge.ends_at is not None and now > challenge.ends_at:
        return False
    return True


def _as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return default
    return default


def progress_response(
    challenge: GamificationChallenge,
    *,
    status: str,
    progress: dict[str, Any],
    started_at: datetime | None,
    completed_at: datetime | None,
) -> ChallengeProgressResponse:
    return ChallengeProgressResponse(
        challenge_id=challenge.id,
        challenge_slug=challenge.slug,
        title=challenge.title,
        status=status if status in ("active", "completed", "expired") else "active",
        value=_as_int(progress.get("value")),
        target=_as_int(progress.get("target")),
        started_at=started_at,
        completed_at=completed_at,
        ends_at=challenge.ends_at,
    )


async def load_open_challenges(db: AsyncSession, now: datetime) -> list[GamificationChallenge]:
    """Active challenges whose window contains ``now``."""
    async with store_operation("load active challenges"):
        result = await db.execute(
            select(GamificationChallenge)
            .where(GamificationChallenge.is_active.is_(True))
            .order_by(GamificationChallenge.created_at.asc(), GamificationChallenge.slug.asc())
        )
        challenges = result.scalars().all()
    return [c for c in challenges if is_challenge_open(c, now)]


async def _count_in_window(
    db: AsyncSession,
    profile_id: str,
    action_type: str,
    challenge: GamificationChallenge,
) -> int:
    query = select(func.count(GamificationAction.id)).where(
        GamificationAction.profile_id == profile_id,
        GamificationAction.action_type == action_type,
    )
    if challenge.starts_at is not None:
        query = query.where(GamificationAction.awarded_at >= challenge.starts_at)
    if challenge.ends_at is not None:
        query = query.where(GamificationAction.awarded_at <= challenge.ends_at)
    async with store_operation("count challenge actions"):
        return int((await db.execute(query)).scalar_one())


async def process_challenges(
    db: AsyncSession,
    profile: GamificationProfile,
    action_type: str,
    now: datetime,
) -> list[ChallengeProgressResponse]:
    """Recompute progress for every open challenge.

    Returns only the challenges that became completed in this pass.
    """
    challenges = await load_open_challenges(db, now)
    if not challenges:
        return []

    async with store_operation("load challenge progress"):
        result = await db.execute(
            select(ChallengeProgress).where(
                ChallengeProgress.profile_id == profile.profile_id,
                ChallengeProgress.challenge_id.in_([c.id for c in challenges]),
            )
            .execution_options(populate_existing=True)
        )
        existing = {row.challenge_id: row for row in result.scalars().all()}

    rows: list[dict[str, Any]] = []
    newly_completed: list[ChallengeProgressResponse] = []

    for challenge in challenges:
        requirement = parse_challenge_requirement(challenge.requirements)
        if isinstance(requirement, UnparseableRequirement):
            logger.warning(
                "Skipping challenge %s with unparseable requirements: %s",
                challenge.slug, requirement.reason,
            )
            continue

        current = existing.get(challenge.id)
        previous = dict(current.progress or {}) if current is not None else {}
        started_at = current.started_at if current is not None else (challenge.starts_at or now)
        target = requirement_target(requirement)

        if current is not None and current.status == "completed":
            rows.append({
                "id": current.id,
                "profile_id": profile.profile_id,
                "challenge_id": challenge.id,
                "status": "completed",
                "progress": previous,
                "started_at": started_at,
                "completed_at": current.completed_at,
            })
            continue

        value = _as_int(previous.get("value"))
        if isinstance(requirement, TotalActionsRequirement):
            if action_type == requirement.action_type:
                value = await _count_in_window(db, profile.profile_id, requirement.action_type, challenge)
        elif isinstance(requirement, StreakRequirement):
            value = profile.current_streak
        else:
            value = profile.level

        progress = {**previous, "value": value, "target": target}
        completed = value >= target
        status = "completed" if completed else "active"
        completed_at = now if completed else None

        rows.append({
            "id": current.id if current is not None else str(uuid.uuid4()),
            "profile_id": profile.profile_id,
            "challenge_id": challenge.id,
            "status": status,
            "progress": progress,
            "started_at": started_at,
            "completed_at": completed_at,
        })
        if completed:
            newly_completed.append(progress_response(
                challenge,
                status=status,
                progress=progress,
                started_at=started_at,
                completed_at=completed_at,
            ))

    async with store_operation("save challenge progress"):
        await upsert_rows(
            db,
            ChallengeProgress,
            rows,
            conflict_columns=("profile_id", "challenge_id"),
            update_columns=("status", "progress", "completed_at"),
        )

    if newly_completed:
        logger.info(
            "Challenges completed by %s: %s",
            profile.profile_id, [c.challenge_slug for c in newly_completed],
        )
    return newly_completed


async def expire_challenge_progress(db: AsyncSession, now: datetime) -> int:
    """Mark active progress rows of closed challenges as expired. Returns rows changed."""
    closed = select(GamificationChallenge.id).where(
        GamificationChallenge.ends_at.is_not(None),
        GamificationChallenge.ends_at < now,
    )
    async with store_operation("expire challenge progress"):
        result = await db.execute(
            update(ChallengeProgress)
            .where(
                ChallengeProgress.status == "active",
                ChallengeProgress.challenge_id.in_(closed),
            )
            .values(status="expired")
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    return int(result.rowcount or 0)


async def list_active_challenges(
    db: AsyncSession,
    profile_id: str | None,
    now: datetime,
) -> ActiveChallengesResponse:
    """Open challenges, with the given profile's progress when known."""
    challenges = await load_open_challenges(db, now)
    progress_map: dict[str, ChallengeProgress] = {}
    if profile_id and challenges:
        async with store_operation("load challenge progress"):
            result = await db.execute(
                select(ChallengeProgress).where(
                    ChallengeProgress.profile_id == profile_id,
                    ChallengeProgress.challenge_id.in_([c.id for c in challenges]),
                )
                .execution_options(populate_existing=True)
            )
            progress_map = {row.challenge_id: row for row in result.scalars().all()}

    items = []
    for challenge in challenges:
        row = progress_map.get(challenge.id)
        items.append(ActiveChallengeResponse(
            id=challenge.id,
            slug=challenge.slug,
            title=challenge.title,
            description=challenge.description,
            cadence=challenge.cadence,
            reward_points=challenge.reward_points,
            reward_badge_id=challenge.reward_badge_id,
            starts_at=challenge.starts_at,
            ends_at=challenge.ends_at,
            requirements=challenge.requirements if isinstance(challenge.requirements, dict) else {},
            progress=progress_response(
                challenge,
                status=row.status,
                progress=row.progress or {},
                started_at=row.started_at,
                completed_at=row.completed_at,
            ) if row is not None else None,
        ))
    return ActiveChallengesResponse(challenges=items)
