"""Rule-governed role membership reconciliation.

Only roles named in ``ROLE_ASSIGNMENT_RULES`` are ever added or removed here;
manually granted roles are left alone.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from sips.db.models import GamificationBadge, GamificationProfile, ProfileBadge, ProfileRole, Role
from sips.db.upsert import upsert_rows
from sips.errors import store_operation
from sips.gamification.constants import ROLE_ASSIGNMENT_RULES, RoleRule

logger = logging.getLogger(__name__)


@dataclass
class RoleSyncResult:
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)


def desired_role_slugs(
    level: int,
    badge_slugs: Iterable[str],
    rules: list[RoleRule] = ROLE_ASSIGNMENT_RULES,
) -> set[str]:
    """Role slugs implied by the rules for this level and badge set."""
    owned = set(badge_slugs)
    desired: set[str] = set()
    for rule in rules:
        if rule.level is not None and level >= rule.level:
            desired.add(rule.role_slug)
        if rule.badge_slug is not None and rule.badge_slug in owned:
            desired.add(rule.role_slug)
    return desired


async def _owned_badge_slugs(db: AsyncSession, profile_id: str) -> set[str]:
    async with store_operation("load owned badge slugs"):
        result = await db.execute(
            select(GamificationBadge.slug)
            .join(ProfileBadge, ProfileBadge.badge_id == GamificationBadge.id)
            .where(
                ProfileBadge.profile_id == profile_id,
                ProfileBadge.state == "awarded",
            )
        )
        return set(result.scalars().all())


async def sync_roles(
    db: AsyncSession,
    profile: GamificationProfile,
    newly_awarded: Iterable[str] = (),
    now: datetime | None = None,
) -> RoleSyncResult:
    """Add missing rule roles and drop rule roles the profile no longer qualifies for.

    ``newly_awarded`` are badge slugs granted in the current cycle; they are
    merged with the stored ones so a freshly flushed award is never missed.
    """
    now = now or datetime.now(timezone.utc)
    badge_slugs = await _owned_badge_slugs(db, profile.profile_id) | set(newly_awarded)
    desired = desired_role_slugs(profile.level, badge_slugs)
    governed = {rule.role_slug for rule in ROLE_ASSIGNMENT_RULES}

    async with store_operation("load rule roles"):
        result = await db.execute(select(Role).where(Role.slug.in_(governed)))
        roles = {role.slug: role for role in result.scalars().all()}

    for slug in sorted(governed - set(roles)):
        logger.warning("Role %s is missing from the roles table, skipping", slug)

    async with store_operation("load profile roles"):
        result = await db.execute(
            select(ProfileRole.role_id).where(
                ProfileRole.profile_id == profile.profile_id,
                ProfileRole.role_id.in_([role.id for role in roles.values()]),
            )
        )
        held_ids = set(result.scalars().all())

    held = {slug for slug, role in roles.items() if role.id in held_ids}
    to_add = sorted(slug for slug in desired - held if slug in roles)
    to_remove = sorted(held - desired)

    if to_add:
        async with store_operation("assign roles"):
            await upsert_rows(
                db,
                ProfileRole,
                [
                    {
                        "id": str(uuid.uuid4()),
                        "profile_id": profile.profile_id,
                        "role_id": roles[slug].id,
                        "assigned_at": now,
                    }
                    for slug in to_add
                ],
                conflict_columns=("profile_id", "role_id"),
            )

    if to_remove:
        async with store_operation("revoke roles"):
            await db.execute(
                delete(ProfileRole).where(
                    ProfileRole.profile_id == profile.profile_id,
                    ProfileRole.role_id.in_([roles[slug].id for slug in to_remove]),
                )
            )

    if to_add or to_remove:
        logger.info("Roles synced for %s: +%s -%s", profile.profile_id, to_add, to_remove)
    return RoleSyncResult(added=to_add, removed=to_remove)
