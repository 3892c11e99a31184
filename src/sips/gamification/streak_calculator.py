"""Daily streak tracking with a tolerance window."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sips.gamification.constants import STREAK_TOLERANCE


@dataclass(frozen=True)
class StreakResult:
    current_streak: int
    longest_streak: int
    maintained: bool
    streak_frozen_until: datetime | None = None


def parse_timestamp(value: datetime | str | None) -> datetime | None:
    """Coerce a datetime or ISO string into an aware UTC datetime, or None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def compute_streak(
    *,
    last_action_at: datetime | str | None,
    action_at: datetime | str | None,
    current_streak: int,
    longest_streak: int,
    frozen_until: datetime | str | None = None,
) -> StreakResult:
    """Continue, reset or hold a streak for an action taken at ``action_at``.

    Never raises: unparseable timestamps reset the streak to 1.
    """
    current_streak = max(0, current_streak)
    longest_streak = max(longest_streak, current_streak)
    reset = StreakResult(
        current_streak=1,
        longest_streak=max(longest_streak, current_streak, 1),
        maintained=False,
    )

    now = parse_timestamp(action_at)
    if now is None:
        return reset

    frozen = parse_timestamp(frozen_until)
    if frozen is not None and frozen > now:
        held = max(current_streak, 1)
        return StreakResult(
            current_streak=held,
            longest_streak=max(longest_streak, held),
            maintained=True,
            streak_frozen_until=frozen,
        )

    if last_action_at is None:
        return StreakResult(current_streak=1, longest_streak=max(longest_streak, 1), maintained=True)

    previous = parse_timestamp(last_action_at)
    if previous is None:
        return reset

    if abs(now - previous) <= STREAK_TOLERANCE:
        continued = current_streak + 1
        return StreakResult(
            current_streak=continued,
            longest_streak=max(longest_streak, continued),
            maintained=True,
        )

    return reset
