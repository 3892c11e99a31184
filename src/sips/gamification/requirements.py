"""Badge and challenge requirement parsing.

The ``requirements`` JSON column is parsed once, at the store read edge, into a
tagged union. Shapes that do not validate become ``UnparseableRequirement``
instead of falling through as ``None``; evaluators skip those.

Accepted shapes (camelCase aliases are accepted too)::

    {"type": "total_actions", "action_type": "post.published", "threshold": 5}
    {"type": "level_reached", "level": 3}
    {"type": "streak", "days": 7}
    {"type": "event", "event_key": "onboarding.completed"}
    {"type": "challenge_completed", "challenge_slug": "weekly-commenter"}
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class _Requirement(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class TotalActionsRequirement(_Requirement):
    type: Literal["total_actions"]
    action_type: str = Field(alias="actionType", min_length=1)
    threshold: int = Field(ge=1)


class LevelReachedRequirement(_Requirement):
    type: Literal["level_reached"]
    level: int = Field(ge=1)


class StreakRequirement(_Requirement):
    type: Literal["streak"]
    days: int = Field(ge=1)


class EventRequirement(_Requirement):
    type: Literal["event"]
    event_key: str = Field(alias="eventKey", min_length=1)


class ChallengeCompletedRequirement(_Requirement):
    type: Literal["challenge_completed"]
    challenge_slug: str = Field(alias="challengeSlug", min_length=1)


class UnparseableRequirement(_Requirement):
    type: Literal["unparseable"] = "unparseable"
    raw: Any = None
    reason: str = ""


BadgeRequirement = Annotated[
    Union[
        TotalActionsRequirement,
        LevelReachedRequirement,
        StreakRequirement,
        EventRequirement,
        ChallengeCompletedRequirement,
    ],
    Field(discriminator="type"),
]

ChallengeRequirement = Union[TotalActionsRequirement, StreakRequirement, LevelReachedRequirement]

_badge_adapter: TypeAdapter[Any] = TypeAdapter(BadgeRequirement)


def parse_badge_requirement(raw: Any) -> Any:
    """Parse a badge ``requirements`` value into one requirement variant."""
    if not isinstance(raw, dict):
        return UnparseableRequirement(raw=raw, reason="requirements must be an object")
    try:
        return _badge_adapter.validate_python(raw)
    except ValidationError as exc:
        return UnparseableRequirement(raw=raw, reason=_summarize(exc))


def parse_challenge_requirement(raw: Any) -> Any:
    """Like parse_badge_requirement, restricted to the kinds challenges support."""
    parsed = parse_badge_requirement(raw)
    if isinstance(parsed, (EventRequirement, ChallengeCompletedRequirement)):
        return UnparseableRequirement(raw=raw, reason=f"{parsed.type} is not a challenge requirement")
    return parsed


def requirement_target(requirement: ChallengeRequirement) -> int:
    """The value a challenge's progress must reach."""
    if isinstance(requirement, TotalActionsRequirement):
        return requirement.threshold
    if isinstance(requirement, StreakRequirement):
        return requirement.days
    return requirement.level


def _summarize(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg', 'invalid')}" if loc else err.get("msg", "invalid"))
    return "; ".join(parts)
