"""Unit tests for the static action table and metadata overrides."""

import pytest

from sips.gamification.constants import (
    ACTION_DEFINITIONS,
    ActionType,
    get_action_definition,
    resolve_action_type,
)
from sips.gamification.points_engine import cooldown_key, metadata_amount


class TestActionDefinitions:
    """Test the action definition table."""

    def test_every_action_type_is_defined(self):
        assert set(ACTION_DEFINITIONS) == set(ActionType)

    @pytest.mark.parametrize(
        ("action", "xp", "points", "cooldown", "cap"),
        [
            ("post.published", 120, 100, 3600, None),
            ("post.updated", 15, 10, 1800, 5),
            ("comment.approved", 20, 15, 60, None),
            ("comment.submitted", 5, 5, 0, 5),
            ("comment.received_upvote", 2, 2, 0, 25),
            ("onboarding.completed", 80, 60, 86400, 1),
            ("account.login_streak", 35, 30, 72000, 1),
            ("challenge.completed", 90, 80, 0, None),
            ("badge.awarded", 25, 25, 0, None),
            ("custom.manual_adjustment", 0, 0, 0, None),
        ],
    )
    def test_values(self, action, xp, points, cooldown, cap):
        definition = get_action_definition(action)
        assert definition.base_xp == xp
        assert definition.base_points == points
        assert definition.cooldown_seconds == cooldown
        assert definition.max_daily_occurrences == cap

    def test_unknown_type_is_manual_adjustment(self):
        assert resolve_action_type("prompt.remixed") is ActionType.MANUAL_ADJUSTMENT
        assert get_action_definition("prompt.remixed").base_xp == 0

    def test_cooldown_key(self):
        assert cooldown_key("p1", ActionType.COMMENT_APPROVED) == "gamification:cooldown:p1:comment.approved"


class TestMetadataAmount:
    """Numeric metadata overrides the defaults; anything else is ignored."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (50, 50),
            (12.9, 12),
            ("40", 40),
            (" 7 ", 7),
            (-30, -30),
            (0, 0),
            (True, 10),
            ("lots", 10),
            (None, 10),
            ([5], 10),
            (float("nan"), 10),
            ("inf", 10),
            (1e20, 2_147_483_647),
            ("-1e20", -2_147_483_647),
        ],
    )
    def test_override(self, value, expected):
        assert metadata_amount({"xp": value}, "xp", 10) == expected

    def test_missing_key(self):
        assert metadata_amount({}, "points", 15) == 15
