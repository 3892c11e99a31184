"""Unit tests for rule-implied roles."""

from sips.gamification.constants import RoleRule
from sips.gamification.role_sync import desired_role_slugs


class TestDesiredRoles:
    def test_level_one_has_no_roles(self):
        assert desired_role_slugs(1, []) == set()

    def test_level_three_is_trusted(self):
        assert desired_role_slugs(3, []) == {"trusted-contributor"}

    def test_level_five_has_both_level_roles(self):
        assert desired_role_slugs(5, []) == {"trusted-contributor", "syntax-sage"}

    def test_streak_badge_makes_mentor(self):
        assert desired_role_slugs(1, ["thirty-day-streak"]) == {"community-mentor"}

    def test_unrelated_badges_ignored(self):
        assert desired_role_slugs(2, ["first-post", "first-comment"]) == set()

    def test_custom_rules(self):
        rules = [RoleRule(role_slug="editor", level=2), RoleRule(role_slug="critic", badge_slug="reviewer")]
        assert desired_role_slugs(2, ["reviewer"], rules) == {"editor", "critic"}
