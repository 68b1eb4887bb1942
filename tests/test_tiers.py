"""
Tests for tier policy lookups.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from src.types.usage import TIER_CONFIGS, UserTier
from src.usage.tiers import default_model, limits_for, parse_tier


class TestParseTier(unittest.TestCase):
    """Tests for exact tier parsing."""

    def test_known_values(self):
        self.assertEqual(parse_tier("free"), UserTier.FREE)
        self.assertEqual(parse_tier("student_pro"), UserTier.STUDENT_PRO)
        self.assertEqual(parse_tier("premium"), UserTier.PREMIUM)

    def test_case_and_whitespace_variants_are_free(self):
        """Only the exact stored value selects a paid tier."""
        for value in ("PREMIUM", " premium ", "Premium", "Student_Pro"):
            with self.subTest(value=value):
                self.assertEqual(parse_tier(value), UserTier.FREE)

    def test_enum_passes_through(self):
        self.assertEqual(parse_tier(UserTier.PREMIUM), UserTier.PREMIUM)

    def test_unknown_and_missing_fall_back_to_free(self):
        """Anything that is not a known tier is treated as free."""
        for value in (None, "", "enterprise", "pro"):
            with self.subTest(value=value):
                self.assertEqual(parse_tier(value), UserTier.FREE)


class TestTierPolicy(unittest.TestCase):
    """Tests for limits and default models."""

    def test_limits(self):
        self.assertEqual((limits_for("free").daily, limits_for("free").monthly), (10, 300))
        self.assertEqual((limits_for("student_pro").daily, limits_for("student_pro").monthly), (200, 6000))
        self.assertEqual((limits_for("premium").daily, limits_for("premium").monthly), (1000, 30000))

    def test_default_models(self):
        self.assertEqual(default_model("free"), "openai/gpt-3.5-turbo")
        self.assertEqual(default_model("student_pro"), "openai/gpt-4-turbo")
        self.assertEqual(default_model("premium"), "anthropic/claude-3-opus")

    def test_unknown_tier_gets_free_policy(self):
        self.assertEqual(limits_for("gold").daily, 10)
        self.assertEqual(default_model("gold"), "openai/gpt-3.5-turbo")

    def test_uppercase_premium_gets_free_policy(self):
        self.assertEqual(limits_for("PREMIUM").daily, 10)
        self.assertEqual(default_model("PREMIUM"), "openai/gpt-3.5-turbo")

    def test_limits_grow_with_tier(self):
        tiers = list(TIER_CONFIGS.values())
        self.assertEqual([t.tier for t in tiers], [UserTier.FREE, UserTier.STUDENT_PRO, UserTier.PREMIUM])
        dailies = [t.limits.daily for t in tiers]
        self.assertEqual(dailies, sorted(dailies))


if __name__ == "__main__":
    unittest.main()
