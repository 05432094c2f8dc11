"""
Test the experience curve.
"""

import math

import pytest

from socratic_tutor.engines.leveling import level_for_xp, xp_for_level


class TestXpCurve:

    def test_level_one_is_free(self):
        assert xp_for_level(1) == 0
        assert xp_for_level(0) == 0
        assert xp_for_level(-3) == 0

    def test_level_two(self):
        assert xp_for_level(2) == 282

    def test_monotonic(self):
        thresholds = [xp_for_level(level) for level in range(1, 50)]
        assert thresholds == sorted(thresholds)
        assert len(set(thresholds)) == len(thresholds)

    def test_formula(self):
        assert xp_for_level(5) == math.floor(100 * 5 ** 1.5)


class TestLevelForXp:

    def test_negative_and_zero(self):
        assert level_for_xp(-10) == 1
        assert level_for_xp(0) == 1

    def test_threshold_reaches_level_two(self):
        assert level_for_xp(282) >= 2
        assert level_for_xp(281) == 1

    @pytest.mark.parametrize("level", range(2, 40))
    def test_threshold_reaches_level(self, level):
        assert level_for_xp(xp_for_level(level)) == level
        assert level_for_xp(xp_for_level(level) - 1) == level - 1
