"""Experience curve.

XP needed for a level grows as ``100 * level ** 1.5``; level 1 is free.
"""

import math

XP_BASE = 100
XP_EXPONENT = 1.5


def xp_for_level(level: int) -> int:
    """XP required to reach ``level``."""
    if level <= 1:
        return 0
    return math.floor(XP_BASE * math.pow(level, XP_EXPONENT))


def level_for_xp(xp: float) -> int:
    """Level reached with ``xp`` experience points.

    ``floor((xp / 100) ** (1 / 1.5))``, never below 1. The result is nudged up
    while the next level's (floored) threshold is already met, so
    ``level_for_xp(xp_for_level(n)) >= n`` holds despite float rounding.
    """
    if xp < 0:
        return 1

    level = max(1, math.floor(math.pow(xp / XP_BASE, 1 / XP_EXPONENT)))
    while xp_for_level(level + 1) <= xp:
        level += 1
    return level
