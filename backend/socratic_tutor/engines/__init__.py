"""Tutoring engines: classification, prompts, sessions, progression, learning paths and goals."""

from .classifier import classify, detect_concepts
from .goals import GoalService
from .learning_paths import LearningPathEngine
from .leveling import level_for_xp, xp_for_level
from .progression import ProgressionEngine
from .sessions import SessionEngine
from .subjects import SubjectCache, SubjectConfig

__all__ = [
    "classify",
    "detect_concepts",
    "GoalService",
    "LearningPathEngine",
    "level_for_xp",
    "xp_for_level",
    "ProgressionEngine",
    "SessionEngine",
    "SubjectCache",
    "SubjectConfig",
]
