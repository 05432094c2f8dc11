"""Shared API dependencies: engine container and caller identity."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import Settings
from ..core.errors import AccessDenied
from ..core.security import Identity, resolve_identity
from ..engines.goals import GoalService
from ..engines.learning_paths import LearningPathEngine
from ..engines.progression import ProgressionEngine
from ..engines.sessions import Generator, SessionEngine
from ..engines.stats import StatsService
from ..engines.subjects import SubjectCache
from ..llm.client import TextGenerator

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class Services:
    """Engines shared by every request of one application instance."""

    subjects: SubjectCache
    progression: ProgressionEngine
    sessions: SessionEngine
    learning_paths: LearningPathEngine
    goals: GoalService
    stats: StatsService


def build_services(
    settings: Settings,
    session_maker: async_sessionmaker[AsyncSession],
    generator: Optional[Generator] = None,
) -> Services:
    subjects = SubjectCache(session_maker)
    progression = ProgressionEngine(session_maker, settings)
    return Services(
        subjects=subjects,
        progression=progression,
        sessions=SessionEngine(
            session_maker,
            subjects,
            progression,
            generator or TextGenerator(settings),
            settings,
        ),
        learning_paths=LearningPathEngine(session_maker, settings),
        goals=GoalService(session_maker),
        stats=StatsService(session_maker, progression),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Identity:
    """Identity of the caller from the ``Authorization: Bearer`` header."""
    return resolve_identity(credentials.credentials if credentials else None)


async def require_admin(current_user: Identity = Depends(get_current_user)) -> Identity:
    if not current_user.is_admin:
        raise AccessDenied("Administrator role required")
    return current_user
