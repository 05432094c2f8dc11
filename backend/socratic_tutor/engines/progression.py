"""Subject progress and experience tracking.

Keeps one SubjectProgress row per (user, subject): concepts learned,
session/message/time counters, experience and level. Counters only grow and
the level never goes down.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import Settings, get_settings
from ..db.base import utcnow_iso
from ..db.tutor.models import SubjectProgress
from .leveling import level_for_xp
from .types import XpAwardResult

logger = logging.getLogger(__name__)


def progress_percent(concept_count: int, concepts_for_full: int = 20) -> float:
    """Share of the subject covered, from the number of distinct concepts."""
    if concepts_for_full <= 0:
        return 100.0
    return min(100.0, concept_count / concepts_for_full * 100)


def merge_concepts(existing: Optional[Sequence[str]], new: Optional[Sequence[str]]) -> List[str]:
    """Union preserving first-seen order."""
    return list(dict.fromkeys([*(existing or []), *(new or [])]))


class ProgressionEngine:
    """Updates SubjectProgress rows and awards experience."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
    ):
        self._session_maker = session_maker
        self._settings = settings or get_settings()

    # =========================================================================
    # Row management
    # =========================================================================

    @asynccontextmanager
    async def _transaction(self, session: Optional[AsyncSession]) -> AsyncIterator[AsyncSession]:
        """Join the caller's transaction or run in a new one."""
        if session is not None:
            yield session
            return
        async with self._session_maker() as own_session:
            async with own_session.begin():
                yield own_session

    async def prepare(self, user_id: str, subject: str) -> None:
        """Make sure the progress row exists.

        Runs in its own short transaction so later updates can lock the row.
        Concurrent first activity is resolved by the unique constraint.
        """
        async with self._session_maker() as session:
            existing = await session.scalar(
                select(SubjectProgress.id).where(
                    SubjectProgress.user_id == user_id,
                    SubjectProgress.subject == subject,
                )
            )
            if existing is not None:
                return

            session.add(
                SubjectProgress(
                    user_id=user_id,
                    subject=subject,
                    concepts_learned=[],
                    total_sessions=0,
                    total_messages=0,
                    total_time_spent=0,
                    xp=0,
                    level=1,
                    progress=0.0,
                )
            )
            try:
                await session.commit()
                logger.info(f"Created subject progress for user={user_id} subject={subject}")
            except IntegrityError:
                await session.rollback()
                logger.debug(f"Subject progress for user={user_id} subject={subject} created concurrently")

    async def _locked_row(self, session: AsyncSession, user_id: str, subject: str) -> SubjectProgress:
        result = await session.execute(
            select(SubjectProgress)
            .where(SubjectProgress.user_id == user_id, SubjectProgress.subject == subject)
            .with_for_update()
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = SubjectProgress(
                user_id=user_id,
                subject=subject,
                concepts_learned=[],
                total_sessions=0,
                total_messages=0,
                total_time_spent=0,
                xp=0,
                level=1,
                progress=0.0,
            )
            session.add(row)
            await session.flush()
        return row

    # =========================================================================
    # Updates
    # =========================================================================

    async def credit_concepts(
        self,
        user_id: str,
        subject: str,
        concepts: Sequence[str] = (),
        new_session: bool = False,
        message_delta: int = 0,
        session: Optional[AsyncSession] = None,
    ) -> None:
        """Merge concepts into the subject and bump session/message counters."""
        if session is None:
            await self.prepare(user_id, subject)

        async with self._transaction(session) as tx:
            row = await self._locked_row(tx, user_id, subject)

            merged = merge_concepts(row.concepts_learned, concepts)
            values: Dict[str, Any] = {
                "concepts_learned": merged,
                "progress": progress_percent(len(merged), self._settings.CONCEPTS_FOR_FULL_PROGRESS),
                "last_activity": utcnow_iso(),
            }
            if new_session:
                values["total_sessions"] = SubjectProgress.total_sessions + 1
            if message_delta > 0:
                values["total_messages"] = SubjectProgress.total_messages + message_delta

            await tx.execute(
                update(SubjectProgress)
                .where(SubjectProgress.id == row.id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )

    async def credit_time(
        self,
        user_id: str,
        subject: str,
        seconds: int,
        session: Optional[AsyncSession] = None,
    ) -> None:
        """Add study time (seconds) to the subject. Non-positive amounts are ignored."""
        if seconds <= 0:
            return
        if session is None:
            await self.prepare(user_id, subject)

        async with self._transaction(session) as tx:
            await tx.execute(
                update(SubjectProgress)
                .where(SubjectProgress.user_id == user_id, SubjectProgress.subject == subject)
                .values(
                    total_time_spent=SubjectProgress.total_time_spent + seconds,
                    last_activity=utcnow_iso(),
                )
                .execution_options(synchronize_session=False)
            )

    async def award_xp(
        self,
        user_id: str,
        subject: str,
        amount: int,
        session: Optional[AsyncSession] = None,
    ) -> XpAwardResult:
        """Award experience and recompute the level.

        The stored level is kept when the curve would put the user lower.
        """
        if amount < 0:
            raise ValueError("XP amount must be non-negative")
        if session is None:
            await self.prepare(user_id, subject)

        async with self._transaction(session) as tx:
            row = await self._locked_row(tx, user_id, subject)

            previous_xp = row.xp or 0
            previous_level = row.level or 1
            current_xp = previous_xp + amount
            current_level = max(level_for_xp(current_xp), previous_level)

            row.xp = current_xp
            row.level = current_level
            await tx.flush()

        result = XpAwardResult(
            previous_xp=previous_xp,
            current_xp=current_xp,
            previous_level=previous_level,
            current_level=current_level,
            leveled_up=current_level > previous_level,
        )
        if result.leveled_up:
            logger.info(f"User {user_id} reached level {current_level} in {subject}")
        return result

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_progress(self, user_id: str) -> List[SubjectProgress]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(SubjectProgress)
                .where(SubjectProgress.user_id == user_id)
                .order_by(SubjectProgress.last_activity.desc())
            )
            return list(result.scalars().all())

    async def get_subject_progress(self, user_id: str, subject: str) -> Dict[str, Any]:
        """Progress for one subject, or a zeroed record if there is none yet."""
        async with self._session_maker() as session:
            row = await session.scalar(
                select(SubjectProgress).where(
                    SubjectProgress.user_id == user_id,
                    SubjectProgress.subject == subject,
                )
            )

        if row is None:
            return {
                "user_id": user_id,
                "subject": subject,
                "concepts_learned": [],
                "total_sessions": 0,
                "total_messages": 0,
                "total_time_spent": 0,
                "xp": 0,
                "level": 1,
                "progress": 0,
                "last_activity": None,
            }
        return row.to_dict()
