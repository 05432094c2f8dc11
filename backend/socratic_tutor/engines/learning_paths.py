"""Learning-path catalog, enrollments and module progress.

Module state machine: locked -> available -> in_progress -> completed, with
in_progress -> failed on an explicit failing report.

Statuses only move forward; ``completed`` and ``failed`` are terminal. When a
module completes, its immediate successor is unlocked. Path progress is the
share of completed modules and is always recomputed, never edited.

Enrollment updates are serialized per (user, path) with a compare-and-set on
``UserLearningPath.version``.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import Settings, get_settings
from ..core.errors import InvalidInput, InvalidState, NotFound, StoreFailure
from ..db.base import utcnow_iso
from ..db.catalog.models import LearningModule, LearningPath
from ..db.catalog.seed import seed_catalog
from ..db.tutor.models import UserLearningPath
from .types import ModuleProgress

logger = logging.getLogger(__name__)

DEFAULT_RECOMMENDATION_LIMIT = 6


@dataclass
class PathState:
    """Aggregate enrollment fields derived from the module list."""

    status: str
    progress: int
    completed_modules: List[str]
    current_module_id: Optional[str]
    score: Optional[float]


def initial_module_progress(modules: Sequence[LearningModule]) -> List[ModuleProgress]:
    """First module available, every other one locked."""
    return [
        ModuleProgress(module_id=module.id, status="available" if index == 0 else "locked")
        for index, module in enumerate(modules)
    ]


def load_module_progress(stored: Optional[list], modules: Sequence[LearningModule]) -> List[ModuleProgress]:
    """Parse stored entries in catalog order; modules added later start locked."""
    by_id = {}
    for item in stored or []:
        entry = ModuleProgress.model_validate(item)
        by_id[entry.module_id] = entry
    return [by_id.get(module.id) or ModuleProgress(module_id=module.id) for module in modules]


def summarize(entries: Sequence[ModuleProgress], fallback_module_id: Optional[str] = None) -> PathState:
    total = len(entries)
    completed = [entry.module_id for entry in entries if entry.status == "completed"]
    all_done = total > 0 and len(completed) == total

    # The next module waiting to be started, else the one just reported on
    current = next(
        (entry.module_id for entry in entries if entry.status == "available"),
        fallback_module_id,
    )

    scores = [entry.score for entry in entries if entry.score is not None]
    return PathState(
        status="completed" if all_done else "in_progress",
        progress=round(len(completed) / total * 100) if total else 0,
        completed_modules=completed,
        current_module_id=current,
        score=round(sum(scores) / len(scores), 2) if scores else None,
    )


def apply_module_update(
    entries: List[ModuleProgress],
    module_id: str,
    progress: float,
    time_spent: Optional[int] = None,
    score: Optional[float] = None,
    failed: bool = False,
    now: Optional[str] = None,
) -> List[ModuleProgress]:
    """Apply one progress report to the module list and return the new list.

    Raises:
        InvalidInput: progress or score is not a finite number
        NotFound: module is not part of the path
        InvalidState: module is still locked
    """
    if not math.isfinite(progress) or (score is not None and not math.isfinite(score)):
        raise InvalidInput("Progress and score must be finite numbers")

    now = now or utcnow_iso()
    entries = [entry.model_copy() for entry in entries]
    index = next((i for i, entry in enumerate(entries) if entry.module_id == module_id), None)
    if index is None:
        raise NotFound("Module not found in learning path")

    entry = entries[index]
    if entry.status == "locked":
        raise InvalidState("Module is locked")

    clamped = max(0.0, min(100.0, float(progress)))
    entry.attempts += 1
    entry.time_spent += max(0, time_spent or 0)
    entry.last_attempt_at = now

    # completed and failed are terminal
    if entry.is_finished:
        return entries

    if score is not None:
        entry.score = score

    if failed:
        entry.status = "failed"
        entry.progress = max(entry.progress, clamped)
        return entries

    if clamped >= 100:
        entry.status = "completed"
        entry.progress = 100
        entry.completed_at = entry.completed_at or now

        # Prerequisite ids are informational; completing a module unlocks the next one
        if index + 1 < len(entries) and entries[index + 1].status == "locked":
            entries[index + 1].status = "available"
    else:
        entry.status = "in_progress"
        entry.progress = max(entry.progress, clamped)

    return entries


class LearningPathEngine:
    """Catalog queries plus per-user enrollment state."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
    ):
        self._session_maker = session_maker
        self._settings = settings or get_settings()

    # =========================================================================
    # Catalog
    # =========================================================================

    async def seed_defaults(self) -> Dict[str, int]:
        return await seed_catalog(self._session_maker)

    async def list_paths(
        self,
        subjects: Optional[Sequence[str]] = None,
        difficulty: Optional[Sequence[str]] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[LearningPath]:
        query = select(LearningPath)
        if subjects:
            query = query.where(LearningPath.subject.in_(list(subjects)))
        if difficulty:
            query = query.where(LearningPath.difficulty.in_(list(difficulty)))
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(LearningPath.title.ilike(pattern), LearningPath.description.ilike(pattern))
            )
        query = query.order_by(LearningPath.position, LearningPath.id)
        if limit:
            query = query.limit(limit)

        async with self._session_maker() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_path(self, path_id: str) -> LearningPath:
        async with self._session_maker() as session:
            path = await session.get(LearningPath, path_id)
        if path is None:
            raise NotFound("Learning path not found")
        return path

    async def recommend(self, user_id: str, limit: int = DEFAULT_RECOMMENDATION_LIMIT) -> List[LearningPath]:
        """Recommended paths the user has not enrolled in, in catalog order."""
        enrolled = select(UserLearningPath.path_id).where(UserLearningPath.user_id == user_id)
        query = (
            select(LearningPath)
            .where(LearningPath.is_recommended.is_(True), LearningPath.id.not_in(enrolled))
            .order_by(LearningPath.position, LearningPath.id)
            .limit(limit)
        )
        async with self._session_maker() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    # =========================================================================
    # Enrollment
    # =========================================================================

    async def _enrollment(self, session: AsyncSession, user_id: str, path_id: str) -> Optional[UserLearningPath]:
        return await session.scalar(
            select(UserLearningPath).where(
                UserLearningPath.user_id == user_id,
                UserLearningPath.path_id == path_id,
            )
        )

    async def enroll(self, user_id: str, path_id: str) -> UserLearningPath:
        """Enroll the user. Enrolling twice returns the existing enrollment."""
        async with self._session_maker() as session:
            path = await session.get(LearningPath, path_id)
            if path is None:
                raise NotFound("Learning path not found")

            existing = await self._enrollment(session, user_id, path_id)
            if existing is not None:
                return existing

            entries = initial_module_progress(path.modules)
            now = utcnow_iso()
            enrollment = UserLearningPath(
                user_id=user_id,
                path_id=path_id,
                status="in_progress",
                progress=0,
                current_module_id=entries[0].module_id if entries else None,
                completed_modules=[],
                total_time_spent=0,
                module_progress=[entry.model_dump() for entry in entries],
                version=1,
                started_at=now,
                last_activity_at=now,
            )
            enrollment.path = path
            session.add(enrollment)
            await session.execute(
                update(LearningPath)
                .where(LearningPath.id == path_id)
                .values(enrollment_count=LearningPath.enrollment_count + 1)
                .execution_options(synchronize_session=False)
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(f"Concurrent enrollment of user {user_id} in {path_id}; returning existing row")
                existing = await self._enrollment(session, user_id, path_id)
                if existing is None:
                    raise StoreFailure("Enrollment could not be stored")
                return existing

        logger.info(f"User {user_id} enrolled in learning path {path_id}")
        return enrollment

    async def get_user_progress(self, user_id: str, path_id: Optional[str] = None) -> List[UserLearningPath]:
        """Enrollments of the user, most recent activity first (or the one for ``path_id``)."""
        async with self._session_maker() as session:
            if path_id is not None:
                enrollment = await self._enrollment(session, user_id, path_id)
                if enrollment is None:
                    raise NotFound("Not enrolled in this learning path")
                return [enrollment]

            result = await session.execute(
                select(UserLearningPath)
                .where(UserLearningPath.user_id == user_id)
                .order_by(UserLearningPath.last_activity_at.desc(), UserLearningPath.id.desc())
            )
            return list(result.scalars().all())

    async def update_module_progress(
        self,
        user_id: str,
        path_id: str,
        module_id: str,
        progress: float,
        time_spent: Optional[int] = None,
        score: Optional[float] = None,
        failed: bool = False,
    ) -> UserLearningPath:
        """Report progress on one module and recompute the enrollment."""
        for attempt in range(self._settings.PROGRESS_UPDATE_RETRIES):
            async with self._session_maker() as session:
                enrollment = await self._enrollment(session, user_id, path_id)
                if enrollment is None:
                    raise NotFound("Not enrolled in this learning path")

                modules = list(enrollment.path.modules)
                entries = load_module_progress(enrollment.module_progress, modules)
                now = utcnow_iso()
                entries = apply_module_update(
                    entries, module_id, progress,
                    time_spent=time_spent, score=score, failed=failed, now=now,
                )
                state = summarize(entries, fallback_module_id=module_id)

                values = {
                    "module_progress": [entry.model_dump() for entry in entries],
                    "completed_modules": state.completed_modules,
                    "progress": state.progress,
                    "status": state.status,
                    "current_module_id": state.current_module_id,
                    "score": state.score,
                    "total_time_spent": (enrollment.total_time_spent or 0) + max(0, time_spent or 0),
                    "last_activity_at": now,
                    "version": enrollment.version + 1,
                }
                if state.status == "completed" and not enrollment.completed_at:
                    values["completed_at"] = now

                result = await session.execute(
                    update(UserLearningPath)
                    .where(
                        UserLearningPath.id == enrollment.id,
                        UserLearningPath.version == enrollment.version,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    await session.rollback()
                    logger.debug(
                        f"Module progress update for user {user_id} path {path_id} lost a race (attempt {attempt + 1})"
                    )
                    continue

                await session.commit()
                updated = await session.get(UserLearningPath, enrollment.id, populate_existing=True)

            if state.status == "completed" and "completed_at" in values:
                logger.info(f"User {user_id} completed learning path {path_id}")
            return updated

        raise StoreFailure("Could not update module progress")
