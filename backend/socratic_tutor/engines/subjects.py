"""In-memory cache of active subject configurations.

Readers get whatever mapping was loaded last and never wait on a refresh;
a refresh builds a new mapping and swaps it in.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import NotFound
from ..db.catalog.models import Subject

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "system_prompt", "difficulty", "concepts", "is_active")


@dataclass(frozen=True)
class SubjectConfig:
    id: str
    name: str
    system_prompt: str
    difficulty: str
    concepts: List[str] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Subject) -> "SubjectConfig":
        return cls(
            id=row.id,
            name=row.name,
            system_prompt=row.system_prompt,
            difficulty=row.difficulty,
            concepts=list(row.concepts or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "difficulty": self.difficulty,
            "concepts": list(self.concepts),
        }


class SubjectCache:
    """Process-wide subject configuration with explicit refresh."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker
        self._subjects: Dict[str, SubjectConfig] = {}
        self._refresh_lock = asyncio.Lock()

    def get(self, subject_id: Optional[str]) -> Optional[SubjectConfig]:
        if not subject_id:
            return None
        return self._subjects.get(subject_id)

    def all(self) -> List[SubjectConfig]:
        return list(self._subjects.values())

    def __len__(self) -> int:
        return len(self._subjects)

    async def refresh(self) -> int:
        """Reload active subjects from the store. Returns how many were loaded."""
        async with self._refresh_lock:
            async with self._session_maker() as session:
                result = await session.execute(
                    select(Subject).where(Subject.is_active.is_(True)).order_by(Subject.id)
                )
                rows = result.scalars().all()

            self._subjects = {row.id: SubjectConfig.from_row(row) for row in rows}

        logger.info(f"Loaded {len(self._subjects)} subjects from database")
        return len(self._subjects)

    async def list_all(self) -> List[Subject]:
        """All subjects including inactive ones (admin view)."""
        async with self._session_maker() as session:
            result = await session.execute(select(Subject).order_by(Subject.name))
            return list(result.scalars().all())

    async def update_subject(self, subject_id: str, changes: Dict[str, Any]) -> Subject:
        """Persist an administrative update and apply it to the cache."""
        async with self._session_maker() as session:
            async with session.begin():
                subject = await session.get(Subject, subject_id)
                if subject is None:
                    raise NotFound("Subject not found")

                for key in UPDATABLE_FIELDS:
                    if key in changes and changes[key] is not None:
                        value = changes[key]
                        if key == "concepts":
                            value = list(dict.fromkeys(value))
                        setattr(subject, key, value)

        subjects = dict(self._subjects)
        if subject.is_active:
            subjects[subject.id] = SubjectConfig.from_row(subject)
        else:
            subjects.pop(subject.id, None)
        self._subjects = subjects

        logger.info(f"Updated subject {subject_id} (active={subject.is_active})")
        return subject
