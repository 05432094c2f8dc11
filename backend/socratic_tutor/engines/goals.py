"""User learning goals.

Status transitions::

    active    -> paused | completed | cancelled | expired
    paused    -> active | cancelled | expired

completed, cancelled and expired are terminal.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import InvalidState, NotFound
from ..db.base import utcnow_iso
from ..db.tutor.models import Goal
from .types import Milestone

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[str, frozenset] = {
    "active": frozenset({"paused", "completed", "cancelled", "expired"}),
    "paused": frozenset({"active", "cancelled", "expired"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
    "expired": frozenset(),
}

UPDATABLE_FIELDS = (
    "title",
    "description",
    "type",
    "target_value",
    "current_value",
    "priority",
    "category",
    "subject",
    "deadline",
    "milestones",
)


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def mark_milestones(milestones: Optional[List[Any]], current_value: int) -> List[Dict[str, Any]]:
    """Validate milestones and flag the ones reached by ``current_value``."""
    marked = []
    for item in milestones or []:
        milestone = Milestone.model_validate(item)
        milestone.reached = milestone.reached or current_value >= milestone.target_value
        marked.append(milestone.model_dump())
    return marked


class GoalService:
    """CRUD and status transitions for goals, scoped to their owner."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def _owned_goal(self, session: AsyncSession, user_id: str, goal_id: int) -> Goal:
        goal = await session.get(Goal, goal_id)
        if goal is None or goal.user_id != user_id:
            raise NotFound("Goal not found")
        return goal

    async def list_goals(
        self,
        user_id: str,
        status: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Goal]:
        query = select(Goal).where(Goal.user_id == user_id)
        if status:
            query = query.where(Goal.status == status)
        query = query.order_by(Goal.created_at.desc(), Goal.id.desc())
        if limit:
            query = query.limit(limit)

        async with self._session_maker() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def create_goal(self, user_id: str, data: Dict[str, Any]) -> Goal:
        status = data.get("status") or "active"
        if status not in ("active", "paused"):
            raise InvalidState(f"A goal cannot be created as '{status}'")

        current_value = data.get("current_value") or 0
        async with self._session_maker() as session:
            async with session.begin():
                goal = Goal(
                    user_id=user_id,
                    title=data["title"],
                    description=data.get("description"),
                    type=data.get("type") or "custom",
                    target_value=data["target_value"],
                    current_value=current_value,
                    status=status,
                    priority=data.get("priority") or "medium",
                    category=data.get("category"),
                    subject=data.get("subject"),
                    deadline=data.get("deadline"),
                    milestones=mark_milestones(data.get("milestones"), current_value),
                )
                session.add(goal)

        logger.info(f"Created goal {goal.id} for user {user_id}")
        return goal

    async def update_goal(self, user_id: str, goal_id: int, changes: Dict[str, Any]) -> Goal:
        async with self._session_maker() as session:
            async with session.begin():
                goal = await self._owned_goal(session, user_id, goal_id)
                if not TRANSITIONS.get(goal.status):
                    raise InvalidState(f"Goal is {goal.status} and can no longer be edited")

                for key in UPDATABLE_FIELDS:
                    if key in changes and changes[key] is not None:
                        setattr(goal, key, changes[key])
                goal.milestones = mark_milestones(goal.milestones, goal.current_value)

        return goal

    async def complete_goal(self, user_id: str, goal_id: int) -> Goal:
        async with self._session_maker() as session:
            async with session.begin():
                goal = await self._owned_goal(session, user_id, goal_id)
                if not can_transition(goal.status, "completed"):
                    raise InvalidState(f"Cannot complete a goal that is {goal.status}")

                goal.status = "completed"
                goal.current_value = goal.target_value
                goal.completed_at = utcnow_iso()
                goal.milestones = mark_milestones(goal.milestones, goal.current_value)

        logger.info(f"Goal {goal_id} completed by user {user_id}")
        return goal

    async def set_goal_status(self, user_id: str, goal_id: int, status: str) -> Goal:
        """Move a goal to ``status``; completing goes through :meth:`complete_goal`."""
        if status == "completed":
            return await self.complete_goal(user_id, goal_id)

        async with self._session_maker() as session:
            async with session.begin():
                goal = await self._owned_goal(session, user_id, goal_id)
                if not can_transition(goal.status, status):
                    raise InvalidState(f"Cannot move goal from {goal.status} to {status}")
                goal.status = status

        return goal

    async def delete_goal(self, user_id: str, goal_id: int) -> None:
        async with self._session_maker() as session:
            async with session.begin():
                goal = await self._owned_goal(session, user_id, goal_id)
                await session.delete(goal)

        logger.info(f"Deleted goal {goal_id}")
