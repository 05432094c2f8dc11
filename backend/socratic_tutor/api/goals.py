"""Goal endpoints."""

from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from ..core.security import Identity
from ..engines.types import GoalPriority, GoalStatus, GoalType, Milestone
from .deps import Services, get_current_user, get_services

router = APIRouter(prefix="/goals", tags=["Goals"])


class GoalCreate(BaseModel):
    title: str = Field(min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=500)
    type: GoalType = "custom"
    target_value: int = Field(gt=0)
    current_value: int = Field(default=0, ge=0)
    priority: GoalPriority = "medium"
    category: Optional[str] = Field(default=None, max_length=50)
    subject: Optional[str] = Field(default=None, max_length=64)
    deadline: Optional[str] = None
    milestones: List[Milestone] = Field(default_factory=list)
    status: GoalStatus = "active"


class GoalUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=500)
    type: Optional[GoalType] = None
    target_value: Optional[int] = Field(default=None, gt=0)
    current_value: Optional[int] = Field(default=None, ge=0)
    priority: Optional[GoalPriority] = None
    category: Optional[str] = Field(default=None, max_length=50)
    subject: Optional[str] = Field(default=None, max_length=64)
    deadline: Optional[str] = None
    milestones: Optional[List[Milestone]] = None


class GoalStatusUpdate(BaseModel):
    status: GoalStatus


@router.get("")
async def list_goals(
    status_filter: Optional[GoalStatus] = Query(default=None, alias="status"),
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    goals = await services.goals.list_goals(current_user.user_id, status=status_filter, limit=limit)
    return [goal.to_dict() for goal in goals]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_goal(
    payload: GoalCreate,
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    goal = await services.goals.create_goal(current_user.user_id, payload.model_dump())
    return goal.to_dict()


@router.patch("/{goal_id}")
async def update_goal(
    goal_id: int,
    payload: GoalUpdate,
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    goal = await services.goals.update_goal(
        current_user.user_id, goal_id, payload.model_dump(exclude_unset=True)
    )
    return goal.to_dict()


@router.post("/{goal_id}/complete")
async def complete_goal(
    goal_id: int,
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    goal = await services.goals.complete_goal(current_user.user_id, goal_id)
    return goal.to_dict()


@router.patch("/{goal_id}/status")
async def set_goal_status(
    goal_id: int,
    payload: GoalStatusUpdate,
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    goal = await services.goals.set_goal_status(current_user.user_id, goal_id, payload.status)
    return goal.to_dict()


@router.delete("/{goal_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_goal(
    goal_id: int,
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> None:
    await services.goals.delete_goal(current_user.user_id, goal_id)
