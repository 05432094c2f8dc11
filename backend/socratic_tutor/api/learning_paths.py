"""Learning-path endpoints: catalog, recommendations, enrollment and module progress."""

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from ..core.security import Identity
from ..db.tutor.models import UserLearningPath
from ..engines.learning_paths import DEFAULT_RECOMMENDATION_LIMIT
from .deps import Services, get_current_user, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/learning-paths", tags=["Learning Paths"])


class ModuleProgressReport(BaseModel):
    """Progress report for one module (progress is clamped to 0-100)."""
    progress: float = Field(allow_inf_nan=False)
    time_spent: Optional[int] = Field(default=None, ge=0)
    score: Optional[float] = Field(default=None, allow_inf_nan=False)
    failed: bool = False


def enrollment_to_dict(enrollment: UserLearningPath) -> dict[str, Any]:
    data = enrollment.to_dict()
    path = enrollment.path
    if path is not None:
        data["path"] = {
            "id": path.id,
            "title": path.title,
            "subject": path.subject,
            "difficulty": path.difficulty,
            "module_count": len(path.modules),
        }
    return data


@router.get("")
async def list_learning_paths(
    subjects: Optional[List[str]] = Query(default=None),
    difficulty: Optional[List[str]] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=200),
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    paths = await services.learning_paths.list_paths(
        subjects=subjects,
        difficulty=difficulty,
        search=search,
        limit=limit,
    )
    return [path.to_dict() for path in paths]


@router.get("/recommended")
async def recommended_learning_paths(
    limit: int = Query(default=DEFAULT_RECOMMENDATION_LIMIT, ge=1, le=50),
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    paths = await services.learning_paths.recommend(current_user.user_id, limit)
    return [path.to_dict() for path in paths]


@router.get("/progress")
async def all_progress(
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    enrollments = await services.learning_paths.get_user_progress(current_user.user_id)
    return [enrollment_to_dict(enrollment) for enrollment in enrollments]


@router.get("/{path_id}")
async def get_learning_path(
    path_id: str,
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    path = await services.learning_paths.get_path(path_id)
    return path.to_dict()


@router.post("/{path_id}/enroll", status_code=status.HTTP_201_CREATED)
async def enroll(
    path_id: str,
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    enrollment = await services.learning_paths.enroll(current_user.user_id, path_id)
    return enrollment_to_dict(enrollment)


@router.get("/{path_id}/progress")
async def path_progress(
    path_id: str,
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    enrollments = await services.learning_paths.get_user_progress(current_user.user_id, path_id)
    return enrollment_to_dict(enrollments[0])


@router.post("/{path_id}/modules/{module_id}/progress")
async def update_module_progress(
    path_id: str,
    module_id: str,
    payload: ModuleProgressReport,
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    enrollment = await services.learning_paths.update_module_progress(
        current_user.user_id,
        path_id,
        module_id,
        payload.progress,
        time_spent=payload.time_spent,
        score=payload.score,
        failed=payload.failed,
    )
    return enrollment_to_dict(enrollment)
