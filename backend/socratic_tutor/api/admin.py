"""Administrative endpoints for subject configuration."""

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..core.security import Identity
from ..engines.types import Difficulty
from .deps import Services, get_services, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


class SubjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    system_prompt: Optional[str] = Field(default=None, min_length=1)
    difficulty: Optional[Difficulty] = None
    concepts: Optional[List[str]] = None
    is_active: Optional[bool] = None


@router.get("/subjects")
async def list_subjects(
    admin: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    """All subjects, including inactive ones, with their system prompts."""
    subjects = await services.subjects.list_all()
    return [subject.to_dict(include_prompt=True) for subject in subjects]


@router.patch("/subjects/{subject_id}")
async def update_subject(
    subject_id: str,
    payload: SubjectUpdate,
    admin: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    subject = await services.subjects.update_subject(subject_id, payload.model_dump(exclude_unset=True))
    logger.info(f"Subject {subject_id} updated by {admin.user_id}")
    return subject.to_dict(include_prompt=True)


@router.post("/subjects/refresh")
async def refresh_subjects(
    admin: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    count = await services.subjects.refresh()
    return {"loaded": count}
