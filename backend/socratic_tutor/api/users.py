"""Per-user statistics endpoints: totals, dashboard, recent sessions, analytics and charts."""

from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query

from ..core.security import Identity
from ..engines.stats import DEFAULT_RECENT_SESSIONS, ChartType, Period
from .deps import Services, get_current_user, get_services

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/me/stats")
async def get_stats(
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return await services.stats.get_user_stats(current_user.user_id)


@router.get("/me/dashboard")
async def get_dashboard(
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """Stats, subject progress, daily activity and active goals in one call."""
    stats = await services.stats.get_user_stats(current_user.user_id)
    progress = await services.stats.detailed_progress(current_user.user_id)
    goals = await services.goals.list_goals(current_user.user_id, status="active")
    return {
        "stats": stats,
        "progress": progress["subject_progress"],
        "daily_activity": progress["daily_activity"],
        "active_goals": [goal.to_dict() for goal in goals],
    }


@router.get("/me/progress")
async def get_detailed_progress(
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return await services.stats.detailed_progress(current_user.user_id)


@router.get("/me/sessions/recent")
async def get_recent_sessions(
    limit: int = Query(default=DEFAULT_RECENT_SESSIONS, ge=1, le=100),
    subject: Optional[str] = Query(default=None),
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    return await services.stats.recent_sessions(current_user.user_id, limit=limit, subject=subject)


@router.get("/me/analytics")
async def get_analytics(
    period: Period = Query(default="month"),
    subjects: Optional[List[str]] = Query(default=None),
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """Aggregates for a reporting window, optionally limited to some subjects."""
    return await services.stats.analytics(current_user.user_id, period=period, subjects=subjects)


@router.get("/me/charts/{chart_type}")
async def get_chart(
    chart_type: ChartType,
    period: Period = Query(default="month"),
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    return await services.stats.chart_data(current_user.user_id, chart_type, period=period)
