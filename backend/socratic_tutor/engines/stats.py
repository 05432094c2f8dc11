"""Read-only learning statistics over chat sessions and subject progress.

Nothing here writes. Totals come from SQL aggregates over active sessions;
day buckets use the UTC date prefix of ``created_at``.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Literal, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db.tutor.models import ChatMessage, ChatSession
from .progression import ProgressionEngine

logger = logging.getLogger(__name__)

Period = Literal["week", "month", "year", "all"]
ChartType = Literal["sessions", "messages", "study_time", "subjects"]

PERIOD_DAYS: Dict[str, int] = {"week": 7, "month": 30, "year": 365}
RECENT_ACTIVITY_DAYS = 30
DEFAULT_RECENT_SESSIONS = 10


def _day(timestamp: Optional[str]) -> Optional[str]:
    return timestamp[:10] if timestamp else None


def _minutes(seconds: float) -> int:
    return int(round(seconds / 60))


def current_streak(activity: Iterable[str], today: date) -> int:
    """Consecutive days with activity, ending today or yesterday.

    ``activity`` holds ISO timestamps or dates; only the date part counts.
    Activity last seen before yesterday means the streak is broken.
    """
    days = {date.fromisoformat(_day(item)) for item in activity if item}
    if not days:
        return 0

    cursor = max(days)
    if cursor < today - timedelta(days=1):
        return 0

    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def period_start(now: datetime, period: Period) -> Optional[datetime]:
    """Start of the reporting window; None for ``all``."""
    days = PERIOD_DAYS.get(period)
    return now - timedelta(days=days) if days else None


def build_activity(sessions: Sequence[ChatSession], message_counts: Dict[int, int]) -> List[Dict[str, Any]]:
    """Group sessions into per-day buckets, oldest day first."""
    buckets: Dict[str, Dict[str, Any]] = {}
    for chat in sessions:
        day = _day(chat.created_at)
        bucket = buckets.setdefault(day, {
            "date": day,
            "sessions": 0,
            "messages": 0,
            "study_time": 0,
            "concepts_learned": 0,
            "subjects": [],
        })
        bucket["sessions"] += 1
        bucket["messages"] += message_counts.get(chat.id, 0)
        bucket["study_time"] += _minutes(chat.duration or 0)
        bucket["concepts_learned"] += len(chat.concepts_learned or [])
        if chat.subject and chat.subject not in bucket["subjects"]:
            bucket["subjects"].append(chat.subject)
    return [buckets[day] for day in sorted(buckets)]


class StatsService:
    """Per-user dashboards: totals, streak, recent sessions, analytics, charts."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        progression: ProgressionEngine,
    ):
        self._session_maker = session_maker
        self._progression = progression

    async def _message_counts(
        self,
        session: AsyncSession,
        session_ids: Sequence[int],
        user_only: bool = False,
    ) -> Dict[int, int]:
        if not session_ids:
            return {}
        query = (
            select(ChatMessage.session_id, func.count(ChatMessage.id))
            .where(ChatMessage.session_id.in_(session_ids))
            .group_by(ChatMessage.session_id)
        )
        if user_only:
            query = query.where(ChatMessage.is_user_message.is_(True))
        rows = await session.execute(query)
        return {session_id: count for session_id, count in rows.all()}

    async def get_user_stats(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Totals over the user's active sessions."""
        now = now or datetime.now(timezone.utc)
        active = (ChatSession.user_id == user_id, ChatSession.is_active.is_(True))

        async with self._session_maker() as session:
            totals = (await session.execute(
                select(
                    func.count(ChatSession.id),
                    func.coalesce(func.sum(ChatSession.duration), 0),
                    func.count(func.distinct(ChatSession.subject)),
                    func.max(ChatSession.updated_at),
                ).where(*active)
            )).one()
            messages_sent = await session.scalar(
                select(func.count(ChatMessage.id))
                .join(ChatSession, ChatMessage.session_id == ChatSession.id)
                .where(*active, ChatMessage.is_user_message.is_(True))
            )
            rows = (await session.execute(
                select(ChatSession.created_at, ChatSession.concepts_learned).where(*active)
            )).all()

        session_count, total_seconds, subject_count, last_activity = totals
        concepts = {concept for _, learned in rows for concept in (learned or [])}
        study_minutes = total_seconds / 60
        logger.debug(f"Computed stats for user {user_id} over {session_count} sessions")

        return {
            "sessions_completed": session_count,
            "messages_sent": messages_sent or 0,
            "study_time_minutes": int(round(study_minutes)),
            "current_streak": current_streak((created for created, _ in rows), now.date()),
            "total_subjects": subject_count,
            "average_session_duration": int(round(study_minutes / session_count)) if session_count else 0,
            "concepts_learned": len(concepts),
            "last_activity": last_activity,
        }

    async def recent_sessions(
        self,
        user_id: str,
        limit: int = DEFAULT_RECENT_SESSIONS,
        subject: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        query = select(ChatSession).where(
            ChatSession.user_id == user_id,
            ChatSession.is_active.is_(True),
        )
        if subject:
            query = query.where(ChatSession.subject == subject)
        query = query.order_by(ChatSession.updated_at.desc(), ChatSession.id.desc()).limit(limit)

        async with self._session_maker() as session:
            chats = (await session.execute(query)).scalars().all()
            counts = await self._message_counts(session, [chat.id for chat in chats])

        return [
            {
                "id": chat.id,
                "subject": chat.subject,
                "message_count": counts.get(chat.id, 0),
                "duration": _minutes(chat.duration or 0),
                "concepts_learned": list(chat.concepts_learned or []),
                "created_at": chat.created_at,
                "last_message_at": chat.last_message_at or chat.updated_at,
            }
            for chat in chats
        ]

    async def detailed_progress(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Subject progress plus per-day activity over the last 30 days."""
        now = now or datetime.now(timezone.utc)
        since = (now - timedelta(days=RECENT_ACTIVITY_DAYS)).isoformat()

        async with self._session_maker() as session:
            chats = (await session.execute(
                select(ChatSession)
                .where(ChatSession.user_id == user_id, ChatSession.created_at >= since)
                .order_by(ChatSession.created_at.asc())
            )).scalars().all()
            counts = await self._message_counts(session, [chat.id for chat in chats], user_only=True)

        progress = await self._progression.get_progress(user_id)
        return {
            "subject_progress": [row.to_dict() for row in progress],
            "daily_activity": build_activity(chats, counts),
        }

    async def analytics(
        self,
        user_id: str,
        period: Period = "month",
        subjects: Optional[Sequence[str]] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Summary, subject breakdown and daily activity for a reporting window."""
        now = now or datetime.now(timezone.utc)
        start = period_start(now, period)

        query = select(ChatSession).where(
            ChatSession.user_id == user_id,
            ChatSession.is_active.is_(True),
        )
        if start is not None:
            query = query.where(ChatSession.created_at >= start.isoformat())
        if subjects:
            query = query.where(ChatSession.subject.in_(subjects))
        query = query.order_by(ChatSession.created_at.asc())

        async with self._session_maker() as session:
            chats = (await session.execute(query)).scalars().all()
            counts = await self._message_counts(session, [chat.id for chat in chats])

        stats = await self.get_user_stats(user_id, now=now)
        progress = await self._progression.get_progress(user_id)

        total_sessions = len(chats)
        study_minutes = sum(chat.duration or 0 for chat in chats) / 60
        concepts = {concept for chat in chats for concept in (chat.concepts_learned or [])}

        breakdown = []
        for row in progress:
            if subjects and row.subject not in subjects:
                continue
            minutes = (row.total_time_spent or 0) / 60
            breakdown.append({
                "subject": row.subject,
                "sessions": row.total_sessions,
                "messages": row.total_messages,
                "concepts_learned": len(row.concepts_learned or []),
                "time_spent": int(round(minutes)),
                "average_session_duration": int(round(minutes / row.total_sessions)) if row.total_sessions else 0,
                "last_activity": row.last_activity or stats["last_activity"],
                "level": row.level,
                "progress": row.progress,
            })

        if start is not None:
            range_start = start.isoformat()
        else:
            range_start = chats[0].created_at if chats else None

        return {
            "user_id": user_id,
            "period": period,
            "date_range": {"start": range_start, "end": now.isoformat()},
            "summary": {
                "total_sessions": total_sessions,
                "total_messages": sum(counts.values()),
                "total_study_time": int(round(study_minutes)),
                "average_session_duration": int(round(study_minutes / total_sessions)) if total_sessions else 0,
                "concepts_learned": len(concepts),
                "current_streak": stats["current_streak"],
            },
            "engagement_score": min(100, total_sessions * 8 + len(concepts) * 4),
            "subject_breakdown": breakdown,
            "activity_data": build_activity(chats, counts),
            "generated_at": now.isoformat(),
        }

    async def chart_data(
        self,
        user_id: str,
        chart_type: ChartType,
        period: Period = "month",
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """One point per active day for the requested series."""
        data = await self.analytics(user_id, period, now=now)
        points = []
        for day in data["activity_data"]:
            if chart_type == "subjects":
                value = len(day["subjects"])
            else:
                value = day[chart_type]
            points.append({"label": day["date"], "date": day["date"], "value": value})
        return points
