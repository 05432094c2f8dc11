"""Tutoring session engine.

Owns chat sessions and their messages. One exchange is:

1. ownership check, classification and prompt assembly
2. the user message is committed with ``reply_pending`` set
3. text generation (buffered or streamed), falling back to a canned reply
4. reply classification, persistence and progression bookkeeping in one
   transaction, which also clears ``reply_pending``

Step 4 runs at most once per user message. An abandoned stream finishes
step 4 in a background task with whatever text had arrived.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence, Set

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import Settings, get_settings
from ..core.errors import AccessDenied, GenerationFailure, InvalidState, StoreFailure
from ..db.base import utcnow_iso
from ..db.tutor.models import ChatMessage, ChatSession
from . import prompts
from .classifier import classify
from .progression import ProgressionEngine, merge_concepts
from .subjects import SubjectCache
from .types import Attachment, ExchangeResult, MessageAnalysis, StreamEvent

logger = logging.getLogger(__name__)

GENERAL_SUBJECT = "general"


class Generator(Protocol):
    async def generate(self, prompt: str, attachments: Optional[Sequence[Attachment]] = None) -> str: ...

    def generate_stream(
        self, prompt: str, attachments: Optional[Sequence[Attachment]] = None
    ) -> AsyncIterator[str]: ...


@dataclass
class PreparedExchange:
    """A committed user message waiting for its reply."""

    chat_id: int
    user_id: str
    subject: Optional[str]
    user_message: ChatMessage
    analysis: MessageAnalysis
    prompt: str
    attachments: List[Attachment] = field(default_factory=list)


class SessionEngine:
    """Chat sessions, message exchanges and session duration."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        subjects: SubjectCache,
        progression: ProgressionEngine,
        generator: Generator,
        settings: Optional[Settings] = None,
    ):
        self._session_maker = session_maker
        self._subjects = subjects
        self._progression = progression
        self._generator = generator
        self._settings = settings or get_settings()
        self._background: Set[asyncio.Task] = set()

    # =========================================================================
    # Sessions
    # =========================================================================

    async def _owned_session(
        self,
        session: AsyncSession,
        session_id: int,
        user_id: str,
        lock: bool = False,
    ) -> ChatSession:
        query = select(ChatSession).where(ChatSession.id == session_id)
        if lock:
            query = query.with_for_update()
        chat = (await session.execute(query)).scalar_one_or_none()
        if chat is None or chat.user_id != user_id:
            logger.warning(f"Denied access to chat session {session_id} for user {user_id}")
            raise AccessDenied()
        return chat

    async def start_session(self, user_id: str, subject: Optional[str] = None) -> ChatSession:
        """Create a session; with a subject, credit a new session to its progress."""
        config = self._subjects.get(subject)

        async with self._session_maker() as session:
            async with session.begin():
                chat = ChatSession(
                    user_id=user_id,
                    subject=subject,
                    difficulty=config.difficulty if config else None,
                    is_active=True,
                    duration=0,
                    concepts_learned=[],
                )
                session.add(chat)

        if subject:
            await self._progression.credit_concepts(user_id, subject, (), new_session=True)

        logger.info(f"Started chat session {chat.id} for user {user_id} (subject={subject or GENERAL_SUBJECT})")
        return chat

    async def list_sessions(
        self,
        user_id: str,
        subject: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Active sessions, most recent activity first, with a last-message preview."""
        async with self._session_maker() as session:
            query = select(ChatSession).where(
                ChatSession.user_id == user_id,
                ChatSession.is_active.is_(True),
            )
            if subject == GENERAL_SUBJECT:
                query = query.where(ChatSession.subject.is_(None))
            elif subject:
                query = query.where(ChatSession.subject == subject)
            if search:
                pattern = f"%{search}%"
                query = query.where(
                    or_(
                        ChatSession.subject.ilike(pattern),
                        ChatSession.id.in_(
                            select(ChatMessage.session_id).where(ChatMessage.content.ilike(pattern))
                        ),
                    )
                )
            query = query.order_by(
                func.coalesce(ChatSession.last_message_at, ChatSession.created_at).desc(),
                ChatSession.id.desc(),
            )
            chats = (await session.execute(query)).scalars().all()

            ids = [chat.id for chat in chats]
            latest: Dict[int, ChatMessage] = {}
            counts: Dict[int, int] = {}
            if ids:
                stats = (
                    select(
                        ChatMessage.session_id,
                        func.max(ChatMessage.id).label("last_id"),
                        func.count(ChatMessage.id).label("message_count"),
                    )
                    .where(ChatMessage.session_id.in_(ids))
                    .group_by(ChatMessage.session_id)
                    .subquery()
                )
                rows = await session.execute(
                    select(ChatMessage, stats.c.message_count).join(stats, ChatMessage.id == stats.c.last_id)
                )
                for message, count in rows.all():
                    latest[message.session_id] = message
                    counts[message.session_id] = count

        sessions = []
        for chat in chats:
            data = chat.to_dict()
            data["subject"] = chat.subject or GENERAL_SUBJECT
            last = latest.get(chat.id)
            data["last_message"] = last.to_dict() if last else None
            data["message_count"] = counts.get(chat.id, 0)
            sessions.append(data)
        return sessions

    async def get_session(self, session_id: int, user_id: str) -> ChatSession:
        """Load a session the user owns; anything else is AccessDenied."""
        async with self._session_maker() as session:
            return await self._owned_session(session, session_id, user_id)

    async def end_session(self, session_id: int, user_id: str) -> ChatSession:
        """Deactivate a session. Messages are kept."""
        async with self._session_maker() as session:
            async with session.begin():
                chat = await self._owned_session(session, session_id, user_id)
                chat.is_active = False

        logger.info(f"Ended chat session {session_id}")
        return chat

    async def list_messages(self, session_id: int, user_id: str) -> List[ChatMessage]:
        async with self._session_maker() as session:
            await self._owned_session(session, session_id, user_id)
            result = await session.execute(
                select(ChatMessage)
                .where(ChatMessage.session_id == session_id)
                .order_by(ChatMessage.id.asc())
            )
            return list(result.scalars().all())

    async def update_duration(self, session_id: int, user_id: str, seconds: int) -> Dict[str, Any]:
        """Record the client-reported session length.

        Stores max(reported, stored); only the increase is credited to the
        subject's time spent.
        """
        if seconds < 0:
            raise ValueError("Duration must be non-negative")

        async with self._session_maker() as session:
            chat = await self._owned_session(session, session_id, user_id)
        if chat.subject:
            await self._progression.prepare(user_id, chat.subject)

        for attempt in range(self._settings.PROGRESS_UPDATE_RETRIES):
            async with self._session_maker() as session:
                async with session.begin():
                    previous = await session.scalar(
                        select(ChatSession.duration).where(ChatSession.id == session_id)
                    ) or 0
                    if seconds <= previous:
                        return {"session_id": session_id, "duration": previous, "credited": 0}

                    result = await session.execute(
                        update(ChatSession)
                        .where(ChatSession.id == session_id, ChatSession.duration == previous)
                        .values(duration=seconds)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        logger.debug(f"Duration update for session {session_id} lost a race (attempt {attempt + 1})")
                        continue

                    delta = seconds - previous
                    if chat.subject:
                        await self._progression.credit_time(user_id, chat.subject, delta, session=session)
                    return {"session_id": session_id, "duration": seconds, "credited": delta}

        raise StoreFailure("Could not record session duration")

    # =========================================================================
    # Exchanges
    # =========================================================================

    async def _prepare_exchange(
        self,
        session_id: int,
        user_id: str,
        content: str,
        attachments: Optional[Sequence[Attachment]],
    ) -> PreparedExchange:
        window = self._settings.CONTEXT_WINDOW
        attachments = list(attachments or [])

        async with self._session_maker() as session:
            async with session.begin():
                chat = await self._owned_session(session, session_id, user_id)
                if not chat.is_active:
                    raise InvalidState("Chat session has ended")

                recent = await session.execute(
                    select(ChatMessage)
                    .where(ChatMessage.session_id == session_id)
                    .order_by(ChatMessage.id.desc())
                    .limit(window)
                )
                history = list(reversed(recent.scalars().all()))

                config = self._subjects.get(chat.subject)
                analysis = classify(content, config.concepts if config else None, role="user")

                user_message = ChatMessage(
                    session_id=session_id,
                    content=content,
                    is_user_message=True,
                    message_type=analysis.message_type,
                    difficulty=analysis.difficulty,
                    concepts=list(analysis.concepts),
                    analysis=analysis.model_dump(),
                    attachments=[{"name": item.name, "mime_type": item.mime_type} for item in attachments],
                    reply_pending=True,
                )
                session.add(user_message)

        if chat.subject:
            await self._progression.prepare(user_id, chat.subject)

        prompt = prompts.build(
            config.system_prompt if config else None,
            history,
            content,
            analysis.needs_guidance,
            window=window,
        )
        return PreparedExchange(
            chat_id=chat.id,
            user_id=user_id,
            subject=chat.subject,
            user_message=user_message,
            analysis=analysis,
            prompt=prompt,
            attachments=attachments,
        )

    async def _complete_exchange(
        self,
        prepared: PreparedExchange,
        reply: str,
        fallback_used: bool = False,
        interrupted: bool = False,
    ) -> Optional[ExchangeResult]:
        """Persist the reply and do the bookkeeping. None if already completed."""
        config = self._subjects.get(prepared.subject)
        reply_analysis = classify(reply, config.concepts if config else None, role="tutor")
        reply_analysis.interrupted = interrupted
        concepts = prepared.analysis.concepts

        async with self._session_maker() as session:
            async with session.begin():
                user_message = (
                    await session.execute(
                        select(ChatMessage)
                        .where(ChatMessage.id == prepared.user_message.id)
                        .with_for_update()
                    )
                ).scalar_one_or_none()
                if user_message is None or not user_message.reply_pending:
                    logger.info(f"Exchange for message {prepared.user_message.id} already completed")
                    return None

                assistant_message = ChatMessage(
                    session_id=prepared.chat_id,
                    content=reply,
                    is_user_message=False,
                    message_type=reply_analysis.message_type,
                    difficulty=reply_analysis.difficulty,
                    concepts=list(reply_analysis.concepts),
                    analysis=reply_analysis.model_dump(),
                    attachments=[],
                    reply_pending=False,
                )
                session.add(assistant_message)
                user_message.reply_pending = False

                chat = (
                    await session.execute(
                        select(ChatSession).where(ChatSession.id == prepared.chat_id).with_for_update()
                    )
                ).scalar_one()
                chat.concepts_learned = merge_concepts(chat.concepts_learned, concepts)
                chat.last_message_at = utcnow_iso()

                xp_awarded = None
                if prepared.subject:
                    await self._progression.credit_concepts(
                        prepared.user_id,
                        prepared.subject,
                        concepts,
                        message_delta=1,
                        session=session,
                    )
                    xp_awarded = await self._progression.award_xp(
                        prepared.user_id,
                        prepared.subject,
                        self._settings.XP_PER_MESSAGE,
                        session=session,
                    )

        return ExchangeResult(
            user_message=user_message,
            assistant_message=assistant_message,
            xp_awarded=xp_awarded,
            fallback_used=fallback_used,
        )

    async def submit_message(
        self,
        session_id: int,
        user_id: str,
        content: str,
        attachments: Optional[Sequence[Attachment]] = None,
    ) -> ExchangeResult:
        """Buffered exchange. Always answers, using the fallback when generation fails."""
        prepared = await self._prepare_exchange(session_id, user_id, content, attachments)

        fallback_used = False
        try:
            reply = (await self._generator.generate(prepared.prompt, prepared.attachments) or "").strip()
            if not reply:
                raise GenerationFailure("Empty response from text generator")
        except Exception as e:
            logger.warning(f"Generation failed for session {session_id}, using fallback: {e}")
            reply = prompts.fallback_reply(prepared.subject)
            fallback_used = True

        result = await self._complete_exchange(prepared, reply, fallback_used=fallback_used)
        if result is None:
            raise InvalidState("Exchange was already completed")
        return result

    async def submit_message_streamed(
        self,
        session_id: int,
        user_id: str,
        content: str,
        attachments: Optional[Sequence[Attachment]] = None,
    ) -> AsyncIterator[StreamEvent]:
        """Streamed exchange.

        Yields ``user_message``, then ``chunk`` events, then one ``done`` or
        ``error``. ``error`` carries the fallback reply, which is persisted
        like any other reply.
        """
        prepared = await self._prepare_exchange(session_id, user_id, content, attachments)
        parts: List[str] = []
        finished = False

        try:
            yield StreamEvent("user_message", {"message": prepared.user_message.to_dict()})

            failed = False
            try:
                async for chunk in self._generator.generate_stream(prepared.prompt, prepared.attachments):
                    if not chunk:
                        continue
                    parts.append(chunk)
                    yield StreamEvent("chunk", {"content": chunk})
            except Exception as e:
                logger.warning(f"Stream failed for session {session_id}: {e}")
                failed = True

            text = "".join(parts).strip()
            if failed or not text:
                reply = prompts.fallback_reply(prepared.subject)
                kind = "error"
            else:
                reply = text
                kind = "done"

            result = await self._complete_exchange(prepared, reply, fallback_used=kind == "error")
            finished = True
            if result is None:
                raise InvalidState("Exchange was already completed")

            data: Dict[str, Any] = {"content": reply, **result.to_dict()}
            if kind == "error":
                data["error"] = "Text generation failed; fallback reply used"
            yield StreamEvent(kind, data)
        finally:
            if not finished:
                self._complete_in_background(prepared, "".join(parts))

    # =========================================================================
    # Background completion
    # =========================================================================

    def _complete_in_background(self, prepared: PreparedExchange, partial: str) -> None:
        text = partial.strip()
        reply = text or prompts.fallback_reply(prepared.subject)
        logger.info(
            f"Stream for message {prepared.user_message.id} abandoned after {len(text)} chars; completing in background"
        )
        task = asyncio.create_task(
            self._complete_exchange(prepared, reply, fallback_used=not text, interrupted=True)
        )
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background exchange completion failed: {error}")

    @property
    def pending_completions(self) -> int:
        return len(self._background)

    async def drain(self) -> None:
        """Wait for background completions (shutdown, tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
