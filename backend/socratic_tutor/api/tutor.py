"""Tutor API endpoints: subjects, chat sessions, messages and subject progress."""

import json
import logging
from contextlib import aclosing
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, ValidationError

from ..core.errors import TutorError
from ..core.security import Identity, resolve_identity
from ..engines.types import Attachment, StreamEvent
from .deps import Services, get_current_user, get_services
from .websocket import manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tutor", tags=["Tutor"])

MAX_MESSAGE_LENGTH = 4000


# ==============================================================================
# Pydantic Models
# ==============================================================================

class SessionCreate(BaseModel):
    """Start a new chat session."""
    subject: Optional[str] = Field(default=None, max_length=64)


class MessageCreate(BaseModel):
    """Message to the tutor."""
    content: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    attachments: List[Attachment] = Field(default_factory=list)


class DurationReport(BaseModel):
    """Client-measured session length in seconds."""
    duration: int = Field(ge=0)


class XpAward(BaseModel):
    amount: int = Field(ge=0)


# ==============================================================================
# Server-sent events
# ==============================================================================

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: StreamEvent) -> str:
    return f"event: {event.event}\ndata: {json.dumps(event.data, ensure_ascii=False)}\n\n"


# ==============================================================================
# Subjects
# ==============================================================================

@router.get("/subjects")
async def list_subjects(
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    """Active tutoring subjects."""
    return [config.to_dict() for config in services.subjects.all()]


# ==============================================================================
# Sessions
# ==============================================================================

@router.post("/sessions", status_code=status.HTTP_201_CREATED)
async def create_session(
    payload: SessionCreate,
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    chat = await services.sessions.start_session(current_user.user_id, payload.subject)
    return chat.to_dict()


@router.get("/sessions")
async def list_sessions(
    subject: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=200),
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    return await services.sessions.list_sessions(current_user.user_id, subject=subject, search=search)


@router.delete("/sessions/{session_id}")
async def end_session(
    session_id: int,
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    chat = await services.sessions.end_session(session_id, current_user.user_id)
    return {"id": chat.id, "is_active": chat.is_active}


@router.get("/sessions/{session_id}/messages")
async def list_messages(
    session_id: int,
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    messages = await services.sessions.list_messages(session_id, current_user.user_id)
    return [message.to_dict() for message in messages]


@router.post("/sessions/{session_id}/messages")
async def send_message(
    session_id: int,
    payload: MessageCreate,
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """Buffered exchange: returns both persisted messages and any XP award."""
    result = await services.sessions.submit_message(
        session_id,
        current_user.user_id,
        payload.content,
        payload.attachments,
    )
    return result.to_dict()


@router.post("/sessions/{session_id}/messages/stream")
async def stream_message(
    session_id: int,
    payload: MessageCreate,
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> StreamingResponse:
    """
    Streamed exchange as server-sent events.

    Events: ``user_message``, ``chunk`` (repeated), then ``done`` or ``error``.
    """
    stream = services.sessions.submit_message_streamed(
        session_id,
        current_user.user_id,
        payload.content,
        payload.attachments,
    )
    # Ownership and validation errors surface here, before the response starts
    first = await stream.__anext__()

    async def event_source():
        async with aclosing(stream):
            yield format_sse(first)
            async for event in stream:
                yield format_sse(event)

    return StreamingResponse(event_source(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/sessions/{session_id}/duration")
async def report_duration(
    session_id: int,
    payload: DurationReport,
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return await services.sessions.update_duration(session_id, current_user.user_id, payload.duration)


# ==============================================================================
# Subject progress
# ==============================================================================

@router.get("/progress")
async def get_progress(
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    rows = await services.progression.get_progress(current_user.user_id)
    return [row.to_dict() for row in rows]


@router.get("/progress/{subject}")
async def get_subject_progress(
    subject: str,
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return await services.progression.get_subject_progress(current_user.user_id, subject)


@router.post("/progress/{subject}/xp")
async def award_xp(
    subject: str,
    payload: XpAward,
    current_user: Identity = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    result = await services.progression.award_xp(current_user.user_id, subject, payload.amount)
    return result.to_dict()


# ==============================================================================
# WebSocket Endpoint for Streaming
# ==============================================================================

@router.websocket("/session/ws/{session_id}")
async def tutor_websocket(
    websocket: WebSocket,
    session_id: int,
    token: Optional[str] = Query(default=None),
):
    """
    WebSocket adapter over the streamed exchange.

    Client frames: ``{"type": "message", "content": "...", "attachments": [...]}``.
    Server frames mirror the stream events (user_message, chunk, done, error).
    """
    services: Services = websocket.app.state.services
    try:
        identity = resolve_identity(token)
        # Only the session owner may register a connection for it
        await services.sessions.get_session(session_id, identity.user_id)
    except TutorError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await manager.connect(session_id, websocket)

    try:
        while True:
            data = await websocket.receive_json()
            if data.get("type", "message") != "message":
                await manager.send_error(
                    session_id, websocket, f"Unsupported frame type: {data.get('type')}", "bad_frame"
                )
                continue

            try:
                payload = MessageCreate.model_validate(data)
            except ValidationError as e:
                await manager.send_error(session_id, websocket, str(e), "invalid_message")
                continue

            stream = services.sessions.submit_message_streamed(
                session_id,
                identity.user_id,
                payload.content,
                payload.attachments,
            )
            try:
                async with aclosing(stream):
                    async for event in stream:
                        if not await manager.send_event(session_id, websocket, event):
                            break
            except TutorError as e:
                await manager.send_error(session_id, websocket, e.detail, type(e).__name__)
                if e.status_code == status.HTTP_403_FORBIDDEN:
                    manager.disconnect(session_id, websocket)
                    await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
                    return

            if not manager.is_connected(session_id, websocket):
                return

    except WebSocketDisconnect:
        manager.disconnect(session_id, websocket)
        logger.info(f"Tutor WebSocket disconnected for session: {session_id}")
    except Exception as e:
        logger.error(f"Error in tutor WebSocket: {e}")
        manager.disconnect(session_id, websocket)
