"""WebSocket manager for streaming tutor replies.

A chat session may have several live connections (one per client tab), all
belonging to the session owner. Each connection only receives the events of
the exchanges it started, forwarded as JSON frames::

    {"type": "<event>", "content": "...", "metadata": {...}}
"""

import logging
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket

from ..engines.types import StreamEvent

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Manages WebSocket connections for streaming responses.

    Connections are registered per chat session and addressed individually.
    """

    def __init__(self):
        # Active WebSocket connections by chat session id
        self.active_connections: Dict[int, List[WebSocket]] = {}

    async def connect(self, session_id: int, websocket: WebSocket) -> None:
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        self.active_connections.setdefault(session_id, []).append(websocket)
        logger.info(f"WebSocket connected for session: {session_id}")

    def disconnect(self, session_id: int, websocket: WebSocket) -> None:
        """Forget one connection; other connections of the session stay registered."""
        connections = self.active_connections.get(session_id)
        if not connections:
            return

        remaining = [item for item in connections if item is not websocket]
        if len(remaining) == len(connections):
            return
        if remaining:
            self.active_connections[session_id] = remaining
        else:
            del self.active_connections[session_id]
        logger.info(f"WebSocket disconnected for session: {session_id}")

    def is_connected(self, session_id: int, websocket: WebSocket) -> bool:
        return any(item is websocket for item in self.active_connections.get(session_id, []))

    async def send_message(
        self,
        session_id: int,
        websocket: WebSocket,
        message: str,
        message_type: str = "response",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Send a message over one registered connection.

        Args:
            session_id: Chat session id the connection is registered under
            websocket: Target connection
            message: The message content
            message_type: Frame type (user_message, chunk, done, error, ...)
            metadata: Optional metadata to include

        Returns:
            True if message was sent, False if the connection is gone
        """
        if not self.is_connected(session_id, websocket):
            logger.warning(f"No active connection for session: {session_id}")
            return False

        payload = {
            "type": message_type,
            "content": message,
            "metadata": metadata or {},
        }

        try:
            await websocket.send_json(payload)
            return True
        except Exception as e:
            logger.error(f"Error sending message to session {session_id}: {e}")
            self.disconnect(session_id, websocket)
            return False

    async def send_event(self, session_id: int, websocket: WebSocket, event: StreamEvent) -> bool:
        """Forward one stream event. Chunks carry their text as content."""
        metadata = dict(event.data)
        content = metadata.pop("content", "")
        return await self.send_message(session_id, websocket, content, message_type=event.event, metadata=metadata)

    async def send_error(
        self,
        session_id: int,
        websocket: WebSocket,
        error: str,
        error_code: Optional[str] = None,
    ) -> bool:
        return await self.send_message(
            session_id,
            websocket,
            error,
            message_type="error",
            metadata={"error_code": error_code},
        )

    def get_active_sessions(self) -> Set[int]:
        return set(self.active_connections.keys())


# Global connection manager instance
manager = ConnectionManager()
