"""
Pytest configuration and fixtures.

Every test gets its own SQLite database file and a scripted text generator
in place of the LLM.
"""

import os
import sys
import tempfile
from pathlib import Path
from typing import AsyncGenerator, List, Optional

import pytest
from fastapi import WebSocketDisconnect
from httpx import AsyncClient, ASGITransport

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Environment must be in place before the application module is imported
_BOOTSTRAP_DIR = Path(tempfile.mkdtemp(prefix="socratic_tutor_tests_"))
os.environ["TUTOR_DB_URL"] = f"sqlite+aiosqlite:///{_BOOTSTRAP_DIR / 'bootstrap.db'}"
os.environ["SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["SEED_CATALOG_ON_STARTUP"] = "false"
os.environ["LANGSMITH_TRACING"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

from socratic_tutor.api.deps import build_services
from socratic_tutor.core.config import get_settings
from socratic_tutor.core.errors import GenerationFailure
from socratic_tutor.core.security import create_access_token
from socratic_tutor.db.base import close_all, get_session_maker, init_databases
from socratic_tutor.db.catalog.seed import build_learning_path, seed_catalog
from socratic_tutor.main import create_app


USER_ID = "user-1"
OTHER_USER_ID = "user-2"
ADMIN_ID = "admin-1"


class FakeGenerator:
    """Scripted text generator.

    ``reply`` is returned by buffered calls; ``chunks`` (defaults to the reply)
    are streamed; ``error`` is raised after the chunks have been yielded.
    """

    def __init__(self):
        self.reply = "What do you already know about this topic?"
        self.chunks: Optional[List[str]] = None
        self.error: Optional[Exception] = None
        self.prompts: List[str] = []

    async def generate(self, prompt, attachments=None):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply

    async def generate_stream(self, prompt, attachments=None):
        self.prompts.append(prompt)
        for chunk in self.chunks if self.chunks is not None else [self.reply]:
            yield chunk
        if self.error is not None:
            raise self.error

    def fail_with(self, message: str = "LLM unavailable") -> None:
        self.error = GenerationFailure(message)


@pytest.fixture
def fake_generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
async def session_maker(tmp_path, monkeypatch):
    """Fresh database per test."""
    monkeypatch.setenv("TUTOR_DB_URL", f"sqlite+aiosqlite:///{tmp_path / 'tutor.db'}")
    await close_all()
    await init_databases()
    yield get_session_maker()
    await close_all()


@pytest.fixture
async def services(session_maker, fake_generator):
    """Engines wired together over a seeded catalog."""
    container = build_services(get_settings(), session_maker, fake_generator)
    await seed_catalog(session_maker)
    await container.subjects.refresh()
    yield container
    await container.sessions.drain()


@pytest.fixture
async def three_module_path(session_maker) -> str:
    """A plain three-module path that is not recommended."""
    # Seed first; seeding skips a non-empty path table
    await seed_catalog(session_maker)
    async with session_maker() as session:
        async with session.begin():
            session.add(
                build_learning_path(
                    {
                        "id": "test-path",
                        "title": "Test Path",
                        "description": "Three modules in a row",
                        "subject": "mathematics",
                        "difficulty": "beginner",
                        "is_recommended": False,
                        "modules": [
                            {"title": "One", "type": "lesson"},
                            {"title": "Two", "type": "practice"},
                            {"title": "Three", "type": "quiz"},
                        ],
                    },
                    position=10,
                )
            )
    return "test-path"


@pytest.fixture
async def app(session_maker, fake_generator):
    """Application with startup work done by hand (ASGITransport skips lifespan)."""
    application = create_app(generator=fake_generator)
    services = application.state.services
    await seed_catalog(session_maker)
    await services.subjects.refresh()
    yield application
    await services.sessions.drain()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client


def token_for(user_id: str, role: str = "user") -> str:
    return create_access_token({"sub": user_id, "email": f"{user_id}@example.com", "role": role})


def _headers(user_id: str, role: str = "user") -> dict:
    return {"Authorization": f"Bearer {token_for(user_id, role)}"}


@pytest.fixture
def auth_headers() -> dict:
    """Return headers with the main test user's token."""
    return _headers(USER_ID)


@pytest.fixture
def other_headers() -> dict:
    return _headers(OTHER_USER_ID)


@pytest.fixture
def admin_headers() -> dict:
    return _headers(ADMIN_ID, role="admin")


class MockWebSocket:
    """Mock WebSocket for testing."""

    def __init__(self, fail_after: Optional[int] = None, incoming: Optional[list] = None, app=None):
        self.messages = []
        self.accepted = False
        self.closed = False
        self.close_code: Optional[int] = None
        self.fail_after = fail_after
        # Client frames handed out by receive_json; a disconnect follows the last one
        self.incoming = list(incoming or [])
        self.app = app

    async def accept(self):
        self.accepted = True

    async def receive_json(self) -> dict:
        if not self.incoming:
            raise WebSocketDisconnect(code=1000)
        return self.incoming.pop(0)

    async def send_json(self, data: dict):
        if self.fail_after is not None and len(self.messages) >= self.fail_after:
            raise RuntimeError("connection closed")
        self.messages.append(data)

    async def close(self, code: int = 1000):
        self.closed = True
        self.close_code = code

    def get_messages(self) -> list:
        return self.messages


@pytest.fixture
def mock_websocket() -> MockWebSocket:
    """Create a mock WebSocket."""
    return MockWebSocket()
