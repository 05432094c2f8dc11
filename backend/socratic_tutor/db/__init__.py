"""Database package for the Socratic Tutor backend."""

from .base import (
    Base,
    close_all,
    get_engine,
    get_session,
    get_session_maker,
    init_databases,
    utcnow_iso,
)

__all__ = [
    "Base",
    "close_all",
    "get_engine",
    "get_session",
    "get_session_maker",
    "init_databases",
    "utcnow_iso",
]
