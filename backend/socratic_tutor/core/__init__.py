"""Core configuration, errors and identity handling for the Socratic Tutor backend."""

from .config import Settings, get_settings
from .errors import (
    AccessDenied,
    GenerationFailure,
    InvalidState,
    NotFound,
    StoreFailure,
    TutorError,
    Unauthenticated,
)
from .security import (
    Identity,
    create_access_token,
    resolve_identity,
    verify_access_token,
)

__all__ = [
    "Settings",
    "get_settings",
    "AccessDenied",
    "GenerationFailure",
    "InvalidState",
    "NotFound",
    "StoreFailure",
    "TutorError",
    "Unauthenticated",
    "Identity",
    "create_access_token",
    "resolve_identity",
    "verify_access_token",
]
