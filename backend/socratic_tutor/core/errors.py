"""Error taxonomy shared by the engines and the HTTP layer."""

from fastapi import status


class TutorError(Exception):
    """Base class for caller-visible errors raised by the engines."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_detail: str = "Request could not be processed"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class Unauthenticated(TutorError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Invalid authentication credentials"


class AccessDenied(TutorError):
    """Caller does not own the resource (or it does not exist)."""

    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Access to this chat session is denied."


class NotFound(TutorError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Resource not found"


class InvalidState(TutorError):
    """Requested transition is not allowed from the current state."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = "Invalid state transition"


class StoreFailure(TutorError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Persistence layer unavailable"


class GenerationFailure(TutorError):
    """Text generation failed or produced nothing.

    Absorbed by the session engine, which answers with a fallback reply.
    """

    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Text generation failed"


class InvalidInput(TutorError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "Invalid input"
