"""Domain errors raised by the moderation authority services."""

from __future__ import annotations

from fastapi import HTTPException, status

if hasattr(status, "HTTP_422_UNPROCESSABLE_CONTENT"):
    _HTTP_422 = status.HTTP_422_UNPROCESSABLE_CONTENT
else:  # pragma: no cover - older Starlette builds
    _HTTP_422 = status.HTTP_422_UNPROCESSABLE_ENTITY


class ModerationError(Exception):
    """Base class for moderation related errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: str = "moderation_error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail


class NotFoundError(ModerationError):
    """A referenced user, container, report, grant or ban does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    detail = "not_found"


class ValidationError(ModerationError):
    """Input rejected before any write (role/scope mismatch, bad ban window)."""

    status_code = _HTTP_422
    detail = "validation_error"


class ForbiddenError(ModerationError):
    """The caller lacks moderate/administer rights for the scope."""

    status_code = status.HTTP_403_FORBIDDEN
    detail = "forbidden"


class InvalidStateError(ModerationError):
    """The record already left the state the operation requires."""

    status_code = status.HTTP_409_CONFLICT
    detail = "invalid_state"


def to_http_error(exc: Exception) -> HTTPException:
    """Translate domain exceptions to FastAPI HTTP errors."""
    if isinstance(exc, ModerationError):
        return HTTPException(status_code=exc.status_code, detail=exc.detail)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
