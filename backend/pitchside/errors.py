"""
backend/pitchside/errors.py

Purpose:
    Domain error taxonomy for the match lifecycle. Every error is an
    HTTPException so services can raise it directly and FastAPI surfaces it
    synchronously with the right status code.

Dependencies:
    - fastapi
"""

from __future__ import annotations

from fastapi import HTTPException, status


class DomainError(HTTPException):
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_detail: str = "Request could not be processed."

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(status_code=self.status_code, detail=detail or self.default_detail)


class ValidationError(DomainError):
    """Malformed request or stored payload."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "Invalid request."


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found."


class PermissionDenied(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You are not allowed to do this."


class CapacityViolation(DomainError):
    """Roster or payment precondition unmet."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = "Roster or payment requirements are not met."


class ConflictError(DomainError):
    """Stale snapshot, duplicate, or illegal state transition."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = "The record changed in the meantime. Reload and try again."


class TransportFailure(DomainError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Service temporarily unavailable."
