"""Domain error taxonomy.

Every failure the core raises is a ``DomainError`` tagged with an
``ErrorKind``. The kind carries the HTTP-equivalent status; only the
FastAPI boundary in ``main.py`` turns it into a response.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION = "VALIDATION"
    INVALID_DATE = "INVALID_DATE"
    TASK_NOT_FOUND = "TASK_NOT_FOUND"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 400,
    ErrorKind.INVALID_DATE: 400,
    # recalculation target vanished mid-request: a race with a concurrent delete
    ErrorKind.TASK_NOT_FOUND: 500,
}


class DomainError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.kind.value
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return self.kind.status_code


class UnauthenticatedError(DomainError):
    kind = ErrorKind.UNAUTHENTICATED


class ForbiddenError(DomainError):
    kind = ErrorKind.FORBIDDEN


class NotFoundError(DomainError):
    kind = ErrorKind.NOT_FOUND


class ValidationError(DomainError):
    kind = ErrorKind.VALIDATION


class InvalidDateError(DomainError):
    kind = ErrorKind.INVALID_DATE


class TaskNotFoundError(DomainError):
    kind = ErrorKind.TASK_NOT_FOUND
