"""Error kinds raised at the service boundary.

Services raise one of the `ServiceError` subclasses below. Each carries
an `ErrorKind`; the HTTP layer maps the kind to a status code in a
single place (`STATUS_BY_KIND`) and never inspects the message.
"""

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"


STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.VALIDATION: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.UNAUTHORIZED: 401,
}


class ServiceError(Exception):
    """Base class for expected, caller-visible failures."""
    kind: ErrorKind

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]


class NotFoundError(ServiceError):
    """The referenced id does not exist."""
    kind = ErrorKind.NOT_FOUND


class ForbiddenError(ServiceError):
    """The row exists but the caller does not own it."""
    kind = ErrorKind.FORBIDDEN


class ValidationError(ServiceError):
    """A required field is missing or blank, or input is malformed."""
    kind = ErrorKind.VALIDATION


class ConflictError(ServiceError):
    """A uniqueness rule would be broken (duplicate email, duplicate link)."""
    kind = ErrorKind.CONFLICT


class UnauthorizedError(ServiceError):
    """Bad credentials or a missing/invalid bearer token."""
    kind = ErrorKind.UNAUTHORIZED
