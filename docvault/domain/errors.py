"""Error taxonomy shared by repositories, services and the HTTP layer."""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for failures that terminate a single request."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    """Missing or malformed input."""

    status_code = 400


class Unauthenticated(ServiceError):
    """Missing, invalid or expired session, or rejected credentials."""

    status_code = 401


class Forbidden(ServiceError):
    status_code = 403


class NotFound(ServiceError):
    status_code = 404


class Conflict(ServiceError):
    """An account with the same email already exists."""

    status_code = 409


class RateLimited(ServiceError):
    status_code = 429


class StorageFailure(ServiceError):
    """Unexpected persistence error; the message is never sent to clients."""

    status_code = 500
