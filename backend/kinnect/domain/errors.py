"""Domain-level exceptions shared by the connection, chat and reaction engines."""

from __future__ import annotations


class DomainError(Exception):
    """Base class for typed domain errors.

    `reason` is the machine-readable code surfaced to clients; instances may
    override the class default with a more specific one.
    """

    reason: str = "unknown"

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or self.reason)
        if reason:
            self.reason = reason


class NotFoundError(DomainError):
    reason = "not_found"


class AuthorizationError(DomainError):
    reason = "forbidden"


class InvalidStateError(DomainError):
    reason = "invalid_state"


class SelfReferenceError(DomainError):
    reason = "self_reference"


class ConflictError(DomainError):
    reason = "conflict"


class DuplicateRequestError(ConflictError):
    reason = "duplicate_request"


class AlreadyConnectedError(ConflictError):
    reason = "already_connected"


class NotConnectedError(DomainError):
    reason = "not_connected"


class ValidationError(DomainError):
    reason = "invalid_input"


class RateLimitExceeded(DomainError):
    reason = "rate_limited"
