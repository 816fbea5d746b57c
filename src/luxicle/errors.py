"""
Typed errors shared by the data-access layer, the cache and the auth surface.

Every error carries an ``ErrorKind`` so callers branch on the kind instead of
matching message text.
"""

from __future__ import annotations

import enum

from sqlalchemy.exc import DBAPIError, DisconnectionError, InterfaceError, OperationalError


class ErrorKind(str, enum.Enum):
    """Failure categories surfaced by reads and writes."""

    INVALID_INPUT = "invalid_input"
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"
    OWNERSHIP = "ownership"
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    REMOTE = "remote"
    TRANSPORT = "transport"


# Kinds worth retrying: the request may succeed on a second attempt.
RETRYABLE_KINDS = frozenset({ErrorKind.REMOTE, ErrorKind.TRANSPORT})


class LuxicleError(Exception):
    """Base class for all domain errors."""

    kind: ErrorKind = ErrorKind.REMOTE

    def __init__(self, message: str, *, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class InvalidInputError(LuxicleError, ValueError):
    """Malformed or missing input, detected before any round trip."""

    kind = ErrorKind.INVALID_INPUT


class DuplicateError(LuxicleError, ValueError):
    """A unique constraint would be (or was) violated."""

    kind = ErrorKind.DUPLICATE


class NotFoundError(LuxicleError, LookupError):
    """The target row does not exist."""

    kind = ErrorKind.NOT_FOUND


class OwnershipError(LuxicleError, PermissionError):
    """The caller does not own the row they tried to mutate."""

    kind = ErrorKind.OWNERSHIP


class AuthenticationError(LuxicleError):
    """Credentials or tokens were rejected."""

    kind = ErrorKind.UNAUTHORIZED


class AccountLockedError(AuthenticationError):
    """Too many failed sign-in attempts."""

    kind = ErrorKind.RATE_LIMITED


class StoreError(LuxicleError, RuntimeError):
    """Any other remote-store failure."""

    kind = ErrorKind.REMOTE


def classify_exception(exc: BaseException) -> ErrorKind:
    """Map an arbitrary exception to the kind a caller should see."""
    if isinstance(exc, LuxicleError):
        return exc.kind
    if isinstance(exc, (OperationalError, InterfaceError, DisconnectionError, OSError)):
        return ErrorKind.TRANSPORT
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return ErrorKind.TRANSPORT
    return ErrorKind.REMOTE


def as_luxicle_error(exc: BaseException) -> LuxicleError:
    """Wrap a foreign exception in a ``StoreError`` with the right kind."""
    if isinstance(exc, LuxicleError):
        return exc
    return StoreError(str(exc) or type(exc).__name__, kind=classify_exception(exc))
