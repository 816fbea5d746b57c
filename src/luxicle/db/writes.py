"""Translate store failures raised by writes into domain errors."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from luxicle.errors import DuplicateError, NotFoundError, StoreError, classify_exception

logger = structlog.get_logger()

_UNIQUE_SQLSTATE = "23505"
_FOREIGN_KEY_SQLSTATE = "23503"


def _sqlstate(exc: IntegrityError) -> str | None:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def translate_integrity_error(exc: IntegrityError, operation: str) -> Exception:
    """Map a constraint violation to a domain error."""
    state = _sqlstate(exc)
    text = str(exc.orig).lower()
    if state == _UNIQUE_SQLSTATE or "unique" in text or "duplicate" in text:
        return DuplicateError(f"{operation}: record already exists")
    if state == _FOREIGN_KEY_SQLSTATE or "foreign key" in text:
        return NotFoundError(f"{operation}: referenced record does not exist")
    return StoreError(f"{operation}: constraint violated")


@contextmanager
def write_errors(operation: str) -> Iterator[None]:
    """Translate SQLAlchemy failures raised inside the block.

    Raises:
        DuplicateError: On a unique constraint violation.
        NotFoundError: On a dangling foreign key.
        StoreError: On any other store failure.
    """
    try:
        yield
    except IntegrityError as e:
        logger.info("write_rejected", operation=operation, error=str(e.orig))
        raise translate_integrity_error(e, operation) from e
    except SQLAlchemyError as e:
        logger.error("write_failed", operation=operation, error=str(e))
        raise StoreError(f"{operation} failed", kind=classify_exception(e)) from e
