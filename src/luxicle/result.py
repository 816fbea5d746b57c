"""
Result values returned by reads.

A read either succeeds with a value (``Ok``) or fails with a typed error
(``Err``). An empty collection or a missing row is a success.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

import structlog

from luxicle.errors import LuxicleError, as_luxicle_error

T = TypeVar("T")
U = TypeVar("U")

logger = structlog.get_logger()


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful read."""

    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: U) -> T | U:  # noqa: ARG002
        return self.value


@dataclass(frozen=True)
class Err:
    """Failed read."""

    error: LuxicleError

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self) -> None:
        raise self.error

    def unwrap_or(self, default: U) -> U:
        return default


Result = Ok[T] | Err


def read_failed(operation: str, exc: BaseException, **context: object) -> Err:
    """Log a failed read and turn the exception into an ``Err``."""
    error = as_luxicle_error(exc)
    logger.warning(
        "read_failed",
        operation=operation,
        kind=error.kind.value,
        error=str(exc),
        **context,
    )
    return Err(error)
