"""Offset/limit pagination shared by list and search reads."""

from __future__ import annotations

from typing import TypeVar

from sqlalchemy import Select

from luxicle.config import get_settings
from luxicle.errors import InvalidInputError

S = TypeVar("S", bound=Select)  # type: ignore[type-arg]


def normalize_page(limit: int | None, offset: int | None) -> tuple[int, int]:
    """Resolve defaults and cap the page size.

    Raises:
        InvalidInputError: If limit is not positive or offset is negative.
    """
    settings = get_settings()
    if limit is None:
        limit = settings.default_page_size
    if offset is None:
        offset = 0
    if limit < 1:
        msg = "limit must be positive"
        raise InvalidInputError(msg)
    if offset < 0:
        msg = "offset must not be negative"
        raise InvalidInputError(msg)
    return min(limit, settings.max_page_size), offset


def apply_page(query: S, limit: int | None, offset: int | None) -> S:
    """Apply OFFSET/LIMIT to a query."""
    limit, offset = normalize_page(limit, offset)
    return query.offset(offset).limit(limit)
