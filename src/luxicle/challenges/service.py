"""
Challenge data access.

Listing follows the feed order (newest ``opens_at`` first). Tag filtering is
applied to the fetched page, keeping any challenge whose tags intersect the
filter.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import Select, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from luxicle.challenges.schemas import Challenge, ChallengeCreate, ChallengeFilters, ChallengeUpdate
from luxicle.db.base import utcnow
from luxicle.db.models import Challenge as ChallengeRow
from luxicle.db.models import Tag as TagRow
from luxicle.db.writes import write_errors
from luxicle.errors import InvalidInputError, LuxicleError, NotFoundError
from luxicle.pagination import apply_page
from luxicle.result import Ok, Result, read_failed
from luxicle.taxonomy.schemas import Category
from luxicle.validation import parse_input, parse_patch, require

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _base_query() -> Select:  # type: ignore[type-arg]
    return select(ChallengeRow).options(selectinload(ChallengeRow.tags), selectinload(ChallengeRow.category))


def _to_challenge(row: ChallengeRow) -> Challenge:
    return Challenge(
        id=row.id,
        title=row.title,
        description=row.description or "",
        rules=row.rules,
        category_id=row.category_id,
        category=Category.model_validate(row.category) if row.category else None,
        cover_image_url=row.cover_image_url,
        opens_at=row.opens_at,
        closes_at=row.closes_at,
        is_featured=bool(row.is_featured),
        submission_count=row.submission_count or 0,
        tag_ids=sorted(tag.id for tag in row.tags),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def matches_tags(tag_ids: Sequence[str], wanted: Sequence[str]) -> bool:
    """True when ``wanted`` is empty or shares at least one id with ``tag_ids``."""
    if not wanted:
        return True
    return not set(tag_ids).isdisjoint(wanted)


async def _load_tags(db: AsyncSession, tag_ids: Sequence[str]) -> list[TagRow]:
    """Load tag rows, failing if any id is unknown."""
    unique_ids = list(dict.fromkeys(tag_ids))
    if not unique_ids:
        return []
    rows = list((await db.execute(select(TagRow).where(TagRow.id.in_(unique_ids)))).scalars().all())
    missing = set(unique_ids) - {row.id for row in rows}
    if missing:
        msg = f"Unknown tag ids: {', '.join(sorted(missing))}"
        raise NotFoundError(msg)
    return rows


async def _fetch_challenge(db: AsyncSession, challenge_id: str) -> ChallengeRow | None:
    query = _base_query().where(ChallengeRow.id == challenge_id).execution_options(populate_existing=True)
    return (await db.execute(query)).scalar_one_or_none()


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_challenges(
    db: AsyncSession,
    filters: ChallengeFilters | Mapping[str, Any] | None = None,
    *,
    now: datetime | None = None,
) -> Result[list[Challenge]]:
    """List challenges matching the filters, newest ``opens_at`` first."""
    try:
        f = parse_input(ChallengeFilters, filters or {})
        query = _base_query().order_by(ChallengeRow.opens_at.desc(), ChallengeRow.id)

        if f.category_id:
            query = query.where(ChallengeRow.category_id == f.category_id)
        if f.featured is not None:
            query = query.where(ChallengeRow.is_featured.is_(f.featured))
        if f.active:
            current = now or datetime.now(timezone.utc)
            query = query.where(
                ChallengeRow.opens_at <= current,
                or_(ChallengeRow.closes_at.is_(None), ChallengeRow.closes_at > current),
            )
        if f.search_query and f.search_query.strip():
            query = query.where(ChallengeRow.title.ilike(f"%{f.search_query.strip()}%"))

        rows = (await db.execute(apply_page(query, f.limit, f.offset))).scalars().all()
        challenges = [_to_challenge(row) for row in rows]
        return Ok([c for c in challenges if matches_tags(c.tag_ids, f.tag_ids)])
    except (SQLAlchemyError, OSError, LuxicleError) as e:
        return read_failed("get_challenges", e)


async def get_challenge(db: AsyncSession, challenge_id: str) -> Result[Challenge | None]:
    try:
        require(challenge_id, "challenge_id")
        row = await _fetch_challenge(db, challenge_id)
        return Ok(_to_challenge(row) if row else None)
    except (SQLAlchemyError, OSError, LuxicleError) as e:
        return read_failed("get_challenge", e, challenge_id=challenge_id)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def create_challenge(db: AsyncSession, data: ChallengeCreate | Mapping[str, Any]) -> Challenge:
    """
    Create a challenge and attach its tags.

    Raises:
        InvalidInputError: If the title is missing or the window is inverted.
        NotFoundError: If a tag id is unknown.
    """
    payload = parse_input(ChallengeCreate, data)

    with write_errors("create_challenge"):
        tags = await _load_tags(db, payload.tag_ids)
        now = utcnow()
        row = ChallengeRow(
            title=payload.title.strip(),
            description=payload.description,
            rules=payload.rules,
            category_id=payload.category_id,
            cover_image_url=payload.cover_image_url,
            opens_at=payload.opens_at,
            closes_at=payload.closes_at,
            is_featured=payload.is_featured,
            submission_count=0,
            created_at=now,
            updated_at=now,
        )
        row.tags = tags
        db.add(row)
        await db.flush()
        created = await _fetch_challenge(db, row.id)

    if created is None:
        msg = "Challenge vanished after insert"
        raise NotFoundError(msg)
    logger.info("challenge_created", challenge_id=created.id, title=created.title)
    return _to_challenge(created)


async def update_challenge(
    db: AsyncSession,
    challenge_id: str,
    patch: ChallengeUpdate | Mapping[str, Any],
) -> Challenge:
    """
    Update a challenge. The opening window is re-checked against stored values.

    Raises:
        InvalidInputError: If the patch is malformed or inverts the window.
        NotFoundError: If the challenge or a tag id is unknown.
    """
    require(challenge_id, "challenge_id")
    values = parse_patch(ChallengeUpdate, patch)
    tag_ids = values.pop("tag_ids", None)
    for key in ("title", "description", "is_featured"):
        if key in values and values[key] is None:
            values.pop(key)
    if values.get("opens_at", ...) is None:
        msg = "opens_at cannot be cleared"
        raise InvalidInputError(msg)

    with write_errors("update_challenge"):
        row = await _fetch_challenge(db, challenge_id)
        if row is None:
            msg = "Challenge not found"
            raise NotFoundError(msg)

        opens_at = values.get("opens_at", row.opens_at)
        closes_at = values.get("closes_at", row.closes_at)
        if closes_at is not None and closes_at < opens_at:
            msg = "closes_at must not be before opens_at"
            raise InvalidInputError(msg)

        for key, value in values.items():
            setattr(row, key, value)
        if tag_ids is not None:
            row.tags = await _load_tags(db, tag_ids)
        row.updated_at = utcnow()
        await db.flush()
        updated = await _fetch_challenge(db, challenge_id)

    logger.info("challenge_updated", challenge_id=challenge_id, fields=sorted(values))
    return _to_challenge(updated)  # type: ignore[arg-type]
