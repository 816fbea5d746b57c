"""
Luxicle data access.

Creation writes the luxicle, its items and its tag links in one transaction
and bumps the derived counters. Updates carry the ownership predicate in the
UPDATE itself.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import ColumnElement, Select, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from luxicle.challenges.service import matches_tags
from luxicle.db.base import utcnow
from luxicle.db.models import Challenge as ChallengeRow
from luxicle.db.models import Luxicle as LuxicleRow
from luxicle.db.models import LuxicleItem as LuxicleItemRow
from luxicle.db.models import Tag as TagRow
from luxicle.db.writes import write_errors
from luxicle.errors import InvalidInputError, LuxicleError, NotFoundError, OwnershipError
from luxicle.luxicles.schemas import (
    LuxicleCreate,
    LuxicleDetail,
    LuxicleItem,
    LuxicleSearch,
    LuxicleSummary,
    LuxicleUpdate,
)
from luxicle.pagination import apply_page
from luxicle.result import Ok, Result, read_failed
from luxicle.validation import parse_input, parse_patch, require

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _summary_fields(row: LuxicleRow) -> dict[str, Any]:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "challenge_id": row.challenge_id,
        "category_id": row.category_id,
        "title": row.title,
        "description": row.description,
        "is_published": bool(row.is_published),
        "view_count": row.view_count or 0,
        "tag_ids": sorted(tag.id for tag in row.tags),
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


def _to_summary(row: LuxicleRow) -> LuxicleSummary:
    return LuxicleSummary(**_summary_fields(row))


def _to_detail(row: LuxicleRow) -> LuxicleDetail:
    items = sorted(row.items, key=lambda item: item.position)
    return LuxicleDetail(**_summary_fields(row), items=[LuxicleItem.model_validate(i) for i in items])


async def _fetch_detail(db: AsyncSession, luxicle_id: str) -> LuxicleRow | None:
    query = (
        select(LuxicleRow)
        .options(selectinload(LuxicleRow.items), selectinload(LuxicleRow.tags))
        .where(LuxicleRow.id == luxicle_id)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(query)).scalar_one_or_none()


def text_predicate(db: AsyncSession, query: str) -> ColumnElement[bool]:
    """Title match: Postgres full-text search, ILIKE elsewhere."""
    if db.get_bind().dialect.name == "postgresql":
        return func.to_tsvector("english", LuxicleRow.title).op("@@")(
            func.websearch_to_tsquery("english", query)
        )
    return LuxicleRow.title.ilike(f"%{query}%")


def build_search_query(db: AsyncSession, filters: LuxicleSearch) -> Select:  # type: ignore[type-arg]
    """Compose the SQL side of a search. Tag filtering happens after the fetch."""
    query = select(LuxicleRow).options(selectinload(LuxicleRow.tags))
    if filters.query and filters.query.strip():
        query = query.where(text_predicate(db, filters.query.strip()))
    if filters.category_id:
        query = query.where(LuxicleRow.category_id == filters.category_id)
    if filters.user_id:
        query = query.where(LuxicleRow.user_id == filters.user_id)
    if filters.challenge_id:
        query = query.where(LuxicleRow.challenge_id == filters.challenge_id)
    if filters.published_only:
        query = query.where(LuxicleRow.is_published.is_(True))
    query = query.order_by(LuxicleRow.created_at.desc(), LuxicleRow.id)
    return apply_page(query, filters.limit, filters.offset)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_luxicle(db: AsyncSession, luxicle_id: str) -> Result[LuxicleDetail | None]:
    """Fetch a luxicle with its items ordered by position."""
    try:
        require(luxicle_id, "luxicle_id")
        row = await _fetch_detail(db, luxicle_id)
        return Ok(_to_detail(row) if row else None)
    except (SQLAlchemyError, OSError, LuxicleError) as e:
        return read_failed("get_luxicle", e, luxicle_id=luxicle_id)


async def search_luxicles(
    db: AsyncSession,
    filters: LuxicleSearch | Mapping[str, Any] | None = None,
) -> Result[list[LuxicleSummary]]:
    """
    Search luxicles.

    The text, category, user and challenge filters are ANDed in SQL. A row
    survives the tag filter when its tags intersect ``tag_ids``; an empty
    ``tag_ids`` keeps every row.
    """
    try:
        f = parse_input(LuxicleSearch, filters or {})
        rows = (await db.execute(build_search_query(db, f))).scalars().all()
        results = [_to_summary(row) for row in rows]
        return Ok([r for r in results if matches_tags(r.tag_ids, f.tag_ids)])
    except (SQLAlchemyError, OSError, LuxicleError) as e:
        return read_failed("search_luxicles", e)


async def get_user_luxicles(
    db: AsyncSession,
    user_id: str,
    *,
    published_only: bool = False,
    limit: int | None = None,
    offset: int | None = None,
) -> Result[list[LuxicleSummary]]:
    """A user's luxicles, newest first. Drafts are included unless ``published_only``."""
    if not user_id:
        return read_failed("get_user_luxicles", InvalidInputError("user_id must be provided"))
    filters = LuxicleSearch(user_id=user_id, published_only=published_only, limit=limit, offset=offset)
    return await search_luxicles(db, filters)


async def get_challenge_luxicles(
    db: AsyncSession,
    challenge_id: str,
    *,
    published_only: bool = True,
    limit: int | None = None,
    offset: int | None = None,
) -> Result[list[LuxicleSummary]]:
    """Submissions to a challenge, newest first."""
    if not challenge_id:
        return read_failed("get_challenge_luxicles", InvalidInputError("challenge_id must be provided"))
    filters = LuxicleSearch(challenge_id=challenge_id, published_only=published_only, limit=limit, offset=offset)
    return await search_luxicles(db, filters)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def create_luxicle(db: AsyncSession, data: LuxicleCreate | Mapping[str, Any]) -> LuxicleDetail:
    """
    Create a luxicle with its items and tags.

    Increments ``usage_count`` on each attached tag and ``submission_count`` on
    the challenge. Returns the same detail shape ``get_luxicle`` produces.

    Raises:
        InvalidInputError: If the payload is malformed.
        NotFoundError: If the challenge or a tag does not exist.
    """
    payload = parse_input(LuxicleCreate, data)
    tag_ids = list(dict.fromkeys(payload.tag_ids))

    with write_errors("create_luxicle"):
        if payload.challenge_id:
            exists = await db.execute(select(ChallengeRow.id).where(ChallengeRow.id == payload.challenge_id))
            if exists.scalar_one_or_none() is None:
                msg = "Challenge not found"
                raise NotFoundError(msg)

        tags: list[TagRow] = []
        if tag_ids:
            tags = list((await db.execute(select(TagRow).where(TagRow.id.in_(tag_ids)))).scalars().all())
            missing = set(tag_ids) - {t.id for t in tags}
            if missing:
                msg = f"Unknown tag ids: {', '.join(sorted(missing))}"
                raise NotFoundError(msg)

        now = utcnow()
        row = LuxicleRow(
            user_id=payload.user_id,
            challenge_id=payload.challenge_id,
            category_id=payload.category_id,
            title=payload.title.strip(),
            description=payload.description,
            is_published=payload.is_published,
            view_count=0,
            created_at=now,
            updated_at=now,
        )
        row.tags = tags
        db.add(row)
        await db.flush()

        for item in payload.items:
            db.add(LuxicleItemRow(luxicle_id=row.id, created_at=now, **item.model_dump()))

        if tag_ids:
            await db.execute(
                update(TagRow)
                .where(TagRow.id.in_(tag_ids))
                .values(usage_count=TagRow.usage_count + 1)
                .execution_options(synchronize_session=False)
            )
        if payload.challenge_id:
            await db.execute(
                update(ChallengeRow)
                .where(ChallengeRow.id == payload.challenge_id)
                .values(submission_count=ChallengeRow.submission_count + 1)
                .execution_options(synchronize_session=False)
            )
        await db.flush()
        created = await _fetch_detail(db, row.id)

    if created is None:
        msg = "Luxicle vanished after insert"
        raise NotFoundError(msg)
    logger.info(
        "luxicle_created",
        luxicle_id=created.id,
        user_id=created.user_id,
        challenge_id=created.challenge_id,
        items=len(payload.items),
    )
    return _to_detail(created)


async def update_luxicle(
    db: AsyncSession,
    luxicle_id: str,
    caller_user_id: str,
    patch: LuxicleUpdate | Mapping[str, Any],
) -> LuxicleDetail:
    """
    Update a luxicle owned by ``caller_user_id`` and return it with its items.

    The write is ``UPDATE ... WHERE id = :id AND user_id = :caller``. When no
    row matches, one read tells a missing luxicle apart from a foreign one.

    Raises:
        InvalidInputError: If the patch is malformed.
        NotFoundError: If the luxicle does not exist.
        OwnershipError: If the caller does not own the luxicle.
    """
    require(luxicle_id, "luxicle_id")
    require(caller_user_id, "caller_user_id")
    values = parse_patch(LuxicleUpdate, patch)
    for key in ("title", "is_published"):
        if key in values and values[key] is None:
            values.pop(key)
    values["updated_at"] = utcnow()

    with write_errors("update_luxicle"):
        result = await db.execute(
            update(LuxicleRow)
            .where(LuxicleRow.id == luxicle_id, LuxicleRow.user_id == caller_user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            owner = await db.execute(select(LuxicleRow.user_id).where(LuxicleRow.id == luxicle_id))
            if owner.scalar_one_or_none() is None:
                msg = "Luxicle not found"
                raise NotFoundError(msg)
            logger.warning("luxicle_update_denied", luxicle_id=luxicle_id, caller_user_id=caller_user_id)
            msg = "You do not own this luxicle"
            raise OwnershipError(msg)

        row = await _fetch_detail(db, luxicle_id)

    if row is None:
        msg = "Luxicle not found"
        raise NotFoundError(msg)
    logger.info("luxicle_updated", luxicle_id=luxicle_id, fields=sorted(values))
    return _to_detail(row)
