"""Category and tag data access."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from luxicle.db.base import utcnow
from luxicle.db.models import Category as CategoryRow
from luxicle.db.models import Tag as TagRow
from luxicle.db.writes import write_errors
from luxicle.errors import DuplicateError, InvalidInputError, LuxicleError
from luxicle.pagination import apply_page, normalize_page
from luxicle.result import Ok, Result, read_failed
from luxicle.taxonomy.schemas import Category, CategoryCreate, Tag, TagCreate, slugify
from luxicle.validation import parse_input, require

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


def _resolve_slug(name: str, slug: str | None) -> str:
    resolved = slug or slugify(name)
    if not resolved:
        msg = "Slug must contain at least one letter or digit"
        raise InvalidInputError(msg)
    return resolved


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


async def get_categories(db: AsyncSession) -> Result[list[Category]]:
    """All categories, alphabetical."""
    try:
        rows = (await db.execute(select(CategoryRow).order_by(CategoryRow.name))).scalars().all()
        return Ok([Category.model_validate(r) for r in rows])
    except (SQLAlchemyError, OSError) as e:
        return read_failed("get_categories", e)


async def get_category(db: AsyncSession, category_id: str) -> Result[Category | None]:
    try:
        require(category_id, "category_id")
        row = (await db.execute(select(CategoryRow).where(CategoryRow.id == category_id))).scalar_one_or_none()
        return Ok(Category.model_validate(row) if row else None)
    except (SQLAlchemyError, OSError, LuxicleError) as e:
        return read_failed("get_category", e, category_id=category_id)


async def get_category_by_slug(db: AsyncSession, slug: str) -> Result[Category | None]:
    try:
        require(slug, "slug")
        row = (await db.execute(select(CategoryRow).where(CategoryRow.slug == slug))).scalar_one_or_none()
        return Ok(Category.model_validate(row) if row else None)
    except (SQLAlchemyError, OSError, LuxicleError) as e:
        return read_failed("get_category_by_slug", e, slug=slug)


async def create_category(db: AsyncSession, data: CategoryCreate | Mapping[str, Any]) -> Category:
    """
    Create a category.

    Raises:
        InvalidInputError: If the name is missing or no slug can be derived.
        DuplicateError: If the slug is taken.
    """
    payload = parse_input(CategoryCreate, data)
    slug = _resolve_slug(payload.name, payload.slug)

    with write_errors("create_category"):
        taken = await db.execute(select(CategoryRow.id).where(CategoryRow.slug == slug))
        if taken.scalar_one_or_none() is not None:
            msg = f"Category slug '{slug}' already exists"
            raise DuplicateError(msg)
        row = CategoryRow(
            name=payload.name.strip(),
            slug=slug,
            description=payload.description,
            created_at=utcnow(),
        )
        db.add(row)
        await db.flush()
    logger.info("category_created", category_id=row.id, slug=slug)
    return Category.model_validate(row)


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


async def get_tags(db: AsyncSession, limit: int | None = None, offset: int | None = None) -> Result[list[Tag]]:
    """Tags, alphabetical."""
    try:
        stmt = apply_page(select(TagRow).order_by(TagRow.name), limit, offset)
        rows = (await db.execute(stmt)).scalars().all()
        return Ok([Tag.model_validate(r) for r in rows])
    except (SQLAlchemyError, OSError, LuxicleError) as e:
        return read_failed("get_tags", e)


async def get_popular_tags(db: AsyncSession, limit: int | None = None) -> Result[list[Tag]]:
    """Tags ordered by how many luxicles use them."""
    try:
        limit, _ = normalize_page(limit, 0)
        stmt = select(TagRow).order_by(TagRow.usage_count.desc(), TagRow.name).limit(limit)
        rows = (await db.execute(stmt)).scalars().all()
        return Ok([Tag.model_validate(r) for r in rows])
    except (SQLAlchemyError, OSError, LuxicleError) as e:
        return read_failed("get_popular_tags", e)


async def get_tag_by_slug(db: AsyncSession, slug: str) -> Result[Tag | None]:
    try:
        require(slug, "slug")
        row = (await db.execute(select(TagRow).where(TagRow.slug == slug))).scalar_one_or_none()
        return Ok(Tag.model_validate(row) if row else None)
    except (SQLAlchemyError, OSError, LuxicleError) as e:
        return read_failed("get_tag_by_slug", e, slug=slug)


async def create_tag(db: AsyncSession, data: TagCreate | Mapping[str, Any]) -> Tag:
    """
    Create a tag with a zero usage count.

    Raises:
        InvalidInputError: If the name is missing or no slug can be derived.
        DuplicateError: If the slug is taken.
    """
    payload = parse_input(TagCreate, data)
    slug = _resolve_slug(payload.name, payload.slug)

    with write_errors("create_tag"):
        taken = await db.execute(select(TagRow.id).where(TagRow.slug == slug))
        if taken.scalar_one_or_none() is not None:
            msg = f"Tag slug '{slug}' already exists"
            raise DuplicateError(msg)
        row = TagRow(name=payload.name.strip(), slug=slug, usage_count=0, created_at=utcnow())
        db.add(row)
        await db.flush()
    logger.info("tag_created", tag_id=row.id, slug=slug)
    return Tag.model_validate(row)
