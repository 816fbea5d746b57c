"""Follow graph data access."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from luxicle.db.base import utcnow
from luxicle.db.models import Follow, User
from luxicle.db.writes import write_errors
from luxicle.errors import LuxicleError, NotFoundError
from luxicle.pagination import apply_page
from luxicle.profiles.schemas import UserSummary
from luxicle.result import Ok, Result, read_failed
from luxicle.validation import require

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


async def follow_user(db: AsyncSession, follower_id: str, followee_id: str) -> bool:
    """
    Record that ``follower_id`` follows ``followee_id``.

    Returns True when a new edge was created, False when it already existed.

    Raises:
        InvalidInputError: On a missing id.
        NotFoundError: If the followee does not exist.
    """
    require(follower_id, "follower_id")
    require(followee_id, "followee_id")

    with write_errors("follow_user"):
        target = await db.execute(select(User.id).where(User.id == followee_id))
        if target.scalar_one_or_none() is None:
            msg = "User to follow not found"
            raise NotFoundError(msg)

        existing = await db.execute(
            select(Follow.id).where(Follow.follower_id == follower_id, Follow.followee_id == followee_id)
        )
        if existing.scalar_one_or_none() is not None:
            return False

        db.add(Follow(follower_id=follower_id, followee_id=followee_id, created_at=utcnow()))
        await db.flush()
    logger.info("user_followed", follower_id=follower_id, followee_id=followee_id)
    return True


async def unfollow_user(db: AsyncSession, follower_id: str, followee_id: str) -> bool:
    """Remove a follow edge. Returns True if one was deleted."""
    require(follower_id, "follower_id")
    require(followee_id, "followee_id")
    with write_errors("unfollow_user"):
        result = await db.execute(
            delete(Follow).where(Follow.follower_id == follower_id, Follow.followee_id == followee_id)
        )
    removed = bool(result.rowcount)
    if removed:
        logger.info("user_unfollowed", follower_id=follower_id, followee_id=followee_id)
    return removed


async def is_following(db: AsyncSession, follower_id: str, followee_id: str) -> Result[bool]:
    try:
        require(follower_id, "follower_id")
        require(followee_id, "followee_id")
        result = await db.execute(
            select(Follow.id).where(Follow.follower_id == follower_id, Follow.followee_id == followee_id).limit(1)
        )
        return Ok(result.scalar_one_or_none() is not None)
    except (SQLAlchemyError, OSError, LuxicleError) as e:
        return read_failed("is_following", e, follower_id=follower_id, followee_id=followee_id)


async def get_followers(
    db: AsyncSession,
    user_id: str,
    limit: int | None = None,
    offset: int | None = None,
) -> Result[list[UserSummary]]:
    """Users who follow ``user_id``, newest first."""
    try:
        require(user_id, "user_id")
        stmt = (
            select(User)
            .join(Follow, Follow.follower_id == User.id)
            .where(Follow.followee_id == user_id)
            .order_by(Follow.created_at.desc(), User.id)
        )
        rows = (await db.execute(apply_page(stmt, limit, offset))).scalars().all()
        return Ok([UserSummary.model_validate(u) for u in rows])
    except (SQLAlchemyError, OSError, LuxicleError) as e:
        return read_failed("get_followers", e, user_id=user_id)


async def get_following(
    db: AsyncSession,
    user_id: str,
    limit: int | None = None,
    offset: int | None = None,
) -> Result[list[UserSummary]]:
    """Users that ``user_id`` follows, newest first."""
    try:
        require(user_id, "user_id")
        stmt = (
            select(User)
            .join(Follow, Follow.followee_id == User.id)
            .where(Follow.follower_id == user_id)
            .order_by(Follow.created_at.desc(), User.id)
        )
        rows = (await db.execute(apply_page(stmt, limit, offset))).scalars().all()
        return Ok([UserSummary.model_validate(u) for u in rows])
    except (SQLAlchemyError, OSError, LuxicleError) as e:
        return read_failed("get_following", e, user_id=user_id)
