"""
Profile data access.

Reads return ``Result`` values; writes raise typed errors from ``luxicle.errors``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import Select, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from luxicle.db.base import utcnow
from luxicle.db.models import Follow, User
from luxicle.db.writes import write_errors
from luxicle.errors import DuplicateError, InvalidInputError, LuxicleError, NotFoundError
from luxicle.pagination import apply_page
from luxicle.profiles.schemas import ProfileUpdate, UserProfile, normalize_username
from luxicle.result import Ok, Result, read_failed
from luxicle.validation import parse_patch, require

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _profile_query() -> Select:  # type: ignore[type-arg]
    """Select users together with their follower and following counts."""
    followers = (
        select(func.count(Follow.id)).where(Follow.followee_id == User.id).correlate(User).scalar_subquery()
    )
    following = (
        select(func.count(Follow.id)).where(Follow.follower_id == User.id).correlate(User).scalar_subquery()
    )
    return select(User, followers.label("follower_count"), following.label("following_count"))


def _to_profile(user: User, follower_count: int = 0, following_count: int = 0) -> UserProfile:
    profile = UserProfile.model_validate(user)
    return profile.model_copy(
        update={"follower_count": int(follower_count or 0), "following_count": int(following_count or 0)}
    )


async def _fetch_profile(db: AsyncSession, *criteria: Any) -> UserProfile | None:  # noqa: ANN401
    query = _profile_query().where(*criteria).execution_options(populate_existing=True)
    row = (await db.execute(query)).one_or_none()
    if row is None:
        return None
    user, follower_count, following_count = row
    return _to_profile(user, follower_count, following_count)


async def _username_taken(db: AsyncSession, username: str, exclude_user_id: str | None = None) -> bool:
    query = select(User.id).where(User.username == username)
    if exclude_user_id is not None:
        query = query.where(User.id != exclude_user_id)
    return (await db.execute(query.limit(1))).scalar_one_or_none() is not None


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_user_profile(db: AsyncSession, user_id: str) -> Result[UserProfile | None]:
    """Fetch a profile by user id. ``Ok(None)`` when absent."""
    try:
        require(user_id, "user_id")
        return Ok(await _fetch_profile(db, User.id == user_id))
    except (SQLAlchemyError, OSError, LuxicleError) as e:
        return read_failed("get_user_profile", e, user_id=user_id)


async def get_user_profile_by_username(db: AsyncSession, username: str) -> Result[UserProfile | None]:
    """Fetch a profile by username (case-insensitive). ``Ok(None)`` when absent."""
    try:
        require(username, "username")
        return Ok(await _fetch_profile(db, User.username == username.strip().lower()))
    except (SQLAlchemyError, OSError, LuxicleError) as e:
        return read_failed("get_user_profile_by_username", e, username=username)


async def search_users(
    db: AsyncSession,
    query: str,
    limit: int | None = None,
    offset: int | None = None,
) -> Result[list[UserProfile]]:
    """Case-insensitive substring match on username or display name."""
    try:
        require(query, "query")
        pattern = f"%{query.strip()}%"
        stmt = _profile_query().where(or_(User.username.ilike(pattern), User.display_name.ilike(pattern)))
        stmt = apply_page(stmt.order_by(User.username), limit, offset)
        rows = (await db.execute(stmt)).all()
        return Ok([_to_profile(user, fc, fgc) for user, fc, fgc in rows])
    except (SQLAlchemyError, OSError, LuxicleError) as e:
        return read_failed("search_users", e, query=query)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def create_user_profile(db: AsyncSession, user_id: str, email: str, username: str) -> UserProfile:
    """
    Create the public profile row for a newly registered user.

    Raises:
        InvalidInputError: If the username breaks the username rules.
        DuplicateError: If the email or username is already taken.
    """
    require(user_id, "user_id")
    require(email, "email")
    try:
        username = normalize_username(username or "")
    except ValueError as e:
        raise InvalidInputError(str(e)) from e
    email = email.strip().lower()

    with write_errors("create_user_profile"):
        if await _username_taken(db, username):
            msg = "Username is already taken"
            raise DuplicateError(msg)
        existing_email = await db.execute(select(User.id).where(func.lower(User.email) == email).limit(1))
        if existing_email.scalar_one_or_none() is not None:
            msg = "Email already registered"
            raise DuplicateError(msg)

        user = User(id=user_id, email=email, username=username, created_at=utcnow(), updated_at=utcnow())
        db.add(user)
        await db.flush()
    logger.info("user_created", user_id=user_id, username=username)
    return _to_profile(user)


async def update_user_profile(
    db: AsyncSession,
    user_id: str,
    patch: ProfileUpdate | Mapping[str, Any],
) -> UserProfile:
    """
    Apply a validated patch to the caller's own profile.

    The UPDATE is scoped to ``id == user_id`` so one user can never write another's row.

    Raises:
        InvalidInputError: If the patch breaks the profile rules.
        DuplicateError: If the new username is taken.
        NotFoundError: If the profile does not exist.
    """
    require(user_id, "user_id")
    values = parse_patch(ProfileUpdate, patch)
    for key in ("username", "onboarding_completed"):
        if key in values and values[key] is None:
            values.pop(key)

    with write_errors("update_user_profile"):
        if "username" in values and await _username_taken(db, values["username"], exclude_user_id=user_id):
            msg = "Username is already taken"
            raise DuplicateError(msg)

        if values:
            values["updated_at"] = utcnow()
            stmt = update(User).where(User.id == user_id).values(**values)
            result = await db.execute(stmt.execution_options(synchronize_session=False))
            if result.rowcount == 0:
                msg = "Profile not found"
                raise NotFoundError(msg)

        profile = await _fetch_profile(db, User.id == user_id)
    if profile is None:
        msg = "Profile not found"
        raise NotFoundError(msg)
    logger.info("profile_updated", user_id=user_id, fields=sorted(values))
    return profile

