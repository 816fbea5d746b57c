"""Social interaction records: thin create/list passthroughs."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError

from luxicle.db.base import utcnow
from luxicle.db.models import Comment as CommentRow
from luxicle.db.models import Flag as FlagRow
from luxicle.db.models import Luxicle as LuxicleRow
from luxicle.db.models import Message as MessageRow
from luxicle.db.models import Reaction as ReactionRow
from luxicle.db.writes import write_errors
from luxicle.errors import InvalidInputError, LuxicleError, NotFoundError
from luxicle.pagination import apply_page
from luxicle.result import Ok, Result, read_failed
from luxicle.social.schemas import FLAG_REASONS, REACTION_KINDS, Comment, Flag, Message, Reaction
from luxicle.validation import require

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

_MAX_BODY = 2000


def _check_body(body: str) -> str:
    if not body or not body.strip():
        msg = "body must not be empty"
        raise InvalidInputError(msg)
    if len(body) > _MAX_BODY:
        msg = f"body must be at most {_MAX_BODY} characters"
        raise InvalidInputError(msg)
    return body.strip()


async def _require_luxicle(db: AsyncSession, luxicle_id: str) -> None:
    found = await db.execute(select(LuxicleRow.id).where(LuxicleRow.id == luxicle_id))
    if found.scalar_one_or_none() is None:
        msg = "Luxicle not found"
        raise NotFoundError(msg)


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


async def add_comment(db: AsyncSession, user_id: str, luxicle_id: str, body: str) -> Comment:
    require(user_id, "user_id")
    require(luxicle_id, "luxicle_id")
    body = _check_body(body)
    with write_errors("add_comment"):
        await _require_luxicle(db, luxicle_id)
        row = CommentRow(user_id=user_id, luxicle_id=luxicle_id, body=body, created_at=utcnow())
        db.add(row)
        await db.flush()
    logger.info("comment_added", comment_id=row.id, luxicle_id=luxicle_id)
    return Comment.model_validate(row)


async def get_comments(
    db: AsyncSession,
    luxicle_id: str,
    limit: int | None = None,
    offset: int | None = None,
) -> Result[list[Comment]]:
    """Comments on a luxicle, oldest first."""
    try:
        require(luxicle_id, "luxicle_id")
        stmt = (
            select(CommentRow)
            .where(CommentRow.luxicle_id == luxicle_id)
            .order_by(CommentRow.created_at, CommentRow.id)
        )
        rows = (await db.execute(apply_page(stmt, limit, offset))).scalars().all()
        return Ok([Comment.model_validate(r) for r in rows])
    except (SQLAlchemyError, OSError, LuxicleError) as e:
        return read_failed("get_comments", e, luxicle_id=luxicle_id)


# ---------------------------------------------------------------------------
# Reactions
# ---------------------------------------------------------------------------


async def add_reaction(db: AsyncSession, user_id: str, luxicle_id: str, kind: str) -> Reaction:
    """
    React to a luxicle.

    Raises:
        InvalidInputError: If the kind is not a known reaction.
        DuplicateError: If the user already left this reaction.
    """
    require(user_id, "user_id")
    require(luxicle_id, "luxicle_id")
    if kind not in REACTION_KINDS:
        msg = f"Unknown reaction '{kind}'"
        raise InvalidInputError(msg)
    with write_errors("add_reaction"):
        await _require_luxicle(db, luxicle_id)
        row = ReactionRow(user_id=user_id, luxicle_id=luxicle_id, kind=kind, created_at=utcnow())
        db.add(row)
        await db.flush()
    return Reaction.model_validate(row)


async def get_reactions(
    db: AsyncSession,
    luxicle_id: str,
    limit: int | None = None,
    offset: int | None = None,
) -> Result[list[Reaction]]:
    try:
        require(luxicle_id, "luxicle_id")
        stmt = (
            select(ReactionRow)
            .where(ReactionRow.luxicle_id == luxicle_id)
            .order_by(ReactionRow.created_at, ReactionRow.id)
        )
        rows = (await db.execute(apply_page(stmt, limit, offset))).scalars().all()
        return Ok([Reaction.model_validate(r) for r in rows])
    except (SQLAlchemyError, OSError, LuxicleError) as e:
        return read_failed("get_reactions", e, luxicle_id=luxicle_id)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


async def send_message(db: AsyncSession, sender_id: str, receiver_id: str, body: str) -> Message:
    require(sender_id, "sender_id")
    require(receiver_id, "receiver_id")
    body = _check_body(body)
    with write_errors("send_message"):
        row = MessageRow(sender_id=sender_id, receiver_id=receiver_id, body=body, created_at=utcnow())
        db.add(row)
        await db.flush()
    logger.info("message_sent", message_id=row.id, sender_id=sender_id, receiver_id=receiver_id)
    return Message.model_validate(row)


async def get_messages(
    db: AsyncSession,
    user_id: str,
    limit: int | None = None,
    offset: int | None = None,
) -> Result[list[Message]]:
    """Messages sent or received by a user, newest first."""
    try:
        require(user_id, "user_id")
        stmt = (
            select(MessageRow)
            .where(or_(MessageRow.sender_id == user_id, MessageRow.receiver_id == user_id))
            .order_by(MessageRow.created_at.desc(), MessageRow.id)
        )
        rows = (await db.execute(apply_page(stmt, limit, offset))).scalars().all()
        return Ok([Message.model_validate(r) for r in rows])
    except (SQLAlchemyError, OSError, LuxicleError) as e:
        return read_failed("get_messages", e, user_id=user_id)


# ---------------------------------------------------------------------------
# Flags
# ---------------------------------------------------------------------------


async def flag_luxicle(
    db: AsyncSession,
    reporter_id: str,
    luxicle_id: str,
    reason: str,
    details: str | None = None,
) -> Flag:
    """File a moderation report. New flags start as ``pending``."""
    require(reporter_id, "reporter_id")
    require(luxicle_id, "luxicle_id")
    if reason not in FLAG_REASONS:
        msg = f"Unknown flag reason '{reason}'"
        raise InvalidInputError(msg)
    with write_errors("flag_luxicle"):
        await _require_luxicle(db, luxicle_id)
        row = FlagRow(
            reporter_id=reporter_id,
            luxicle_id=luxicle_id,
            reason=reason,
            details=details,
            status="pending",
            created_at=utcnow(),
        )
        db.add(row)
        await db.flush()
    logger.info("luxicle_flagged", flag_id=row.id, luxicle_id=luxicle_id, reason=reason)
    return Flag.model_validate(row)
