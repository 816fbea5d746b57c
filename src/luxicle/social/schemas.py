"""Comments, reactions, direct messages and moderation flags."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

REACTION_KINDS = frozenset({"like", "love", "fire", "clap", "laugh"})
FLAG_REASONS = frozenset({"spam", "harassment", "inappropriate", "copyright", "other"})


class Comment(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    luxicle_id: str
    body: str
    created_at: datetime | None = None


class Reaction(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    luxicle_id: str
    kind: str
    created_at: datetime | None = None


class Message(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    sender_id: str | None = None
    receiver_id: str | None = None
    body: str
    read_at: datetime | None = None
    created_at: datetime | None = None


class Flag(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    reporter_id: str | None = None
    luxicle_id: str | None = None
    reason: str
    details: str | None = None
    status: str = "pending"
    created_at: datetime | None = None
