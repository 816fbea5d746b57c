"""Profile models and the profile edit rules."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

USERNAME_PATTERN = r"^[a-zA-Z0-9_]+$"
_USERNAME_RE = re.compile(USERNAME_PATTERN)


class UserProfile(BaseModel):
    """Public profile with follow counts."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    username: str
    display_name: str | None = None
    bio: str | None = None
    location: str | None = None
    avatar_url: str | None = None
    cover_url: str | None = None
    website_url: str | None = None
    twitter_handle: str | None = None
    instagram_handle: str | None = None
    onboarding_completed: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
    follower_count: int = 0
    following_count: int = 0


class UserSummary(BaseModel):
    """Compact profile used in follower lists and search results."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    display_name: str | None = None
    avatar_url: str | None = None


def normalize_username(value: str) -> str:
    """Validate a username and return it lowercased.

    Raises:
        ValueError: If the username is too short, too long or has bad characters.
    """
    value = value.strip()
    if len(value) < 3:
        msg = "Username must be at least 3 characters"
        raise ValueError(msg)
    if len(value) > 30:
        msg = "Username must be at most 30 characters"
        raise ValueError(msg)
    if not _USERNAME_RE.match(value):
        msg = "Username can only contain letters, numbers, and underscores"
        raise ValueError(msg)
    return value.lower()


class ProfileUpdate(BaseModel):
    """Editable profile fields. Empty strings clear a field."""

    model_config = ConfigDict(extra="forbid")

    username: str | None = None
    display_name: str | None = Field(None, max_length=50)
    bio: str | None = Field(None, max_length=160)
    location: str | None = Field(None, max_length=100)
    website_url: str | None = Field(None, max_length=100)
    twitter_handle: str | None = Field(None, max_length=15, pattern=r"^[a-zA-Z0-9_]*$")
    instagram_handle: str | None = Field(None, max_length=30, pattern=r"^[a-zA-Z0-9_.]*$")
    avatar_url: str | None = None
    cover_url: str | None = None
    onboarding_completed: bool | None = None

    @field_validator("username")
    @classmethod
    def check_username(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return normalize_username(v)

    @field_validator("twitter_handle", "instagram_handle", mode="before")
    @classmethod
    def strip_at(cls, v: Any) -> Any:  # noqa: ANN401
        """Drop a leading '@' from social handles."""
        if isinstance(v, str):
            return v.strip().removeprefix("@")
        return v

    @field_validator("website_url")
    @classmethod
    def check_website(cls, v: str | None) -> str | None:
        if v and not v.startswith(("http://", "https://")):
            msg = "Website URL must start with http:// or https://"
            raise ValueError(msg)
        return v

    @field_validator(
        "display_name",
        "bio",
        "location",
        "website_url",
        "twitter_handle",
        "instagram_handle",
        "avatar_url",
        "cover_url",
    )
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v
