"""Challenge models and filters."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from luxicle.taxonomy.schemas import Category


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_active(opens_at: datetime, closes_at: datetime | None, now: datetime) -> bool:
    """A challenge is active from ``opens_at`` (inclusive) until ``closes_at`` (exclusive)."""
    return opens_at <= now and (closes_at is None or now < closes_at)


class Challenge(BaseModel):
    """Challenge with its category and attached tag ids."""

    id: str
    title: str
    description: str = ""
    rules: str | None = None
    category_id: str | None = None
    category: Category | None = None
    cover_image_url: str | None = None
    opens_at: datetime
    closes_at: datetime | None = None
    is_featured: bool = False
    submission_count: int = 0
    tag_ids: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ChallengeCreate(BaseModel):
    """New challenge. ``opens_at`` defaults to now."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    rules: str | None = None
    category_id: str | None = None
    cover_image_url: str | None = None
    opens_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    closes_at: datetime | None = None
    is_featured: bool = False
    tag_ids: list[str] = Field(default_factory=list)

    @field_validator("opens_at", "closes_at")
    @classmethod
    def ensure_utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)

    @model_validator(mode="after")
    def check_window(self) -> ChallengeCreate:
        if self.closes_at is not None and self.closes_at < self.opens_at:
            msg = "closes_at must not be before opens_at"
            raise ValueError(msg)
        return self


class ChallengeUpdate(BaseModel):
    """Partial challenge update."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    rules: str | None = None
    category_id: str | None = None
    cover_image_url: str | None = None
    opens_at: datetime | None = None
    closes_at: datetime | None = None
    is_featured: bool | None = None
    tag_ids: list[str] | None = None

    @field_validator("opens_at", "closes_at")
    @classmethod
    def ensure_utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)


class ChallengeFilters(BaseModel):
    """Filters for listing challenges. Unset filters impose no predicate."""

    model_config = ConfigDict(frozen=True)

    category_id: str | None = None
    tag_ids: list[str] = Field(default_factory=list)
    search_query: str | None = None
    featured: bool | None = None
    active: bool = False
    limit: int | None = None
    offset: int | None = None
