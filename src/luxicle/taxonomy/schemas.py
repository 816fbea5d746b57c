"""Category and tag models."""

from __future__ import annotations

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    """Lowercase a name and collapse everything but letters and digits to '-'."""
    return _NON_SLUG.sub("-", value.strip().lower()).strip("-")


class Category(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    slug: str
    description: str | None = None
    created_at: datetime | None = None


class Tag(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    slug: str
    usage_count: int = 0
    created_at: datetime | None = None


class CategoryCreate(BaseModel):
    """New category. The slug is derived from the name when omitted."""

    name: str = Field(..., min_length=1, max_length=100)
    slug: str | None = Field(None, max_length=100)
    description: str | None = None

    @field_validator("slug")
    @classmethod
    def normalize_slug(cls, v: str | None) -> str | None:
        return slugify(v) if v else None


class TagCreate(BaseModel):
    """New tag. The slug is derived from the name when omitted."""

    name: str = Field(..., min_length=1, max_length=100)
    slug: str | None = Field(None, max_length=100)

    @field_validator("slug")
    @classmethod
    def normalize_slug(cls, v: str | None) -> str | None:
        return slugify(v) if v else None
