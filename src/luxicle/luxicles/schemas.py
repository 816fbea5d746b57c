"""Luxicle (ranked list) models and search filters."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LuxicleItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    luxicle_id: str
    position: int
    title: str
    description: str | None = None
    media_url: str | None = None
    item_type: str = "text"
    embed_provider: str | None = None
    embed_data: dict[str, Any] | None = None


class LuxicleSummary(BaseModel):
    """Luxicle row plus its tag ids, as returned by list and search reads."""

    id: str
    user_id: str
    challenge_id: str | None = None
    category_id: str | None = None
    title: str
    description: str | None = None
    is_published: bool = False
    view_count: int = 0
    tag_ids: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LuxicleDetail(LuxicleSummary):
    """Luxicle with its items in display order."""

    items: list[LuxicleItem] = Field(default_factory=list)


class LuxicleItemCreate(BaseModel):
    position: int = Field(..., ge=0)
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    media_url: str | None = None
    item_type: str = Field("text", max_length=32)
    embed_provider: str | None = Field(None, max_length=64)
    embed_data: dict[str, Any] | None = None


class LuxicleCreate(BaseModel):
    """New luxicle with its items and tags. Published unless stated otherwise."""

    user_id: str = Field(..., min_length=1)
    challenge_id: str | None = None
    category_id: str | None = None
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    is_published: bool = True
    tag_ids: list[str] = Field(default_factory=list)
    items: list[LuxicleItemCreate] = Field(default_factory=list)


class LuxicleUpdate(BaseModel):
    """Owner-editable luxicle fields."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    category_id: str | None = None
    is_published: bool | None = None


class LuxicleSearch(BaseModel):
    """Search filters. Every set filter is ANDed; tags match by intersection."""

    model_config = ConfigDict(frozen=True)

    query: str | None = None
    category_id: str | None = None
    tag_ids: list[str] = Field(default_factory=list)
    user_id: str | None = None
    challenge_id: str | None = None
    published_only: bool = True
    limit: int | None = None
    offset: int | None = None
