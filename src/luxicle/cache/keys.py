"""
Structured cache keys.

A ``QueryKey`` is (entity, scope, params) where params is a tuple of
``(name, value)`` pairs sorted by name. List values become sorted tuples and
``None`` params are dropped, so two keys built from the same logical filters
are equal and hash the same regardless of argument order.
"""

from __future__ import annotations

import enum
from collections.abc import Hashable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel


class Entity(str, enum.Enum):
    USERS = "users"
    FOLLOWS = "follows"
    CHALLENGES = "challenges"
    LUXICLES = "luxicles"
    CATEGORIES = "categories"
    TAGS = "tags"


# Scopes that address one record. Everything else is a list.
DETAIL_SCOPES = frozenset({"detail", "by_username"})

_MISSING = object()


def _freeze(value: Any) -> Hashable:  # noqa: ANN401
    if isinstance(value, BaseModel):
        value = value.model_dump()
    if isinstance(value, Mapping):
        return tuple(sorted((str(k), _freeze(v)) for k, v in value.items() if v is not None))
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(sorted((_freeze(v) for v in value), key=repr))
    if isinstance(value, enum.Enum):
        return value.value
    return value


def _canonical(params: Mapping[str, Any]) -> tuple[tuple[str, Hashable], ...]:
    return tuple(sorted((name, _freeze(value)) for name, value in params.items() if value is not None))


@dataclass(frozen=True)
class QueryKey:
    """Identifies one cached read."""

    entity: Entity
    scope: str
    params: tuple[tuple[str, Hashable], ...] = ()

    @classmethod
    def of(cls, entity: Entity, scope: str, **params: Any) -> QueryKey:  # noqa: ANN401
        return cls(entity, scope, _canonical(params))

    def param(self, name: str, default: Any = None) -> Any:  # noqa: ANN401
        for key, value in self.params:
            if key == name:
                return value
        return default

    @property
    def is_detail(self) -> bool:
        return self.scope in DETAIL_SCOPES


@dataclass(frozen=True)
class KeyPrefix:
    """Matches every key of an entity, optionally narrowed by scope and params."""

    entity: Entity
    scope: str | None = None
    params: tuple[tuple[str, Hashable], ...] = ()

    @classmethod
    def of(cls, entity: Entity, scope: str | None = None, **params: Any) -> KeyPrefix:  # noqa: ANN401
        return cls(entity, scope, _canonical(params))

    def matches(self, key: QueryKey) -> bool:
        if key.entity != self.entity:
            return False
        if self.scope is not None and key.scope != self.scope:
            return False
        return all(key.param(name, _MISSING) == value for name, value in self.params)


KeyOrPrefix = QueryKey | KeyPrefix


def matches(target: KeyOrPrefix, key: QueryKey) -> bool:
    if isinstance(target, QueryKey):
        return target == key
    return target.matches(key)


def prefixes(entity: Entity, scopes: Iterable[str], **params: Any) -> list[KeyPrefix]:  # noqa: ANN401
    return [KeyPrefix.of(entity, scope, **params) for scope in scopes]


# ---------------------------------------------------------------------------
# Key factories
# ---------------------------------------------------------------------------

USER_LIST_SCOPES = ("search",)
FOLLOW_SCOPES = ("followers", "following", "is_following")
CHALLENGE_LIST_SCOPES = ("list",)
LUXICLE_LIST_SCOPES = ("search", "by_user", "by_challenge")


def user_detail(user_id: str) -> QueryKey:
    return QueryKey.of(Entity.USERS, "detail", id=user_id)


def user_by_username(username: str) -> QueryKey:
    return QueryKey.of(Entity.USERS, "by_username", username=username.strip().lower())


def user_search(query: str, limit: int | None = None, offset: int | None = None) -> QueryKey:
    return QueryKey.of(Entity.USERS, "search", query=query, limit=limit, offset=offset)


def followers(user_id: str, limit: int | None = None, offset: int | None = None) -> QueryKey:
    return QueryKey.of(Entity.FOLLOWS, "followers", user_id=user_id, limit=limit, offset=offset)


def following(user_id: str, limit: int | None = None, offset: int | None = None) -> QueryKey:
    return QueryKey.of(Entity.FOLLOWS, "following", user_id=user_id, limit=limit, offset=offset)


def is_following(follower_id: str, followee_id: str) -> QueryKey:
    return QueryKey.of(Entity.FOLLOWS, "is_following", follower_id=follower_id, followee_id=followee_id)


def challenge_detail(challenge_id: str) -> QueryKey:
    return QueryKey.of(Entity.CHALLENGES, "detail", id=challenge_id)


def challenge_list(filters: BaseModel | Mapping[str, Any] | None = None) -> QueryKey:
    params = filters.model_dump() if isinstance(filters, BaseModel) else dict(filters or {})
    return QueryKey.of(Entity.CHALLENGES, "list", **params)


def luxicle_detail(luxicle_id: str) -> QueryKey:
    return QueryKey.of(Entity.LUXICLES, "detail", id=luxicle_id)


def luxicle_search(filters: BaseModel | Mapping[str, Any] | None = None) -> QueryKey:
    params = filters.model_dump() if isinstance(filters, BaseModel) else dict(filters or {})
    return QueryKey.of(Entity.LUXICLES, "search", **params)


def luxicles_by_user(user_id: str, **params: Any) -> QueryKey:  # noqa: ANN401
    return QueryKey.of(Entity.LUXICLES, "by_user", user_id=user_id, **params)


def luxicles_by_challenge(challenge_id: str, **params: Any) -> QueryKey:  # noqa: ANN401
    return QueryKey.of(Entity.LUXICLES, "by_challenge", challenge_id=challenge_id, **params)


def category_list() -> QueryKey:
    return QueryKey.of(Entity.CATEGORIES, "list")


def tag_list(limit: int | None = None, offset: int | None = None) -> QueryKey:
    return QueryKey.of(Entity.TAGS, "list", limit=limit, offset=offset)


def popular_tags(limit: int | None = None) -> QueryKey:
    return QueryKey.of(Entity.TAGS, "popular", limit=limit)
