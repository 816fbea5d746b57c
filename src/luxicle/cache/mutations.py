"""
Write-then-update-cache coordination.

A mutation runs once. On success the coordinator writes the affected detail
keys and then invalidates the listed keys and prefixes, all before the
mutation's awaitable resolves. On failure the cache is left alone and the
error comes back as ``Err``. Mutations are never retried and concurrent
mutations are not serialized.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel

from luxicle.cache.keys import KeyOrPrefix, QueryKey
from luxicle.cache.query_cache import QueryCache
from luxicle.errors import as_luxicle_error
from luxicle.result import Err, Ok, Result

T = TypeVar("T")

logger = structlog.get_logger()

KeysFor = Iterable[T] | Callable[[Any], Iterable[T]]


def merge_shallow(old: Any, new: Any) -> Any:  # noqa: ANN401
    """Overlay ``new`` on ``old`` one level deep.

    Models keep their own type: only fields ``old`` declares are copied over.
    """
    if old is None:
        return new
    if isinstance(old, BaseModel) and isinstance(new, BaseModel):
        fields = type(old).model_fields
        return old.model_copy(update={name: getattr(new, name) for name in type(new).model_fields if name in fields})
    if isinstance(old, Mapping) and isinstance(new, Mapping):
        return {**old, **new}
    return new


def _resolve(targets: Any, value: Any) -> list[Any]:  # noqa: ANN401
    if targets is None:
        return []
    if callable(targets):
        targets = targets(value)
    if not isinstance(targets, Iterable):
        return [targets]
    return list(targets)


class MutationCoordinator:
    """Runs writes and applies the cache policy for each."""

    def __init__(self, cache: QueryCache) -> None:
        self.cache = cache

    async def _run(self, name: str, mutation: Callable[[], Awaitable[T]]) -> Result[T]:
        try:
            value = await mutation()
        except Exception as e:  # noqa: BLE001
            error = as_luxicle_error(e)
            logger.info("mutation_failed", mutation=name, kind=error.kind.value, error=str(error))
            return Err(error)
        return Ok(value)

    def _invalidate(self, targets: Iterable[KeyOrPrefix]) -> None:
        for target in targets:
            self.cache.invalidate(target)

    async def run_create(
        self,
        mutation: Callable[[], Awaitable[T]],
        detail_key: QueryKey | Callable[[T], QueryKey] | None = None,
        invalidate: KeysFor[KeyOrPrefix] | None = None,
        *,
        name: str = "create",
    ) -> Result[T]:
        """Run a create; seed the new entity's detail key, then invalidate lists."""
        result = await self._run(name, mutation)
        if isinstance(result, Ok):
            for key in _resolve(detail_key, result.value):
                self.cache.set_data(key, result.value)
            self._invalidate(_resolve(invalidate, result.value))
        return result

    async def run_update(
        self,
        mutation: Callable[[], Awaitable[T]],
        detail_keys: KeysFor[QueryKey] | None = None,
        invalidate: KeysFor[KeyOrPrefix] | None = None,
        *,
        name: str = "update",
    ) -> Result[T]:
        """Run an update; merge the result into each detail key, then invalidate."""
        result = await self._run(name, mutation)
        if isinstance(result, Ok):
            value = result.value
            for key in _resolve(detail_keys, value):
                self.cache.set_data(key, lambda old, value=value: merge_shallow(old, value))
            self._invalidate(_resolve(invalidate, value))
        return result
