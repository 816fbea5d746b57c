"""
In-memory query cache with request coalescing and staleness tracking.

Each key holds the last successful result and the time it was stored. A read
serves a fresh entry without suspending; otherwise it joins (or starts) the
single in-flight fetch for that key. The fetch runs as its own task and is
awaited through ``asyncio.shield``, so a cancelled caller never cancels it and
its result still lands in the cache for later readers.

The cache owns its entry map. Callers change it only through ``read``,
``set_data``, ``invalidate``, ``remove`` and ``clear``.
"""

from __future__ import annotations

import asyncio
import enum
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import structlog

from luxicle.cache.keys import KeyOrPrefix, QueryKey, matches
from luxicle.errors import RETRYABLE_KINDS, LuxicleError, as_luxicle_error
from luxicle.result import Ok, Result

if TYPE_CHECKING:
    from luxicle.config import Settings

T = TypeVar("T")

logger = structlog.get_logger()

Fetcher = Callable[[], Awaitable[Result[Any]]]


class QueryStatus(str, enum.Enum):
    IDLE = "idle"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class QueryState(Generic[T]):
    """What a reader sees for one key."""

    status: QueryStatus
    data: T | None = None
    error: LuxicleError | None = None
    is_stale: bool = False
    updated_at: float | None = None

    @property
    def is_idle(self) -> bool:
        return self.status is QueryStatus.IDLE

    @property
    def is_success(self) -> bool:
        return self.status is QueryStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status is QueryStatus.ERROR


@dataclass(frozen=True)
class CacheEntry:
    key: QueryKey
    data: Any
    updated_at: float
    invalidated: bool = False


@dataclass(frozen=True)
class ReadOptions:
    """Per-read overrides. ``None`` means use the cache default."""

    enabled: bool = True
    stale_seconds: float | None = None
    retry: int | None = None
    retry_delay: float | None = None
    background_refresh: bool = False


class CacheEventType(str, enum.Enum):
    UPDATED = "updated"
    INVALIDATED = "invalidated"
    REMOVED = "removed"


@dataclass(frozen=True)
class CacheEvent:
    type: CacheEventType
    key: QueryKey
    data: Any = None


Listener = Callable[[CacheEvent], None]


class Subscription:
    """Handle returned by ``subscribe``; call ``unsubscribe`` to stop receiving events."""

    def __init__(self, cancel: Callable[[], None]) -> None:
        self._cancel: Callable[[], None] | None = cancel

    @property
    def active(self) -> bool:
        return self._cancel is not None

    def unsubscribe(self) -> None:
        if self._cancel is not None:
            self._cancel()
            self._cancel = None


class QueryCache:
    """Keyed result cache shared by every read in a client."""

    def __init__(
        self,
        *,
        list_stale_seconds: float = 60.0,
        detail_stale_seconds: float = 300.0,
        retry: int = 1,
        retry_delay: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.list_stale_seconds = list_stale_seconds
        self.detail_stale_seconds = detail_stale_seconds
        self.retry = retry
        self.retry_delay = retry_delay
        self._clock = clock
        self._entries: dict[QueryKey, CacheEntry] = {}
        self._versions: dict[QueryKey, int] = {}
        self._inflight: dict[QueryKey, asyncio.Task[QueryState[Any]]] = {}
        self._listeners: list[tuple[KeyOrPrefix, Listener]] = []
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings) -> QueryCache:
        return cls(
            list_stale_seconds=settings.cache_list_stale_seconds,
            detail_stale_seconds=settings.cache_detail_stale_seconds,
            retry=settings.cache_retry,
            retry_delay=settings.cache_retry_delay_seconds,
        )

    # -----------------------------------------------------------------------
    # Staleness
    # -----------------------------------------------------------------------

    def stale_window(self, key: QueryKey) -> float:
        return self.detail_stale_seconds if key.is_detail else self.list_stale_seconds

    def _is_stale(self, entry: CacheEntry, stale_seconds: float | None = None) -> bool:
        if entry.invalidated:
            return True
        window = self.stale_window(entry.key) if stale_seconds is None else stale_seconds
        return self._clock() - entry.updated_at >= window

    def _success(self, entry: CacheEntry, stale_seconds: float | None = None) -> QueryState[Any]:
        return QueryState(
            status=QueryStatus.SUCCESS,
            data=entry.data,
            is_stale=self._is_stale(entry, stale_seconds),
            updated_at=entry.updated_at,
        )

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def read(self, key: QueryKey, fetcher: Fetcher, options: ReadOptions | None = None) -> QueryState[Any]:
        """
        Serve ``key`` from cache or through one coalesced fetch.

        A disabled read returns an idle state and neither fetches nor serves
        cached data.
        """
        options = options or ReadOptions()
        if not options.enabled:
            return QueryState(status=QueryStatus.IDLE)

        entry = self._entries.get(key)
        if entry is not None and not self._is_stale(entry, options.stale_seconds):
            return self._success(entry, options.stale_seconds)

        if entry is not None and options.background_refresh and not self._closed:
            self._start_fetch(key, fetcher, options)
            return self._success(entry, options.stale_seconds)

        task = self._start_fetch(key, fetcher, options)
        return await asyncio.shield(task)

    def _start_fetch(self, key: QueryKey, fetcher: Fetcher, options: ReadOptions) -> asyncio.Task[QueryState[Any]]:
        task = self._inflight.get(key)
        if task is not None:
            logger.debug("cache_fetch_joined", entity=key.entity.value, scope=key.scope)
            return task
        task = asyncio.get_running_loop().create_task(self._run_fetch(key, fetcher, options))
        self._inflight[key] = task
        task.add_done_callback(lambda t: self._fetch_done(key, t))
        return task

    def _fetch_done(self, key: QueryKey, task: asyncio.Task[QueryState[Any]]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
            if key not in self._entries:
                self._versions.pop(key, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error("cache_fetch_crashed", entity=key.entity.value, scope=key.scope, exc_info=task.exception())

    async def _run_fetch(self, key: QueryKey, fetcher: Fetcher, options: ReadOptions) -> QueryState[Any]:
        retry = self.retry if options.retry is None else options.retry
        delay = self.retry_delay if options.retry_delay is None else options.retry_delay
        attempts = 1 + max(0, retry)
        version = self._versions.get(key, 0)
        error: LuxicleError | None = None

        for attempt in range(1, attempts + 1):
            logger.debug("cache_fetch", entity=key.entity.value, scope=key.scope, attempt=attempt)
            try:
                result = await fetcher()
            except asyncio.CancelledError:
                raise
            except Exception as e:  # noqa: BLE001
                result = None
                error = as_luxicle_error(e)
            else:
                if isinstance(result, Ok):
                    return self._store_fetched(key, result.value, version, options.stale_seconds)
                error = result.error

            if error.kind not in RETRYABLE_KINDS or attempt == attempts:
                break
            await asyncio.sleep(delay)

        logger.warning(
            "cache_fetch_failed",
            entity=key.entity.value,
            scope=key.scope,
            kind=error.kind.value if error else None,
            error=str(error),
        )
        previous = self._entries.get(key)
        return QueryState(
            status=QueryStatus.ERROR,
            data=previous.data if previous else None,
            error=error,
            is_stale=True,
            updated_at=previous.updated_at if previous else None,
        )

    def _store_fetched(self, key: QueryKey, data: Any, version: int, stale_seconds: float | None) -> QueryState[Any]:  # noqa: ANN401
        current = self._entries.get(key)
        if self._versions.get(key, 0) != version:
            # Written, invalidated or removed while the fetch ran.
            if current is not None and not current.invalidated:
                return self._success(current, stale_seconds)
            entry = CacheEntry(key=key, data=data, updated_at=self._clock(), invalidated=True)
        else:
            entry = CacheEntry(key=key, data=data, updated_at=self._clock())
        self._entries[key] = entry
        self._emit(CacheEvent(CacheEventType.UPDATED, key, data))
        return self._success(entry, stale_seconds)

    # -----------------------------------------------------------------------
    # Direct access
    # -----------------------------------------------------------------------

    def get(self, key: QueryKey) -> Any:  # noqa: ANN401
        """Cached data for ``key``, or None."""
        entry = self._entries.get(key)
        return entry.data if entry else None

    def get_entry(self, key: QueryKey) -> CacheEntry | None:
        return self._entries.get(key)

    def keys(self) -> list[QueryKey]:
        return list(self._entries)

    def is_fetching(self, key: QueryKey) -> bool:
        return key in self._inflight

    def set_data(self, key: QueryKey, value: Any) -> Any:  # noqa: ANN401
        """
        Write an entry directly. ``value`` may be an updater that receives the
        old data (or None) and returns the new data.
        """
        if callable(value):
            previous = self._entries.get(key)
            value = value(previous.data if previous else None)
        self._bump(key)
        self._entries[key] = CacheEntry(key=key, data=value, updated_at=self._clock())
        self._emit(CacheEvent(CacheEventType.UPDATED, key, value))
        return value

    def invalidate(self, target: KeyOrPrefix) -> int:
        """Mark matching entries stale without dropping them. Returns how many matched."""
        count = 0
        for key, entry in list(self._entries.items()):
            if not matches(target, key):
                continue
            count += 1
            self._bump(key)
            if not entry.invalidated:
                self._entries[key] = replace(entry, invalidated=True)
                self._emit(CacheEvent(CacheEventType.INVALIDATED, key, entry.data))
        for key in self._inflight:
            if matches(target, key) and key not in self._entries:
                self._bump(key)
        if count:
            logger.debug("cache_invalidated", target=repr(target), count=count)
        return count

    def remove(self, target: KeyOrPrefix) -> int:
        """Drop matching entries. Returns how many were dropped."""
        removed = [key for key in self._entries if matches(target, key)]
        for key in removed:
            entry = self._entries.pop(key)
            self._forget(key)
            self._emit(CacheEvent(CacheEventType.REMOVED, key, entry.data))
        return len(removed)

    def clear(self) -> int:
        """Drop every entry."""
        removed = list(self._entries.items())
        self._entries.clear()
        for key, entry in removed:
            self._forget(key)
            self._emit(CacheEvent(CacheEventType.REMOVED, key, entry.data))
        for key in self._inflight:
            self._bump(key)
        if removed:
            logger.info("cache_cleared", count=len(removed))
        return len(removed)

    def _bump(self, key: QueryKey) -> None:
        self._versions[key] = self._versions.get(key, 0) + 1

    def _forget(self, key: QueryKey) -> None:
        # A running fetch compares against the version it started with.
        if key in self._inflight:
            self._bump(key)
        else:
            self._versions.pop(key, None)

    # -----------------------------------------------------------------------
    # Subscriptions
    # -----------------------------------------------------------------------

    def subscribe(self, target: KeyOrPrefix, listener: Listener) -> Subscription:
        """Call ``listener`` for every event on keys matching ``target``."""
        pair = (target, listener)
        self._listeners.append(pair)

        def cancel() -> None:
            if pair in self._listeners:
                self._listeners.remove(pair)

        return Subscription(cancel)

    def _emit(self, event: CacheEvent) -> None:
        for target, listener in list(self._listeners):
            if not matches(target, event.key):
                continue
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.exception("cache_listener_failed", event=event.type.value, scope=event.key.scope)

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    async def close(self) -> None:
        """Cancel outstanding fetches and drop listeners."""
        self._closed = True
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
        self._listeners.clear()
