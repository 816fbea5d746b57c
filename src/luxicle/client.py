"""
Client context for Luxicle data access.

``LuxicleClient`` binds the data-access services to one ``QueryCache``, one
``MutationCoordinator`` and one ``AuthSessionStore``. Reads go through the
cache and come back as ``QueryState``; writes go through the coordinator and
come back as ``Result``. Every call runs in its own ``AsyncSession``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any, TypeVar

import structlog

from luxicle.auth.client import AuthClient
from luxicle.auth.session_store import AuthSessionStore
from luxicle.cache import keys
from luxicle.cache.keys import Entity, KeyOrPrefix, KeyPrefix
from luxicle.cache.mutations import MutationCoordinator
from luxicle.cache.query_cache import QueryCache, QueryState, QueryStatus, ReadOptions
from luxicle.challenges import service as challenges
from luxicle.config import Settings, get_settings
from luxicle.database import build_engine, build_session_factory
from luxicle.follows import service as follows
from luxicle.luxicles import service as luxicles
from luxicle.profiles import service as profiles
from luxicle.redis_client import connect
from luxicle.result import Result
from luxicle.taxonomy import service as taxonomy

if TYPE_CHECKING:
    from types import TracebackType

    import redis.asyncio as redis
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from luxicle.auth.schemas import AuthResponse, AuthUser
    from luxicle.challenges.schemas import Challenge, ChallengeCreate, ChallengeFilters
    from luxicle.luxicles.schemas import LuxicleCreate, LuxicleDetail, LuxicleSearch, LuxicleSummary, LuxicleUpdate
    from luxicle.profiles.schemas import ProfileUpdate, UserProfile
    from luxicle.taxonomy.schemas import Category, CategoryCreate, Tag, TagCreate

T = TypeVar("T")

logger = structlog.get_logger()


def _luxicle_created_targets(created: LuxicleDetail) -> list[KeyOrPrefix]:
    targets: list[KeyOrPrefix] = keys.prefixes(Entity.LUXICLES, keys.LUXICLE_LIST_SCOPES)
    if created.challenge_id:
        targets.append(keys.challenge_detail(created.challenge_id))
        targets.extend(keys.prefixes(Entity.CHALLENGES, keys.CHALLENGE_LIST_SCOPES))
    return targets


def _follow_targets(follower_id: str, followee_id: str) -> list[KeyOrPrefix]:
    return [
        KeyPrefix.of(Entity.FOLLOWS, "followers", user_id=followee_id),
        KeyPrefix.of(Entity.FOLLOWS, "following", user_id=follower_id),
        keys.is_following(follower_id, followee_id),
        keys.user_detail(follower_id),
        keys.user_detail(followee_id),
        KeyPrefix.of(Entity.USERS, "by_username"),
    ]


class LuxicleClient:
    """Cached reads, coordinated writes and auth state for one caller."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        auth_client: AuthClient,
        cache: QueryCache | None = None,
        *,
        settings: Settings | None = None,
        engine: AsyncEngine | None = None,
        redis_client: redis.Redis | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._session_factory = session_factory
        self.auth_client = auth_client
        self.auth = AuthSessionStore(auth_client)
        self.cache = cache or QueryCache.from_settings(self.settings)
        self.mutations = MutationCoordinator(self.cache)
        self._engine = engine
        self._redis = redis_client

    @classmethod
    def create(cls, settings: Settings | None = None) -> LuxicleClient:
        """Build a client that owns its engine and, when configured, its Redis pool."""
        settings = settings or get_settings()
        engine = build_engine(settings.database_url)
        session_factory = build_session_factory(engine)
        redis_client = connect(settings.redis_url)
        auth_client = AuthClient(session_factory, redis=redis_client, settings=settings)
        return cls(
            session_factory,
            auth_client,
            QueryCache.from_settings(settings),
            settings=settings,
            engine=engine,
            redis_client=redis_client,
        )

    async def __aenter__(self) -> LuxicleClient:
        await self.auth.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        self.auth.close()
        await self.cache.close()
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

    @property
    def user(self) -> AuthUser | None:
        return self.auth.user

    # -----------------------------------------------------------------------
    # Plumbing
    # -----------------------------------------------------------------------

    def _fetcher(
        self,
        fn: Callable[..., Awaitable[Result[Any]]],
        *args: Any,  # noqa: ANN401
        **kwargs: Any,  # noqa: ANN401
    ) -> Callable[[], Awaitable[Result[Any]]]:
        async def fetch() -> Result[Any]:
            async with self._session_factory() as db:
                return await fn(db, *args, **kwargs)

        return fetch

    def _writer(self, fn: Callable[..., Awaitable[T]], *args: Any) -> Callable[[], Awaitable[T]]:  # noqa: ANN401
        async def write() -> T:
            async with self._session_factory() as db:
                value = await fn(db, *args)
                await db.commit()
            return value

        return write

    async def _read(
        self,
        key: keys.QueryKey,
        fn: Callable[..., Awaitable[Result[Any]]],
        *args: Any,  # noqa: ANN401
        options: ReadOptions | None = None,
        **kwargs: Any,  # noqa: ANN401
    ) -> QueryState[Any]:
        return await self.cache.read(key, self._fetcher(fn, *args, **kwargs), options)

    def _when_signed_in(self, options: ReadOptions | None) -> ReadOptions | None:
        return options if self.user is not None else ReadOptions(enabled=False)

    # -----------------------------------------------------------------------
    # Profiles
    # -----------------------------------------------------------------------

    async def profile(
        self,
        user_id: str | None = None,
        username: str | None = None,
        options: ReadOptions | None = None,
    ) -> QueryState[UserProfile | None]:
        """Profile by id, or by username when no id is given. Disabled when neither is set."""
        if user_id:
            return await self._read(keys.user_detail(user_id), profiles.get_user_profile, user_id, options=options)
        if username:
            return await self._read(
                keys.user_by_username(username), profiles.get_user_profile_by_username, username, options=options
            )
        return QueryState(status=QueryStatus.IDLE)

    async def my_profile(self, options: ReadOptions | None = None) -> QueryState[UserProfile | None]:
        user = self.user
        user_id = user.id if user else ""
        return await self._read(
            keys.user_detail(user_id), profiles.get_user_profile, user_id, options=self._when_signed_in(options)
        )

    async def search_users(
        self,
        query: str,
        limit: int | None = None,
        offset: int | None = None,
        options: ReadOptions | None = None,
    ) -> QueryState[list[UserProfile]]:
        return await self._read(
            keys.user_search(query, limit, offset), profiles.search_users, query, limit, offset, options=options
        )

    async def update_profile(
        self, patch: ProfileUpdate | Mapping[str, Any], user_id: str | None = None
    ) -> Result[UserProfile]:
        """
        Update a profile, by default the signed-in user's.

        The detail key gets the merged result. Searches, by-username lookups
        and follower/following lists are invalidated since they carry the
        username. Updating your own profile also refreshes the auth user.
        """
        target = user_id or (self.user.id if self.user else "")
        result = await self.mutations.run_update(
            self._writer(profiles.update_user_profile, target, patch),
            lambda p: [keys.user_detail(p.id), keys.user_by_username(p.username)],
            lambda _p: [
                *keys.prefixes(Entity.USERS, keys.USER_LIST_SCOPES),
                KeyPrefix.of(Entity.USERS, "by_username"),
                KeyPrefix.of(Entity.FOLLOWS, "followers"),
                KeyPrefix.of(Entity.FOLLOWS, "following"),
            ],
            name="update_profile",
        )
        if result.ok and self.user is not None and self.user.id == target:
            await self.auth_client.refresh_user()
        return result

    # -----------------------------------------------------------------------
    # Challenges
    # -----------------------------------------------------------------------

    async def challenges(
        self,
        filters: ChallengeFilters | Mapping[str, Any] | None = None,
        options: ReadOptions | None = None,
    ) -> QueryState[list[Challenge]]:
        return await self._read(keys.challenge_list(filters), challenges.get_challenges, filters, options=options)

    async def challenge(self, challenge_id: str, options: ReadOptions | None = None) -> QueryState[Challenge | None]:
        options = options if challenge_id else ReadOptions(enabled=False)
        return await self._read(
            keys.challenge_detail(challenge_id), challenges.get_challenge, challenge_id, options=options
        )

    async def create_challenge(self, data: ChallengeCreate | Mapping[str, Any]) -> Result[Challenge]:
        return await self.mutations.run_create(
            self._writer(challenges.create_challenge, data),
            lambda c: keys.challenge_detail(c.id),
            keys.prefixes(Entity.CHALLENGES, keys.CHALLENGE_LIST_SCOPES),
            name="create_challenge",
        )

    # -----------------------------------------------------------------------
    # Luxicles
    # -----------------------------------------------------------------------

    async def luxicle(self, luxicle_id: str, options: ReadOptions | None = None) -> QueryState[LuxicleDetail | None]:
        options = options if luxicle_id else ReadOptions(enabled=False)
        return await self._read(keys.luxicle_detail(luxicle_id), luxicles.get_luxicle, luxicle_id, options=options)

    async def search_luxicles(
        self,
        filters: LuxicleSearch | Mapping[str, Any] | None = None,
        options: ReadOptions | None = None,
    ) -> QueryState[list[LuxicleSummary]]:
        return await self._read(keys.luxicle_search(filters), luxicles.search_luxicles, filters, options=options)

    async def user_luxicles(
        self,
        user_id: str,
        *,
        published_only: bool = False,
        limit: int | None = None,
        offset: int | None = None,
        options: ReadOptions | None = None,
    ) -> QueryState[list[LuxicleSummary]]:
        options = options if user_id else ReadOptions(enabled=False)
        return await self._read(
            keys.luxicles_by_user(user_id, published_only=published_only, limit=limit, offset=offset),
            luxicles.get_user_luxicles,
            user_id,
            options=options,
            published_only=published_only,
            limit=limit,
            offset=offset,
        )

    async def my_luxicles(self, options: ReadOptions | None = None) -> QueryState[list[LuxicleSummary]]:
        user_id = self.user.id if self.user else ""
        return await self.user_luxicles(user_id, options=self._when_signed_in(options))

    async def challenge_luxicles(
        self,
        challenge_id: str,
        *,
        published_only: bool = True,
        limit: int | None = None,
        offset: int | None = None,
        options: ReadOptions | None = None,
    ) -> QueryState[list[LuxicleSummary]]:
        options = options if challenge_id else ReadOptions(enabled=False)
        return await self._read(
            keys.luxicles_by_challenge(challenge_id, published_only=published_only, limit=limit, offset=offset),
            luxicles.get_challenge_luxicles,
            challenge_id,
            options=options,
            published_only=published_only,
            limit=limit,
            offset=offset,
        )

    async def create_luxicle(self, data: LuxicleCreate | Mapping[str, Any]) -> Result[LuxicleDetail]:
        """Create a luxicle; its challenge's detail and lists are invalidated too."""
        return await self.mutations.run_create(
            self._writer(luxicles.create_luxicle, data),
            lambda lx: keys.luxicle_detail(lx.id),
            _luxicle_created_targets,
            name="create_luxicle",
        )

    async def update_luxicle(
        self,
        luxicle_id: str,
        patch: LuxicleUpdate | Mapping[str, Any],
        caller_user_id: str | None = None,
    ) -> Result[LuxicleDetail]:
        caller = caller_user_id or (self.user.id if self.user else "")
        return await self.mutations.run_update(
            self._writer(luxicles.update_luxicle, luxicle_id, caller, patch),
            [keys.luxicle_detail(luxicle_id)],
            keys.prefixes(Entity.LUXICLES, keys.LUXICLE_LIST_SCOPES),
            name="update_luxicle",
        )

    # -----------------------------------------------------------------------
    # Taxonomy
    # -----------------------------------------------------------------------

    async def categories(self, options: ReadOptions | None = None) -> QueryState[list[Category]]:
        return await self._read(keys.category_list(), taxonomy.get_categories, options=options)

    async def tags(
        self,
        limit: int | None = None,
        offset: int | None = None,
        options: ReadOptions | None = None,
    ) -> QueryState[list[Tag]]:
        return await self._read(keys.tag_list(limit, offset), taxonomy.get_tags, limit, offset, options=options)

    async def popular_tags(self, limit: int | None = None, options: ReadOptions | None = None) -> QueryState[list[Tag]]:
        return await self._read(keys.popular_tags(limit), taxonomy.get_popular_tags, limit, options=options)

    async def create_category(self, data: CategoryCreate | Mapping[str, Any]) -> Result[Category]:
        return await self.mutations.run_create(
            self._writer(taxonomy.create_category, data),
            invalidate=[KeyPrefix.of(Entity.CATEGORIES)],
            name="create_category",
        )

    async def create_tag(self, data: TagCreate | Mapping[str, Any]) -> Result[Tag]:
        return await self.mutations.run_create(
            self._writer(taxonomy.create_tag, data),
            invalidate=[KeyPrefix.of(Entity.TAGS)],
            name="create_tag",
        )

    # -----------------------------------------------------------------------
    # Follows
    # -----------------------------------------------------------------------

    async def followers(
        self,
        user_id: str,
        limit: int | None = None,
        offset: int | None = None,
        options: ReadOptions | None = None,
    ) -> QueryState[list[Any]]:
        options = options if user_id else ReadOptions(enabled=False)
        return await self._read(
            keys.followers(user_id, limit, offset), follows.get_followers, user_id, limit, offset, options=options
        )

    async def following(
        self,
        user_id: str,
        limit: int | None = None,
        offset: int | None = None,
        options: ReadOptions | None = None,
    ) -> QueryState[list[Any]]:
        options = options if user_id else ReadOptions(enabled=False)
        return await self._read(
            keys.following(user_id, limit, offset), follows.get_following, user_id, limit, offset, options=options
        )

    async def my_following(self, options: ReadOptions | None = None) -> QueryState[list[Any]]:
        user_id = self.user.id if self.user else ""
        return await self.following(user_id, options=self._when_signed_in(options))

    async def is_following(
        self, follower_id: str, followee_id: str, options: ReadOptions | None = None
    ) -> QueryState[bool]:
        return await self._read(
            keys.is_following(follower_id, followee_id),
            follows.is_following,
            follower_id,
            followee_id,
            options=options,
        )

    async def follow(self, followee_id: str, follower_id: str | None = None) -> Result[bool]:
        follower = follower_id or (self.user.id if self.user else "")
        return await self.mutations.run_update(
            self._writer(follows.follow_user, follower, followee_id),
            invalidate=_follow_targets(follower, followee_id),
            name="follow",
        )

    async def unfollow(self, followee_id: str, follower_id: str | None = None) -> Result[bool]:
        follower = follower_id or (self.user.id if self.user else "")
        return await self.mutations.run_update(
            self._writer(follows.unfollow_user, follower, followee_id),
            invalidate=_follow_targets(follower, followee_id),
            name="unfollow",
        )

    # -----------------------------------------------------------------------
    # Auth
    # -----------------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> AuthResponse:
        return await self.auth.sign_in_with_password(email, password)

    async def sign_up(self, email: str, password: str, username: str) -> AuthResponse:
        return await self.auth.sign_up(email, password, username)

    async def sign_in_with_oauth(self, provider: str, redirect_to: str | None = None) -> str:
        return await self.auth.sign_in_with_oauth(provider, redirect_to)

    async def send_password_reset_email(self, email: str, redirect_to: str | None = None) -> None:
        await self.auth.send_password_reset_email(email, redirect_to)

    async def sign_out(self) -> None:
        """Sign out and drop every cached read."""
        try:
            await self.auth.sign_out()
        finally:
            dropped = self.cache.clear()
            logger.info("client_cache_cleared", entries=dropped)
