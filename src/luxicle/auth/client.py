"""
In-process auth client.

Holds the current session in memory, runs each auth flow in its own database
transaction, and announces state changes on an ``AuthEventStream``.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar

import structlog

from luxicle.auth import service
from luxicle.auth.events import AuthEvent, AuthEventStream, AuthListener
from luxicle.auth.oauth import OAuthClient, callback_url
from luxicle.config import Settings, get_settings
from luxicle.email.service import get_email_service
from luxicle.errors import AuthenticationError

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from luxicle.auth.schemas import AuthResponse, Session
    from luxicle.cache.query_cache import Subscription
    from luxicle.email.service import EmailService

T = TypeVar("T")

logger = structlog.get_logger()

# Refresh a little before the access token actually expires.
EXPIRY_MARGIN_SECONDS = 30


class AuthClient:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        redis: Redis | None = None,
        email_service: EmailService | None = None,
        oauth: OAuthClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._redis = redis
        self._email_service = email_service
        self.settings = settings or get_settings()
        self.oauth = oauth or OAuthClient(settings=self.settings)
        self.events = AuthEventStream()
        self._session: Session | None = None

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def email_service(self) -> EmailService:
        if self._email_service is None:
            self._email_service = get_email_service(self._redis)
        return self._email_service

    async def _call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,  # noqa: ANN401
        commit_on: tuple[type[BaseException], ...] = (),
    ) -> T:
        """Run one service call in its own transaction."""
        async with self._session_factory() as db:
            try:
                result = await fn(db, *args)
            except commit_on:
                await db.commit()
                raise
            await db.commit()
        return result

    def _set_session(self, session: Session | None, event: AuthEvent) -> None:
        self._session = session
        self.events.emit(event, session)

    # -----------------------------------------------------------------------
    # Sessions
    # -----------------------------------------------------------------------

    async def get_session(self) -> Session | None:
        """Current session, refreshed first if the access token is about to expire."""
        session = self._session
        if session is None:
            return None
        if session.expires_at - time.time() > EXPIRY_MARGIN_SECONDS:
            return session
        try:
            return await self.refresh_session()
        except AuthenticationError:
            return None

    async def refresh_session(self) -> Session:
        """
        Rotate the refresh token.

        A rejected refresh ends the local session and emits ``SIGNED_OUT``.
        """
        if self._session is None:
            msg = "No active session"
            raise AuthenticationError(msg)
        try:
            # Reuse detection revokes tokens; keep that write even though the call fails.
            session = await self._call(
                service.refresh_session, self._session.refresh_token, commit_on=(AuthenticationError,)
            )
        except AuthenticationError:
            self._set_session(None, AuthEvent.SIGNED_OUT)
            raise
        self._set_session(session, AuthEvent.TOKEN_REFRESHED)
        return session

    def on_auth_state_change(self, callback: AuthListener) -> Subscription:
        return self.events.subscribe(callback)

    # -----------------------------------------------------------------------
    # Sign-in flows
    # -----------------------------------------------------------------------

    async def sign_in_with_password(self, email: str | None, password: str | None) -> AuthResponse:
        response = await self._call(service.sign_in, self._redis, email, password)
        self._set_session(response.session, AuthEvent.SIGNED_IN)
        return response

    async def sign_up(self, email: str | None, password: str | None, username: str | None) -> AuthResponse:
        """Register. Signs in at once unless email confirmation is required."""
        response = await self._call(service.sign_up, email, password, username, self.email_service)
        if response.session is not None:
            self._set_session(response.session, AuthEvent.SIGNED_IN)
        return response

    def sign_in_with_oauth(self, provider: str, redirect_to: str | None = None) -> str:
        """Authorize URL for the provider. The browser comes back to ``/auth/callback``."""
        redirect_uri = callback_url(self.settings.site_url, provider, redirect_to)
        return self.oauth.authorize_url(provider, redirect_uri, secrets.token_urlsafe(16))

    async def exchange_code_for_session(
        self, provider: str, code: str, redirect_uri: str | None = None
    ) -> AuthResponse:
        profile = await self.oauth.exchange_code(provider, code, redirect_uri)
        response = await self._call(service.oauth_sign_in, profile)
        self._set_session(response.session, AuthEvent.SIGNED_IN)
        return response

    async def sign_out(self) -> None:
        """Revoke the refresh token and drop the local session."""
        session = self._session
        try:
            if session is not None:
                await self._call(service.revoke_session, session.refresh_token)
        finally:
            self._set_session(None, AuthEvent.SIGNED_OUT)
        logger.info("user_signed_out", user_id=session.user.id if session else None)

    # -----------------------------------------------------------------------
    # Account maintenance
    # -----------------------------------------------------------------------

    async def reset_password_for_email(self, email: str, redirect_to: str | None = None) -> None:
        await self._call(service.send_password_reset, email, self.email_service, redirect_to)

    async def refresh_user(self) -> Session | None:
        """Reload the signed-in user's details and emit ``USER_UPDATED``."""
        session = self._session
        if session is None:
            return None

        async def load(db: AsyncSession) -> Any:  # noqa: ANN401
            user = await service.get_user_by_id(db, session.user.id)
            if user is None:
                return None
            return service.to_auth_user(user, await service.get_credential(db, user.id))

        user = await self._call(load)
        if user is None:
            return session
        updated = session.model_copy(update={"user": user})
        self._set_session(updated, AuthEvent.USER_UPDATED)
        return updated
