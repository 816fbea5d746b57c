"""
Reactive auth state.

``AuthSessionStore`` mirrors the auth client's session into an immutable
``AuthState`` and notifies listeners on every change. The status only enters
``loading`` during ``start()``; individual actions toggle ``is_loading``
for their own duration instead.
"""

from __future__ import annotations

import enum
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, TypeVar

import structlog

from luxicle.auth.events import AuthEvent
from luxicle.cache.query_cache import Subscription
from luxicle.errors import as_luxicle_error

if TYPE_CHECKING:
    from luxicle.auth.client import AuthClient
    from luxicle.auth.schemas import AuthResponse, AuthUser, Session
    from luxicle.errors import LuxicleError

T = TypeVar("T")

logger = structlog.get_logger()

_SESSION_EVENTS = frozenset({AuthEvent.SIGNED_IN, AuthEvent.TOKEN_REFRESHED, AuthEvent.USER_UPDATED})


class AuthStatus(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"
    ERROR = "error"


@dataclass(frozen=True)
class AuthState:
    status: AuthStatus = AuthStatus.UNINITIALIZED
    user: AuthUser | None = None
    session: Session | None = None
    is_loading: bool = False
    error: LuxicleError | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.status is AuthStatus.AUTHENTICATED and self.user is not None


StateListener = Callable[[AuthState], None]


class AuthSessionStore:
    def __init__(self, auth_client: AuthClient) -> None:
        self.auth_client = auth_client
        self._state = AuthState()
        self._listeners: list[StateListener] = []
        self._auth_subscription: Subscription | None = None

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def user(self) -> AuthUser | None:
        return self._state.user

    def _set(self, **changes: Any) -> None:  # noqa: ANN401
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:  # noqa: BLE001
                logger.exception("auth_state_listener_failed", status=self._state.status.value)

    def subscribe(self, listener: StateListener) -> Subscription:
        """Call ``listener`` with the new state after every change."""
        self._listeners.append(listener)

        def cancel() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Subscription(cancel)

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    async def start(self) -> AuthState:
        """Subscribe to auth events and load the initial session."""
        if self._auth_subscription is None:
            self._auth_subscription = self.auth_client.on_auth_state_change(self._on_auth_event)
        self._set(status=AuthStatus.LOADING, is_loading=True, error=None)
        try:
            session = await self.auth_client.get_session()
        except Exception as e:  # noqa: BLE001
            error = as_luxicle_error(e)
            logger.warning("auth_session_load_failed", error=str(error))
            self._set(status=AuthStatus.ERROR, user=None, session=None, is_loading=False, error=error)
            return self._state
        self._apply_session(session)
        return self._state

    def close(self) -> None:
        if self._auth_subscription is not None:
            self._auth_subscription.unsubscribe()
            self._auth_subscription = None
        self._listeners.clear()

    def _apply_session(self, session: Session | None) -> None:
        if session is None:
            self._set(status=AuthStatus.UNAUTHENTICATED, user=None, session=None, is_loading=False)
        else:
            self._set(status=AuthStatus.AUTHENTICATED, user=session.user, session=session, is_loading=False)

    def _on_auth_event(self, event: AuthEvent, session: Session | None) -> None:
        if event in _SESSION_EVENTS and session is not None:
            self._set(status=AuthStatus.AUTHENTICATED, user=session.user, session=session, error=None)
        elif event is AuthEvent.SIGNED_OUT:
            self._set(status=AuthStatus.UNAUTHENTICATED, user=None, session=None)

    # -----------------------------------------------------------------------
    # Actions
    # -----------------------------------------------------------------------

    async def _action(self, name: str, call: Callable[[], Awaitable[T]], *, clear_on_error: bool = False) -> T:
        self._set(is_loading=True, error=None)
        try:
            result = await call()
        except Exception as e:
            error = as_luxicle_error(e)
            logger.info("auth_action_failed", action=name, kind=error.kind.value, error=str(error))
            if clear_on_error:
                self._set(status=AuthStatus.UNAUTHENTICATED, user=None, session=None, is_loading=False, error=error)
            else:
                self._set(is_loading=False, error=error)
            raise
        self._set(is_loading=False)
        return result

    async def sign_in_with_password(self, email: str, password: str) -> AuthResponse:
        return await self._action(
            "sign_in_with_password",
            lambda: self.auth_client.sign_in_with_password(email, password),
            clear_on_error=True,
        )

    async def sign_up(self, email: str, password: str, username: str) -> AuthResponse:
        return await self._action("sign_up", lambda: self.auth_client.sign_up(email, password, username))

    async def sign_in_with_oauth(self, provider: str, redirect_to: str | None = None) -> str:
        async def authorize() -> str:
            return self.auth_client.sign_in_with_oauth(provider, redirect_to)

        return await self._action("sign_in_with_oauth", authorize, clear_on_error=True)

    async def sign_out(self) -> None:
        await self._action("sign_out", self.auth_client.sign_out)

    async def send_password_reset_email(self, email: str, redirect_to: str | None = None) -> None:
        await self._action(
            "send_password_reset_email",
            lambda: self.auth_client.reset_password_for_email(email, redirect_to),
        )
