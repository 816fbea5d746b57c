"""Auth state change notifications."""

from __future__ import annotations

import enum
from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog

from luxicle.cache.query_cache import Subscription

if TYPE_CHECKING:
    from luxicle.auth.schemas import Session

logger = structlog.get_logger()


class AuthEvent(str, enum.Enum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"


AuthListener = Callable[[AuthEvent, "Session | None"], None]


class AuthEventStream:
    """Fans ``(event, session)`` pairs out to every listener, in subscription order."""

    def __init__(self) -> None:
        self._listeners: list[AuthListener] = []

    def subscribe(self, listener: AuthListener) -> Subscription:
        self._listeners.append(listener)

        def cancel() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Subscription(cancel)

    def emit(self, event: AuthEvent, session: Session | None) -> None:
        logger.debug("auth_event", auth_event=event.value, user_id=session.user.id if session else None)
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception:  # noqa: BLE001
                logger.exception("auth_listener_failed", auth_event=event.value)

    def __len__(self) -> int:
        return len(self._listeners)
