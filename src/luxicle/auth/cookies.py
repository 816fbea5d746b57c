"""Session cookies set by the auth endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from luxicle.config import get_settings

if TYPE_CHECKING:
    from starlette.responses import Response

    from luxicle.auth.schemas import Session

ACCESS_COOKIE = "lux-access-token"
REFRESH_COOKIE = "lux-refresh-token"


def set_session_cookies(response: Response, session: Session) -> None:
    settings = get_settings()
    secure = settings.environment == "production"
    response.set_cookie(
        ACCESS_COOKIE,
        session.access_token,
        max_age=session.expires_in,
        httponly=True,
        samesite="lax",
        secure=secure,
        path="/",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        session.refresh_token,
        max_age=settings.jwt_refresh_token_expire_days * 86400,
        httponly=True,
        samesite="lax",
        secure=secure,
        path="/",
    )


def clear_session_cookies(response: Response) -> None:
    response.delete_cookie(ACCESS_COOKIE, path="/", httponly=True, samesite="lax")
    response.delete_cookie(REFRESH_COOKIE, path="/", httponly=True, samesite="lax")
