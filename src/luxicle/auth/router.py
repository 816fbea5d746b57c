"""Authentication routes: /api/auth/* JSON endpoints and the /auth/* browser redirects."""

from __future__ import annotations

from urllib.parse import quote, quote_plus

import structlog
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import RedirectResponse
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from luxicle.auth.cookies import REFRESH_COOKIE, clear_session_cookies, set_session_cookies
from luxicle.auth.dependencies import get_current_user, get_email_service_dep, get_oauth_client
from luxicle.auth.oauth import OAuthClient, callback_url
from luxicle.auth.schemas import (
    AuthResponse,
    AuthUser,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    Session,
)
from luxicle.auth.service import (
    TOKEN_RECOVERY,
    TOKEN_SIGNUP,
    confirm_email,
    oauth_sign_in,
    refresh_session,
    reset_password,
    revoke_session,
    send_password_reset,
    sign_in,
    sign_up,
    verify_auth_token,
)
from luxicle.config import get_settings
from luxicle.database import get_session
from luxicle.dependencies import get_redis_dep
from luxicle.email.service import EmailService
from luxicle.errors import AuthenticationError, LuxicleError

logger = structlog.get_logger()

router = APIRouter(prefix="/api/auth", tags=["Authentication"])
redirect_router = APIRouter(prefix="/auth", tags=["Authentication"])

OAUTH_FAILED = "/auth/login?error=OAuth+authentication+failed"
EMAIL_CONFIRMED = "/auth/login?message=Email+confirmed+successfully.+Please+log+in."
INVALID_LINK = "/auth/login?error=Invalid+confirmation+link"


def safe_next(next_path: str | None, default: str = "/") -> str:
    """Only same-site relative paths are allowed as redirect targets."""
    if not next_path or not next_path.startswith("/") or next_path.startswith("//") or "\\" in next_path:
        return default
    return next_path


def _absolute(request: Request, path: str) -> str:
    return str(request.base_url).rstrip("/") + path


# ---------------------------------------------------------------------------
# Password auth
# ---------------------------------------------------------------------------


@router.post("/login", response_model=AuthResponse, response_model_exclude_none=True)
async def login(
    body: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_session),
    redis: Redis | None = Depends(get_redis_dep),
) -> AuthResponse:
    """Sign in with email and password. Sets the session cookies."""
    result = await sign_in(db, redis, body.email, body.password)
    await db.commit()
    if result.session is not None:
        set_session_cookies(response, result.session)
    return result


@router.post("/register", response_model=AuthResponse, response_model_exclude_none=True, status_code=201)
async def register(
    body: RegisterRequest,
    response: Response,
    db: AsyncSession = Depends(get_session),
    email_service: EmailService = Depends(get_email_service_dep),
) -> AuthResponse:
    """Create an account. Includes a session unless email confirmation is required."""
    result = await sign_up(db, body.email, body.password, body.username, email_service)
    await db.commit()
    if result.session is not None:
        set_session_cookies(response, result.session)
    return result


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    body: LogoutRequest | None = None,
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    """Revoke the refresh token from the body or cookie and clear the cookies."""
    token = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    if await revoke_session(db, token):
        await db.commit()
    clear_session_cookies(response)
    return {"message": "Logout successful"}


@router.post("/refresh", response_model=Session)
async def refresh(
    request: Request,
    response: Response,
    body: RefreshRequest | None = None,
    db: AsyncSession = Depends(get_session),
) -> Session:
    """Rotate the refresh token and issue a new session."""
    token = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    try:
        session = await refresh_session(db, token)
    except AuthenticationError:
        # Reuse detection may have revoked the user's tokens.
        await db.commit()
        raise
    await db.commit()
    set_session_cookies(response, session)
    return session


@router.get("/user", response_model=AuthUser)
async def current_user(user: AuthUser = Depends(get_current_user)) -> AuthUser:
    return user


@router.post("/forgot-password")
async def forgot_password(
    body: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_session),
    email_service: EmailService = Depends(get_email_service_dep),
) -> dict[str, str]:
    """Request a recovery email. The response never reveals whether the account exists."""
    await send_password_reset(db, body.email, email_service, safe_next(body.redirect_to, "/auth/reset-password"))
    await db.commit()
    return {"message": "If that email exists, a reset link has been sent."}


@router.post("/reset-password")
async def reset_password_endpoint(
    body: ResetPasswordRequest,
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    """Set a new password with a recovery token. Ends every existing session."""
    await reset_password(db, body.token, body.new_password)
    await db.commit()
    return {"message": "Password has been reset"}


# ---------------------------------------------------------------------------
# Browser redirects
# ---------------------------------------------------------------------------


@redirect_router.get("/callback")
async def oauth_callback(
    request: Request,
    provider: str = "github",
    code: str | None = None,
    next: str | None = None,  # noqa: A002
    error: str | None = None,
    db: AsyncSession = Depends(get_session),
    oauth: OAuthClient = Depends(get_oauth_client),
) -> RedirectResponse:
    """Exchange an OAuth code, set the session cookies, and send the browser on."""
    next_path = safe_next(next)
    if error:
        logger.info("oauth_callback_denied", provider=provider, error=error)
        return RedirectResponse(_absolute(request, OAUTH_FAILED))
    if not code:
        return RedirectResponse(_absolute(request, next_path))

    try:
        redirect_uri = callback_url(get_settings().site_url, provider, next)
        profile = await oauth.exchange_code(provider, code, redirect_uri)
        result = await oauth_sign_in(db, profile)
        await db.commit()
    except LuxicleError as e:
        logger.warning("oauth_callback_failed", provider=provider, kind=e.kind.value, error=e.message)
        return RedirectResponse(_absolute(request, OAUTH_FAILED))

    redirect = RedirectResponse(_absolute(request, next_path))
    if result.session is not None:
        set_session_cookies(redirect, result.session)
    return redirect


@redirect_router.get("/confirm")
async def confirm(
    request: Request,
    token_hash: str | None = None,
    type: str | None = None,  # noqa: A002
    next: str | None = None,  # noqa: A002
    db: AsyncSession = Depends(get_session),
) -> RedirectResponse:
    """Handle the links sent by email: signup confirmation and password recovery."""
    if not token_hash or not type:
        return RedirectResponse(_absolute(request, INVALID_LINK))

    try:
        if type == TOKEN_SIGNUP:
            await confirm_email(db, token_hash)
            await db.commit()
            return RedirectResponse(_absolute(request, EMAIL_CONFIRMED))
        if type == TOKEN_RECOVERY:
            await verify_auth_token(db, token_hash, TOKEN_RECOVERY, consume=False)
            target = safe_next(next, "/auth/reset-password")
            separator = "&" if "?" in target else "?"
            return RedirectResponse(_absolute(request, f"{target}{separator}token_hash={quote(token_hash)}"))
    except LuxicleError as e:
        logger.info("email_link_rejected", link_type=type, error=e.message)
        return RedirectResponse(_absolute(request, f"/auth/login?error={quote_plus(e.message)}"))

    return RedirectResponse(_absolute(request, INVALID_LINK))
