"""
Authentication business logic.

Handles sign-up, password sign-in with account lockout, JWT sessions with
refresh-token rotation, single-use email tokens, and OAuth identities.
Functions flush; callers commit.
"""

from __future__ import annotations

import hashlib
import re
import secrets
import time
import uuid
from datetime import timedelta
from typing import TYPE_CHECKING
from urllib.parse import quote

import jwt
import structlog
from email_validator import EmailNotValidError, validate_email
from sqlalchemy import func, select, update

from luxicle.auth.jwt import create_access_token, create_refresh_token, verify_token
from luxicle.auth.password import (
    PasswordStrengthError,
    check_needs_rehash,
    hash_password,
    validate_password_strength,
    verify_password,
)
from luxicle.auth.schemas import AuthResponse, AuthUser, Session
from luxicle.config import get_settings
from luxicle.db.base import new_id, utcnow
from luxicle.db.models import AuthToken, Credential, OAuthIdentity, RefreshToken, User
from luxicle.db.writes import write_errors
from luxicle.errors import (
    AccountLockedError,
    AuthenticationError,
    DuplicateError,
    InvalidInputError,
    NotFoundError,
)
from luxicle.profiles.service import create_user_profile

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from sqlalchemy.ext.asyncio import AsyncSession

    from luxicle.auth.oauth import OAuthProfile
    from luxicle.email.service import EmailService

logger = structlog.get_logger()

TOKEN_SIGNUP = "signup"
TOKEN_RECOVERY = "recovery"

INVALID_CREDENTIALS = "Invalid login credentials"


def hash_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode()).hexdigest()


# ---------------------------------------------------------------------------
# User queries
# ---------------------------------------------------------------------------


async def get_user_by_id(db: AsyncSession, user_id: str) -> User | None:
    """Fetch a user by ID."""
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    """Fetch a user by email (case-insensitive)."""
    result = await db.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
    return result.scalar_one_or_none()


async def get_credential(db: AsyncSession, user_id: str) -> Credential | None:
    result = await db.execute(select(Credential).where(Credential.user_id == user_id))
    return result.scalar_one_or_none()


def to_auth_user(user: User, credential: Credential | None = None) -> AuthUser:
    return AuthUser(
        id=user.id,
        email=user.email,
        username=user.username,
        email_confirmed_at=credential.email_confirmed_at if credential else None,
        last_sign_in_at=credential.last_sign_in_at if credential else None,
        created_at=user.created_at,
    )


def normalize_email(email: str) -> str:
    """Validate the address syntax and return it lowercased."""
    try:
        validated = validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError as e:
        msg = "Invalid email format"
        raise InvalidInputError(msg) from e
    return validated.normalized.lower()


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


async def register_user(db: AsyncSession, email: str | None, password: str | None, username: str | None) -> User:
    """
    Create the profile and credential rows for a new account.

    Raises:
        InvalidInputError: If a field is missing or breaks the sign-up rules.
        DuplicateError: If the email or username is already registered.
    """
    settings = get_settings()
    if not email or not password or not username:
        msg = "Email, password, and username are required"
        raise InvalidInputError(msg)
    try:
        validate_password_strength(password)
    except PasswordStrengthError as e:
        raise InvalidInputError(str(e)) from e
    if len(username.strip()) < settings.username_min_length:
        msg = f"Username must be at least {settings.username_min_length} characters long"
        raise InvalidInputError(msg)
    email = normalize_email(email)

    with write_errors("register_user"):
        if await get_user_by_email(db, email) is not None:
            msg = "This email is already registered."
            raise DuplicateError(msg)

    user_id = new_id()
    await create_user_profile(db, user_id, email, username)
    with write_errors("register_user"):
        db.add(Credential(user_id=user_id, password_hash=hash_password(password), created_at=utcnow()))
        await db.flush()
        user = await get_user_by_id(db, user_id)
    logger.info("user_registered", user_id=user_id, method="password")
    return user  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Password sign-in
# ---------------------------------------------------------------------------


async def authenticate_user(
    db: AsyncSession,
    redis: Redis | None,
    email: str | None,
    password: str | None,
) -> tuple[User, Credential]:
    """
    Check an email/password pair.

    Lockout counters live in Redis; without Redis the lockout is skipped.

    Raises:
        InvalidInputError: If either field is missing.
        AccountLockedError: If too many attempts failed recently.
        AuthenticationError: If the credentials are wrong.
    """
    if not email or not password:
        msg = "Email and password are required"
        raise InvalidInputError(msg)

    user = await get_user_by_email(db, email)
    if user is None:
        raise AuthenticationError(INVALID_CREDENTIALS)

    if redis is not None and await check_account_lockout(redis, user.id):
        msg = "Account temporarily locked. Try again later."
        raise AccountLockedError(msg)

    credential = await get_credential(db, user.id)
    if credential is None or not verify_password(password, credential.password_hash or ""):
        if redis is not None:
            await increment_failed_login(redis, user.id)
        raise AuthenticationError(INVALID_CREDENTIALS)

    if get_settings().auth_require_email_confirmation and credential.email_confirmed_at is None:
        msg = "Email not confirmed"
        raise AuthenticationError(msg)

    if redis is not None:
        await clear_failed_login(redis, user.id)

    credential.last_sign_in_at = utcnow()
    if credential.password_hash and check_needs_rehash(credential.password_hash):
        credential.password_hash = hash_password(password)
        logger.info("password_rehashed", user_id=user.id)
    await db.flush()
    return user, credential


# ---------------------------------------------------------------------------
# Account lockout
# ---------------------------------------------------------------------------


async def check_account_lockout(redis: Redis, user_id: str) -> bool:
    """Check if the account is locked due to too many failed sign-in attempts."""
    count_str = await redis.get(f"login_attempts:{user_id}")
    if count_str is None:
        return False
    return int(count_str) >= get_settings().account_lockout_threshold


async def increment_failed_login(redis: Redis, user_id: str) -> int:
    """Increment failed sign-in counter. Returns the new count."""
    key = f"login_attempts:{user_id}"
    count = await redis.incr(key)
    if count == 1:
        await redis.expire(key, get_settings().account_lockout_duration_minutes * 60)
    return int(count)


async def clear_failed_login(redis: Redis, user_id: str) -> None:
    await redis.delete(f"login_attempts:{user_id}")


# ---------------------------------------------------------------------------
# Sessions and refresh tokens
# ---------------------------------------------------------------------------


async def get_refresh_token(db: AsyncSession, token_id: str) -> RefreshToken | None:
    """Look up a refresh token by its JTI."""
    result = await db.execute(select(RefreshToken).where(RefreshToken.id == token_id))
    return result.scalar_one_or_none()


async def _mint_session(
    db: AsyncSession,
    user: User,
    credential: Credential | None,
    *,
    replacing: RefreshToken | None = None,
) -> Session:
    """Create a token pair and store the refresh token hash."""
    settings = get_settings()
    token_id = str(uuid.uuid4())
    access_token = create_access_token(user.id, user.email)
    refresh_token = create_refresh_token(user.id, user.email, token_id=token_id)

    now = utcnow()
    if replacing is not None:
        replacing.is_revoked = True
        replacing.revoked_at = now
        replacing.replaced_by = token_id
    db.add(
        RefreshToken(
            id=token_id,
            user_id=user.id,
            token_hash=hash_token(refresh_token),
            issued_at=now,
            expires_at=now + timedelta(days=settings.jwt_refresh_token_expire_days),
        )
    )
    await db.flush()

    expires_in = settings.jwt_access_token_expire_minutes * 60
    return Session(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=expires_in,
        expires_at=int(time.time()) + expires_in,
        user=to_auth_user(user, credential),
    )


async def issue_session(db: AsyncSession, user: User, credential: Credential | None = None) -> Session:
    """Start a new session for a signed-in user."""
    if credential is None:
        credential = await get_credential(db, user.id)
    return await _mint_session(db, user, credential)


async def refresh_session(db: AsyncSession, raw_refresh_token: str | None) -> Session:
    """
    Rotate a refresh token into a new session.

    Presenting a token that was already rotated or revoked revokes every
    session of that user.

    Raises:
        AuthenticationError: If the token is invalid, unknown, or reused.
    """
    if not raw_refresh_token:
        msg = "Refresh token is required"
        raise AuthenticationError(msg)
    try:
        payload = verify_token(raw_refresh_token, expected_type="refresh")
    except jwt.InvalidTokenError as e:
        raise AuthenticationError(str(e)) from e

    jti = payload.get("jti")
    stored = await get_refresh_token(db, jti) if jti else None
    if stored is None or stored.token_hash != hash_token(raw_refresh_token):
        msg = "Refresh token not found"
        raise AuthenticationError(msg)
    if stored.is_revoked:
        revoked = await revoke_all_tokens(db, stored.user_id)
        logger.warning("refresh_token_reused", user_id=stored.user_id, revoked=revoked)
        msg = "Refresh token has been revoked"
        raise AuthenticationError(msg)

    user = await get_user_by_id(db, stored.user_id)
    if user is None:
        msg = "User not found"
        raise AuthenticationError(msg)
    session = await _mint_session(db, user, await get_credential(db, user.id), replacing=stored)
    logger.info("session_refreshed", user_id=user.id)
    return session


async def revoke_refresh_token(db: AsyncSession, token_id: str) -> bool:
    """Revoke a specific refresh token. Returns True if found."""
    token = await get_refresh_token(db, token_id)
    if token is None:
        return False
    token.is_revoked = True
    token.revoked_at = utcnow()
    await db.flush()
    return True


async def revoke_session(db: AsyncSession, raw_refresh_token: str | None) -> bool:
    """Revoke the session a refresh token belongs to. Invalid tokens are ignored."""
    if not raw_refresh_token:
        return False
    try:
        payload = verify_token(raw_refresh_token, expected_type="refresh")
    except jwt.InvalidTokenError:
        return False
    jti = payload.get("jti")
    return bool(jti) and await revoke_refresh_token(db, jti)


async def revoke_all_tokens(db: AsyncSession, user_id: str) -> int:
    """Revoke all refresh tokens for a user. Returns count revoked."""
    stmt = (
        update(RefreshToken)
        .where(RefreshToken.user_id == user_id)
        .where(RefreshToken.is_revoked == False)  # noqa: E712
        .values(is_revoked=True, revoked_at=utcnow())
    )
    result = await db.execute(stmt.execution_options(synchronize_session=False))
    await db.flush()
    return result.rowcount  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Single-use email tokens
# ---------------------------------------------------------------------------


async def create_auth_token(db: AsyncSession, user_id: str, token_type: str) -> str:
    """
    Create a signup-confirmation or recovery token.

    Returns the raw token to send to the user; only its hash is stored.
    Earlier unused tokens of the same type stop working.
    """
    settings = get_settings()
    if token_type == TOKEN_SIGNUP:
        ttl = timedelta(hours=settings.email_verification_token_ttl_hours)
    elif token_type == TOKEN_RECOVERY:
        ttl = timedelta(minutes=settings.password_reset_token_ttl_minutes)
    else:
        msg = f"Unknown token type: {token_type}"
        raise InvalidInputError(msg)

    now = utcnow()
    await db.execute(
        update(AuthToken)
        .where(AuthToken.user_id == user_id)
        .where(AuthToken.token_type == token_type)
        .where(AuthToken.used_at == None)  # noqa: E711
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    )
    raw_token = secrets.token_urlsafe(48)
    db.add(
        AuthToken(
            user_id=user_id,
            token_type=token_type,
            token_hash=hash_token(raw_token),
            created_at=now,
            expires_at=now + ttl,
        )
    )
    await db.flush()
    return raw_token


async def verify_auth_token(db: AsyncSession, raw_token: str, token_type: str, *, consume: bool = True) -> str:
    """
    Check a single-use token and return its user id.

    Raises:
        InvalidInputError: If the token is unknown, of another type, used, or expired.
    """
    result = await db.execute(select(AuthToken).where(AuthToken.token_hash == hash_token(raw_token or "")))
    token = result.scalar_one_or_none()
    if token is None or token.token_type != token_type:
        msg = "Token is invalid or has expired"
        raise InvalidInputError(msg)
    if token.used_at is not None:
        msg = "Token has already been used"
        raise InvalidInputError(msg)
    if token.expires_at < utcnow():
        msg = "Token has expired"
        raise InvalidInputError(msg)
    if consume:
        token.used_at = utcnow()
        await db.flush()
    return token.user_id


async def confirm_email(db: AsyncSession, raw_token: str) -> str:
    """Consume a signup token and mark the address confirmed. Returns the user id."""
    user_id = await verify_auth_token(db, raw_token, TOKEN_SIGNUP)
    await db.execute(
        update(Credential)
        .where(Credential.user_id == user_id)
        .values(email_confirmed_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    logger.info("email_confirmed", user_id=user_id)
    return user_id


async def reset_password(db: AsyncSession, raw_token: str, new_password: str) -> str:
    """
    Set a new password from a recovery token and end every existing session.

    Raises:
        InvalidInputError: If the password is too weak or the token is not valid.
    """
    try:
        validate_password_strength(new_password)
    except PasswordStrengthError as e:
        raise InvalidInputError(str(e)) from e
    user_id = await verify_auth_token(db, raw_token, TOKEN_RECOVERY)
    credential = await get_credential(db, user_id)
    if credential is None:
        credential = Credential(user_id=user_id, created_at=utcnow())
        db.add(credential)
    credential.password_hash = hash_password(new_password)
    await revoke_all_tokens(db, user_id)
    logger.info("password_reset", user_id=user_id)
    return user_id


# ---------------------------------------------------------------------------
# Flows shared by the HTTP routes and the auth client
# ---------------------------------------------------------------------------


def confirmation_url(raw_token: str) -> str:
    return f"{get_settings().site_url}/auth/confirm?token_hash={raw_token}&type={TOKEN_SIGNUP}"


def recovery_url(raw_token: str, redirect_to: str | None = None) -> str:
    next_path = quote(redirect_to or "/auth/reset-password", safe="/")
    return f"{get_settings().site_url}/auth/confirm?token_hash={raw_token}&type={TOKEN_RECOVERY}&next={next_path}"


async def sign_up(
    db: AsyncSession,
    email: str | None,
    password: str | None,
    username: str | None,
    email_service: EmailService | None = None,
) -> AuthResponse:
    """
    Register an account.

    With email confirmation required the response carries the user and a
    message; otherwise it also carries a live session.
    """
    user = await register_user(db, email, password, username)
    settings = get_settings()

    if email_service is not None:
        raw_token = await create_auth_token(db, user.id, TOKEN_SIGNUP)
        sent = await email_service.send_template(
            to=user.email,
            template_name="confirm_signup",
            context={
                "username": user.username,
                "confirm_url": confirmation_url(raw_token),
                "expires_hours": settings.email_verification_token_ttl_hours,
            },
        )
        if not sent:
            logger.warning("confirmation_email_not_sent", user_id=user.id)

    credential = await get_credential(db, user.id)
    if settings.auth_require_email_confirmation:
        return AuthResponse(
            user=to_auth_user(user, credential),
            message="Registration successful. Please check your email to confirm your account.",
        )
    session = await issue_session(db, user, credential)
    return AuthResponse(user=session.user, session=session, message="Registration successful and user logged in.")


async def sign_in(db: AsyncSession, redis: Redis | None, email: str | None, password: str | None) -> AuthResponse:
    user, credential = await authenticate_user(db, redis, email, password)
    session = await issue_session(db, user, credential)
    logger.info("user_signed_in", user_id=user.id, method="password")
    return AuthResponse(user=session.user, session=session, message="Login successful")


async def send_password_reset(
    db: AsyncSession,
    email: str | None,
    email_service: EmailService,
    redirect_to: str | None = None,
) -> bool:
    """
    Email a recovery link if the address belongs to an account.

    Returns whether a link was sent. Callers should not reveal the result.
    """
    if not email:
        msg = "Email is required"
        raise InvalidInputError(msg)
    user = await get_user_by_email(db, email)
    if user is None:
        logger.info("password_reset_unknown_email")
        return False
    raw_token = await create_auth_token(db, user.id, TOKEN_RECOVERY)
    return await email_service.send_template(
        to=user.email,
        template_name="password_reset",
        context={
            "reset_url": recovery_url(raw_token, redirect_to),
            "expires_minutes": get_settings().password_reset_token_ttl_minutes,
        },
    )


# ---------------------------------------------------------------------------
# OAuth identities
# ---------------------------------------------------------------------------

_USERNAME_STRIP = re.compile(r"[^a-z0-9_]")


async def _available_username(db: AsyncSession, hint: str | None) -> str:
    base = _USERNAME_STRIP.sub("", (hint or "").lower())[:24]
    if len(base) < 3:
        base = f"user{base}"
    candidate = base
    while (await db.execute(select(User.id).where(User.username == candidate))).scalar_one_or_none() is not None:
        candidate = f"{base}_{secrets.token_hex(2)}"
    return candidate


async def get_or_create_oauth_user(db: AsyncSession, profile: OAuthProfile) -> tuple[User, bool]:
    """
    Resolve the local account for a provider identity.

    Links to an existing account with the same verified email, or creates a
    new one. Returns ``(user, created)``.

    Raises:
        InvalidInputError: If a new account is needed but the provider gave no verified email.
    """
    with write_errors("get_or_create_oauth_user"):
        result = await db.execute(
            select(OAuthIdentity)
            .where(OAuthIdentity.provider == profile.provider)
            .where(OAuthIdentity.provider_user_id == profile.provider_user_id)
        )
        identity = result.scalar_one_or_none()
        if identity is not None:
            user = await get_user_by_id(db, identity.user_id)
            if user is None:
                msg = "Linked account no longer exists"
                raise NotFoundError(msg)
            return user, False

        user = await get_user_by_email(db, profile.email) if profile.email else None

    created = user is None
    if user is None:
        if not profile.email:
            msg = "OAuth provider did not return a verified email address"
            raise InvalidInputError(msg)
        user_id = new_id()
        username = await _available_username(db, profile.username or profile.email.split("@")[0])
        await create_user_profile(db, user_id, profile.email, username)

    with write_errors("get_or_create_oauth_user"):
        if created:
            now = utcnow()
            db.add(Credential(user_id=user_id, email_confirmed_at=now, created_at=now))
            await db.flush()
            user = await get_user_by_id(db, user_id)
        db.add(
            OAuthIdentity(
                user_id=user.id,  # type: ignore[union-attr]
                provider=profile.provider,
                provider_user_id=profile.provider_user_id,
                created_at=utcnow(),
            )
        )
        await db.flush()
    logger.info("oauth_identity_linked", user_id=user.id, provider=profile.provider, created=created)  # type: ignore[union-attr]
    return user, created  # type: ignore[return-value]


async def oauth_sign_in(db: AsyncSession, profile: OAuthProfile) -> AuthResponse:
    user, _created = await get_or_create_oauth_user(db, profile)
    credential = await get_credential(db, user.id)
    if credential is not None:
        credential.last_sign_in_at = utcnow()
    session = await issue_session(db, user, credential)
    logger.info("user_signed_in", user_id=user.id, method=profile.provider)
    return AuthResponse(user=session.user, session=session)
