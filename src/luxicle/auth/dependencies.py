"""FastAPI authentication dependencies."""

from __future__ import annotations

from collections.abc import AsyncGenerator

import jwt
from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from luxicle.auth.cookies import ACCESS_COOKIE
from luxicle.auth.jwt import verify_token
from luxicle.auth.oauth import OAuthClient
from luxicle.auth.schemas import AuthUser
from luxicle.auth.service import get_credential, get_user_by_id, to_auth_user
from luxicle.database import get_session
from luxicle.dependencies import get_redis_dep
from luxicle.email.service import EmailService, get_email_service
from luxicle.errors import AuthenticationError

_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> AuthUser:
    """
    Resolve the caller from a bearer token or the access-token cookie.

    Raises AuthenticationError (401) when neither is present or valid.
    """
    token = credentials.credentials if credentials else request.cookies.get(ACCESS_COOKIE)
    if not token:
        msg = "Not authenticated"
        raise AuthenticationError(msg)
    try:
        payload = verify_token(token, expected_type="access")
    except jwt.InvalidTokenError as e:
        raise AuthenticationError(str(e)) from e

    user = await get_user_by_id(db, payload["sub"])
    if user is None:
        msg = "User not found"
        raise AuthenticationError(msg)
    return to_auth_user(user, await get_credential(db, user.id))


async def get_email_service_dep(
    redis: Redis | None = Depends(get_redis_dep),
) -> AsyncGenerator[EmailService, None]:
    yield get_email_service(redis)


def get_oauth_client() -> OAuthClient:
    return OAuthClient()
