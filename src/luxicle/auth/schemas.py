"""Request/response schemas for the auth endpoints and the auth client."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------
# Fields are optional so missing values reach the handler and get the
# endpoint's own error message instead of a generic validation error.


class LoginRequest(BaseModel):
    email: str | None = None
    password: str | None = None


class RegisterRequest(BaseModel):
    email: str | None = None
    password: str | None = None
    username: str | None = None


class RefreshRequest(BaseModel):
    refresh_token: str | None = None


class LogoutRequest(BaseModel):
    refresh_token: str | None = None


class ForgotPasswordRequest(BaseModel):
    email: str | None = None
    redirect_to: str | None = None


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class AuthUser(BaseModel):
    """The signed-in identity as the auth layer sees it."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    username: str | None = None
    email_confirmed_at: datetime | None = None
    last_sign_in_at: datetime | None = None
    created_at: datetime | None = None


class Session(BaseModel):
    """An access/refresh token pair plus the user it belongs to."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    expires_at: int
    user: AuthUser


class AuthResponse(BaseModel):
    user: AuthUser | None = None
    session: Session | None = None
    message: str | None = None
