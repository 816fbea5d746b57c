"""Tests for the /api/auth endpoints and the /auth redirects."""

from __future__ import annotations

import re
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi import FastAPI
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from luxicle.auth.cookies import ACCESS_COOKIE
from luxicle.auth.dependencies import get_email_service_dep
from luxicle.auth.service import TOKEN_RECOVERY, TOKEN_SIGNUP, create_auth_token, get_credential
from luxicle.config import get_settings
from luxicle.db.models import User
from luxicle.email.service import EmailService

PASSWORD = "CorrectHorse1"


@pytest.fixture
def mailer(app: FastAPI, outbox, email_service: EmailService):
    """Route the app's emails into the outbox."""

    async def _service():
        yield email_service

    app.dependency_overrides[get_email_service_dep] = _service
    return outbox


async def _register(client: AsyncClient, username: str = "alice", password: str = PASSWORD) -> dict:
    response = await client.post(
        "/api/auth/register",
        json={"email": f"{username}@luxicle.io", "password": password, "username": username},
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestRegister:
    async def test_register_returns_session(self, client: AsyncClient, mailer):
        data = await _register(client)
        assert data["user"]["email"] == "alice@luxicle.io"
        assert data["user"]["username"] == "alice"
        assert data["session"]["token_type"] == "bearer"
        assert data["message"] == "Registration successful and user logged in."
        assert len(mailer.sent) == 1
        assert mailer.sent[0][0] == "alice@luxicle.io"

    async def test_missing_fields(self, client: AsyncClient):
        response = await client.post("/api/auth/register", json={"email": "alice@luxicle.io"})
        assert response.status_code == 400
        assert response.json() == {"error": "Email, password, and username are required"}

    async def test_short_password(self, client: AsyncClient):
        response = await client.post(
            "/api/auth/register", json={"email": "alice@luxicle.io", "password": "short", "username": "alice"}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Password must be at least 8 characters long"

    async def test_short_username(self, client: AsyncClient):
        response = await client.post(
            "/api/auth/register", json={"email": "alice@luxicle.io", "password": PASSWORD, "username": "al"}
        )
        assert response.status_code == 400
        assert "Username must be at least 3 characters" in response.json()["error"]

    async def test_invalid_email(self, client: AsyncClient):
        response = await client.post(
            "/api/auth/register", json={"email": "not-an-email", "password": PASSWORD, "username": "alice"}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid email format"

    async def test_duplicate_email(self, client: AsyncClient, mailer):
        await _register(client)
        response = await client.post(
            "/api/auth/register", json={"email": "ALICE@luxicle.io", "password": PASSWORD, "username": "alice2"}
        )
        assert response.status_code == 409
        assert response.json()["error"] == "This email is already registered."

    async def test_confirmation_required_withholds_session(
        self, client: AsyncClient, mailer, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.setenv("LUX_AUTH_REQUIRE_EMAIL_CONFIRMATION", "true")
        get_settings.cache_clear()
        data = await _register(client)
        assert "session" not in data
        assert "check your email" in data["message"]

        response = await client.post("/api/auth/login", json={"email": "alice@luxicle.io", "password": PASSWORD})
        assert response.status_code == 401
        assert response.json()["error"] == "Email not confirmed"

        link = re.search(r"https?://\S+", mailer.sent[0][2]).group(0)
        query = parse_qs(urlparse(link).query)
        confirm = await client.get(
            "/auth/confirm", params={"token_hash": query["token_hash"][0], "type": query["type"][0]}
        )
        assert confirm.status_code == 307
        assert confirm.headers["location"].endswith("/auth/login?message=Email+confirmed+successfully.+Please+log+in.")

        response = await client.post("/api/auth/login", json={"email": "alice@luxicle.io", "password": PASSWORD})
        assert response.status_code == 200


class TestLogin:
    async def test_login_success_sets_cookies(self, client: AsyncClient, alice: User):
        response = await client.post("/api/auth/login", json={"email": alice.email, "password": PASSWORD})
        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Login successful"
        assert data["session"]["access_token"]
        assert data["session"]["user"]["id"] == alice.id
        assert ACCESS_COOKIE in response.cookies

    async def test_login_is_case_insensitive_on_email(self, client: AsyncClient, alice: User):
        response = await client.post("/api/auth/login", json={"email": "Alice@Luxicle.io", "password": PASSWORD})
        assert response.status_code == 200

    async def test_wrong_password(self, client: AsyncClient, alice: User):
        response = await client.post("/api/auth/login", json={"email": alice.email, "password": "WrongHorse1"})
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid login credentials"}

    async def test_unknown_email(self, client: AsyncClient):
        response = await client.post("/api/auth/login", json={"email": "nobody@luxicle.io", "password": PASSWORD})
        assert response.status_code == 401

    async def test_missing_fields(self, client: AsyncClient):
        response = await client.post("/api/auth/login", json={"email": "alice@luxicle.io"})
        assert response.status_code == 400
        assert response.json() == {"error": "Email and password are required"}

    async def test_malformed_body(self, client: AsyncClient):
        response = await client.post("/api/auth/login", json=["not", "an", "object"])
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request body"


class TestSessionEndpoints:
    async def _login(self, client: AsyncClient, user: User) -> dict:
        response = await client.post("/api/auth/login", json={"email": user.email, "password": PASSWORD})
        return response.json()["session"]

    async def test_current_user_with_bearer(self, client: AsyncClient, alice: User):
        session = await self._login(client, alice)
        client.cookies.clear()
        response = await client.get(
            "/api/auth/user", headers={"Authorization": f"Bearer {session['access_token']}"}
        )
        assert response.status_code == 200
        assert response.json()["username"] == "alice"

    async def test_current_user_requires_auth(self, client: AsyncClient):
        response = await client.get("/api/auth/user")
        assert response.status_code == 401
        assert response.json() == {"error": "Not authenticated"}

    async def test_refresh_rotates(self, client: AsyncClient, alice: User):
        session = await self._login(client, alice)
        response = await client.post("/api/auth/refresh", json={"refresh_token": session["refresh_token"]})
        assert response.status_code == 200
        assert response.json()["refresh_token"] != session["refresh_token"]

    async def test_refresh_reuse_revokes_every_session(self, client: AsyncClient, alice: User):
        session = await self._login(client, alice)
        rotated = (await client.post("/api/auth/refresh", json={"refresh_token": session["refresh_token"]})).json()

        reused = await client.post("/api/auth/refresh", json={"refresh_token": session["refresh_token"]})
        assert reused.status_code == 401
        assert reused.json()["error"] == "Refresh token has been revoked"

        after = await client.post("/api/auth/refresh", json={"refresh_token": rotated["refresh_token"]})
        assert after.status_code == 401

    async def test_refresh_with_garbage(self, client: AsyncClient):
        response = await client.post("/api/auth/refresh", json={"refresh_token": "garbage"})
        assert response.status_code == 401

    async def test_logout_revokes_refresh_token(self, client: AsyncClient, alice: User):
        session = await self._login(client, alice)
        response = await client.post("/api/auth/logout", json={"refresh_token": session["refresh_token"]})
        assert response.status_code == 200
        assert response.json() == {"message": "Logout successful"}

        again = await client.post("/api/auth/refresh", json={"refresh_token": session["refresh_token"]})
        assert again.status_code == 401

    async def test_logout_without_session_is_ok(self, client: AsyncClient):
        response = await client.post("/api/auth/logout")
        assert response.status_code == 200


class TestPasswordRecovery:
    async def test_forgot_password_does_not_leak(self, client: AsyncClient, alice: User, mailer):
        known = await client.post("/api/auth/forgot-password", json={"email": alice.email})
        unknown = await client.post("/api/auth/forgot-password", json={"email": "nobody@luxicle.io"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()
        assert [to for to, _, _ in mailer.sent] == [alice.email]
        assert "type=recovery" in mailer.sent[0][2]

    async def test_reset_password(self, client: AsyncClient, db_session: AsyncSession, alice: User):
        raw = await create_auth_token(db_session, alice.id, TOKEN_RECOVERY)
        await db_session.commit()

        response = await client.post("/api/auth/reset-password", json={"token": raw, "new_password": "NewHorse12"})
        assert response.status_code == 200

        old = await client.post("/api/auth/login", json={"email": alice.email, "password": PASSWORD})
        assert old.status_code == 401
        new = await client.post("/api/auth/login", json={"email": alice.email, "password": "NewHorse12"})
        assert new.status_code == 200

        reused = await client.post("/api/auth/reset-password", json={"token": raw, "new_password": "OtherHorse1"})
        assert reused.status_code == 400
        assert reused.json()["error"] == "Token has already been used"

    async def test_reset_password_rejects_signup_token(
        self, client: AsyncClient, db_session: AsyncSession, alice: User
    ):
        raw = await create_auth_token(db_session, alice.id, TOKEN_SIGNUP)
        await db_session.commit()
        response = await client.post("/api/auth/reset-password", json={"token": raw, "new_password": "NewHorse12"})
        assert response.status_code == 400
        assert response.json()["error"] == "Token is invalid or has expired"


class TestConfirmRedirects:
    async def test_missing_params(self, client: AsyncClient):
        response = await client.get("/auth/confirm")
        assert response.status_code == 307
        assert response.headers["location"] == "http://test/auth/login?error=Invalid+confirmation+link"

    async def test_signup_confirmation(self, client: AsyncClient, db_session: AsyncSession, alice: User):
        raw = await create_auth_token(db_session, alice.id, TOKEN_SIGNUP)
        await db_session.commit()
        response = await client.get("/auth/confirm", params={"token_hash": raw, "type": "signup"})
        assert response.headers["location"].endswith("message=Email+confirmed+successfully.+Please+log+in.")

        db_session.expire_all()
        credential = await get_credential(db_session, alice.id)
        assert credential.email_confirmed_at is not None

        again = await client.get("/auth/confirm", params={"token_hash": raw, "type": "signup"})
        assert again.headers["location"].endswith("/auth/login?error=Token+has+already+been+used")

    async def test_recovery_link_forwards_token(self, client: AsyncClient, db_session: AsyncSession, alice: User):
        raw = await create_auth_token(db_session, alice.id, TOKEN_RECOVERY)
        await db_session.commit()
        response = await client.get(
            "/auth/confirm", params={"token_hash": raw, "type": "recovery", "next": "/settings/password"}
        )
        location = urlparse(response.headers["location"])
        assert location.path == "/settings/password"
        assert parse_qs(location.query)["token_hash"] == [raw]

    async def test_recovery_ignores_offsite_next(self, client: AsyncClient, db_session: AsyncSession, alice: User):
        raw = await create_auth_token(db_session, alice.id, TOKEN_RECOVERY)
        await db_session.commit()
        response = await client.get(
            "/auth/confirm", params={"token_hash": raw, "type": "recovery", "next": "//evil.example"}
        )
        assert urlparse(response.headers["location"]).path == "/auth/reset-password"

    async def test_unknown_type(self, client: AsyncClient):
        response = await client.get("/auth/confirm", params={"token_hash": "x", "type": "magic"})
        assert response.headers["location"].endswith("error=Invalid+confirmation+link")


class TestErrors:
    async def test_unknown_route_uses_error_envelope(self, client: AsyncClient):
        response = await client.get("/api/auth/nope")
        assert response.status_code == 404
        assert response.json() == {"error": "Not Found"}
