"""Tests for the OAuth code exchange and the /auth/callback redirect."""

from __future__ import annotations

import httpx
import pytest
from fastapi import FastAPI
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from luxicle.auth.cookies import ACCESS_COOKIE
from luxicle.auth.dependencies import get_oauth_client
from luxicle.auth.oauth import OAuthClient, ProviderConfig, callback_url
from luxicle.auth.service import get_user_by_email
from luxicle.db.models import OAuthIdentity, User
from luxicle.errors import AuthenticationError, ErrorKind, InvalidInputError

GITHUB = ProviderConfig(
    name="github",
    client_id="gh-id",
    client_secret="gh-secret",
    authorize_url="https://github.com/login/oauth/authorize",
    token_url="https://github.com/login/oauth/access_token",
    scope="read:user user:email",
)
GOOGLE = ProviderConfig(
    name="google",
    client_id="g-id",
    client_secret="g-secret",
    authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
    token_url="https://oauth2.googleapis.com/token",
    scope="openid email profile",
)


def github_transport(
    *,
    emails: list[dict] | None = None,
    token_payload: dict | None = None,
    user_id: int = 4242,
) -> httpx.MockTransport:
    if emails is None:
        emails = [{"email": "octo@luxicle.io", "verified": True, "primary": True}]

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/login/oauth/access_token":
            return httpx.Response(200, json=token_payload or {"access_token": "gh-token"})
        assert request.headers["Authorization"] == "Bearer gh-token"
        if request.url.path == "/user":
            return httpx.Response(200, json={"id": user_id, "login": "octocat", "avatar_url": "https://a/x.png"})
        if request.url.path == "/user/emails":
            return httpx.Response(200, json=emails)
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def google_transport(*, email_verified: bool) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/token":
            return httpx.Response(200, json={"access_token": "g-token"})
        return httpx.Response(
            200, json={"sub": "g-1", "email": "gee@luxicle.io", "email_verified": email_verified}
        )

    return httpx.MockTransport(handler)


def oauth_client(transport: httpx.MockTransport) -> OAuthClient:
    return OAuthClient({"github": GITHUB, "google": GOOGLE}, transport=transport)


class TestOAuthClient:
    def test_authorize_url(self):
        url = oauth_client(github_transport()).authorize_url("github", "http://localhost:3000/auth/callback", "st8")
        assert url.startswith("https://github.com/login/oauth/authorize?")
        assert "client_id=gh-id" in url
        assert "state=st8" in url
        assert "response_type=code" in url

    def test_unknown_provider(self):
        with pytest.raises(InvalidInputError, match="Unsupported OAuth provider"):
            oauth_client(github_transport()).authorize_url("myspace", "http://x", "s")

    def test_unconfigured_provider(self):
        client = OAuthClient(
            {"github": ProviderConfig("github", "", "", GITHUB.authorize_url, GITHUB.token_url, GITHUB.scope)}
        )
        with pytest.raises(InvalidInputError, match="not configured"):
            client.authorize_url("github", "http://x", "s")

    async def test_github_profile_uses_primary_verified_email(self):
        transport = github_transport(
            emails=[
                {"email": "unverified@luxicle.io", "verified": False, "primary": True},
                {"email": "second@luxicle.io", "verified": True, "primary": False},
            ]
        )
        profile = await oauth_client(transport).exchange_code("github", "code-1")
        assert profile.provider == "github"
        assert profile.provider_user_id == "4242"
        assert profile.email == "second@luxicle.io"
        assert profile.username == "octocat"

    async def test_github_without_verified_email(self):
        transport = github_transport(emails=[{"email": "x@luxicle.io", "verified": False, "primary": True}])
        profile = await oauth_client(transport).exchange_code("github", "code-1")
        assert profile.email is None

    async def test_google_unverified_email_is_dropped(self):
        profile = await oauth_client(google_transport(email_verified=False)).exchange_code("google", "code-1")
        assert profile.email is None
        assert profile.provider_user_id == "g-1"

    async def test_rejected_code(self):
        transport = github_transport(token_payload={"error": "bad_verification_code"})
        with pytest.raises(AuthenticationError, match="bad_verification_code"):
            await oauth_client(transport).exchange_code("github", "stale")

    async def test_provider_outage_is_remote(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502)

        with pytest.raises(AuthenticationError) as exc_info:
            await oauth_client(httpx.MockTransport(handler)).exchange_code("github", "code-1")
        assert exc_info.value.kind is ErrorKind.REMOTE

    async def test_missing_code(self):
        with pytest.raises(InvalidInputError, match="Authorization code is required"):
            await oauth_client(github_transport()).exchange_code("github", "")


class TestCallbackUrl:
    def test_round_trips_next(self):
        url = callback_url("http://localhost:3000/", "github", "/lists/new")
        assert url == "http://localhost:3000/auth/callback?provider=github&next=%2Flists%2Fnew"

    def test_defaults_next_to_root(self):
        assert callback_url("http://localhost:3000", "google").endswith("provider=google&next=%2F")


@pytest.fixture
def use_oauth(app: FastAPI):
    def _use(transport: httpx.MockTransport) -> None:
        app.dependency_overrides[get_oauth_client] = lambda: oauth_client(transport)

    return _use


class TestCallbackRoute:
    async def test_new_account_signs_in(self, client: AsyncClient, db_session: AsyncSession, use_oauth):
        use_oauth(github_transport())
        response = await client.get("/auth/callback", params={"provider": "github", "code": "c", "next": "/lists"})
        assert response.status_code == 307
        assert response.headers["location"] == "http://test/lists"
        assert ACCESS_COOKIE in response.cookies

        user = await get_user_by_email(db_session, "octo@luxicle.io")
        assert user is not None
        assert user.username == "octocat"

    async def test_links_existing_account_by_verified_email(
        self, client: AsyncClient, db_session: AsyncSession, alice: User, use_oauth
    ):
        use_oauth(github_transport(emails=[{"email": alice.email, "verified": True, "primary": True}]))
        response = await client.get("/auth/callback", params={"provider": "github", "code": "c"})
        assert response.headers["location"] == "http://test/"

        identities = (await db_session.execute(select(OAuthIdentity))).scalars().all()
        assert [(i.user_id, i.provider) for i in identities] == [(alice.id, "github")]

    async def test_second_sign_in_reuses_identity(self, client: AsyncClient, db_session: AsyncSession, use_oauth):
        use_oauth(github_transport())
        await client.get("/auth/callback", params={"provider": "github", "code": "c"})
        await client.get("/auth/callback", params={"provider": "github", "code": "c"})
        users = (await db_session.execute(select(User))).scalars().all()
        assert len(users) == 1

    async def test_unverified_email_fails(self, client: AsyncClient, use_oauth):
        use_oauth(google_transport(email_verified=False))
        response = await client.get("/auth/callback", params={"provider": "google", "code": "c"})
        assert response.headers["location"] == "http://test/auth/login?error=OAuth+authentication+failed"

    async def test_provider_error_param(self, client: AsyncClient):
        response = await client.get("/auth/callback", params={"error": "access_denied"})
        assert response.headers["location"] == "http://test/auth/login?error=OAuth+authentication+failed"

    async def test_without_code_goes_to_next(self, client: AsyncClient):
        response = await client.get("/auth/callback", params={"next": "/explore"})
        assert response.headers["location"] == "http://test/explore"

    async def test_offsite_next_is_ignored(self, client: AsyncClient):
        response = await client.get("/auth/callback", params={"next": "https://evil.example"})
        assert response.headers["location"] == "http://test/"
