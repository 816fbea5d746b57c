"""Tests for the in-process auth client, its event stream and the session store."""

from __future__ import annotations

import time
from unittest.mock import AsyncMock

import httpx
import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from luxicle.auth.client import AuthClient
from luxicle.auth.events import AuthEvent, AuthEventStream
from luxicle.auth.oauth import OAuthClient, ProviderConfig
from luxicle.auth.session_store import AuthSessionStore, AuthStatus
from luxicle.db.models import RefreshToken, User
from luxicle.email.service import EmailService
from luxicle.errors import AuthenticationError, DuplicateError, ErrorKind

PASSWORD = "CorrectHorse1"

GITHUB = ProviderConfig(
    name="github",
    client_id="gh-id",
    client_secret="gh-secret",
    authorize_url="https://github.com/login/oauth/authorize",
    token_url="https://github.com/login/oauth/access_token",
    scope="read:user user:email",
)


def _github_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/login/oauth/access_token":
        return httpx.Response(200, json={"access_token": "gh-token"})
    if request.url.path == "/user":
        return httpx.Response(200, json={"id": 7, "login": "octocat"})
    return httpx.Response(200, json=[{"email": "octo@luxicle.io", "verified": True, "primary": True}])


@pytest.fixture
def auth_client(session_factory: async_sessionmaker[AsyncSession], email_service: EmailService) -> AuthClient:
    oauth = OAuthClient({"github": GITHUB}, transport=httpx.MockTransport(_github_handler))
    return AuthClient(session_factory, email_service=email_service, oauth=oauth)


@pytest.fixture
def events(auth_client: AuthClient) -> list[AuthEvent]:
    seen: list[AuthEvent] = []
    auth_client.on_auth_state_change(lambda event, _session: seen.append(event))
    return seen


class TestAuthClient:
    async def test_sign_up_signs_in(self, auth_client: AuthClient, events, outbox):
        response = await auth_client.sign_up("carol@luxicle.io", PASSWORD, "carol")
        assert auth_client.session is not None
        assert auth_client.session.user.username == "carol"
        assert response.session == auth_client.session
        assert events == [AuthEvent.SIGNED_IN]
        assert outbox.sent[0][0] == "carol@luxicle.io"

    async def test_sign_up_duplicate(self, auth_client: AuthClient, alice: User, events):
        with pytest.raises(DuplicateError):
            await auth_client.sign_up(alice.email, PASSWORD, "alice2")
        assert auth_client.session is None
        assert events == []

    async def test_sign_in_with_password(self, auth_client: AuthClient, alice: User, events):
        response = await auth_client.sign_in_with_password(alice.email, PASSWORD)
        assert response.session.user.id == alice.id
        assert events == [AuthEvent.SIGNED_IN]

    async def test_sign_in_wrong_password(self, auth_client: AuthClient, alice: User):
        with pytest.raises(AuthenticationError):
            await auth_client.sign_in_with_password(alice.email, "WrongHorse1")
        assert auth_client.session is None

    async def test_get_session_refreshes_near_expiry(self, auth_client: AuthClient, alice: User, events):
        await auth_client.sign_in_with_password(alice.email, PASSWORD)
        original = auth_client.session
        auth_client._session = original.model_copy(update={"expires_at": int(time.time()) + 5})

        session = await auth_client.get_session()
        assert session is not None
        assert session.refresh_token != original.refresh_token
        assert events[-1] is AuthEvent.TOKEN_REFRESHED

    async def test_get_session_returns_live_session_as_is(self, auth_client: AuthClient, alice: User):
        await auth_client.sign_in_with_password(alice.email, PASSWORD)
        assert await auth_client.get_session() is auth_client.session

    async def test_refresh_rejected_signs_out(
        self, auth_client: AuthClient, alice: User, db_session: AsyncSession, events
    ):
        await auth_client.sign_in_with_password(alice.email, PASSWORD)
        await db_session.execute(update(RefreshToken).values(is_revoked=True))
        await db_session.commit()

        with pytest.raises(AuthenticationError):
            await auth_client.refresh_session()
        assert auth_client.session is None
        assert events[-1] is AuthEvent.SIGNED_OUT

    async def test_sign_out_revokes(self, auth_client: AuthClient, alice: User, events):
        await auth_client.sign_in_with_password(alice.email, PASSWORD)
        session = auth_client.session
        await auth_client.sign_out()
        assert auth_client.session is None
        assert events[-1] is AuthEvent.SIGNED_OUT

        auth_client._session = session
        with pytest.raises(AuthenticationError, match="revoked"):
            await auth_client.refresh_session()

    async def test_reset_password_for_email(self, auth_client: AuthClient, alice: User, outbox):
        await auth_client.reset_password_for_email(alice.email, "/settings")
        assert outbox.sent[0][0] == alice.email
        assert "next=/settings" in outbox.sent[0][2]

    def test_sign_in_with_oauth_returns_authorize_url(self, auth_client: AuthClient):
        url = auth_client.sign_in_with_oauth("github", "/lists")
        assert url.startswith(GITHUB.authorize_url)
        assert "redirect_uri=" in url

    async def test_exchange_code_for_session(self, auth_client: AuthClient, events):
        response = await auth_client.exchange_code_for_session("github", "code-1")
        assert response.session.user.email == "octo@luxicle.io"
        assert events == [AuthEvent.SIGNED_IN]

    async def test_refresh_user_picks_up_profile_changes(
        self, auth_client: AuthClient, alice: User, db_session: AsyncSession, events
    ):
        await auth_client.sign_in_with_password(alice.email, PASSWORD)
        await db_session.execute(update(User).where(User.id == alice.id).values(username="alice_b"))
        await db_session.commit()

        session = await auth_client.refresh_user()
        assert session.user.username == "alice_b"
        assert events[-1] is AuthEvent.USER_UPDATED

    async def test_refresh_user_without_session(self, auth_client: AuthClient):
        assert await auth_client.refresh_user() is None


class TestAuthEventStream:
    def test_listener_failure_does_not_block_others(self):
        stream = AuthEventStream()
        seen: list[AuthEvent] = []

        def broken(_event, _session):
            raise RuntimeError("boom")

        stream.subscribe(broken)
        stream.subscribe(lambda event, _session: seen.append(event))
        stream.emit(AuthEvent.SIGNED_OUT, None)
        assert seen == [AuthEvent.SIGNED_OUT]

    def test_unsubscribe(self):
        stream = AuthEventStream()
        subscription = stream.subscribe(lambda *_: None)
        assert len(stream) == 1
        subscription.unsubscribe()
        assert len(stream) == 0


class TestAuthSessionStore:
    async def test_start_without_session(self, auth_client: AuthClient):
        store = AuthSessionStore(auth_client)
        statuses: list[AuthStatus] = []
        store.subscribe(lambda state: statuses.append(state.status))

        state = await store.start()
        assert state.status is AuthStatus.UNAUTHENTICATED
        assert state.is_authenticated is False
        assert statuses == [AuthStatus.LOADING, AuthStatus.UNAUTHENTICATED]

    async def test_start_failure_sets_error(self, auth_client: AuthClient):
        auth_client.get_session = AsyncMock(side_effect=OSError("connection refused"))
        store = AuthSessionStore(auth_client)
        state = await store.start()
        assert state.status is AuthStatus.ERROR
        assert state.error.kind is ErrorKind.TRANSPORT
        assert state.is_loading is False

    async def test_sign_in_tracks_loading(self, auth_client: AuthClient, alice: User):
        store = AuthSessionStore(auth_client)
        await store.start()
        loading: list[bool] = []
        store.subscribe(lambda state: loading.append(state.is_loading))

        await store.sign_in_with_password(alice.email, PASSWORD)
        assert store.state.status is AuthStatus.AUTHENTICATED
        assert store.user.id == alice.id
        assert loading[0] is True
        assert loading[-1] is False

    async def test_failed_sign_in_clears_user(self, auth_client: AuthClient, alice: User):
        store = AuthSessionStore(auth_client)
        await store.start()
        with pytest.raises(AuthenticationError):
            await store.sign_in_with_password(alice.email, "WrongHorse1")
        assert store.state.status is AuthStatus.UNAUTHENTICATED
        assert store.state.error.kind is ErrorKind.UNAUTHORIZED
        assert store.state.is_loading is False

    async def test_failed_sign_up_keeps_status(self, auth_client: AuthClient, alice: User):
        store = AuthSessionStore(auth_client)
        await store.start()
        await store.sign_in_with_password(alice.email, PASSWORD)
        with pytest.raises(DuplicateError):
            await store.sign_up(alice.email, PASSWORD, "alice3")
        assert store.state.status is AuthStatus.AUTHENTICATED
        assert store.state.error.kind is ErrorKind.DUPLICATE

    async def test_sign_out(self, auth_client: AuthClient, alice: User):
        store = AuthSessionStore(auth_client)
        await store.start()
        await store.sign_in_with_password(alice.email, PASSWORD)
        await store.sign_out()
        assert store.state.status is AuthStatus.UNAUTHENTICATED
        assert store.user is None

    async def test_follows_client_events(self, auth_client: AuthClient, alice: User):
        store = AuthSessionStore(auth_client)
        await store.start()
        await auth_client.sign_in_with_password(alice.email, PASSWORD)
        assert store.state.status is AuthStatus.AUTHENTICATED

    async def test_close_detaches(self, auth_client: AuthClient):
        store = AuthSessionStore(auth_client)
        await store.start()
        assert len(auth_client.events) == 1
        store.close()
        assert len(auth_client.events) == 0
