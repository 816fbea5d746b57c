"""
OAuth 2.0 authorization-code flow for GitHub and Google.

``authorize_url`` builds the provider redirect; ``exchange_code`` trades the
returned code for a provider access token and fetches the account profile.
Only verified email addresses are passed on.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import quote, urlencode

import httpx
import structlog

from luxicle.config import Settings, get_settings
from luxicle.errors import AuthenticationError, ErrorKind, InvalidInputError

logger = structlog.get_logger()

GITHUB_ACCEPT = "application/vnd.github+json"


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    client_id: str
    client_secret: str
    authorize_url: str
    token_url: str
    scope: str


@dataclass(frozen=True)
class OAuthProfile:
    """The account details a provider vouches for."""

    provider: str
    provider_user_id: str
    email: str | None
    username: str | None
    avatar_url: str | None = None


def providers_from_settings(settings: Settings | None = None) -> dict[str, ProviderConfig]:
    settings = settings or get_settings()
    return {
        "github": ProviderConfig(
            name="github",
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            authorize_url=settings.github_authorize_url,
            token_url=settings.github_token_url,
            scope="read:user user:email",
        ),
        "google": ProviderConfig(
            name="google",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            authorize_url=settings.google_authorize_url,
            token_url=settings.google_token_url,
            scope="openid email profile",
        ),
    }


class OAuthClient:
    """Talks to the configured OAuth providers over httpx."""

    def __init__(
        self,
        providers: dict[str, ProviderConfig] | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.providers = providers if providers is not None else providers_from_settings(self.settings)
        self._transport = transport

    def _provider(self, name: str) -> ProviderConfig:
        config = self.providers.get((name or "").lower())
        if config is None:
            msg = f"Unsupported OAuth provider: {name}"
            raise InvalidInputError(msg)
        if not config.client_id or not config.client_secret:
            msg = f"OAuth provider '{config.name}' is not configured"
            raise InvalidInputError(msg)
        return config

    def authorize_url(self, provider: str, redirect_uri: str, state: str) -> str:
        """URL to send the browser to for the provider's consent screen."""
        config = self._provider(provider)
        params = {
            "client_id": config.client_id,
            "redirect_uri": redirect_uri,
            "scope": config.scope,
            "state": state,
            "response_type": "code",
        }
        return f"{config.authorize_url}?{urlencode(params)}"

    async def exchange_code(self, provider: str, code: str, redirect_uri: str | None = None) -> OAuthProfile:
        """
        Exchange an authorization code for the provider's account profile.

        Raises:
            InvalidInputError: If the provider is unknown or unconfigured.
            AuthenticationError: If the provider rejects the code or cannot be reached.
        """
        config = self._provider(provider)
        if not code:
            msg = "Authorization code is required"
            raise InvalidInputError(msg)
        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self.settings.oauth_timeout_seconds
            ) as client:
                token = await self._fetch_token(client, config, code, redirect_uri)
                if config.name == "github":
                    return await self._github_profile(client, token)
                return await self._google_profile(client, token)
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.warning("oauth_exchange_failed", provider=config.name, error=str(e))
            msg = f"Failed to authenticate with {config.name}"
            raise AuthenticationError(msg, kind=ErrorKind.REMOTE) from e

    async def _fetch_token(
        self,
        client: httpx.AsyncClient,
        config: ProviderConfig,
        code: str,
        redirect_uri: str | None,
    ) -> str:
        data = {
            "client_id": config.client_id,
            "client_secret": config.client_secret,
            "code": code,
            "grant_type": "authorization_code",
        }
        if redirect_uri:
            data["redirect_uri"] = redirect_uri
        response = await client.post(config.token_url, data=data, headers={"Accept": "application/json"})
        response.raise_for_status()
        payload = response.json()
        if "error" in payload or "access_token" not in payload:
            detail = payload.get("error_description") or payload.get("error") or "no access token"
            logger.warning("oauth_code_rejected", provider=config.name, error=detail)
            msg = f"{config.name} OAuth error: {detail}"
            raise AuthenticationError(msg)
        return payload["access_token"]

    async def _github_profile(self, client: httpx.AsyncClient, token: str) -> OAuthProfile:
        api = self.settings.github_api_url.rstrip("/")
        headers = {"Authorization": f"Bearer {token}", "Accept": GITHUB_ACCEPT}
        user_response = await client.get(f"{api}/user", headers=headers)
        user_response.raise_for_status()
        user = user_response.json()

        emails_response = await client.get(f"{api}/user/emails", headers=headers)
        emails_response.raise_for_status()
        verified = [e for e in emails_response.json() if e.get("verified")]
        primary = next((e for e in verified if e.get("primary")), verified[0] if verified else None)

        return OAuthProfile(
            provider="github",
            provider_user_id=str(user["id"]),
            email=primary.get("email") if primary else None,
            username=user.get("login"),
            avatar_url=user.get("avatar_url"),
        )

    async def _google_profile(self, client: httpx.AsyncClient, token: str) -> OAuthProfile:
        response = await client.get(self.settings.google_userinfo_url, headers={"Authorization": f"Bearer {token}"})
        response.raise_for_status()
        info = response.json()
        email = info.get("email") if info.get("email_verified") else None
        return OAuthProfile(
            provider="google",
            provider_user_id=str(info["sub"]),
            email=email,
            username=(info.get("email") or "").split("@")[0] or info.get("given_name"),
            avatar_url=info.get("picture"),
        )


def callback_url(site_url: str, provider: str, redirect_to: str | None = None) -> str:
    """The redirect URI registered with providers; also used when exchanging the code."""
    query = urlencode({"provider": provider, "next": redirect_to or "/"}, quote_via=quote)
    return f"{site_url.rstrip('/')}/auth/callback?{query}"
