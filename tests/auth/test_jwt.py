"""Tests for JWT access and refresh tokens."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from luxicle.auth.jwt import create_access_token, create_refresh_token, reset_keys, verify_token
from luxicle.config import get_settings


class TestTokens:
    def test_access_token_round_trip(self):
        token = create_access_token("u1", "alice@luxicle.io")
        payload = verify_token(token, expected_type="access")
        assert payload["sub"] == "u1"
        assert payload["email"] == "alice@luxicle.io"
        assert payload["iss"] == "luxicle.app"

    def test_refresh_token_carries_jti(self):
        token = create_refresh_token("u1", "alice@luxicle.io", token_id="jti-1")
        payload = verify_token(token, expected_type="refresh")
        assert payload["jti"] == "jti-1"

    def test_wrong_type_rejected(self):
        token = create_refresh_token("u1", "alice@luxicle.io", token_id="jti-1")
        with pytest.raises(jwt.InvalidTokenError, match="Expected token type 'access'"):
            verify_token(token, expected_type="access")

    def test_expired_token_rejected(self):
        settings = get_settings()
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        token = jwt.encode(
            {"sub": "u1", "iat": past, "exp": past + timedelta(minutes=1), "iss": settings.jwt_issuer, "type": "access"},
            settings.jwt_secret,
            algorithm="HS256",
        )
        with pytest.raises(jwt.InvalidTokenError, match="expired"):
            verify_token(token)

    def test_foreign_signature_rejected(self):
        token = jwt.encode({"sub": "u1", "type": "access", "iss": "luxicle.app"}, "other-secret-" * 4, algorithm="HS256")
        with pytest.raises(jwt.InvalidTokenError):
            verify_token(token)

    def test_hmac_without_secret_fails_loudly(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("LUX_JWT_SECRET", "")
        get_settings.cache_clear()
        reset_keys()
        with pytest.raises(RuntimeError, match="jwt_secret"):
            create_access_token("u1", "alice@luxicle.io")
