from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import respx

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from sheetsync.config import Settings  # noqa: E402
from sheetsync.errors import ConfigurationError, UpstreamError  # noqa: E402
from sheetsync.services.oauth import (  # noqa: E402
    GOOGLE_AUTH_ENDPOINT,
    GOOGLE_SCOPES,
    GOOGLE_TOKEN_ENDPOINT,
    GOOGLE_USERINFO_ENDPOINT,
    GoogleOAuthService,
    TokenGrant,
)
from sheetsync.token_store import Credential  # noqa: E402


def _settings(**overrides) -> Settings:
    values = {
        "client_id": "client-id",
        "client_secret": "client-secret",
        "redirect_uri": "https://app.example.com/auth/google/callback",
        "session_secret": "secret",
    }
    values.update(overrides)
    return Settings(**values)


def _credential(expires_in: timedelta, now: datetime) -> Credential:
    return Credential(
        access_token="old-token",
        refresh_token="refresh-token",
        expires_at=now + expires_in,
        scope="scope",
    )


class RefreshTrackingService(GoogleOAuthService):
    def __init__(self) -> None:
        super().__init__(_settings())
        self.refreshed: List[str] = []

    async def refresh(self, refresh_token: str) -> TokenGrant:  # type: ignore[override]
        self.refreshed.append(refresh_token)
        return TokenGrant(access_token="new-token", refresh_token=refresh_token, expires_in=3600)


def test_build_authorization_url_carries_offline_consent_and_state() -> None:
    url = GoogleOAuthService(_settings()).build_authorization_url("state-123")

    parsed = urlparse(url)
    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == GOOGLE_AUTH_ENDPOINT
    query = {key: values[0] for key, values in parse_qs(parsed.query).items()}
    assert query == {
        "client_id": "client-id",
        "redirect_uri": "https://app.example.com/auth/google/callback",
        "response_type": "code",
        "access_type": "offline",
        "prompt": "consent",
        "scope": " ".join(GOOGLE_SCOPES),
        "state": "state-123",
    }


def test_ensure_credentials_requires_client_configuration() -> None:
    GoogleOAuthService(_settings()).ensure_credentials()

    with pytest.raises(ConfigurationError):
        GoogleOAuthService(_settings(client_secret="")).ensure_credentials()


@respx.mock
def test_exchange_code_posts_authorization_code_grant() -> None:
    route = respx.post(GOOGLE_TOKEN_ENDPOINT).respond(
        200,
        json={
            "access_token": "access",
            "refresh_token": "refresh",
            "expires_in": 3599,
            "scope": "scope-a scope-b",
            "token_type": "Bearer",
        },
    )

    grant = asyncio.run(GoogleOAuthService(_settings()).exchange_code("auth-code"))

    assert grant == TokenGrant(
        access_token="access",
        refresh_token="refresh",
        expires_in=3599,
        scope="scope-a scope-b",
        token_type="Bearer",
    )
    form = parse_qs(route.calls.last.request.content.decode())
    assert form["grant_type"] == ["authorization_code"]
    assert form["code"] == ["auth-code"]
    assert form["client_secret"] == ["client-secret"]


@respx.mock
def test_exchange_code_requires_refresh_token() -> None:
    respx.post(GOOGLE_TOKEN_ENDPOINT).respond(200, json={"access_token": "access", "expires_in": 3600})

    with pytest.raises(UpstreamError):
        asyncio.run(GoogleOAuthService(_settings()).exchange_code("auth-code"))


@respx.mock
def test_exchange_code_surfaces_http_failure() -> None:
    respx.post(GOOGLE_TOKEN_ENDPOINT).respond(400, json={"error": "invalid_grant"})

    with pytest.raises(UpstreamError) as excinfo:
        asyncio.run(GoogleOAuthService(_settings()).exchange_code("auth-code"))

    assert excinfo.value.status == 400
    assert "invalid_grant" not in excinfo.value.detail


@respx.mock
def test_refresh_keeps_original_refresh_token() -> None:
    route = respx.post(GOOGLE_TOKEN_ENDPOINT).respond(
        200, json={"access_token": "renewed", "expires_in": 3600, "scope": "scope"}
    )

    grant = asyncio.run(GoogleOAuthService(_settings()).refresh("refresh-token"))

    assert grant.access_token == "renewed"
    assert grant.refresh_token == "refresh-token"
    form = parse_qs(route.calls.last.request.content.decode())
    assert form["grant_type"] == ["refresh_token"]
    assert form["refresh_token"] == ["refresh-token"]


@respx.mock
def test_fetch_identity_sends_bearer_token() -> None:
    route = respx.get(GOOGLE_USERINFO_ENDPOINT).respond(
        200, json={"id": "123", "email": "user@example.com", "name": "User"}
    )

    identity = asyncio.run(GoogleOAuthService(_settings()).fetch_identity("access"))

    assert identity.to_dict() == {"id": "123", "email": "user@example.com", "name": "User"}
    assert route.calls.last.request.headers["Authorization"] == "Bearer access"


@respx.mock
def test_fetch_identity_fails_on_error_status() -> None:
    respx.get(GOOGLE_USERINFO_ENDPOINT).mock(return_value=httpx.Response(401, text="nope"))

    with pytest.raises(UpstreamError):
        asyncio.run(GoogleOAuthService(_settings()).fetch_identity("access"))


def test_credential_from_grant_computes_absolute_expiry() -> None:
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    grant = TokenGrant(access_token="a", refresh_token="r", expires_in=3600, scope="s")

    credential = GoogleOAuthService.credential_from_grant(grant, now)

    assert credential.expires_at == now + timedelta(hours=1)
    assert credential.refresh_token == "r"


def test_ensure_fresh_returns_input_when_not_near_expiry() -> None:
    service = RefreshTrackingService()
    now = datetime.now(timezone.utc)
    credential = _credential(timedelta(seconds=60), now)

    result = asyncio.run(service.ensure_fresh_access_token(credential, now=now))

    assert result is credential
    assert service.refreshed == []


def test_ensure_fresh_refreshes_when_expiring_within_a_minute() -> None:
    service = RefreshTrackingService()
    now = datetime.now(timezone.utc)
    credential = _credential(timedelta(seconds=59), now)

    result = asyncio.run(service.ensure_fresh_access_token(credential, now=now))

    assert service.refreshed == ["refresh-token"]
    assert result.access_token == "new-token"
    assert result.refresh_token == "refresh-token"
    assert result.expires_at > credential.expires_at
    assert credential.access_token == "old-token"


def test_ensure_fresh_refreshes_expired_credential() -> None:
    service = RefreshTrackingService()
    now = datetime.now(timezone.utc)
    credential = _credential(-timedelta(hours=1), now)

    result = asyncio.run(service.ensure_fresh_access_token(credential, now=now))

    assert result.access_token == "new-token"
    assert result.differs_from(credential)
