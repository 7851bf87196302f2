from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from ..config import Settings
from ..errors import ConfigurationError, UpstreamError
from ..token_store import Credential

logger = logging.getLogger(__name__)

GOOGLE_AUTH_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_ENDPOINT = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_SCOPES = (
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.readonly",
    "https://www.googleapis.com/auth/drive.file",
)

REFRESH_MARGIN = timedelta(seconds=60)


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    name: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "email": self.email, "name": self.name}


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    refresh_token: str
    expires_in: int
    scope: str = ""
    token_type: str = "Bearer"


class GoogleOAuthService:
    """Encapsulate Google OAuth flow helpers."""

    def __init__(self, settings: Settings, *, timeout: float = 10.0) -> None:
        self._settings = settings
        self._timeout = timeout

    @property
    def settings(self) -> Settings:
        return self._settings

    def ensure_credentials(self) -> None:
        if not self._settings.has_oauth_credentials:
            raise ConfigurationError()

    def build_authorization_url(self, state: str) -> str:
        params = {
            "client_id": self._settings.client_id,
            "redirect_uri": self._settings.redirect_uri,
            "response_type": "code",
            "access_type": "offline",
            "prompt": "consent",
            "scope": " ".join(GOOGLE_SCOPES),
            "state": state,
        }
        return f"{GOOGLE_AUTH_ENDPOINT}?{urlencode(params)}"

    async def _post_token(self, data: Dict[str, str], action: str) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(GOOGLE_TOKEN_ENDPOINT, data=data)

        if response.is_error:
            logger.error("Google %s failed: %s %s", action, response.status_code, response.text)
            raise UpstreamError(action, status=response.status_code, body=response.text)

        payload = response.json()
        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token:
            logger.error("Google %s response missing access_token", action)
            raise UpstreamError(action, status=response.status_code, body="missing access_token")
        return payload

    async def exchange_code(self, code: str) -> TokenGrant:
        payload = await self._post_token(
            {
                "code": code,
                "client_id": self._settings.client_id,
                "client_secret": self._settings.client_secret,
                "redirect_uri": self._settings.redirect_uri,
                "grant_type": "authorization_code",
            },
            "token exchange",
        )

        refresh_token = payload.get("refresh_token")
        if not isinstance(refresh_token, str) or not refresh_token:
            # Offline access is required for silent renewal later on.
            logger.error("Google token exchange did not return a refresh token")
            raise UpstreamError("token exchange", body="missing refresh_token")

        return TokenGrant(
            access_token=payload["access_token"],
            refresh_token=refresh_token,
            expires_in=int(payload.get("expires_in", 0)),
            scope=payload.get("scope", ""),
            token_type=payload.get("token_type", "Bearer"),
        )

    async def refresh(self, refresh_token: str) -> TokenGrant:
        payload = await self._post_token(
            {
                "client_id": self._settings.client_id,
                "client_secret": self._settings.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            "token refresh",
        )

        return TokenGrant(
            access_token=payload["access_token"],
            refresh_token=refresh_token,
            expires_in=int(payload.get("expires_in", 0)),
            scope=payload.get("scope", ""),
            token_type=payload.get("token_type", "Bearer"),
        )

    async def fetch_identity(self, access_token: str) -> Identity:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(
                GOOGLE_USERINFO_ENDPOINT,
                headers={"Authorization": f"Bearer {access_token}"},
            )

        if response.is_error:
            logger.error("Failed to fetch Google user info: %s %s", response.status_code, response.text)
            raise UpstreamError("fetch user info", status=response.status_code, body=response.text)

        data = response.json()
        user_id = data.get("id") if isinstance(data, dict) else None
        if not isinstance(user_id, str) or not user_id:
            logger.error("Google user info response missing id")
            raise UpstreamError("fetch user info", status=response.status_code, body="missing id")

        return Identity(
            id=user_id,
            email=data.get("email") or "",
            name=data.get("name") or data.get("email") or "",
        )

    @staticmethod
    def credential_from_grant(grant: TokenGrant, now: Optional[datetime] = None) -> Credential:
        issued_at = now or datetime.now(timezone.utc)
        return Credential(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=issued_at + timedelta(seconds=grant.expires_in),
            scope=grant.scope,
        )

    async def ensure_fresh_access_token(
        self, credential: Credential, now: Optional[datetime] = None
    ) -> Credential:
        """Return ``credential`` untouched, or a renewed copy when it expires within a minute.

        Nothing is persisted here; callers compare the result with their input
        and store it when it changed.
        """

        current = now or datetime.now(timezone.utc)
        if credential.expires_at - current >= REFRESH_MARGIN:
            return credential

        grant = await self.refresh(credential.refresh_token)
        return dataclasses.replace(
            credential,
            access_token=grant.access_token,
            expires_at=current + timedelta(seconds=grant.expires_in),
            scope=grant.scope or credential.scope,
        )
