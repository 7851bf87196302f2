from __future__ import annotations

import hmac
import logging
import secrets
import time
from typing import Dict, Optional

from fastapi import Request, Response

logger = logging.getLogger(__name__)

STATE_COOKIE = "oauth_state"
STATE_TTL_SECONDS = 600


class OAuthStateGuard:
    """Issue and verify the single-use anti-forgery token for the OAuth redirect."""

    def __init__(self, ttl_seconds: int = STATE_TTL_SECONDS) -> None:
        self._ttl_seconds = ttl_seconds
        self._consumed: Dict[str, float] = {}

    @staticmethod
    def issue() -> str:
        return secrets.token_hex(24)

    def bind(self, response: Response, token: str) -> None:
        response.set_cookie(
            STATE_COOKIE,
            token,
            max_age=self._ttl_seconds,
            path="/",
            secure=True,
            httponly=True,
            samesite="lax",
        )

    def verify(self, request: Request, response: Response, candidate: Optional[str]) -> bool:
        if not candidate:
            return False

        stored = request.cookies.get(STATE_COOKIE)
        if not stored:
            return False

        expected = stored.encode("utf-8")
        provided = candidate.encode("utf-8")
        if len(expected) != len(provided) or not hmac.compare_digest(expected, provided):
            return False

        self._purge_consumed()
        if stored in self._consumed:
            logger.warning("Rejected replayed OAuth state token")
            return False

        self._consumed[stored] = time.monotonic() + self._ttl_seconds
        response.delete_cookie(STATE_COOKIE, path="/", secure=True, httponly=True, samesite="lax")
        return True

    def _purge_consumed(self) -> None:
        now = time.monotonic()
        for token, expires_at in list(self._consumed.items()):
            if expires_at <= now:
                del self._consumed[token]
