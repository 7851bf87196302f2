from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Request, Response

from ..errors import InvalidSessionError, MissingSessionError
from ..token_store import Credential, CredentialStore, StoredCredential
from .oauth import Identity

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session"
ALGORITHM = "HS256"
SESSION_DURATION = timedelta(days=7)
SESSION_DURATION_SECONDS = int(SESSION_DURATION.total_seconds())

_CREDENTIAL_CLAIMS = ("accessToken", "refreshToken", "expiresAt")


@dataclass(frozen=True)
class SessionPayload:
    """Verified contents of a session cookie."""

    identity: Identity
    credential: Optional[Credential] = None

    @property
    def user_id(self) -> str:
        return self.identity.id

    def with_credential(self, credential: Credential) -> "SessionPayload":
        return SessionPayload(identity=self.identity, credential=credential)


class SessionCodec:
    """Sign and verify the session cookie value with a server-held secret."""

    def __init__(self, secret: str, *, duration: timedelta = SESSION_DURATION) -> None:
        self._secret = secret
        self._duration = duration

    def issue(self, payload: SessionPayload, now: Optional[datetime] = None) -> str:
        if not self._secret:
            raise RuntimeError("SESSION_SECRET is not configured")

        issued_at = now or datetime.now(timezone.utc)
        claims: Dict[str, Any] = {
            "sub": payload.identity.id,
            "email": payload.identity.email,
            "name": payload.identity.name,
            "iat": issued_at,
            "exp": issued_at + self._duration,
        }
        credential = payload.credential
        if credential is not None:
            claims.update(
                {
                    "accessToken": credential.access_token,
                    "refreshToken": credential.refresh_token,
                    "expiresAt": int(credential.expires_at.timestamp() * 1000),
                    "scope": credential.scope,
                }
            )
        return jwt.encode(claims, self._secret, algorithm=ALGORITHM)

    def verify(self, token: str) -> SessionPayload:
        if not self._secret:
            raise InvalidSessionError("SESSION_SECRET is not configured")

        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.PyJWTError as exc:
            raise InvalidSessionError(f"session token rejected: {exc}") from exc

        return self._payload_from_claims(claims)

    @staticmethod
    def _payload_from_claims(claims: Dict[str, Any]) -> SessionPayload:
        subject = claims.get("sub")
        email = claims.get("email")
        name = claims.get("name")
        if not isinstance(subject, str) or not subject:
            raise InvalidSessionError("session token has no subject")
        if not isinstance(email, str) or not isinstance(name, str):
            raise InvalidSessionError("session token is missing identity claims")

        identity = Identity(id=subject, email=email, name=name)
        present = [claim for claim in _CREDENTIAL_CLAIMS if claim in claims]
        if not present:
            return SessionPayload(identity=identity)
        if len(present) != len(_CREDENTIAL_CLAIMS):
            raise InvalidSessionError("session token has incomplete credential claims")

        access_token = claims["accessToken"]
        refresh_token = claims["refreshToken"]
        expires_at_ms = claims["expiresAt"]
        if (
            not isinstance(access_token, str)
            or not isinstance(refresh_token, str)
            or isinstance(expires_at_ms, bool)
            or not isinstance(expires_at_ms, (int, float))
        ):
            raise InvalidSessionError("session token has malformed credential claims")

        credential = Credential(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=datetime.fromtimestamp(expires_at_ms / 1000, tz=timezone.utc),
            scope=str(claims.get("scope") or ""),
        )
        return SessionPayload(identity=identity, credential=credential)

    def read_session(self, request: Request) -> Optional[SessionPayload]:
        token = request.cookies.get(SESSION_COOKIE)
        if not token:
            return None
        try:
            return self.verify(token)
        except InvalidSessionError as exc:
            logger.info("Ignoring invalid session cookie: %s", exc.cause)
            return None

    def require_session(self, request: Request) -> SessionPayload:
        token = request.cookies.get(SESSION_COOKIE)
        if not token:
            raise MissingSessionError()
        return self.verify(token)

    def set_cookie(self, response: Response, payload: SessionPayload) -> None:
        response.set_cookie(
            SESSION_COOKIE,
            self.issue(payload),
            max_age=int(self._duration.total_seconds()),
            path="/",
            secure=True,
            httponly=True,
            samesite="lax",
        )

    @staticmethod
    def clear_cookie(response: Response) -> None:
        response.delete_cookie(SESSION_COOKIE, path="/", secure=True, httponly=True, samesite="lax")


class SessionService:
    """Tie the session cookie to wherever credentials live.

    With ``store`` unset credentials ride inside the signed cookie; otherwise
    the cookie only asserts identity and the store holds the tokens.
    """

    def __init__(self, codec: SessionCodec, store: Optional[CredentialStore] = None) -> None:
        self._codec = codec
        self._store = store

    @property
    def codec(self) -> SessionCodec:
        return self._codec

    def start(self, response: Response, identity: Identity, credential: Credential) -> SessionPayload:
        if self._store is None:
            session = SessionPayload(identity=identity, credential=credential)
        else:
            self._store.put(
                StoredCredential(
                    user_id=identity.id,
                    email=identity.email,
                    name=identity.name,
                    credential=credential,
                )
            )
            session = SessionPayload(identity=identity)
        self._codec.set_cookie(response, session)
        return session

    def credential_for(self, session: SessionPayload) -> Credential:
        if self._store is None:
            if session.credential is None:
                raise InvalidSessionError("session carries no credential")
            return session.credential

        stored = self._store.get(session.user_id)
        if stored is None:
            raise InvalidSessionError("no stored credential for session user")
        return stored.credential

    def persist(
        self,
        response: Response,
        session: SessionPayload,
        previous: Credential,
        current: Credential,
    ) -> SessionPayload:
        """Save a renewed credential; a no-op when nothing changed."""

        if not current.differs_from(previous):
            return session

        logger.info("Persisting renewed access token for user %s", session.user_id)
        if self._store is None:
            renewed = session.with_credential(current)
            self._codec.set_cookie(response, renewed)
            return renewed

        identity = session.identity
        self._store.put(
            StoredCredential(
                user_id=identity.id,
                email=identity.email,
                name=identity.name,
                credential=current,
            )
        )
        return session

    def end(self, response: Response, session: Optional[SessionPayload]) -> None:
        if session is not None and self._store is not None:
            self._store.delete(session.user_id)
        self._codec.clear_cookie(response)
