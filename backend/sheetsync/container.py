from __future__ import annotations

from typing import Optional

from .config import Settings, load_settings
from .services.oauth import GoogleOAuthService
from .services.oauth_state import OAuthStateGuard
from .services.session import SessionCodec, SessionService
from .services.sheets import GoogleSheetsClient
from .services.sync import SheetSyncService
from .token_store import CredentialStore, InMemoryCredentialStore, SqliteCredentialStore


def _build_credential_store(settings: Settings) -> Optional[CredentialStore]:
    if settings.credential_storage == "sqlite":
        return SqliteCredentialStore(settings.tokens_path)
    if settings.credential_storage == "memory":
        return InMemoryCredentialStore()
    return None


class Container:
    """Application service container for dependency management."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or load_settings()
        self._credential_store = _build_credential_store(self._settings)
        self._state_guard = OAuthStateGuard()
        self._oauth_service = GoogleOAuthService(self._settings)
        self._session_service = SessionService(
            SessionCodec(self._settings.session_secret), self._credential_store
        )
        self._sheets_client = GoogleSheetsClient()
        self._sync_service = SheetSyncService(
            self._sheets_client,
            delimiter=self._settings.csv_delimiter,
            key_column=self._settings.required_key_column,
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def credential_store(self) -> Optional[CredentialStore]:
        return self._credential_store

    @property
    def state_guard(self) -> OAuthStateGuard:
        return self._state_guard

    @property
    def oauth_service(self) -> GoogleOAuthService:
        return self._oauth_service

    @property
    def session_service(self) -> SessionService:
        return self._session_service

    @property
    def sheets_client(self) -> GoogleSheetsClient:
        return self._sheets_client

    @property
    def sync_service(self) -> SheetSyncService:
        return self._sync_service
