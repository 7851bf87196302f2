from __future__ import annotations

from fastapi import Depends, Request

from .config import Settings
from .container import Container
from .services.oauth import GoogleOAuthService
from .services.oauth_state import OAuthStateGuard
from .services.session import SessionPayload, SessionService
from .services.sheets import GoogleSheetsClient
from .services.sync import SheetSyncService


def get_container(request: Request) -> Container:
    container = getattr(request.app.state, "container", None)
    if not isinstance(container, Container):
        raise RuntimeError("Application container is not configured on FastAPI app state.")
    return container


def get_settings(container: Container = Depends(get_container)) -> Settings:
    return container.settings


def get_state_guard(container: Container = Depends(get_container)) -> OAuthStateGuard:
    return container.state_guard


def get_oauth_service(container: Container = Depends(get_container)) -> GoogleOAuthService:
    return container.oauth_service


def get_session_service(container: Container = Depends(get_container)) -> SessionService:
    return container.session_service


def get_sheets_client(container: Container = Depends(get_container)) -> GoogleSheetsClient:
    return container.sheets_client


def get_sync_service(container: Container = Depends(get_container)) -> SheetSyncService:
    return container.sync_service


def require_session(
    request: Request,
    session_service: SessionService = Depends(get_session_service),
) -> SessionPayload:
    return session_service.codec.require_session(request)
