from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from ..config import Settings
from ..dependencies import (
    get_oauth_service,
    get_session_service,
    get_settings,
    get_state_guard,
    require_session,
)
from ..errors import SheetSyncError, ValidationError
from ..services.oauth import GoogleOAuthService
from ..services.oauth_state import STATE_COOKIE, OAuthStateGuard
from ..services.session import SessionPayload, SessionService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/auth/google")
def google_login(
    oauth_service: GoogleOAuthService = Depends(get_oauth_service),
    state_guard: OAuthStateGuard = Depends(get_state_guard),
) -> RedirectResponse:
    oauth_service.ensure_credentials()

    state = state_guard.issue()
    response = RedirectResponse(oauth_service.build_authorization_url(state))
    state_guard.bind(response, state)
    return response


@router.get("/auth/google/callback")
async def google_callback(
    request: Request,
    settings: Settings = Depends(get_settings),
    oauth_service: GoogleOAuthService = Depends(get_oauth_service),
    state_guard: OAuthStateGuard = Depends(get_state_guard),
    session_service: SessionService = Depends(get_session_service),
) -> Response:
    params = request.query_params
    error = params.get("error")
    code = params.get("code")
    state = params.get("state")

    if error:
        raise ValidationError(f"Authorization failed: {error}")

    if not code or not state:
        raise ValidationError("Missing code or state")

    response = RedirectResponse(settings.frontend_redirect_url)
    if not state_guard.verify(request, response, state):
        raise ValidationError("Invalid OAuth state")

    try:
        grant = await oauth_service.exchange_code(code)
        identity = await oauth_service.fetch_identity(grant.access_token)
        credential = oauth_service.credential_from_grant(grant)
        session_service.start(response, identity, credential)
    except Exception as exc:
        if isinstance(exc, SheetSyncError):
            logger.error("OAuth callback failure: %s", exc)
        else:
            logger.exception("OAuth callback failure")
        # The state cookie was already consumed; clear it on the error response too.
        failure = JSONResponse({"detail": "Failed to complete authentication"}, status_code=500)
        failure.delete_cookie(STATE_COOKIE, path="/", secure=True, httponly=True, samesite="lax")
        return failure

    logger.info("User %s signed in", identity.id)
    return response


@router.post("/auth/logout", status_code=204)
def logout(
    request: Request,
    session_service: SessionService = Depends(get_session_service),
) -> Response:
    response = Response(status_code=204)
    session = session_service.codec.read_session(request)
    session_service.end(response, session)
    return response


@router.get("/me")
def read_me(session: SessionPayload = Depends(require_session)) -> JSONResponse:
    return JSONResponse({"user": session.identity.to_dict()})
