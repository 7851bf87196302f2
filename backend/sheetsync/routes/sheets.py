from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.datastructures import UploadFile

from ..config import Settings
from ..dependencies import (
    get_oauth_service,
    get_session_service,
    get_settings,
    get_sheets_client,
    get_sync_service,
    require_session,
)
from ..errors import SheetSyncError, ValidationError
from ..services.csv_projector import parse_csv, suggest_columns
from ..services.oauth import GoogleOAuthService
from ..services.session import SessionPayload, SessionService
from ..services.sheets import GoogleSheetsClient
from ..services.sync import SheetSyncService, build_sync_request
from ..token_store import Credential

logger = logging.getLogger(__name__)

router = APIRouter()


class SheetCreateRequest(BaseModel):
    title: Optional[str] = Field(None, description="New spreadsheet title")


def _form_text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


async def _read_upload(value: Any) -> bytes:
    if not isinstance(value, UploadFile):
        raise ValidationError("CSV file is required")
    return await value.read()


async def _read_title(request: Request) -> str:
    try:
        payload = SheetCreateRequest.model_validate(await request.json())
    except ValueError as exc:
        raise ValidationError("Title is required") from exc
    return (payload.title or "").strip()


def _failure_response(
    detail: str,
    session_service: SessionService,
    session: SessionPayload,
    previous: Credential,
    current: Credential,
) -> JSONResponse:
    """Render a generic 500 that still carries a renewed credential."""

    error = SheetSyncError(detail)
    response = JSONResponse(error.to_body(), status_code=error.status_code)
    session_service.persist(response, session, previous, current)
    return response


async def _fresh_credential(
    oauth_service: GoogleOAuthService, credential: Credential, failure: str, user_id: str
) -> Credential:
    try:
        return await oauth_service.ensure_fresh_access_token(credential)
    except Exception as exc:
        logger.error("Token refresh failed for user %s: %s", user_id, exc)
        raise SheetSyncError(failure) from exc


@router.get("/sheets")
async def list_sheets(
    response: Response,
    session: SessionPayload = Depends(require_session),
    session_service: SessionService = Depends(get_session_service),
    oauth_service: GoogleOAuthService = Depends(get_oauth_service),
    sheets_client: GoogleSheetsClient = Depends(get_sheets_client),
) -> Any:
    credential = session_service.credential_for(session)
    fresh = await _fresh_credential(oauth_service, credential, "Failed to list sheets", session.user_id)
    try:
        sheets = await sheets_client.list_spreadsheets(fresh.access_token)
    except Exception as exc:
        logger.error("Failed to list sheets for user %s: %s", session.user_id, exc)
        return _failure_response("Failed to list sheets", session_service, session, credential, fresh)

    session_service.persist(response, session, credential, fresh)
    return {"sheets": sheets}


@router.post("/sheets", status_code=201)
async def create_sheet(
    request: Request,
    response: Response,
    session: SessionPayload = Depends(require_session),
    session_service: SessionService = Depends(get_session_service),
    oauth_service: GoogleOAuthService = Depends(get_oauth_service),
    sheets_client: GoogleSheetsClient = Depends(get_sheets_client),
) -> Any:
    credential = session_service.credential_for(session)
    title = await _read_title(request)
    if not title:
        raise ValidationError("Title is required")

    fresh = await _fresh_credential(oauth_service, credential, "Failed to create sheet", session.user_id)
    try:
        sheet = await sheets_client.create_spreadsheet(fresh.access_token, title)
    except Exception as exc:
        logger.error("Failed to create sheet for user %s: %s", session.user_id, exc)
        return _failure_response("Failed to create sheet", session_service, session, credential, fresh)

    session_service.persist(response, session, credential, fresh)
    logger.info("Created spreadsheet %s for user %s", sheet["id"], session.user_id)
    return sheet


@router.post("/csv/preview")
async def preview_csv(
    request: Request,
    session: SessionPayload = Depends(require_session),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    form = await request.form()
    content = await _read_upload(form.get("file"))
    parsed = parse_csv(
        content,
        delimiter=settings.csv_delimiter,
        key_column=settings.required_key_column,
    )
    return {
        "headers": parsed.headers,
        "rowCount": parsed.row_count,
        "suggestedColumns": suggest_columns(
            parsed.headers,
            settings.default_columns,
            key_column=settings.required_key_column,
        ),
        "requiredKeyColumn": settings.required_key_column,
    }


@router.post("/sync")
async def sync_sheet(
    request: Request,
    response: Response,
    session: SessionPayload = Depends(require_session),
    settings: Settings = Depends(get_settings),
    session_service: SessionService = Depends(get_session_service),
    oauth_service: GoogleOAuthService = Depends(get_oauth_service),
    sync_service: SheetSyncService = Depends(get_sync_service),
) -> Any:
    credential = session_service.credential_for(session)

    form = await request.form()
    dry_run_field = _form_text(form.get("dryRun"))
    dry_run = (dry_run_field or "").strip().lower() == "true"
    failure = "Dry run failed" if dry_run else "Failed to sync sheet"

    sync_request = build_sync_request(
        sheet_id=_form_text(form.get("sheetId")),
        sheet_name=_form_text(form.get("sheetName")),
        columns_json=_form_text(form.get("columns")),
        dry_run=dry_run_field,
        default_columns=settings.default_columns,
        key_column=settings.required_key_column,
    )
    content = await _read_upload(form.get("file"))
    prepared = sync_service.prepare(sync_request, content)

    fresh = await _fresh_credential(oauth_service, credential, failure, session.user_id)
    try:
        result = await sync_service.apply(prepared, fresh.access_token)
    except Exception as exc:
        if isinstance(exc, SheetSyncError):
            logger.error("Sync failed for user %s: %s", session.user_id, exc)
        else:
            logger.exception("Sync failed for user %s", session.user_id)
        return _failure_response(failure, session_service, session, credential, fresh)

    session_service.persist(response, session, credential, fresh)
    return result.to_dict()
