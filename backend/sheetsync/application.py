from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings
from .container import Container
from .errors import AuthenticationError, SheetSyncError, UpstreamError, ValidationError
from .routes import auth_router, sheets_router

logger = logging.getLogger(__name__)


async def handle_sheet_sync_error(request: Request, exc: SheetSyncError) -> JSONResponse:
    if isinstance(exc, AuthenticationError):
        logger.info("Rejected %s %s: %s", request.method, request.url.path, exc.cause)
    elif isinstance(exc, ValidationError):
        logger.info("Invalid request %s %s: %s", request.method, request.url.path, exc.detail)
    elif isinstance(exc, UpstreamError):
        logger.error("Upstream failure on %s %s: %s", request.method, request.url.path, exc)
    else:
        logger.error("Request %s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(exc.to_body(), status_code=exc.status_code)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure a FastAPI application instance."""

    container = Container(settings)

    app = FastAPI()
    app.state.container = container

    frontend_origin = container.settings.frontend_origin
    allow_origins = [frontend_origin] if frontend_origin != "*" else ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SheetSyncError, handle_sheet_sync_error)

    app.include_router(auth_router)
    app.include_router(sheets_router)

    @app.get("/")
    def read_root() -> Dict[str, str]:
        return {
            "project": "sheetsync",
            "status": "running",
        }

    @app.get("/config")
    def read_config() -> Dict[str, Any]:
        current = container.settings
        return {
            "requiredKeyColumn": current.required_key_column,
            "defaultColumns": list(current.default_columns),
            "defaultSheetTitle": current.default_sheet_title,
            "delimiter": current.csv_delimiter,
        }

    return app
