"""Error taxonomy shared by services and routers.

Services raise these instead of HTTP responses; ``application.create_app``
registers a single handler that turns them into JSON error bodies.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


class SheetSyncError(Exception):
    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: Optional[str] = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    def to_body(self) -> Dict[str, Any]:
        return {"detail": self.detail}


class ConfigurationError(SheetSyncError):
    default_detail = "Google OAuth environment variables are not configured."


class ValidationError(SheetSyncError):
    """Bad or missing request input; raised before any remote call."""

    status_code = 400
    default_detail = "Invalid request"


class CsvFormatError(ValidationError):
    default_detail = "CSV file could not be parsed"


class MissingColumnsError(ValidationError):
    default_detail = "Some selected columns are missing in the CSV"

    def __init__(self, missing_columns: Sequence[str]) -> None:
        super().__init__()
        self.missing_columns: List[str] = list(missing_columns)

    def to_body(self) -> Dict[str, Any]:
        body = super().to_body()
        body["missingColumns"] = list(self.missing_columns)
        return body


class AuthenticationError(SheetSyncError):
    """Missing, invalid or expired session.

    The outward detail is always generic; ``cause`` is only logged.
    """

    status_code = 401
    default_detail = "Unauthorized"

    def __init__(self, cause: str) -> None:
        super().__init__()
        self.cause = cause


class MissingSessionError(AuthenticationError):
    def __init__(self) -> None:
        super().__init__("no session cookie")


class InvalidSessionError(AuthenticationError):
    pass


class UpstreamError(SheetSyncError):
    """Non-2xx or malformed response from Google."""

    default_detail = "Google request failed"

    def __init__(
        self,
        action: str,
        *,
        status: Optional[int] = None,
        body: str = "",
        detail: Optional[str] = None,
    ) -> None:
        super().__init__(detail)
        self.action = action
        self.status = status
        self.body = body

    def __str__(self) -> str:
        if self.status is None:
            return f"{self.action}: {self.body}"
        return f"{self.action}: {self.status} {self.body}"


class PartialSyncError(UpstreamError):
    """The clear/write pair failed part way; the destination tab is undefined."""

    default_detail = "Failed to sync sheet"

    def __init__(self, stage: str, *, status: Optional[int] = None, body: str = "") -> None:
        super().__init__(f"overwrite tab ({stage})", status=status, body=body)
        self.stage = stage
