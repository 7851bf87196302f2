from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..errors import MissingColumnsError, ValidationError
from .csv_projector import CSV_DELIMITER, REQUIRED_KEY_COLUMN, parse_csv, project_columns, to_grid
from .sheets import GoogleSheetsClient, spreadsheet_url

logger = logging.getLogger(__name__)

DEFAULT_SHEET_TAB = "Sheet1"


@dataclass(frozen=True)
class SyncRequest:
    sheet_id: str
    columns: Tuple[str, ...]
    sheet_tab: str = DEFAULT_SHEET_TAB
    dry_run: bool = False


@dataclass(frozen=True)
class SyncResult:
    row_count: int
    column_count: int
    sheet_id: str
    sheet_tab: str
    dry_run: bool
    columns: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rowCount": self.row_count,
            "columnCount": self.column_count,
            "sheetId": self.sheet_id,
            "sheetTab": self.sheet_tab,
            "dryRun": self.dry_run,
            "columns": list(self.columns),
            "spreadsheetUrl": spreadsheet_url(self.sheet_id),
        }


def _parse_columns(columns_json: str) -> List[str]:
    try:
        decoded = json.loads(columns_json)
    except json.JSONDecodeError as exc:
        raise ValidationError("Columns must be a JSON array of column names") from exc

    if not isinstance(decoded, list) or not all(isinstance(item, str) for item in decoded):
        raise ValidationError("Columns must be a JSON array of column names")
    return decoded


def build_sync_request(
    *,
    sheet_id: Optional[str],
    sheet_name: Optional[str],
    columns_json: Optional[str],
    dry_run: Optional[str],
    default_columns: Sequence[str],
    key_column: str = REQUIRED_KEY_COLUMN,
) -> SyncRequest:
    """Validate raw form fields into a ``SyncRequest``.

    A missing ``columns`` field selects ``default_columns``. An explicit
    selection that lacks ``key_column`` is rejected rather than repaired.
    """

    normalized_sheet_id = (sheet_id or "").strip()
    if not normalized_sheet_id:
        raise ValidationError("Sheet ID is required")

    sheet_tab = (sheet_name or "").strip() or DEFAULT_SHEET_TAB
    columns = _parse_columns(columns_json) if columns_json else list(default_columns)
    if key_column not in columns:
        raise ValidationError(f"Columns must include {key_column}")

    return SyncRequest(
        sheet_id=normalized_sheet_id,
        columns=tuple(columns),
        sheet_tab=sheet_tab,
        dry_run=(dry_run or "").strip().lower() == "true",
    )


@dataclass(frozen=True)
class PreparedSync:
    """A validated request together with the grid it will write."""

    request: SyncRequest
    grid: List[List[str]]
    row_count: int

    def result(self) -> SyncResult:
        return SyncResult(
            row_count=self.row_count,
            column_count=len(self.request.columns),
            sheet_id=self.request.sheet_id,
            sheet_tab=self.request.sheet_tab,
            dry_run=self.request.dry_run,
            columns=self.request.columns,
        )


class SheetSyncService:
    """Project an uploaded CSV onto the selected columns and overwrite a sheet tab.

    ``prepare`` does every check that needs no Google call; ``apply`` is the
    only step that touches the destination. Callers obtain a fresh access
    token in between so that a renewed credential can be saved whatever
    ``apply`` does.
    """

    def __init__(
        self,
        sheets_client: GoogleSheetsClient,
        *,
        delimiter: str = CSV_DELIMITER,
        key_column: str = REQUIRED_KEY_COLUMN,
    ) -> None:
        self._sheets_client = sheets_client
        self._delimiter = delimiter
        self._key_column = key_column

    def prepare(self, request: SyncRequest, csv_bytes: bytes) -> PreparedSync:
        if self._key_column not in request.columns:
            raise ValidationError(f"Columns must include {self._key_column}")

        parsed = parse_csv(csv_bytes, delimiter=self._delimiter, key_column=self._key_column)

        missing = [column for column in request.columns if column not in parsed.headers]
        if missing:
            raise MissingColumnsError(missing)

        projected = project_columns(parsed.rows, request.columns)
        return PreparedSync(
            request=request,
            grid=to_grid(request.columns, projected),
            row_count=len(projected),
        )

    async def apply(self, prepared: PreparedSync, access_token: str) -> SyncResult:
        request = prepared.request
        if request.dry_run:
            logger.info(
                "Dry run for sheet %s/%s: %d rows x %d columns",
                request.sheet_id,
                request.sheet_tab,
                prepared.row_count,
                len(request.columns),
            )
        else:
            await self._sheets_client.overwrite_tab(
                access_token, request.sheet_id, request.sheet_tab, prepared.grid
            )
            logger.info(
                "Synced %d rows x %d columns to sheet %s/%s",
                prepared.row_count,
                len(request.columns),
                request.sheet_id,
                request.sheet_tab,
            )
        return prepared.result()
