from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import List, Sequence, Tuple

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from sheetsync.errors import CsvFormatError, MissingColumnsError, ValidationError  # noqa: E402
from sheetsync.services.sync import (  # noqa: E402
    SheetSyncService,
    SyncRequest,
    build_sync_request,
)

CSV_BYTES = "Fatura No;Fatura Tarihi;Tutar\nF-1;2024-01-01;10\nF-2;2024-01-02;20\nF-3;2024-01-03;30\n".encode(
    "utf-8"
)


class RecordingSheetsClient:
    def __init__(self) -> None:
        self.calls: List[Tuple[str, str, str, List[List[str]]]] = []

    async def overwrite_tab(
        self, access_token: str, spreadsheet_id: str, tab_name: str, grid: Sequence[Sequence[str]]
    ) -> None:
        self.calls.append((access_token, spreadsheet_id, tab_name, [list(row) for row in grid]))


def _service() -> Tuple[SheetSyncService, RecordingSheetsClient]:
    client = RecordingSheetsClient()
    return SheetSyncService(client), client  # type: ignore[arg-type]


def _run(service: SheetSyncService, request: SyncRequest, csv_bytes: bytes = CSV_BYTES):
    prepared = service.prepare(request, csv_bytes)
    return asyncio.run(service.apply(prepared, "token"))


def test_dry_run_reports_counts_without_writing() -> None:
    service, sheets = _service()
    request = SyncRequest(sheet_id="abc123", columns=("Fatura No",), dry_run=True)

    result = _run(service, request, "Fatura No;Fatura Tarihi\nF-1;2024-01-01\n".encode("utf-8"))

    assert result.row_count == 1
    assert result.column_count == 1
    assert result.dry_run is True
    assert sheets.calls == []


def test_live_sync_clears_and_writes_projected_grid() -> None:
    service, sheets = _service()
    request = SyncRequest(sheet_id="abc123", columns=("Tutar", "Fatura No"), sheet_tab="Sheet1")

    result = _run(service, request)

    assert result.row_count == 3
    assert result.to_dict()["dryRun"] is False
    assert len(sheets.calls) == 1
    access_token, sheet_id, tab, grid = sheets.calls[0]
    assert (access_token, sheet_id, tab) == ("token", "abc123", "Sheet1")
    assert grid == [["Tutar", "Fatura No"], ["10", "F-1"], ["20", "F-2"], ["30", "F-3"]]


def test_dry_run_matches_live_counts() -> None:
    columns = ("Fatura No", "Fatura Tarihi")
    dry = _run(_service()[0], SyncRequest("abc123", columns, dry_run=True))
    live = _run(_service()[0], SyncRequest("abc123", columns))

    assert (dry.row_count, dry.column_count) == (live.row_count, live.column_count)


def test_prepare_builds_grid_without_touching_destination() -> None:
    service, sheets = _service()

    prepared = service.prepare(SyncRequest("abc123", ("Fatura No",)), CSV_BYTES)

    assert prepared.row_count == 3
    assert prepared.grid == [["Fatura No"], ["F-1"], ["F-2"], ["F-3"]]
    assert sheets.calls == []


def test_missing_columns_are_reported_exactly() -> None:
    service, sheets = _service()
    request = SyncRequest("abc123", ("Fatura No", "Gönderici", "Tutar", "Not"))

    with pytest.raises(MissingColumnsError) as excinfo:
        service.prepare(request, CSV_BYTES)

    assert excinfo.value.missing_columns == ["Gönderici", "Not"]
    assert excinfo.value.to_body()["missingColumns"] == ["Gönderici", "Not"]
    assert sheets.calls == []


def test_csv_without_key_column_is_rejected() -> None:
    service, sheets = _service()

    with pytest.raises(CsvFormatError):
        service.prepare(SyncRequest("abc123", ("Fatura No",)), b"Invoice;Date\n1;2\n")

    assert sheets.calls == []


def test_selection_without_key_column_is_rejected() -> None:
    service, sheets = _service()

    with pytest.raises(ValidationError):
        service.prepare(SyncRequest("abc123", ("Tutar",)), CSV_BYTES)

    assert sheets.calls == []


def test_build_sync_request_applies_defaults() -> None:
    request = build_sync_request(
        sheet_id=" abc123 ",
        sheet_name="  ",
        columns_json=None,
        dry_run="true",
        default_columns=("Fatura No", "Tutar"),
    )

    assert request == SyncRequest(
        sheet_id="abc123", columns=("Fatura No", "Tutar"), sheet_tab="Sheet1", dry_run=True
    )


def test_build_sync_request_parses_columns_and_tab() -> None:
    request = build_sync_request(
        sheet_id="abc123",
        sheet_name="Faturalar",
        columns_json='["Tutar", "Fatura No"]',
        dry_run="false",
        default_columns=(),
    )

    assert request.columns == ("Tutar", "Fatura No")
    assert request.sheet_tab == "Faturalar"
    assert request.dry_run is False


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"sheet_id": ""}, "Sheet ID is required"),
        ({"columns_json": '["Tutar"]'}, "Columns must include Fatura No"),
        ({"columns_json": "not json"}, "Columns must be a JSON array of column names"),
        ({"columns_json": '{"a": 1}'}, "Columns must be a JSON array of column names"),
    ],
)
def test_build_sync_request_rejects_bad_input(kwargs, message) -> None:
    values = {
        "sheet_id": "abc123",
        "sheet_name": None,
        "columns_json": None,
        "dry_run": None,
        "default_columns": ("Fatura No",),
    }
    values.update(kwargs)

    with pytest.raises(ValidationError) as excinfo:
        build_sync_request(**values)

    assert excinfo.value.detail == message
