from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence

from ..errors import CsvFormatError

CSV_DELIMITER = ";"
REQUIRED_KEY_COLUMN = "Fatura No"

CsvRow = Dict[str, str]

__all__ = [
    "CSV_DELIMITER",
    "REQUIRED_KEY_COLUMN",
    "CsvRow",
    "ParsedCsv",
    "parse_csv",
    "project_columns",
    "to_grid",
    "normalize_column_selection",
    "suggest_columns",
]


@dataclass
class ParsedCsv:
    headers: List[str]
    rows: List[CsvRow] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


def _decode(buffer: bytes) -> str:
    try:
        # utf-8-sig drops a leading byte-order mark when present.
        return buffer.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise CsvFormatError("CSV file must be UTF-8 encoded") from exc


def _header_positions(header_row: Sequence[str]) -> Dict[str, int]:
    positions: Dict[str, int] = {}
    for index, name in enumerate(header_row):
        if not name.strip() or name in positions:
            continue
        positions[name] = index
    return positions


def parse_csv(
    buffer: bytes,
    *,
    delimiter: str = CSV_DELIMITER,
    key_column: str = REQUIRED_KEY_COLUMN,
) -> ParsedCsv:
    """Parse a delimited export into header-keyed rows.

    The first record is the header. Every returned row carries every header,
    with absent cells filled by an empty string.
    """

    text = _decode(buffer)
    try:
        records = [row for row in csv.reader(io.StringIO(text, newline=""), delimiter=delimiter) if row]
    except csv.Error as exc:
        raise CsvFormatError(f"CSV file could not be parsed: {exc}") from exc

    if len(records) < 2:
        raise CsvFormatError("CSV file does not contain any rows")

    positions = _header_positions(records[0])
    headers = list(positions)
    if key_column not in positions:
        raise CsvFormatError(f"CSV file must include column: {key_column}")

    rows: List[CsvRow] = []
    for record in records[1:]:
        rows.append(
            {
                header: record[index] if index < len(record) else ""
                for header, index in positions.items()
            }
        )

    return ParsedCsv(headers=headers, rows=rows)


def project_columns(rows: Iterable[CsvRow], columns: Sequence[str]) -> List[CsvRow]:
    return [{column: row.get(column, "") for column in columns} for row in rows]


def to_grid(columns: Sequence[str], rows: Iterable[CsvRow]) -> List[List[str]]:
    """Build the value grid written to a sheet tab: header row first."""

    grid: List[List[str]] = [list(columns)]
    for row in rows:
        grid.append([row.get(column, "") for column in columns])
    return grid


def normalize_column_selection(
    columns: Iterable[str], *, key_column: str = REQUIRED_KEY_COLUMN
) -> List[str]:
    """De-duplicate a selection and make sure it carries the key column."""

    selection: List[str] = []
    for column in columns:
        if column not in selection:
            selection.append(column)
    if key_column not in selection:
        selection.append(key_column)
    return selection


def suggest_columns(
    headers: Sequence[str],
    defaults: Sequence[str],
    *,
    key_column: str = REQUIRED_KEY_COLUMN,
) -> List[str]:
    preferred = [header for header in headers if header in defaults]
    return normalize_column_selection(preferred or [key_column], key_column=key_column)
