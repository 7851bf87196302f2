from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple
from urllib.parse import urlparse

from dotenv import load_dotenv

load_dotenv()

DEFAULT_COLUMNS: Tuple[str, ...] = (
    "Fatura Tarihi",
    "Fatura No",
    "Gönderici",
    "Sipariş Numarası",
    "Ödenecek Tutar",
)

CREDENTIAL_STORAGE_MODES = ("session", "sqlite", "memory")


@dataclass(frozen=True)
class Settings:
    """Application configuration loaded from environment variables."""

    client_id: str
    client_secret: str
    redirect_uri: str
    session_secret: str
    frontend_redirect_url: str = "/"
    credential_storage: str = "session"
    tokens_path: Path = Path("google_tokens.db")
    csv_delimiter: str = ";"
    required_key_column: str = "Fatura No"
    default_columns: Tuple[str, ...] = field(default=DEFAULT_COLUMNS)
    default_sheet_title: str = "Uyumsoft Transactions"
    log_level: str = "INFO"

    @property
    def frontend_origin(self) -> str:
        parsed = urlparse(self.frontend_redirect_url)
        if not parsed.scheme:
            return "*"
        return f"{parsed.scheme}://{parsed.netloc}"

    @property
    def has_oauth_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)


def _split_columns(raw: str) -> Tuple[str, ...]:
    return tuple(column.strip() for column in raw.split(",") if column.strip())


def load_settings() -> Settings:
    tokens_env = os.getenv("GOOGLE_TOKEN_DB_PATH")
    default_tokens_path = Path(__file__).resolve().parent / "google_tokens.db"

    storage = os.getenv("CREDENTIAL_STORAGE", "session").strip().lower()
    if storage not in CREDENTIAL_STORAGE_MODES:
        raise ValueError(
            f"CREDENTIAL_STORAGE must be one of {', '.join(CREDENTIAL_STORAGE_MODES)}, got {storage!r}"
        )

    columns_env = os.getenv("DEFAULT_COLUMNS")
    default_columns = _split_columns(columns_env) if columns_env else DEFAULT_COLUMNS

    return Settings(
        client_id=os.getenv("GOOGLE_CLIENT_ID", ""),
        client_secret=os.getenv("GOOGLE_CLIENT_SECRET", ""),
        redirect_uri=os.getenv("GOOGLE_REDIRECT_URI", ""),
        session_secret=os.getenv("SESSION_SECRET", ""),
        frontend_redirect_url=os.getenv("FRONTEND_REDIRECT_URL", "/"),
        credential_storage=storage,
        tokens_path=Path(tokens_env) if tokens_env else default_tokens_path,
        csv_delimiter=os.getenv("CSV_DELIMITER", ";") or ";",
        required_key_column=os.getenv("REQUIRED_KEY_COLUMN", "Fatura No"),
        default_columns=default_columns,
        default_sheet_title=os.getenv("DEFAULT_SHEET_TITLE", "Uyumsoft Transactions"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
