from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Protocol


@dataclass(frozen=True)
class Credential:
    """Google OAuth credential pair with an absolute access-token expiry."""

    access_token: str
    refresh_token: str
    expires_at: datetime
    scope: str = ""

    def seconds_remaining(self, now: Optional[datetime] = None) -> float:
        current = now or datetime.now(timezone.utc)
        return (self.expires_at - current).total_seconds()

    def differs_from(self, other: "Credential") -> bool:
        return self.access_token != other.access_token or self.expires_at != other.expires_at


@dataclass(frozen=True)
class StoredCredential:
    """Credential saved server-side, keyed by the Google user id."""

    user_id: str
    email: str
    name: str
    credential: Credential
    saved_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "StoredCredential":
        return cls(
            user_id=row["user_id"],
            email=row["email"] or "",
            name=row["name"] or "",
            credential=Credential(
                access_token=row["access_token"],
                refresh_token=row["refresh_token"],
                expires_at=datetime.fromisoformat(row["expires_at"]),
                scope=row["scope"] or "",
            ),
            saved_at=datetime.fromisoformat(row["saved_at"]),
        )


class CredentialStore(Protocol):
    def get(self, user_id: str) -> Optional[StoredCredential]: ...

    def put(self, stored: StoredCredential) -> StoredCredential: ...

    def delete(self, user_id: str) -> None: ...


class InMemoryCredentialStore:
    """Process-local store; contents are lost on restart."""

    def __init__(self) -> None:
        self._items: Dict[str, StoredCredential] = {}

    def get(self, user_id: str) -> Optional[StoredCredential]:
        return self._items.get(user_id.strip())

    def put(self, stored: StoredCredential) -> StoredCredential:
        normalized_user_id = stored.user_id.strip()
        if not normalized_user_id:
            raise ValueError("user_id must be a non-empty string")
        self._items[normalized_user_id] = stored
        return stored

    def delete(self, user_id: str) -> None:
        self._items.pop(user_id.strip(), None)


class SqliteCredentialStore:
    """Persist Google OAuth credentials to a SQLite database."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _initialize(self) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS google_credentials (
                    user_id TEXT PRIMARY KEY,
                    email TEXT,
                    name TEXT,
                    access_token TEXT NOT NULL,
                    refresh_token TEXT NOT NULL,
                    scope TEXT,
                    expires_at TEXT NOT NULL,
                    saved_at TEXT NOT NULL
                )
                """
            )

    def get(self, user_id: str) -> Optional[StoredCredential]:
        normalized_user_id = user_id.strip()
        if not normalized_user_id:
            return None

        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM google_credentials WHERE user_id = ?",
                (normalized_user_id,),
            )
            row = cursor.fetchone()

        return StoredCredential.from_row(row) if row else None

    def put(self, stored: StoredCredential) -> StoredCredential:
        normalized_user_id = stored.user_id.strip()
        if not normalized_user_id:
            raise ValueError("user_id must be a non-empty string")

        credential = stored.credential
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO google_credentials (
                    user_id, email, name, access_token, refresh_token, scope, expires_at, saved_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    email=excluded.email,
                    name=excluded.name,
                    access_token=excluded.access_token,
                    refresh_token=excluded.refresh_token,
                    scope=excluded.scope,
                    expires_at=excluded.expires_at,
                    saved_at=excluded.saved_at
                """,
                (
                    normalized_user_id,
                    stored.email,
                    stored.name,
                    credential.access_token,
                    credential.refresh_token,
                    credential.scope,
                    credential.expires_at.isoformat(),
                    stored.saved_at.isoformat(),
                ),
            )

        return stored

    def delete(self, user_id: str) -> None:
        normalized_user_id = user_id.strip()
        if not normalized_user_id:
            return

        with self._get_connection() as conn:
            conn.execute(
                "DELETE FROM google_credentials WHERE user_id = ?",
                (normalized_user_id,),
            )
