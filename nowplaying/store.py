from __future__ import annotations

import os
import sqlite3
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from nowplaying.errors import StoreError
from nowplaying.models import CredentialRecord


class CredentialStore:
    """sqlite-backed mapping from Spotify user id to its credential row.

    Every call opens its own connection, so the store can be shared across
    worker threads without extra locking.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def init_schema(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.db_path))
        os.makedirs(directory, exist_ok=True)
        try:
            with self._transaction() as con:
                con.execute("""
                CREATE TABLE IF NOT EXISTS tokens (
                    user_id        TEXT PRIMARY KEY,
                    access_token   TEXT NOT NULL,
                    refresh_token  TEXT NOT NULL,
                    expires_at     REAL NOT NULL,   -- epoch seconds
                    created_at     REAL NOT NULL,
                    updated_at     REAL NOT NULL
                );
                """)
        except sqlite3.Error as exc:
            raise StoreError(f"Could not initialize credential table: {exc}") from exc

    def get(self, user_id: str) -> Optional[CredentialRecord]:
        try:
            with self._transaction() as con:
                row = con.execute("""
                    SELECT user_id, access_token, refresh_token, expires_at
                    FROM tokens
                    WHERE user_id = ?
                """, (user_id,)).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not read credential for {user_id}: {exc}") from exc
        if not row:
            return None
        return CredentialRecord(**dict(row))

    def put(self, record: CredentialRecord) -> None:
        """Insert or replace the row; an empty refresh token keeps the stored one."""
        now = time.time()
        try:
            with self._transaction() as con:
                con.execute("""
                    INSERT INTO tokens (user_id, access_token, refresh_token, expires_at, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        access_token  = excluded.access_token,
                        refresh_token = COALESCE(NULLIF(excluded.refresh_token, ''), tokens.refresh_token),
                        expires_at    = excluded.expires_at,
                        updated_at    = excluded.updated_at
                """, (
                    record.user_id,
                    record.access_token,
                    record.refresh_token,
                    record.expires_at,
                    now,
                    now,
                ))
        except sqlite3.Error as exc:
            raise StoreError(f"Could not write credential for {record.user_id}: {exc}") from exc

    def delete(self, user_id: str) -> int:
        """Remove the row and return the number of rows affected."""
        try:
            with self._transaction() as con:
                cur = con.execute("DELETE FROM tokens WHERE user_id = ?", (user_id,))
                return cur.rowcount
        except sqlite3.Error as exc:
            raise StoreError(f"Could not delete credential for {user_id}: {exc}") from exc
