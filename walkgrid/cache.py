"""SQLite cache for Places and route-matrix API responses."""
from __future__ import annotations

import hashlib
import json
import sqlite3
from typing import Any, Dict, Optional

from .reporting import utc_now_iso


def make_request_cache_key(url: str, field_mask: str, body: Dict[str, Any]) -> str:
    payload = json.dumps(body, sort_keys=True, separators=(",", ":"))
    raw = f"{url}|{field_mask}|{payload}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


class Cache:
    def __init__(self, db_path: str, commit_every: int = 50) -> None:
        self.db_path = db_path
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        self._pending_writes = 0
        self._commit_every = max(1, int(commit_every))
        self._configure_conn()
        self._init_db()

    def _configure_conn(self) -> None:
        cur = self.conn.cursor()
        try:
            cur.execute("PRAGMA journal_mode=WAL")
            cur.fetchone()
        except sqlite3.DatabaseError:
            pass
        try:
            cur.execute("PRAGMA synchronous=NORMAL")
        except sqlite3.DatabaseError:
            pass

    def _init_db(self) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS places_search_cache (
                key TEXT PRIMARY KEY,
                category TEXT,
                response_json TEXT,
                created_at TEXT
            )
            """
        )
        # Route-matrix bodies are stored verbatim: they may be NDJSON, not one document.
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS route_matrix_cache (
                key TEXT PRIMARY KEY,
                destination_count INTEGER,
                response_text TEXT,
                created_at TEXT
            )
            """
        )
        self.conn.commit()

    def _mark_dirty(self) -> None:
        self._pending_writes += 1
        if self._pending_writes >= self._commit_every:
            self.commit()

    def commit(self) -> None:
        if self._pending_writes:
            self.conn.commit()
            self._pending_writes = 0

    def close(self) -> None:
        self.commit()
        self.conn.close()

    def get_search_cache(self, key: str) -> Optional[Dict[str, Any]]:
        cur = self.conn.cursor()
        cur.execute("SELECT response_json FROM places_search_cache WHERE key = ?", (key,))
        row = cur.fetchone()
        if not row:
            return None
        return json.loads(row["response_json"])

    def set_search_cache(self, key: str, category: str, response: Dict[str, Any]) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            INSERT OR REPLACE INTO places_search_cache (key, category, response_json, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (key, category, json.dumps(response), utc_now_iso()),
        )
        self._mark_dirty()

    def get_route_matrix_cache(self, key: str) -> Optional[str]:
        cur = self.conn.cursor()
        cur.execute("SELECT response_text FROM route_matrix_cache WHERE key = ?", (key,))
        row = cur.fetchone()
        if not row:
            return None
        return row["response_text"]

    def set_route_matrix_cache(self, key: str, destination_count: int, response_text: str) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            INSERT OR REPLACE INTO route_matrix_cache (key, destination_count, response_text, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (key, destination_count, response_text, utc_now_iso()),
        )
        self._mark_dirty()
