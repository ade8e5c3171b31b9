"""SQLite-backed progress store -- which remote items are already handled.

Single WAL-mode database holding one row per remote path (last outcome,
attempt count, whether the item is done) and one marker row per remote
source. Thread-safe via per-thread connections and SQLite's built-in
locking: the coordinator thread reads while lane worker threads write.

Every per-path update is one UPSERT statement committed on its own, so
paths never see half-applied state and writes for different paths may
interleave freely.
"""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger

from .errors import ProgressError
from .models import FetchedItem, ProcessingResult, ResultStatus

log = logger.bind(stage="db")

_SCHEMA = """\
PRAGMA journal_mode=WAL;
PRAGMA busy_timeout=5000;

CREATE TABLE IF NOT EXISTS items (
    remote_path   TEXT PRIMARY KEY,
    source        TEXT NOT NULL DEFAULT '',
    status        TEXT NOT NULL,
    done          INTEGER NOT NULL DEFAULT 0,
    attempts      INTEGER NOT NULL DEFAULT 0,
    content_class TEXT,
    local_path    TEXT,
    modified_at   TEXT,
    summary       TEXT,
    reason        TEXT,
    error         TEXT,
    category      TEXT,
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS markers (
    source        TEXT PRIMARY KEY,
    last_modified TEXT,
    last_path     TEXT,
    updated_at    TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_items_status ON items(status);
"""


def _utcnow() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class ProgressStore:
    """SQLite-backed record of processed remote items.

    Thread-safe: each thread gets its own connection via threading.local().
    The database uses WAL mode for concurrent readers + single writer.
    """

    def __init__(self, db_path: Path, max_retries: int = 3) -> None:
        self.db_path = db_path
        self.max_retries = max_retries
        self._local = threading.local()
        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create a per-thread SQLite connection."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), timeout=10.0)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=5000")
            self._local.conn = conn
        return conn

    def _init_schema(self) -> None:
        conn = self._get_conn()
        conn.executescript(_SCHEMA)
        conn.commit()

    def close(self) -> None:
        """Close the current thread's connection."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    # -- Item API --

    def is_done(self, remote_path: str, modified_at: datetime | None = None) -> bool:
        """True if the item reached a final outcome and has not changed since.

        When both the stored and the given modification times are known and
        the remote copy is newer, the item counts as not done so the changed
        file is picked up again.
        """
        row = self._get_conn().execute(
            "SELECT done, modified_at FROM items WHERE remote_path = ?",
            (remote_path,),
        ).fetchone()
        if row is None or not row["done"]:
            return False
        stored = _from_iso(row["modified_at"])
        if modified_at is not None and stored is not None:
            return _from_iso(_to_iso(modified_at)) <= stored
        return True

    def mark_done(
        self,
        remote_path: str,
        result: ProcessingResult | None = None,
        item: FetchedItem | None = None,
        source: str = "",
    ) -> None:
        """Record a final outcome for remote_path and advance the source marker."""
        if result is None:
            result = ProcessingResult.ok(remote_path, "")
        modified_at = item.modified_at if item else None
        now = _utcnow()
        conn = self._get_conn()
        conn.execute(
            """INSERT INTO items
               (remote_path, source, status, done, attempts, content_class,
                local_path, modified_at, summary, reason, error, category,
                created_at, updated_at)
               VALUES (?, ?, ?, 1, 0, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(remote_path) DO UPDATE SET
                 source = excluded.source,
                 status = excluded.status,
                 done = 1,
                 attempts = 0,
                 content_class = COALESCE(excluded.content_class, items.content_class),
                 local_path = COALESCE(excluded.local_path, items.local_path),
                 modified_at = COALESCE(excluded.modified_at, items.modified_at),
                 summary = excluded.summary,
                 reason = excluded.reason,
                 error = excluded.error,
                 category = excluded.category,
                 updated_at = excluded.updated_at""",
            (
                remote_path,
                source,
                str(result.status),
                str(item.content_class) if item else None,
                str(item.local_path) if item else None,
                _to_iso(modified_at),
                result.summary,
                result.reason,
                result.error,
                str(result.category) if result.category else None,
                now,
                now,
            ),
        )
        conn.commit()
        log.debug(f"mark_done {remote_path} status={result.status}")
        if source and modified_at is not None:
            self.advance_marker(source, modified_at, remote_path)

    def record_failure(
        self,
        remote_path: str,
        result: ProcessingResult,
        item: FetchedItem | None = None,
        source: str = "",
    ) -> int:
        """Count a transient failure. Returns the attempt count so far.

        Once attempts reach max_retries the failure is made final so a
        permanently broken file is not retried on every poll.
        A failure on a row that was already done starts a new count: that
        row was reprocessed because the remote file changed.
        """
        now = _utcnow()
        conn = self._get_conn()
        conn.execute(
            """INSERT INTO items
               (remote_path, source, status, done, attempts, error, category,
                created_at, updated_at)
               VALUES (?, ?, ?, 0, 1, ?, ?, ?, ?)
               ON CONFLICT(remote_path) DO UPDATE SET
                 status = excluded.status,
                 done = 0,
                 attempts = CASE WHEN items.done THEN 1 ELSE items.attempts + 1 END,
                 error = excluded.error,
                 category = excluded.category,
                 updated_at = excluded.updated_at""",
            (
                remote_path,
                source,
                str(result.status),
                result.error,
                str(result.category) if result.category else None,
                now,
                now,
            ),
        )
        conn.commit()
        attempts = conn.execute(
            "SELECT attempts FROM items WHERE remote_path = ?", (remote_path,)
        ).fetchone()["attempts"]
        log.warning(f"record_failure {remote_path} attempts={attempts} error={result.error}")

        if attempts >= self.max_retries:
            log.error(f"Giving up on {remote_path} after {attempts} attempts")
            conn.execute(
                "UPDATE items SET done = 1, modified_at = COALESCE(?, modified_at) "
                "WHERE remote_path = ?",
                (_to_iso(item.modified_at) if item else None, remote_path),
            )
            conn.commit()
        return attempts

    def get(self, remote_path: str) -> dict | None:
        """Read one item row as a dict."""
        row = self._get_conn().execute(
            "SELECT * FROM items WHERE remote_path = ?", (remote_path,)
        ).fetchone()
        return dict(row) if row else None

    def list_items(self, status: ResultStatus | str | None = None) -> list[dict]:
        """List item rows, optionally filtered by last status."""
        query = "SELECT * FROM items"
        params: list[Any] = []
        if status:
            query += " WHERE status = ?"
            params.append(str(status))
        rows = self._get_conn().execute(query + " ORDER BY remote_path", params).fetchall()
        return [dict(r) for r in rows]

    def counts(self) -> dict[str, int]:
        """Number of items per last status."""
        rows = self._get_conn().execute(
            "SELECT status, COUNT(*) AS n FROM items GROUP BY status"
        ).fetchall()
        return {r["status"]: r["n"] for r in rows}

    def reset(self, remote_path: str) -> bool:
        """Forget an item so the next run processes it again."""
        conn = self._get_conn()
        cur = conn.execute("DELETE FROM items WHERE remote_path = ?", (remote_path,))
        conn.commit()
        return cur.rowcount > 0

    # -- Marker API --

    def get_marker(self, source: str) -> dict | None:
        """Return {'last_modified': datetime|None, 'last_path': str|None} or None."""
        row = self._get_conn().execute(
            "SELECT last_modified, last_path FROM markers WHERE source = ?", (source,)
        ).fetchone()
        if row is None:
            return None
        return {
            "last_modified": _from_iso(row["last_modified"]),
            "last_path": row["last_path"],
        }

    def advance_marker(self, source: str, modified_at: datetime, remote_path: str) -> bool:
        """Move the source marker forward. Never moves it back.

        Returns True if the marker changed.
        """
        if not source:
            raise ProgressError("advance_marker requires a source id")
        iso = _to_iso(modified_at)
        conn = self._get_conn()
        # Single statement: a concurrent writer cannot interleave a regress
        cur = conn.execute(
            """INSERT INTO markers (source, last_modified, last_path, updated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(source) DO UPDATE SET
                 last_modified = excluded.last_modified,
                 last_path = excluded.last_path,
                 updated_at = excluded.updated_at
               WHERE markers.last_modified IS NULL
                  OR excluded.last_modified > markers.last_modified""",
            (source, iso, remote_path, _utcnow()),
        )
        conn.commit()
        return cur.rowcount > 0
