"""
Purpose: Durable session storage on SQLite.
Schema: one `sessions` table; the transcript and analysis report are JSON
documents in TEXT columns (whole-document overwrite, never patched).

Conditional writes are single UPDATE statements with the condition in the
WHERE clause, so they are atomic even across processes sharing the file:
- write_summary:  ... WHERE id = ? AND memory_summary IS NULL
- claim:          ... WHERE id = ? AND memory_summary IS NULL
                      AND (claim_token IS NULL OR claim_token = ? OR claim_expires_at <= ?)

Timestamps are stored as fixed-width UTC ISO-8601 strings so they compare
correctly as text.
"""

from __future__ import annotations
import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterator, Optional

from ..errors import SessionNotFound, StoreUnavailable, StoreWriteConflict
from ..models import AnalysisReport, Session, Turn, utcnow

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id               TEXT PRIMARY KEY,
    owner_id         TEXT NOT NULL,
    created_at       TEXT NOT NULL,
    topic            TEXT,
    transcript       TEXT NOT NULL DEFAULT '[]',
    memory_summary   TEXT,
    analysis_report  TEXT,
    claim_token      TEXT,
    claim_expires_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_sessions_owner_open
    ON sessions (owner_id, memory_summary, created_at);
"""


def _ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteSessionStore:
    def __init__(
        self,
        path: str | Path = ":memory:",
        *,
        clock: Callable[[], datetime] = utcnow,
        timeout: float = 5.0,
    ) -> None:
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(
                str(path), timeout=timeout, check_same_thread=False, isolation_level=None
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"cannot open session database {path}: {e}") from e

    @contextmanager
    def _tx(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                try:
                    yield self._conn
                except BaseException:
                    self._conn.execute("ROLLBACK")
                    raise
                self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                raise StoreUnavailable(f"session database error: {e}") from e

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreUnavailable(f"session database error: {e}") from e

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ---------------------------
    # Gateway
    # ---------------------------
    def create(self, owner_id: str, topic: Optional[str] = None) -> str:
        session_id = uuid.uuid4().hex
        with self._tx() as conn:
            conn.execute(
                "INSERT INTO sessions (id, owner_id, created_at, topic) VALUES (?, ?, ?, ?)",
                (session_id, owner_id, _ts(self._clock()), topic),
            )
        logger.debug("created session %s for owner %s", session_id, owner_id)
        return session_id

    def get(self, session_id: str) -> Session:
        rows = self._query("SELECT * FROM sessions WHERE id = ?", (session_id,))
        if not rows:
            raise SessionNotFound(session_id)
        row = rows[0]
        report = row["analysis_report"]
        return Session(
            id=row["id"],
            owner_id=row["owner_id"],
            created_at=_parse_ts(row["created_at"]),
            topic=row["topic"],
            transcript=[Turn.from_dict(d) for d in json.loads(row["transcript"])],
            memory_summary=row["memory_summary"],
            analysis_report=AnalysisReport.from_dict(json.loads(report)) if report else None,
            claim_token=row["claim_token"],
            claim_expires_at=_parse_ts(row["claim_expires_at"]),
        )

    def read_transcript(self, session_id: str) -> list[Turn]:
        rows = self._query("SELECT transcript FROM sessions WHERE id = ?", (session_id,))
        if not rows:
            raise SessionNotFound(session_id)
        return [Turn.from_dict(d) for d in json.loads(rows[0]["transcript"])]

    def overwrite_transcript(self, session_id: str, turns: list[Turn]) -> None:
        doc = json.dumps([t.to_dict() for t in turns], ensure_ascii=False)
        with self._tx() as conn:
            cur = conn.execute(
                "UPDATE sessions SET transcript = ? WHERE id = ?", (doc, session_id)
            )
            if cur.rowcount == 0:
                raise SessionNotFound(session_id)

    def write_summary(self, session_id: str, text: str) -> None:
        with self._tx() as conn:
            cur = conn.execute(
                "UPDATE sessions SET memory_summary = ?, claim_token = NULL, "
                "claim_expires_at = NULL WHERE id = ? AND memory_summary IS NULL",
                (text, session_id),
            )
            if cur.rowcount == 0:
                exists = conn.execute(
                    "SELECT 1 FROM sessions WHERE id = ?", (session_id,)
                ).fetchone()
                if exists is None:
                    raise SessionNotFound(session_id)
                raise StoreWriteConflict(f"summary already set for {session_id}")

    def write_analysis(self, session_id: str, report: AnalysisReport) -> None:
        doc = json.dumps(report.to_dict(), ensure_ascii=False)
        with self._tx() as conn:
            cur = conn.execute(
                "UPDATE sessions SET analysis_report = ? WHERE id = ?", (doc, session_id)
            )
            if cur.rowcount == 0:
                raise SessionNotFound(session_id)

    def list_open_sessions(self, owner_id: str, older_than: datetime) -> list[str]:
        rows = self._query(
            "SELECT id FROM sessions WHERE owner_id = ? AND memory_summary IS NULL "
            "AND created_at < ? ORDER BY created_at",
            (owner_id, _ts(older_than)),
        )
        return [r["id"] for r in rows]

    def latest_summary(self, owner_id: str) -> Optional[str]:
        rows = self._query(
            "SELECT memory_summary FROM sessions WHERE owner_id = ? "
            "AND memory_summary IS NOT NULL ORDER BY created_at DESC LIMIT 1",
            (owner_id,),
        )
        return rows[0]["memory_summary"] if rows else None

    def claim(self, session_id: str, token: str, ttl_seconds: float) -> bool:
        now = self._clock()
        with self._tx() as conn:
            cur = conn.execute(
                "UPDATE sessions SET claim_token = ?, claim_expires_at = ? "
                "WHERE id = ? AND memory_summary IS NULL AND ("
                "claim_token IS NULL OR claim_token = ? OR claim_expires_at <= ?)",
                (
                    token,
                    _ts(now + timedelta(seconds=ttl_seconds)),
                    session_id,
                    token,
                    _ts(now),
                ),
            )
            if cur.rowcount == 1:
                return True
            exists = conn.execute(
                "SELECT 1 FROM sessions WHERE id = ?", (session_id,)
            ).fetchone()
        if exists is None:
            raise SessionNotFound(session_id)
        return False

    def release(self, session_id: str, token: str) -> None:
        with self._tx() as conn:
            conn.execute(
                "UPDATE sessions SET claim_token = NULL, claim_expires_at = NULL "
                "WHERE id = ? AND claim_token = ?",
                (session_id, token),
            )
