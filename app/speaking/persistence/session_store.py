"""
Purpose: Session transcript & metadata storage, in-memory backend.
Why: Tests, single-process deployments, and the reference semantics the SQLite
backend must match.

What is inside:
InMemorySessionStore implementing the SessionStore gateway:
create, get, read_transcript, overwrite_transcript (whole-document),
write_summary (conditional: fails with StoreWriteConflict when already set),
write_analysis, list_open_sessions, latest_summary, claim/release.

Every method takes one lock, so each call is atomic with respect to the others;
claim() is the conditional update the finalizer relies on.

Testing:
In-memory: simple state tests, plus the shared store contract tests.
"""

from __future__ import annotations
import copy
import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..errors import SessionNotFound, StoreWriteConflict
from ..models import AnalysisReport, Session, Turn, utcnow

logger = logging.getLogger(__name__)


class InMemorySessionStore:
    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def create(self, owner_id: str, topic: Optional[str] = None) -> str:
        session_id = uuid.uuid4().hex
        with self._lock:
            self._sessions[session_id] = Session(
                id=session_id,
                owner_id=owner_id,
                created_at=self._clock(),
                topic=topic,
            )
        logger.debug("created session %s for owner %s", session_id, owner_id)
        return session_id

    def get(self, session_id: str) -> Session:
        """Return a detached copy; callers never mutate stored state directly."""
        with self._lock:
            return copy.deepcopy(self._require(session_id))

    def read_transcript(self, session_id: str) -> list[Turn]:
        with self._lock:
            return list(self._require(session_id).transcript)

    def overwrite_transcript(self, session_id: str, turns: list[Turn]) -> None:
        with self._lock:
            self._require(session_id).transcript = list(turns)

    def write_summary(self, session_id: str, text: str) -> None:
        with self._lock:
            session = self._require(session_id)
            if session.memory_summary is not None:
                raise StoreWriteConflict(f"summary already set for {session_id}")
            session.memory_summary = text
            session.claim_token = None
            session.claim_expires_at = None

    def write_analysis(self, session_id: str, report: AnalysisReport) -> None:
        with self._lock:
            self._require(session_id).analysis_report = copy.deepcopy(report)

    def list_open_sessions(self, owner_id: str, older_than: datetime) -> list[str]:
        with self._lock:
            found = [
                s
                for s in self._sessions.values()
                if s.owner_id == owner_id
                and s.memory_summary is None
                and s.created_at < older_than
            ]
        return [s.id for s in sorted(found, key=lambda s: s.created_at)]

    def latest_summary(self, owner_id: str) -> Optional[str]:
        with self._lock:
            done = [
                s
                for s in self._sessions.values()
                if s.owner_id == owner_id and s.memory_summary is not None
            ]
        if not done:
            return None
        return max(done, key=lambda s: s.created_at).memory_summary

    def claim(self, session_id: str, token: str, ttl_seconds: float) -> bool:
        now = self._clock()
        with self._lock:
            session = self._require(session_id)
            if session.memory_summary is not None:
                return False
            held = session.claim_token is not None and (
                session.claim_expires_at is None or session.claim_expires_at > now
            )
            if held and session.claim_token != token:
                return False
            session.claim_token = token
            session.claim_expires_at = now + timedelta(seconds=ttl_seconds)
            return True

    def release(self, session_id: str, token: str) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None and session.claim_token == token:
                session.claim_token = None
                session.claim_expires_at = None
