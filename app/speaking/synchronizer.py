"""
Transcript synchronizer: closes the gap between the controller's in-memory
turn history and the session store.

Two entry points:
- checkpoint(): best-effort, non-blocking, debounced. A timer waits out the
  debounce window and a small thread pool does the write; failures are logged
  and dropped because a later checkpoint (or the final flush) re-covers the
  same data.
- flush(): authoritative, blocking. Used right before finalization; failures
  propagate so the caller can refuse to finalize.

Per session, writes are serialized and a snapshot shorter than one already
written is skipped, so a late background write can never land on top of the
final transcript.
"""

from __future__ import annotations
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional

from .interfaces import SessionStore
from .models import Turn

logger = logging.getLogger(__name__)


@dataclass
class _SessionSync:
    lock: threading.Lock = field(default_factory=threading.Lock)
    pending: Optional[list[Turn]] = None
    in_flight: Optional[Future] = None
    timer: Optional[threading.Timer] = None
    scheduled: bool = False
    written_len: int = -1
    last_write_at: float = float("-inf")
    closed: bool = False


class TranscriptSynchronizer:
    def __init__(
        self,
        store: SessionStore,
        *,
        debounce_seconds: float = 2.0,
        max_workers: int = 4,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.debounce_seconds = debounce_seconds
        self._monotonic = monotonic
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="transcript-sync"
        )
        self._states: dict[str, _SessionSync] = {}
        self._states_lock = threading.Lock()

    def _state(self, session_id: str) -> _SessionSync:
        with self._states_lock:
            return self._states.setdefault(session_id, _SessionSync())

    def _write(self, state: _SessionSync, session_id: str, turns: list[Turn]) -> bool:
        """Overwrite the stored transcript unless it would shrink. Caller holds state.lock."""
        if len(turns) < state.written_len:
            logger.debug(
                "skip stale snapshot for %s (%d < %d turns)",
                session_id, len(turns), state.written_len,
            )
            return False
        self.store.overwrite_transcript(session_id, turns)
        state.written_len = len(turns)
        state.last_write_at = self._monotonic()
        return True

    def sync(self, session_id: str, transcript: list[Turn]) -> None:
        """Blocking full-document overwrite. Raises the store error on failure."""
        state = self._state(session_id)
        with state.lock:
            self._write(state, session_id, list(transcript))

    def checkpoint(self, session_id: str, transcript: list[Turn]) -> None:
        """Schedule a background write of the latest snapshot; never raises."""
        state = self._state(session_id)
        with state.lock:
            if state.closed:
                return
            state.pending = list(transcript)
            if state.scheduled:
                return
            state.scheduled = True
            delay = self.debounce_seconds - (self._monotonic() - state.last_write_at)
            if delay > 0:
                # Waiting happens on a timer thread; pool workers only ever write.
                state.timer = threading.Timer(delay, self._dispatch, args=(session_id, state))
                state.timer.daemon = True
                state.timer.start()
            else:
                self._submit(session_id, state)

    def _submit(self, session_id: str, state: _SessionSync) -> None:
        # Caller holds state.lock.
        state.timer = None
        try:
            state.in_flight = self._pool.submit(self._drain, session_id, state)
        except RuntimeError as exc:
            state.scheduled = False
            logger.warning("checkpoint for session %s dropped: %s", session_id, exc)

    def _dispatch(self, session_id: str, state: _SessionSync) -> None:
        with state.lock:
            if state.closed or not state.scheduled:
                return
            self._submit(session_id, state)

    def _drain(self, session_id: str, state: _SessionSync) -> None:
        with state.lock:
            snapshot, state.pending = state.pending, None
            state.scheduled = False
            if snapshot is None or state.closed:
                return
            try:
                self._write(state, session_id, snapshot)
            except Exception as exc:
                logger.warning(
                    "checkpoint for session %s failed (%s); a later sync will cover it",
                    session_id, exc,
                )

    def flush(self, session_id: str, transcript: list[Turn]) -> None:
        """
        Authoritative write before finalization: cancels the pending checkpoint,
        waits out an in-flight one, then writes the full transcript.
        """
        state = self._state(session_id)
        with state.lock:
            state.closed = True
            state.pending = None
            state.scheduled = False
            if state.timer is not None:
                state.timer.cancel()
                state.timer = None
            in_flight = state.in_flight
        if in_flight is not None:
            in_flight.result()
        with state.lock:
            state.written_len = min(state.written_len, len(transcript))
            self._write(state, session_id, list(transcript))
        logger.info("flushed %d turns for session %s", len(transcript), session_id)

    def forget(self, session_id: str) -> None:
        with self._states_lock:
            self._states.pop(session_id, None)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the timers; with `wait`, pending snapshots are written before returning."""
        with self._states_lock:
            states = list(self._states.items())
        for session_id, state in states:
            with state.lock:
                if state.timer is None:
                    continue
                state.timer.cancel()
                if wait and not state.closed:
                    self._submit(session_id, state)
                else:
                    state.timer = None
                    state.scheduled = False
        self._pool.shutdown(wait=wait)
