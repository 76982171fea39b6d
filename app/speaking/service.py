"""
Purpose: The operations the UI/CLI layer consumes. Threads an explicit session
id through every call and keeps one TurnController per live session, so many
owners can be served by one process.

Operations:
- start_session(owner_id, topic): login barrier (recovery sweep) first, then a
  new store record and controller.
- submit_turn(session_id, audio_or_text): one full turn on that controller.
- end_session(session_id): blocking transcript flush, then non-blocking
  finalization. A failed flush is raised and finalization is not started.
  Results of recently ended sessions are kept in a bounded cache.
- on_login(owner_id): recovery sweep, then the newest memory summary. Controllers
  idle past the sweep grace window (errored or abandoned) are dropped first, so
  their sessions are swept too.
"""

from __future__ import annotations
import logging
import threading
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional, Union

from .controller import TurnController, TurnResult
from .errors import SessionNotActive
from .finalizer import FinalizeResult, Finalizer
from .interfaces import QuestionGenerator, SessionStore, SpeechSynthesizer, SpeechToText
from .janitor import RecoverySweeper
from .models import Prompt, Turn, TurnState
from .prompts.topics import get_prompt_set
from .synchronizer import TranscriptSynchronizer

logger = logging.getLogger(__name__)


@dataclass
class SessionHandle:
    session_id: str
    owner_id: str
    topic: str
    first_prompt: Prompt
    prompt_count: int


@dataclass
class EndResult:
    session_id: str
    transcript: list[Turn]
    finalization: Future
    usage: dict = field(default_factory=dict)

    def wait(self, timeout: Optional[float] = None) -> FinalizeResult:
        """Block until the background finalization has reported."""
        return self.finalization.result(timeout=timeout)


class SessionService:
    def __init__(
        self,
        store: SessionStore,
        *,
        stt: SpeechToText,
        questions: QuestionGenerator,
        tts: SpeechSynthesizer,
        synchronizer: TranscriptSynchronizer,
        finalizer: Finalizer,
        sweeper: RecoverySweeper,
        timeout: Optional[float] = 30.0,
        finalize_workers: int = 2,
        ended_cache_size: int = 256,
    ):
        self.store = store
        self.stt = stt
        self.questions = questions
        self.tts = tts
        self.synchronizer = synchronizer
        self.finalizer = finalizer
        self.sweeper = sweeper
        self.timeout = timeout
        self.ended_cache_size = max(1, ended_cache_size)

        self._controllers: dict[str, TurnController] = {}
        self._ended: OrderedDict[str, EndResult] = OrderedDict()
        self._end_locks: dict[str, threading.Lock] = {}
        self._owner_locks: dict[str, threading.Lock] = {}
        self._swept_owners: set[str] = set()
        self._registry_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=finalize_workers, thread_name_prefix="finalize"
        )

    # ---------------------------
    # Helpers
    # ---------------------------
    def _owner_lock(self, owner_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._owner_locks.setdefault(owner_id, threading.Lock())

    def _end_lock(self, session_id: str) -> threading.Lock:
        with self._registry_lock:
            if session_id not in self._controllers and session_id not in self._ended:
                raise SessionNotActive(session_id)
            return self._end_locks.setdefault(session_id, threading.Lock())

    def get_controller(self, session_id: str) -> TurnController:
        with self._registry_lock:
            controller = self._controllers.get(session_id)
        if controller is None:
            raise SessionNotActive(session_id)
        return controller

    def _sweep_locked(self, owner_id: str) -> int:
        # Controllers idle past the grace window (errored or abandoned) are
        # dropped here, so their sessions are swept like any other orphan.
        cutoff = self.sweeper.cutoff()
        with self._registry_lock:
            mine = [c for c in self._controllers.values() if c.owner_id == owner_id]
            stale = [c for c in mine if not c.is_live(cutoff)]
            for c in stale:
                self._controllers.pop(c.session_id, None)
                self._end_locks.pop(c.session_id, None)
        live = {c.session_id for c in mine if c not in stale}
        for c in stale:
            self._evict(c)
        count = self.sweeper.sweep(owner_id, exclude=live)
        with self._registry_lock:
            self._swept_owners.add(owner_id)
        return count

    def _evict(self, controller: TurnController) -> None:
        sid = controller.session_id
        logger.info(
            "session %s: idle since %s (state=%s), handing it to the sweep",
            sid, controller.last_activity.isoformat(), controller.state.value,
        )
        try:
            self.synchronizer.flush(sid, controller.transcript)
        except Exception as exc:
            # the sweep still finalizes whatever the last checkpoint stored
            logger.warning("session %s: transcript flush before sweep failed: %s", sid, exc)
        self.synchronizer.forget(sid)

    # ---------------------------
    # Exposed operations
    # ---------------------------
    def on_login(self, owner_id: str) -> Optional[str]:
        """Run the recovery sweep, then return the newest summary for context injection."""
        with self._owner_lock(owner_id):
            count = self._sweep_locked(owner_id)
        if count:
            logger.info("login %s: recovered %d session(s)", owner_id, count)
        return self.store.latest_summary(owner_id)

    def start_session(self, owner_id: str, topic: str) -> SessionHandle:
        """Open a new session; waits for (or runs) the owner's recovery sweep first."""
        prompt_set = get_prompt_set(topic)
        with self._owner_lock(owner_id):
            with self._registry_lock:
                swept = owner_id in self._swept_owners
            if not swept:
                self._sweep_locked(owner_id)

            session_id = self.store.create(owner_id, topic=prompt_set.topic)
            controller = TurnController(
                session_id,
                owner_id,
                prompt_set,
                stt=self.stt,
                questions=self.questions,
                tts=self.tts,
                synchronizer=self.synchronizer,
                timeout=self.timeout,
                clock=self.sweeper.clock,
            )
            with self._registry_lock:
                self._controllers[session_id] = controller

        logger.info(
            "session %s started for %s (topic=%s, %d prompts)",
            session_id, owner_id, prompt_set.topic, len(prompt_set),
        )
        return SessionHandle(
            session_id=session_id,
            owner_id=owner_id,
            topic=prompt_set.topic,
            first_prompt=prompt_set[0],
            prompt_count=len(prompt_set),
        )

    def submit_turn(
        self, session_id: str, audio_or_text: Union[bytes, str]
    ) -> TurnResult:
        """Run one turn; the natural end of the prompt sequence ends the session too."""
        controller = self.get_controller(session_id)
        result = controller.submit_turn(audio_or_text)
        if result.state == TurnState.FINISHED:
            logger.info("session %s: all prompts answered, ending", session_id)
            try:
                result.ended = self.end_session(session_id)
            except Exception as exc:
                # the turn itself succeeded; the caller can retry end_session
                result.end_error = exc
        return result

    def end_session(self, session_id: str) -> EndResult:
        """
        Flush the full transcript (blocking), then finalize in the background.
        Raises the store error if the flush fails; the session then stays OPEN
        and nothing is finalized. Calling it again returns the first result for
        as long as the last `ended_cache_size` ended sessions include it.
        """
        with self._end_lock(session_id):
            with self._registry_lock:
                done = self._ended.get(session_id)
            if done is not None:
                return done

            controller = self.get_controller(session_id)
            if controller.state == TurnState.FINALIZING:
                transcript = controller.transcript
            else:
                transcript = controller.end()

            try:
                self.synchronizer.flush(session_id, transcript)
            except Exception:
                logger.error(
                    "session %s: final transcript sync failed; not finalizing",
                    session_id,
                )
                raise

            future = self._executor.submit(self.finalizer.finalize, session_id)
            usage = {
                "tokens_in": controller.usage.tokens_in,
                "tokens_out": controller.usage.tokens_out,
            }
            result = EndResult(
                session_id=session_id,
                transcript=transcript,
                finalization=future,
                usage=usage,
            )
            with self._registry_lock:
                self._ended[session_id] = result
                self._controllers.pop(session_id, None)
                self._prune_ended()
            self.synchronizer.forget(session_id)
            logger.info(
                "session %s ended: %d turns, ~%d tokens in, ~%d tokens out",
                session_id, len(transcript), usage["tokens_in"], usage["tokens_out"],
            )
            return result

    def _prune_ended(self) -> None:
        # Caller holds _registry_lock. Oldest results go first, and only once
        # their finalization has reported.
        excess = len(self._ended) - self.ended_cache_size
        for sid in list(self._ended):
            if excess <= 0:
                break
            if not self._ended[sid].finalization.done():
                continue
            del self._ended[sid]
            self._end_locks.pop(sid, None)
            excess -= 1

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        self.synchronizer.shutdown(wait=wait)
        self.finalizer.shutdown(wait=wait)
