"""
Purpose: The live, single-session turn loop. Owns the state machine, the turn
index into the topic's prompt sequence, and the in-memory transcript.

    idle -> recording -> transcribing -> asking -> speaking -> idle (index += 1)
                                                            -> finished (no prompts left)
    any -> finalizing (user ends the session)
    transcribing -> idle (answer rejected by the input guard; same prompt again)
    any non-terminal -> error (unrecoverable collaborator failure)

Key responsibilities:
- Validate every event against the transition table; an undefined event is a
  programming error and raises InvalidStateTransition.
- Run one full turn at a time: transcribe, ask the next question, synthesize it.
  Nothing is prefetched; at most one prompt is in flight.
- Treat the synthesizer's returned audio as the end of the speaking step.
- Hand each completed turn's transcript to the synchronizer's checkpoint.

Testing: Pure unit tests with fake collaborators; verify transitions, index
bounds, transcript order and error handling.
"""

from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Union

from .errors import CollaboratorError, InvalidInput, InvalidStateTransition
from .interfaces import QuestionGenerator, SpeechSynthesizer, SpeechToText
from .models import Prompt, PromptSet, Turn, TurnEvent, TurnRole, TurnState, utcnow
from .services.pricing import UsageMeter, estimate_tokens_from_text
from .services.security import DefaultSecurity
from .synchronizer import TranscriptSynchronizer
from .utils.timeouts import call_with_timeout

logger = logging.getLogger(__name__)


_TRANSITIONS: dict[TurnState, dict[TurnEvent, TurnState]] = {
    TurnState.IDLE: {TurnEvent.START_CAPTURE: TurnState.RECORDING},
    TurnState.RECORDING: {TurnEvent.CAPTURE_STOPPED: TurnState.TRANSCRIBING},
    TurnState.TRANSCRIBING: {
        TurnEvent.TEXT_OBTAINED: TurnState.ASKING,
        TurnEvent.INPUT_REJECTED: TurnState.IDLE,
    },
    TurnState.ASKING: {TurnEvent.RESPONSE_OBTAINED: TurnState.SPEAKING},
    TurnState.SPEAKING: {TurnEvent.PLAYBACK_ENDED: TurnState.IDLE},
    TurnState.FINISHED: {},
    TurnState.ERROR: {},
    TurnState.FINALIZING: {},
}

# No further edges leave these states, not even FAILED.
_TERMINAL = {TurnState.FINALIZING, TurnState.ERROR}
# `finished` waits for END_REQUESTED only.
_CANNOT_FAIL = _TERMINAL | {TurnState.FINISHED}


@dataclass
class TurnResult:
    session_id: str
    turn_index: int
    respondent_text: str
    examiner_text: str
    audio: bytes
    state: TurnState
    tokens_in: int = 0
    tokens_out: int = 0
    ended: Optional[Any] = None
    end_error: Optional[Exception] = None

    @property
    def finished(self) -> bool:
        return self.state == TurnState.FINISHED


class TurnController:
    def __init__(
        self,
        session_id: str,
        owner_id: str,
        prompt_set: PromptSet,
        *,
        stt: SpeechToText,
        questions: QuestionGenerator,
        tts: SpeechSynthesizer,
        synchronizer: Optional[TranscriptSynchronizer] = None,
        timeout: Optional[float] = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_id = session_id
        self.owner_id = owner_id
        self.prompt_set = prompt_set
        self.stt = stt
        self.questions = questions
        self.tts = tts
        self.synchronizer = synchronizer
        self.timeout = timeout
        self.security = DefaultSecurity()
        self.usage = UsageMeter()

        self._state = TurnState.IDLE
        self._turn_index = 0
        self._transcript: list[Turn] = []
        self._lock = threading.RLock()
        self._clock = clock
        self.last_activity = clock()
        self.last_error: Optional[Exception] = None

    # ---------------------------
    # Introspection
    # ---------------------------
    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def turn_index(self) -> int:
        return self._turn_index

    @property
    def transcript(self) -> list[Turn]:
        """A copy of the turns so far, in sequence order."""
        with self._lock:
            return list(self._transcript)

    @property
    def current_prompt(self) -> Optional[Prompt]:
        if self._turn_index >= len(self.prompt_set):
            return None
        return self.prompt_set[self._turn_index]

    @property
    def remaining(self) -> int:
        return len(self.prompt_set) - self._turn_index

    # ---------------------------
    # State machine
    # ---------------------------
    def fire(self, event: TurnEvent) -> TurnState:
        """Apply one event; raises InvalidStateTransition if the table does not define it."""
        with self._lock:
            current = self._state
            if event == TurnEvent.END_REQUESTED and current != TurnState.FINALIZING:
                nxt = TurnState.FINALIZING
            elif event == TurnEvent.FAILED and current not in _CANNOT_FAIL:
                nxt = TurnState.ERROR
            else:
                nxt = _TRANSITIONS[current].get(event)
                if nxt is None:
                    err = InvalidStateTransition(current, event, self.session_id)
                    logger.error("%s", err)
                    raise err

            if event == TurnEvent.PLAYBACK_ENDED:
                self._turn_index += 1
                if self._turn_index >= len(self.prompt_set):
                    nxt = TurnState.FINISHED

            self._state = nxt
            self.last_activity = self._clock()
            logger.debug(
                "session %s: %s --%s--> %s",
                self.session_id, current.value, event.value, nxt.value,
            )
            return nxt

    def _append(self, role: TurnRole, content: str, event: TurnEvent) -> None:
        # Transition and append are one atomic step: an ended session gains no turns.
        with self._lock:
            self.fire(event)
            self._transcript.append(
                Turn(role=role, content=content, sequence_index=len(self._transcript))
            )

    def _fail(self, exc: Exception, step: str) -> None:
        self.last_error = exc
        with self._lock:
            if self._state not in _CANNOT_FAIL:
                self.fire(TurnEvent.FAILED)
        logger.error(
            "session %s: %s failed at turn %d: %s",
            self.session_id, step, self._turn_index, exc,
        )

    # ---------------------------
    # Turn loop
    # ---------------------------
    def start_capture(self) -> None:
        """The respondent starts recording."""
        self.fire(TurnEvent.START_CAPTURE)

    def stop_capture(self, audio_or_text: Union[bytes, str]) -> TurnResult:
        """
        Capture stopped: run the rest of the turn to completion.
        Pattern:
        Transcribe audio (typed text is taken as-is).
        Guard and append the respondent turn.
        Ask the question generator for the examiner's line for prompt[index].
        Append the examiner turn, synthesize it; the returned audio ends the turn.
        A blank or oversize answer returns the machine to `idle` and raises InvalidInput.
        Any collaborator failure moves the machine to `error` and is re-raised.
        """
        self.fire(TurnEvent.CAPTURE_STOPPED)
        prompt = self.current_prompt

        step = "transcription"
        try:
            if isinstance(audio_or_text, (bytes, bytearray)):
                raw = call_with_timeout(
                    "speech_to_text", self.stt.transcribe, bytes(audio_or_text),
                    timeout=self.timeout,
                )
            else:
                raw = audio_or_text
            respondent_text = self.security.clean(raw)
            self._append(TurnRole.RESPONDENT, respondent_text, TurnEvent.TEXT_OBTAINED)
            self.usage.add({"tokens_in": estimate_tokens_from_text(respondent_text)})

            step = "question generation"
            examiner_text = call_with_timeout(
                "question_generation", self.questions.next_question, prompt, self.transcript,
                timeout=self.timeout,
            )
            self._append(TurnRole.EXAMINER, examiner_text, TurnEvent.RESPONSE_OBTAINED)

            step = "speech synthesis"
            audio = call_with_timeout(
                "speech_synthesis", self.tts.synthesize, examiner_text, timeout=self.timeout
            )
            self.usage.add({"tokens_out": estimate_tokens_from_text(examiner_text)})
        except InvalidInput as exc:
            # Nothing was appended; the same prompt is asked again.
            with self._lock:
                if self._state == TurnState.TRANSCRIBING:
                    self.fire(TurnEvent.INPUT_REJECTED)
            logger.warning(
                "session %s: answer rejected at turn %d: %s",
                self.session_id, self._turn_index, exc,
            )
            raise
        except CollaboratorError as exc:
            self._fail(exc, step)
            raise

        state = self.fire(TurnEvent.PLAYBACK_ENDED)
        if self.synchronizer is not None:
            self.synchronizer.checkpoint(self.session_id, self.transcript)
        return TurnResult(
            session_id=self.session_id,
            turn_index=self._turn_index,
            respondent_text=respondent_text,
            examiner_text=examiner_text,
            audio=audio,
            state=state,
            tokens_in=self.usage.tokens_in,
            tokens_out=self.usage.tokens_out,
        )

    def is_live(self, cutoff: datetime) -> bool:
        """True when the last state change happened at or after `cutoff`."""
        return self.last_activity >= cutoff

    def submit_turn(self, audio_or_text: Union[bytes, str]) -> TurnResult:
        """One full turn: start capture, then stop it with the captured input."""
        self.start_capture()
        return self.stop_capture(audio_or_text)

    def end(self) -> list[Turn]:
        """User ends the session: move to `finalizing` and return the final transcript."""
        with self._lock:
            self.fire(TurnEvent.END_REQUESTED)
            return list(self._transcript)
