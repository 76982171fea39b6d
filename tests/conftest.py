from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from speaking.errors import CollaboratorRejected, StoreUnavailable
from speaking.finalizer import Finalizer
from speaking.janitor import RecoverySweeper
from speaking.models import AnalysisReport, Prompt, Turn
from speaking.persistence.session_store import InMemorySessionStore
from speaking.service import SessionService
from speaking.synchronizer import TranscriptSynchronizer


class Clock:
    """Settable UTC clock shared by the store and the sweeper."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeSTT:
    def __init__(self, text: str = "I grew up in a small coastal town."):
        self.text = text
        self.calls = 0
        self.error: Optional[Exception] = None

    def transcribe(self, audio: bytes) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.text


class FakeQuestions:
    def __init__(self):
        self.calls: list[tuple[Prompt, list[Turn]]] = []
        self.error: Optional[Exception] = None

    def next_question(self, prompt: Prompt, history: list[Turn]) -> str:
        self.calls.append((prompt, list(history)))
        if self.error is not None:
            raise self.error
        return f"Examiner asks: {prompt.key}?"


class FakeTTS:
    def __init__(self, delay: float = 0.0):
        self.calls = 0
        self.delay = delay
        self.error: Optional[Exception] = None

    def synthesize(self, text: str) -> bytes:
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return b"mp3:" + text.encode()


class FakeSummarizer:
    """Counts calls; can block on a gate so tests can line up concurrent callers."""

    def __init__(self):
        self.calls = 0
        self.seen: list[list[Turn]] = []
        self.error: Optional[Exception] = None
        self.gate: Optional[threading.Event] = None
        self.started = threading.Event()
        self.delay = 0.0
        self._lock = threading.Lock()

    def summarize(self, transcript: list[Turn], topic: Optional[str] = None) -> str:
        with self._lock:
            self.calls += 1
            self.seen.append(list(transcript))
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return f"Candidate talked about {topic or 'something'} over {len(transcript)} turns."


class FakeAnalyzer:
    def __init__(self):
        self.calls = 0
        self.error: Optional[Exception] = None
        self._lock = threading.Lock()

    def analyze(self, transcript: list[Turn]) -> AnalysisReport:
        with self._lock:
            self.calls += 1
        if self.error is not None:
            raise self.error
        return AnalysisReport(
            band=6.5,
            scores={"fluency": 6.0, "vocabulary": 7.0, "grammar": 6.5, "pronunciation": 6.5},
            strengths=["clear examples"],
            improvements=["vary sentence openings"],
        )


class FlakyStore(InMemorySessionStore):
    """In-memory store whose transcript writes can be switched off."""

    def __init__(self, clock):
        super().__init__(clock=clock)
        self.fail_overwrite = False
        self.overwrites = 0

    def overwrite_transcript(self, session_id, turns):
        if self.fail_overwrite:
            raise StoreUnavailable("database is down")
        self.overwrites += 1
        super().overwrite_transcript(session_id, turns)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store(clock):
    return FlakyStore(clock=clock)


@pytest.fixture
def stt():
    return FakeSTT()


@pytest.fixture
def questions():
    return FakeQuestions()


@pytest.fixture
def tts():
    return FakeTTS()


@pytest.fixture
def summarizer():
    return FakeSummarizer()


@pytest.fixture
def analyzer():
    return FakeAnalyzer()


@pytest.fixture
def synchronizer(store):
    sync = TranscriptSynchronizer(store, debounce_seconds=0.0)
    yield sync
    sync.shutdown(wait=True)


@pytest.fixture
def finalizer(store, summarizer, analyzer):
    fin = Finalizer(store, summarizer, analyzer, timeout=5.0, claim_ttl_seconds=60)
    yield fin
    fin.shutdown(wait=True)


@pytest.fixture
def sweeper(store, finalizer, clock):
    return RecoverySweeper(store, finalizer, grace_seconds=120, parallelism=4, clock=clock)


@pytest.fixture
def make_service(store, stt, questions, tts, summarizer, analyzer, clock):
    """Build a service over the shared store; a second call simulates a new process."""
    built: list[SessionService] = []

    def _make(**kwargs) -> SessionService:
        finalizer = Finalizer(store, summarizer, analyzer, timeout=5.0, claim_ttl_seconds=60)
        service = SessionService(
            store,
            stt=stt,
            questions=questions,
            tts=tts,
            synchronizer=TranscriptSynchronizer(store, debounce_seconds=0.0),
            finalizer=finalizer,
            sweeper=RecoverySweeper(store, finalizer, grace_seconds=120, clock=clock),
            timeout=5.0,
            **kwargs,
        )
        built.append(service)
        return service

    yield _make
    for service in built:
        service.shutdown(wait=True)


def rejected(name: str = "fake") -> CollaboratorRejected:
    return CollaboratorRejected(name, "boom")
