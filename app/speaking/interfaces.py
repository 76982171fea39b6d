"""
Abstractions for pluggable services. Inversion of control: the lifecycle
depends on interfaces, not concrete services. Enables fakes/mocks and future
swaps. Protocols define what collaborators can do, without saying how.

Common protocols:
- LLMClient.chat(messages, settings) -> (reply, meta)
- SpeechToText.transcribe(audio) / SpeechSynthesizer.synthesize(text)
- QuestionGenerator.next_question(prompt, history)
- Summarizer.summarize(transcript) / Analyzer.analyze(transcript)
- SessionStore: the session store gateway (CRUD + conditional writes)

Testing: Use simple fake implementations to test the controller, finalizer and
sweeper without network calls or a database.
"""

from __future__ import annotations
from datetime import datetime
from typing import Optional, Protocol
from .models import AnalysisReport, LLMSettings, Prompt, Session, Turn


class LLMClient(Protocol):
    def chat(
        self,
        messages: list[dict[str, str]],
        settings: LLMSettings,
        system: Optional[str] = None,
    ) -> tuple[str, dict]: ...


class SpeechToText(Protocol):
    def transcribe(self, audio: bytes) -> str: ...


class SpeechSynthesizer(Protocol):
    def synthesize(self, text: str) -> bytes: ...


class QuestionGenerator(Protocol):
    def next_question(self, prompt: Prompt, history: list[Turn]) -> str: ...


class Summarizer(Protocol):
    def summarize(
        self, transcript: list[Turn], topic: Optional[str] = None
    ) -> str: ...


class Analyzer(Protocol):
    def analyze(self, transcript: list[Turn]) -> AnalysisReport: ...


class SessionStore(Protocol):
    def create(self, owner_id: str, topic: Optional[str] = None) -> str: ...

    def get(self, session_id: str) -> Session: ...

    def read_transcript(self, session_id: str) -> list[Turn]: ...

    def overwrite_transcript(self, session_id: str, turns: list[Turn]) -> None: ...

    def write_summary(self, session_id: str, text: str) -> None: ...

    def write_analysis(self, session_id: str, report: AnalysisReport) -> None: ...

    def list_open_sessions(
        self, owner_id: str, older_than: datetime
    ) -> list[str]: ...

    def latest_summary(self, owner_id: str) -> Optional[str]: ...

    def claim(self, session_id: str, token: str, ttl_seconds: float) -> bool: ...

    def release(self, session_id: str, token: str) -> None: ...
