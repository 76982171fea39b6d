"""
Canonical data shapes, shared truth for typing/validation between layers.

Typical contents:
- Session (id, owner, transcript, summary, analysis) and its derived status.
- Turn (role, content, sequence_index).
- Prompt / PromptSet (reference data for one topic).
- TurnState / TurnEvent for the live controller.
- LLMSettings (model, temperature, top_p, max_tokens).

Testing: Trivial; mostly types. Status derivation is covered by store tests.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Optional
from enum import Enum
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TurnRole(str, Enum):
    EXAMINER = "examiner"
    RESPONDENT = "respondent"


class SessionStatus(str, Enum):
    OPEN = "open"
    FINALIZED = "finalized"


class TurnState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"
    ASKING = "asking"
    SPEAKING = "speaking"
    FINISHED = "finished"
    FINALIZING = "finalizing"
    ERROR = "error"


class TurnEvent(str, Enum):
    START_CAPTURE = "start_capture"
    CAPTURE_STOPPED = "capture_stopped"
    TEXT_OBTAINED = "text_obtained"
    RESPONSE_OBTAINED = "response_obtained"
    PLAYBACK_ENDED = "playback_ended"
    INPUT_REJECTED = "input_rejected"
    END_REQUESTED = "end_requested"
    FAILED = "failed"


@dataclass(frozen=True)
class Turn:
    role: TurnRole
    content: str
    sequence_index: int

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "content": self.content,
            "sequence_index": self.sequence_index,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Turn":
        return cls(
            role=TurnRole(data["role"]),
            content=str(data.get("content") or ""),
            sequence_index=int(data["sequence_index"]),
        )


@dataclass(frozen=True)
class Prompt:
    key: str
    instruction: str
    topic: str = ""


@dataclass(frozen=True)
class PromptSet:
    topic: str
    prompts: tuple[Prompt, ...]

    def __len__(self) -> int:
        return len(self.prompts)

    def __getitem__(self, index: int) -> Prompt:
        return self.prompts[index]


@dataclass
class AnalysisReport:
    band: float
    scores: dict[str, float] = field(default_factory=dict)
    strengths: list[str] = field(default_factory=list)
    improvements: list[str] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "band": self.band,
            "scores": dict(self.scores),
            "strengths": list(self.strengths),
            "improvements": list(self.improvements),
            "raw": dict(self.raw),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AnalysisReport":
        return cls(
            band=float(data.get("band", 0.0)),
            scores={k: float(v) for k, v in (data.get("scores") or {}).items()},
            strengths=list(data.get("strengths") or []),
            improvements=list(data.get("improvements") or []),
            raw=dict(data.get("raw") or {}),
        )


@dataclass
class Session:
    id: str
    owner_id: str
    created_at: datetime = field(default_factory=utcnow)
    topic: Optional[str] = None
    transcript: list[Turn] = field(default_factory=list)
    memory_summary: Optional[str] = None
    analysis_report: Optional[AnalysisReport] = None
    claim_token: Optional[str] = None
    claim_expires_at: Optional[datetime] = None

    @property
    def status(self) -> SessionStatus:
        """OPEN until a memory summary exists."""
        if self.memory_summary is None:
            return SessionStatus.OPEN
        return SessionStatus.FINALIZED


@dataclass
class LLMSettings:
    model: str
    temperature: float = 0.7
    top_p: float = 1.0
    max_tokens: int = 512
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    response_format: Optional[dict] = None


@dataclass(frozen=True)
class Price:
    input_per_1M: float
    output_per_1M: float
