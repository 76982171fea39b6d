"""Shared prompt helpers used across prompt modules."""

from __future__ import annotations
from typing import Iterable

from ..models import Turn, TurnRole

_SPEAKER = {
    TurnRole.EXAMINER: "Examiner",
    TurnRole.RESPONDENT: "Candidate",
}


def clip_text(s: str, max_chars: int) -> str:
    """Clip text to max_chars, adding ellipsis if clipped."""
    if len(s) <= max_chars:
        return s
    return s[: max_chars - 3].rstrip() + "..."


def render_transcript(turns: Iterable[Turn], max_chars: int = 12000) -> str:
    """
    Render turns as a plain "Speaker: text" transcript, in sequence order.
    Keeps the END of long transcripts, which is what the summary needs most.
    """
    lines: list[str] = []
    for t in sorted(turns, key=lambda t: t.sequence_index):
        content = (t.content or "").strip()
        if not content:
            continue
        lines.append(f"{_SPEAKER[t.role]}: {content}")
    text = "\n\n".join(lines)
    if len(text) <= max_chars:
        return text
    return "..." + text[-(max_chars - 3):].lstrip()


def history_messages(turns: Iterable[Turn]) -> list[dict[str, str]]:
    """Map turns onto chat roles: the examiner is the assistant."""
    out = []
    for t in sorted(turns, key=lambda t: t.sequence_index):
        role = "assistant" if t.role == TurnRole.EXAMINER else "user"
        out.append({"role": role, "content": t.content})
    return out
