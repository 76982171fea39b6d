"""Facade over the prompt modules: examiner, memory summary, analysis."""

from __future__ import annotations
from typing import Optional

from ..models import Prompt, Turn
from . import examiner as _examiner
from . import memory as _memory
from .common import history_messages as _history_messages
from .common import render_transcript as _render_transcript


class DefaultPromptFactory:
    # LIVE LOOP
    def build_examiner_system(self, *, topic: str) -> str:
        return _examiner.build_examiner_system(topic=topic)

    def next_question_instruction(self, prompt: Prompt) -> str:
        return _examiner.next_question_instruction(prompt)

    def assemble(
        self, *, system: str, history: list[Turn], instruction: str
    ) -> list[dict[str, str]]:
        return (
            [{"role": "system", "content": system}]
            + _history_messages(history)
            + [{"role": "user", "content": instruction}]
        )

    # FINALIZATION
    def build_summary_system(self) -> str:
        return _memory.build_summary_system()

    def summary_instruction(self, *, transcript: list[Turn], topic: Optional[str]) -> str:
        return _memory.summary_instruction(
            transcript=_render_transcript(transcript), topic=topic
        )

    def build_analysis_system(self) -> str:
        return _memory.build_analysis_system()

    def analysis_instruction(self, *, transcript: list[Turn]) -> str:
        return _memory.analysis_instruction(transcript=_render_transcript(transcript))
