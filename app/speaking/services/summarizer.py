"""
Purpose: Derive the compact memory summary for a finished session.
The summary is injected as context at the candidate's next login, so it must
be short, factual and derived from the whole transcript.
"""

from __future__ import annotations
from typing import Optional

from ..errors import CollaboratorRejected
from ..interfaces import LLMClient
from ..models import LLMSettings, Turn
from ..prompts import DefaultPromptFactory
from .pricing import UsageMeter

EMPTY_SESSION_SUMMARY = "The candidate opened a session but did not answer any questions."


class LLMSummarizer:
    def __init__(
        self,
        llm: LLMClient,
        *,
        settings: Optional[LLMSettings] = None,
        usage: Optional[UsageMeter] = None,
    ):
        self.llm = llm
        self.prompts = DefaultPromptFactory()
        self.settings = settings or LLMSettings(
            model="gpt-4o-mini", temperature=0.2, top_p=1.0, max_tokens=300
        )
        self.usage = usage or UsageMeter()

    def summarize(self, transcript: list[Turn], topic: Optional[str] = None) -> str:
        """Return the memory summary text for the transcript."""
        if not any((t.content or "").strip() for t in transcript):
            return EMPTY_SESSION_SUMMARY

        messages = [
            {"role": "system", "content": self.prompts.build_summary_system()},
            {
                "role": "user",
                "content": self.prompts.summary_instruction(
                    transcript=transcript, topic=topic
                ),
            },
        ]
        text, meta = self.llm.chat(messages, self.settings)
        self.usage.add(meta, model=self.settings.model)
        summary = (text or "").strip()
        if not summary:
            raise CollaboratorRejected("summarization", "empty summary returned")
        return summary
