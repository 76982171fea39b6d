"""
Purpose: Generate the examiner's next line given the current prompt and the
transcript so far. Strictly one question per call; the controller never asks
for the next prompt before the current one has been spoken.

Testing: Fake LLMClient; assert message assembly and empty-reply handling.
"""

from __future__ import annotations
from typing import Optional

from ..errors import CollaboratorRejected
from ..interfaces import LLMClient
from ..models import LLMSettings, Prompt, Turn
from ..prompts import DefaultPromptFactory
from .pricing import UsageMeter


class LLMQuestionGenerator:
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
            model="gpt-4o-mini", temperature=0.7, top_p=1.0, max_tokens=120
        )
        self.usage = usage or UsageMeter()

    def next_question(self, prompt: Prompt, history: list[Turn]) -> str:
        messages = self.prompts.assemble(
            system=self.prompts.build_examiner_system(topic=prompt.topic or "general"),
            history=history,
            instruction=self.prompts.next_question_instruction(prompt),
        )
        text, meta = self.llm.chat(messages, self.settings)
        self.usage.add(meta, model=self.settings.model)
        text = (text or "").strip()
        if not text:
            raise CollaboratorRejected("question_generation", "empty question returned")
        return text
