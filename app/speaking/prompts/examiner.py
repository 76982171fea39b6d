"""Examiner prompts (next question for the live loop)"""

from __future__ import annotations
from textwrap import dedent

from ..models import Prompt


def build_examiner_system(*, topic: str) -> str:
    return dedent(
        f"""\
        You are a friendly speaking examiner running a short practice session.
        Topic of this part: {topic}.
        Rules:
        - Briefly acknowledge the candidate's last answer (one short clause at most).
        - Then ask exactly ONE question, following the instruction you are given.
        - No preamble, no explanations, no lists, no markdown.
        - Keep it under 40 words. Plain spoken English; it will be read aloud.
        """
    )


def next_question_instruction(prompt: Prompt) -> str:
    return (
        "Write the examiner's next spoken line.\n"
        f"Instruction for this question: {prompt.instruction}\n"
        "Output only the line itself."
    )
