"""Post-session prompts: memory summary and deep analysis."""

from __future__ import annotations
from textwrap import dedent


def build_summary_system() -> str:
    return (
        "You keep long-term notes about a language learner across practice "
        "sessions.\n"
        "Rules:\n"
        "- Write in the third person about 'the candidate'.\n"
        "- Record facts they shared (places, people, plans, opinions) and any "
        "recurring language issues.\n"
        "- Never invent facts absent from the transcript.\n"
        "- At most 120 words, one paragraph, no markdown."
    )


def summary_instruction(*, transcript: str, topic: str | None) -> str:
    header = dedent(
        f"""\
        Summarize this speaking practice session as a memory note for the next
        session.

        Topic: {topic or "(not recorded)"}

        Transcript:
        """
    )
    return header + (transcript or "(the candidate ended the session before answering)")


def build_analysis_system() -> str:
    return (
        "You are a speaking examiner and rubric grader.\n"
        "Evaluate only the candidate's turns, using the examiner turns as context.\n"
        "Rules:\n"
        "- Be objective and concise.\n"
        "- Never invent facts absent from the candidate's answers.\n"
        "- Return EXACTLY one JSON object and nothing else."
    )


def analysis_instruction(*, transcript: str) -> str:
    body = transcript or "(empty)"
    return (
        "Grade the candidate's speaking in this transcript on a 0..9 band scale.\n\n"
        f"Transcript:\n{body}\n\n"
    ) + dedent(
        """\
        Output ONLY this JSON object (no code fences, no commentary):
        {
          "band": <float 0..9>,
          "scores": {
            "fluency":       <float 0..9>,
            "vocabulary":    <float 0..9>,
            "grammar":       <float 0..9>,
            "pronunciation": <float 0..9>
          },
          "strengths":    ["<short phrase>", ...],
          "improvements": ["<short phrase>", ...]
        }
        Notes:
        - Pronunciation can only be inferred from transcription quality; be cautious.
        - Clamp each score to [0,9].
        """
    )
