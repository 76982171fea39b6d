"""
Purpose: Deep analysis of a finished session: band score per criterion plus
strengths and improvements. Best-effort; a failure here never blocks the
memory summary.

Testing: Fake LLMClient returning canned JSON (fenced, partial, out of range).
"""

from __future__ import annotations
from typing import Any, Optional

from ..errors import CollaboratorRejected
from ..interfaces import LLMClient
from ..models import AnalysisReport, LLMSettings, Turn, TurnRole
from ..prompts import DefaultPromptFactory
from ..utils.llm_json import require_object, to_str_list
from .pricing import UsageMeter

CRITERIA = ("fluency", "vocabulary", "grammar", "pronunciation")
MAX_BAND = 9.0


def _clip_band(v: Any) -> float:
    try:
        return max(0.0, min(MAX_BAND, float(v)))
    except (TypeError, ValueError):
        return 0.0


class LLMAnalyzer:
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
            model="gpt-4o-mini",
            temperature=0.2,
            top_p=1.0,
            max_tokens=400,
            response_format={"type": "json_object"},
        )
        self.usage = usage or UsageMeter()

    def analyze(self, transcript: list[Turn]) -> AnalysisReport:
        """Return an AnalysisReport with every score clamped to 0..9."""
        if not any(t.role == TurnRole.RESPONDENT for t in transcript):
            return AnalysisReport(
                band=0.0,
                scores={c: 0.0 for c in CRITERIA},
                improvements=["Answer at least one question to receive feedback."],
            )

        messages = [
            {"role": "system", "content": self.prompts.build_analysis_system()},
            {
                "role": "user",
                "content": self.prompts.analysis_instruction(transcript=transcript),
            },
        ]
        text, meta = self.llm.chat(messages, self.settings)
        self.usage.add(meta, model=self.settings.model)

        try:
            obj = require_object(
                text, err="LLM did not return a valid JSON object for the analysis."
            )
        except ValueError as e:
            raise CollaboratorRejected("analysis", str(e)) from e

        raw_scores = obj.get("scores") if isinstance(obj.get("scores"), dict) else {}
        scores = {c: _clip_band(raw_scores.get(c, 0)) for c in CRITERIA}
        if "band" in obj:
            band = _clip_band(obj.get("band"))
        else:
            band = round(sum(scores.values()) / len(CRITERIA) * 2) / 2

        return AnalysisReport(
            band=band,
            scores=scores,
            strengths=to_str_list(obj.get("strengths")),
            improvements=to_str_list(obj.get("improvements")),
            raw=obj,
        )
