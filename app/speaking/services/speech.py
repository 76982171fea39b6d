"""
Purpose: text-to-speech integration. Reads the examiner's lines aloud.
The returned bytes are the synthesizer's acknowledgment that the line was
produced; the live loop treats that as the end of the speaking step.
"""

from __future__ import annotations
import logging
from typing import Any

from openai import APITimeoutError, OpenAIError

from ..errors import CollaboratorRejected, CollaboratorTimeout

logger = logging.getLogger(__name__)


class OpenAISpeechSynthesizer:
    def __init__(
        self,
        llm: Any,
        *,
        voice: str = "alloy",
        model: str = "gpt-4o-mini-tts",
        max_chars: int = 1200,
    ):
        self.client = getattr(llm, "client", llm)
        self.voice = voice
        self.model = model
        self.max_chars = max_chars

    def synthesize(self, text: str) -> bytes:
        """Return raw MP3 bytes for text ("" gives b"")."""
        safe = (text or "").strip()
        if not safe:
            return b""
        if len(safe) > self.max_chars:
            safe = safe[: self.max_chars - 3].rstrip() + "..."

        try:
            resp = self.client.audio.speech.create(
                model=self.model, voice=self.voice, input=safe
            )
        except APITimeoutError as e:
            raise CollaboratorTimeout("speech_synthesis", str(e)) from e
        except OpenAIError as e:
            raise CollaboratorRejected("speech_synthesis", str(e)) from e

        if hasattr(resp, "read"):
            audio = resp.read()
        else:
            audio = getattr(resp, "content", b"")
        if not audio:
            raise CollaboratorRejected("speech_synthesis", "empty audio returned")
        logger.debug("synthesized %d chars into %d bytes", len(safe), len(audio))
        return audio
