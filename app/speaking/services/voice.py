"""
Purpose: speech-to-text integration. Turns the candidate's recorded answer
into text for the transcript.
"""

from __future__ import annotations
import io
import logging
from typing import Any

from openai import APITimeoutError, OpenAIError

from ..errors import CollaboratorRejected, CollaboratorTimeout

logger = logging.getLogger(__name__)


class OpenAITranscriber:
    def __init__(self, llm: Any, *, model: str = "whisper-1"):
        self.client = getattr(llm, "client", llm)
        self.model = model

    def transcribe(self, audio: bytes) -> str:
        """Transcribe WAV audio bytes to text."""
        if not audio:
            raise CollaboratorRejected("speech_to_text", "no audio captured")
        try:
            with io.BytesIO(audio) as buf:
                buf.name = "input.wav"
                resp = self.client.audio.transcriptions.create(model=self.model, file=buf)
        except APITimeoutError as e:
            raise CollaboratorTimeout("speech_to_text", str(e)) from e
        except OpenAIError as e:
            raise CollaboratorRejected("speech_to_text", str(e)) from e
        text = (getattr(resp, "text", "") or "").strip()
        logger.debug("transcribed %d bytes into %d chars", len(audio), len(text))
        return text
