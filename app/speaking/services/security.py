"""
Purpose: Guardrails for respondent input before it enters the transcript.
Content: early, predictable failures for empty or oversized answers; strip
control characters; redact contact details so they never reach the store or
the memory summary.
"""

import re

from ..errors import InvalidInput

EMAIL = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.I)
PHONE = re.compile(r"\+?\d[\d\s().-]{7,}\d")

MAX_INPUT_CHARS = 8000


class DefaultSecurity:
    def validate_user_input(self, text: str) -> None:
        if not (text or "").strip():
            raise InvalidInput("empty answer")
        if len(text) > MAX_INPUT_CHARS:
            raise InvalidInput(f"answer is longer than {MAX_INPUT_CHARS} characters")

    def sanitize_for_prompt(self, text: str) -> str:
        return (text or "").replace("\x00", "").strip()

    def redact_pii(self, text: str):
        found = []

        def _redact(rx, label):
            nonlocal text
            if rx.search(text):
                found.append(label)
                text = rx.sub(f"[{label}]", text)

        _redact(EMAIL, "EMAIL")
        _redact(PHONE, "PHONE")
        return text, found

    def clean(self, text: str) -> str:
        """Validate, sanitize and redact in one pass; returns the stored text."""
        self.validate_user_input(text)
        cleaned, _ = self.redact_pii(self.sanitize_for_prompt(text))
        return cleaned
