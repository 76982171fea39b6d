"""
Purpose: Token math & cost estimation.
Central usage accounting so services and the controller do not duplicate it.
"""

from __future__ import annotations
import threading
from typing import Optional

from ..models import Price


PRICE_TABLE = {
    "gpt-4o-mini": Price(0.15, 0.60),
    "gpt-4o": Price(2.50, 10.00),
    "gpt-4.1-mini": Price(0.40, 1.60),
    "gpt-4o-mini-tts": Price(0.60, 12.00),
}


def estimate_cost(model: str, tokens_in: int, tokens_out: int) -> float:
    p = PRICE_TABLE.get(model, Price(0.0, 0.0))
    return (tokens_in / 1000000) * p.input_per_1M + (
        tokens_out / 1000000
    ) * p.output_per_1M


def estimate_tokens_from_text(text: str) -> int:
    """Fast heuristic: ~4 chars per token."""
    t = (text or "").strip()
    if not t:
        return 0

    return (len(t) + 3) // 4


class UsageMeter:
    """Running token totals; shared across threads (finalizer runs in a pool)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.tokens_in = 0
        self.tokens_out = 0
        self.model_used: Optional[str] = None

    def add(self, meta: dict, *, model: Optional[str] = None) -> None:
        with self._lock:
            self.tokens_in += int(meta.get("tokens_in", 0))
            self.tokens_out += int(meta.get("tokens_out", 0))
            self.model_used = meta.get("model") or model or self.model_used

    def cost(self) -> float:
        with self._lock:
            return estimate_cost(self.model_used or "", self.tokens_in, self.tokens_out)
