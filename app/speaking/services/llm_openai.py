"""
Purpose: Thin client wrapper around OpenAI.
One place for auth, timeouts, model options, response/usage normalization and
mapping SDK errors onto the collaborator taxonomy.

No retries here: the client is built with max_retries=0 and a bounded timeout,
so a slow or failing call surfaces immediately to the live loop or finalizer.

Testing: Pass a fake SDK client; assert it maps usage and errors correctly.
"""

from __future__ import annotations
import logging
from typing import Any, Optional

from openai import APITimeoutError, OpenAI, OpenAIError

from ..errors import CollaboratorRejected, CollaboratorTimeout
from ..models import LLMSettings

logger = logging.getLogger(__name__)


class OpenAILLMClient:
    def __init__(
        self,
        api_key: str = "",
        *,
        timeout: float = 30.0,
        client: Optional[Any] = None,
    ):
        if client is not None:
            self.client = client
            return
        if not api_key:
            raise RuntimeError("Missing OPENAI_API_KEY")
        self.client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def chat(
        self,
        messages: list[dict[str, str]],
        settings: LLMSettings,
        system: Optional[str] = None,
    ) -> tuple[str, dict]:
        payload = []
        if system:
            payload.append({"role": "system", "content": system})
        payload.extend(messages)

        kwargs = dict(
            model=settings.model,
            messages=payload,
            temperature=settings.temperature,
            top_p=settings.top_p,
            max_tokens=settings.max_tokens,
            frequency_penalty=settings.frequency_penalty,
            presence_penalty=settings.presence_penalty,
        )
        if settings.response_format:
            kwargs["response_format"] = settings.response_format

        try:
            cc = self.client.chat.completions.create(**kwargs)
        except APITimeoutError as e:
            raise CollaboratorTimeout("llm", str(e)) from e
        except OpenAIError as e:
            raise CollaboratorRejected("llm", str(e)) from e

        text = (cc.choices[0].message.content or "").strip()
        usage = getattr(cc, "usage", None)
        tokens_in = getattr(usage, "prompt_tokens", 0) if usage else 0
        tokens_out = getattr(usage, "completion_tokens", 0) if usage else 0
        logger.debug("chat %s: %d in / %d out", settings.model, tokens_in, tokens_out)
        return text, {
            "model": getattr(cc, "model", settings.model),
            "tokens_in": tokens_in,
            "tokens_out": tokens_out,
        }
