"""Utilities for pulling JSON out of model replies (fences, leading prose)."""

from __future__ import annotations
import json
import re
from typing import Any

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_FENCE_OPEN = re.compile(r"^```[A-Za-z0-9_-]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")


def _strip_code_fences(text: str) -> str:
    """Remove surrounding ```...``` fences (with or without a language tag)."""
    t = text.strip()
    if t.startswith("```") and t.endswith("```"):
        t = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", t))
    return t.strip()


def extract_json(text: str) -> Any:
    """
    Parse the reply as JSON, falling back to the first {...} block inside it.
    Returns {} when nothing parseable is found.
    """
    if not text:
        return {}
    t = _strip_code_fences(text)

    try:
        return json.loads(t)
    except json.JSONDecodeError:
        pass

    m = _JSON_OBJECT.search(t)
    if not m:
        return {}
    try:
        return json.loads(m.group(0))
    except json.JSONDecodeError:
        return {}


def require_object(text: str, err: str = "Expected a JSON object.") -> dict:
    """Strict: must return an object, else raise ValueError."""
    data = extract_json(text)
    if not isinstance(data, dict) or not data:
        raise ValueError(err)
    return data


def to_str_list(x: Any) -> list[str]:
    """Convert None, str, or list[str] to list[str], dropping blanks."""
    if x is None:
        return []
    if isinstance(x, str):
        s = x.strip()
        return [s] if s else []
    if isinstance(x, list):
        return [item.strip() for item in x if isinstance(item, str) and item.strip()]
    return []
