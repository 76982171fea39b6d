"""
Prompt sequences per topic. Pure reference data: each topic maps to a fixed,
ordered list of examiner instructions. Turn i of a session is driven by
prompt i; the session finishes after the last one.
"""

from __future__ import annotations

from dataclasses import replace

from ..errors import UnknownTopic
from ..models import Prompt, PromptSet


_TOPICS: dict[str, tuple[Prompt, ...]] = {
    "Hometown": (
        Prompt(
            "hometown_where",
            "Ask where the candidate's hometown is and what it is known for.",
        ),
        Prompt(
            "hometown_change",
            "Ask how the hometown has changed in recent years, building on the "
            "candidate's last answer.",
        ),
        Prompt(
            "hometown_future",
            "Ask whether the candidate would like to live there in the future "
            "and why.",
        ),
    ),
    "Work or Study": (
        Prompt("work_what", "Ask whether the candidate works or studies, and what."),
        Prompt("work_enjoy", "Ask what the candidate enjoys most about it."),
        Prompt("work_change", "Ask what they would change about their work or studies."),
        Prompt("work_plans", "Ask about their plans for the next few years."),
    ),
    "Travel": (
        Prompt("travel_recent", "Ask about the last trip the candidate took."),
        Prompt("travel_style", "Ask whether they prefer travelling alone or with others."),
        Prompt(
            "travel_dream",
            "Ask which place they would most like to visit and what they would do there.",
        ),
    ),
    "Technology": (
        Prompt("tech_daily", "Ask which piece of technology the candidate uses most each day."),
        Prompt("tech_learning", "Ask how technology has changed the way they learn."),
        Prompt(
            "tech_society",
            "Ask whether people rely too much on technology nowadays, inviting "
            "a reasoned opinion.",
        ),
    ),
}


def available_topics() -> list[str]:
    return list(_TOPICS)


def get_prompt_set(topic: str) -> PromptSet:
    """Return the fixed PromptSet for a topic (name match is case-insensitive)."""
    wanted = (topic or "").strip().lower()
    for name, prompts in _TOPICS.items():
        if name.lower() == wanted:
            return PromptSet(
                topic=name, prompts=tuple(replace(p, topic=name) for p in prompts)
            )
    raise UnknownTopic(topic)
