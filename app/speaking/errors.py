"""
Error taxonomy for the session lifecycle.

Collaborator errors come from leaf services (speech, question generation,
summarization, analysis). Store errors come from the session store gateway.
InvalidStateTransition is a programming error in the caller and is never
swallowed.
"""

from __future__ import annotations
from typing import Optional


class SpeakingError(Exception):
    """Base class for every error raised by this package."""


class CollaboratorError(SpeakingError):
    def __init__(self, collaborator: str, message: str):
        self.collaborator = collaborator
        super().__init__(f"{collaborator}: {message}")


class CollaboratorTimeout(CollaboratorError):
    """A leaf call exceeded its time budget."""


class CollaboratorRejected(CollaboratorError):
    """Bad input or a service-side error."""


class StoreError(SpeakingError):
    pass


class StoreUnavailable(StoreError):
    pass


class StoreWriteConflict(StoreError):
    """A conditional write found the field already set."""


class SessionNotFound(StoreError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class InvalidStateTransition(SpeakingError):
    def __init__(self, state, event, session_id: Optional[str] = None):
        self.state = state
        self.event = event
        self.session_id = session_id
        super().__init__(
            f"Event {getattr(event, 'value', event)!r} is not valid in state "
            f"{getattr(state, 'value', state)!r} (session={session_id})"
        )


class UnknownTopic(SpeakingError):
    def __init__(self, topic: str):
        self.topic = topic
        super().__init__(f"Unknown topic: {topic!r}")


class SessionNotActive(SpeakingError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"No live session with id {session_id}")


class InvalidInput(SpeakingError):
    """The respondent's answer failed the input guard (empty or too long)."""
