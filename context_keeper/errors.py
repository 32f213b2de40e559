"""Error types raised by the context-keeper core.

Callers decide how to present these; the core itself never prints.
"""

from __future__ import annotations


class ContextKeeperError(Exception):
    """Base class for all context-keeper errors."""


class ValidationError(ContextKeeperError):
    """Invalid input: empty message, unknown id, refresh of an unknown item."""


class ConversationNotFoundError(ValidationError):
    """No conversation with the given id is loaded or persisted."""

    def __init__(self, conversation_id: str) -> None:
        """Store the missing id."""
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class ConversationBusyError(ValidationError):
    """A send is already in flight for this conversation."""

    def __init__(self, conversation_id: str) -> None:
        """Store the busy conversation id."""
        super().__init__(f"A request is already in flight for {conversation_id}")
        self.conversation_id = conversation_id


class RemoteError(ContextKeeperError):
    """The remote assistant failed (network, auth, rate limit, server error)."""

    def __init__(self, message: str, status: int | None = None) -> None:
        """Store the HTTP status (None for transport failures)."""
        super().__init__(message if status is None else f"HTTP {status}: {message}")
        self.status = status
        self.message = message


class CompactionError(ContextKeeperError):
    """A compaction step failed; the conversation was left untouched."""

    PHASES = ("summarize", "new-thread", "continuation")

    def __init__(self, phase: str, message: str) -> None:
        """Store the failing phase."""
        super().__init__(f"Compaction failed during {phase}: {message}")
        self.phase = phase
        self.message = message


class CorruptStateError(ContextKeeperError):
    """Persisted state is inconsistent but the text history is still usable."""
