"""Conversation store: CRUD, message append and the current-conversation session.

Every mutation is applied to a copy, persisted, and only then swapped into
the in-memory cache, so a failed write never leaves a half-applied change.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from context_keeper import constants
from context_keeper.entities import Conversation, Message, MessageKind, Role, make_title
from context_keeper.errors import (
    ConversationBusyError,
    ConversationNotFoundError,
    ValidationError,
)
from context_keeper.tokens import EstimateMethod, estimate_conversation_tokens, estimate_tokens
from context_keeper.tracker import SentStateTracker

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Sequence
    from datetime import datetime

    from context_keeper.persistence import ConversationRepository

LOGGER = logging.getLogger(__name__)


@dataclass
class Session:
    """Holds the id of the current conversation, if any."""

    current_id: str | None = None

    def clear(self) -> None:
        self.current_id = None


class ConversationStore:
    """Owns all loaded conversations and persists every change."""

    def __init__(
        self,
        repository: ConversationRepository,
        session: Session | None = None,
        *,
        token_limit: int = constants.TOKEN_LIMIT,
        estimate_method: EstimateMethod = "fast",
    ) -> None:
        """Initialize an empty store; call :meth:`load_all` to read records."""
        self.repository = repository
        self.session = session or Session()
        self.token_limit = token_limit
        self.estimate_method = estimate_method
        self._conversations: dict[str, Conversation] = {}
        self._in_flight: set[str] = set()

    # --- Loading ---

    def load_all(self) -> list[Conversation]:
        """Load every persisted conversation into memory."""
        for conversation in self.repository.load_all():
            self._conversations[conversation.id] = conversation
        return list(self._conversations.values())

    def get(self, conversation_id: str) -> Conversation:
        """Return the loaded or persisted conversation.

        The returned object is a snapshot; later mutations replace it.

        Raises:
            ConversationNotFoundError: If the id is unknown.

        """
        if conversation_id not in self._conversations:
            self._conversations[conversation_id] = self.repository.load(conversation_id)
        return self._conversations[conversation_id]

    @property
    def current(self) -> Conversation | None:
        if self.session.current_id is None:
            return None
        return self.get(self.session.current_id)

    def require_current(self) -> Conversation:
        """Return the current conversation, creating one if there is none."""
        return self.current or self.create_new()

    def list_conversations(self, limit: int | None = None) -> list[Conversation]:
        """Return conversations, most recently updated first."""
        self.load_all()
        ordered = sorted(self._conversations.values(), key=lambda c: c.updated_at, reverse=True)
        return ordered[:limit] if limit is not None else ordered

    # --- Mutation ---

    def update(
        self,
        conversation_id: str,
        mutate: Callable[[Conversation], None],
    ) -> Conversation:
        """Apply ``mutate`` to a copy, persist it, then make it the live record."""
        updated = self.get(conversation_id).model_copy(deep=True)
        mutate(updated)
        updated.touch()
        self.repository.save(updated)
        self._conversations[conversation_id] = updated
        return updated

    def create_new(self, *, make_current: bool = True) -> Conversation:
        """Create, persist and (by default) select a fresh conversation."""
        conversation = Conversation(token_limit=self.token_limit)
        self.repository.save(conversation)
        self._conversations[conversation.id] = conversation
        if make_current:
            self.session.current_id = conversation.id
        LOGGER.info("Created conversation %s", conversation.id)
        return conversation

    def append_messages(
        self,
        conversation_id: str,
        messages: Sequence[Message],
        *,
        extra_tokens: int = 0,
        tracker: SentStateTracker | None = None,
        context_level: str | None = None,
    ) -> Conversation:
        """Append messages in one write, adding their token counts.

        Messages without a ``token_count`` are estimated. The title is derived
        from the first user message the conversation ever receives.

        Args:
            conversation_id: Target conversation.
            messages: Messages to append, in order.
            extra_tokens: Tokens sent that are not part of any message text.
            tracker: Sent-state to store in the same write.
            context_level: Marks the conversation as having received context.

        Returns:
            The updated conversation.

        """
        if extra_tokens < 0:
            msg = "Token delta must be non-negative"
            raise ValidationError(msg)
        counted = [
            m
            if m.token_count is not None
            else m.model_copy(update={"token_count": estimate_tokens(m.content, self.estimate_method)})
            for m in messages
        ]

        def _append(conversation: Conversation) -> None:
            first_user = next((m for m in counted if m.role == "user"), None)
            if first_user is not None and not conversation.has_user_message:
                conversation.title = make_title(first_user.content)
            conversation.messages = [*conversation.messages, *counted]
            conversation.token_estimate += extra_tokens + sum(m.token_count or 0 for m in counted)
            if tracker is not None:
                tracker.apply_to(conversation)
            if context_level is not None:
                conversation.context_sent = True
                conversation.context_level = context_level

        return self.update(conversation_id, _append)

    def append_message(
        self,
        conversation_id: str,
        role: Role,
        content: str,
        *,
        tokens: int | None = None,
        kind: MessageKind = "chat",
        timestamp: datetime | None = None,
    ) -> Message:
        """Append one message and return it.

        Raises:
            ValidationError: If ``content`` is blank.

        """
        if not content or not content.strip():
            msg = "Message content must not be empty"
            raise ValidationError(msg)
        fields = {"role": role, "content": content, "token_count": tokens, "kind": kind}
        if timestamp is not None:
            fields["timestamp"] = timestamp
        conversation = self.append_messages(conversation_id, [Message(**fields)])
        return conversation.messages[-1]

    def add_tokens(self, conversation_id: str, delta: int) -> Conversation:
        """Increase the running token estimate."""
        if delta < 0:
            msg = "Token delta must be non-negative"
            raise ValidationError(msg)

        def _add(conversation: Conversation) -> None:
            conversation.token_estimate += delta

        return self.update(conversation_id, _add)

    def set_thread_id(self, conversation_id: str, thread_id: str) -> Conversation:
        """Bind a remote thread. An existing binding cannot be changed here."""
        existing = self.get(conversation_id).thread_id
        if existing is not None and existing != thread_id:
            msg = f"Conversation {conversation_id} is already bound to thread {existing}"
            raise ValidationError(msg)

        def _bind(conversation: Conversation) -> None:
            conversation.thread_id = thread_id

        return self.update(conversation_id, _bind)

    def rebind_thread(self, conversation_id: str, thread_id: str) -> Conversation:
        """Replace a lost binding and forget all sent content."""

        def _rebind(conversation: Conversation) -> None:
            conversation.thread_id = thread_id
            tracker = SentStateTracker.from_conversation(conversation)
            tracker.reset_sent()
            tracker.apply_to(conversation)
            conversation.context_sent = False
            conversation.context_level = None

        LOGGER.info("Rebinding conversation %s to new thread %s", conversation_id, thread_id)
        return self.update(conversation_id, _rebind)

    def save_tracker(self, conversation_id: str, tracker: SentStateTracker) -> Conversation:
        """Persist selection, sent and pending sets together."""
        return self.update(conversation_id, tracker.apply_to)

    def replace_history(
        self,
        conversation_id: str,
        messages: Sequence[Message],
        *,
        thread_id: str,
        compacted_at: datetime,
    ) -> Conversation:
        """Swap in a compacted history bound to a new thread.

        The token estimate is recomputed from the new messages.
        """

        def _splice(conversation: Conversation) -> None:
            conversation.messages = list(messages)
            conversation.token_estimate = estimate_conversation_tokens(
                conversation.messages,
                self.estimate_method,
            )
            conversation.thread_id = thread_id
            conversation.compaction_count += 1
            conversation.last_compaction_at = compacted_at

        return self.update(conversation_id, _splice)

    # --- Session ---

    def tracker(self, conversation_id: str) -> SentStateTracker:
        return SentStateTracker.from_conversation(self.get(conversation_id))

    def switch_to(self, conversation_id: str) -> SentStateTracker:
        """Make a conversation current and return its restored tracker state.

        Raises:
            ConversationNotFoundError: If the id is unknown.

        """
        conversation = self.get(conversation_id)
        self.session.current_id = conversation.id
        LOGGER.info("Switched to conversation %s", conversation.id)
        return SentStateTracker.from_conversation(conversation)

    def delete(self, conversation_id: str) -> str | None:
        """Delete a conversation and return the new current id.

        Deleting the current conversation promotes the most recently updated
        remaining one, or clears the session if none remain.
        """
        if conversation_id in self._in_flight:
            raise ConversationBusyError(conversation_id)
        removed = self._conversations.pop(conversation_id, None) is not None
        removed = self.repository.delete(conversation_id) or removed
        if not removed:
            raise ConversationNotFoundError(conversation_id)
        LOGGER.info("Deleted conversation %s", conversation_id)

        if self.session.current_id == conversation_id:
            remaining = self.list_conversations()
            self.session.current_id = remaining[0].id if remaining else None
        return self.session.current_id

    # --- Concurrency ---

    def is_busy(self, conversation_id: str) -> bool:
        return conversation_id in self._in_flight

    @contextmanager
    def in_flight(self, conversation_id: str) -> Iterator[None]:
        """Mark a conversation as loading for the duration of a send.

        Raises:
            ConversationBusyError: If a send is already outstanding.

        """
        if conversation_id in self._in_flight:
            raise ConversationBusyError(conversation_id)
        self._in_flight.add(conversation_id)
        try:
            yield
        finally:
            self._in_flight.discard(conversation_id)
