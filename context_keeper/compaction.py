"""Conversation compaction.

When the running token estimate nears the limit, the older part of the history
is summarized by the assistant on the current thread, a new thread is opened
and seeded with the summary, and the history is replaced by

    [continuation, acknowledgement] + the most recent ``2 * preserve_recent`` messages

State machine::

    IDLE -> SUMMARIZING -> AWAITING_NEW_THREAD -> SPLICING -> IDLE
                 |                 |
                 +------> FAILED <-+

Failure in any phase leaves the stored conversation untouched.
"""

from __future__ import annotations

import logging
from datetime import datetime  # noqa: TC003
from enum import StrEnum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from context_keeper import _prompts, constants
from context_keeper.entities import Message, utc_now
from context_keeper.errors import CompactionError, RemoteError, ValidationError

if TYPE_CHECKING:
    from collections.abc import Callable

    from context_keeper.client import AssistantClient
    from context_keeper.entities import Conversation
    from context_keeper.store import ConversationStore

LOGGER = logging.getLogger(__name__)


class CompactionPhase(StrEnum):
    """States of a compaction run."""

    IDLE = "idle"
    SUMMARIZING = "summarizing"
    AWAITING_NEW_THREAD = "awaiting-new-thread"
    SPLICING = "splicing"
    FAILED = "failed"


class CompactionResult(BaseModel):
    """Outcome of a successful compaction."""

    conversation_id: str
    old_thread_id: str
    new_thread_id: str
    messages_before: int = Field(..., ge=0)
    messages_after: int = Field(..., ge=0)
    tokens_before: int = Field(..., ge=0)
    tokens_after: int = Field(..., ge=0)
    summary: str
    compacted_at: datetime

    @property
    def tokens_saved(self) -> int:
        return max(0, self.tokens_before - self.tokens_after)


class CompactionEngine:
    """Runs compaction for conversations held in a :class:`ConversationStore`.

    The engine does not take the conversation's in-flight guard itself; callers
    that expose compaction to users wrap :meth:`compact` in
    ``store.in_flight(conversation_id)``.
    """

    def __init__(
        self,
        store: ConversationStore,
        client: AssistantClient,
        *,
        compact_at: float = constants.COMPACT_AT,
        warn_at: float = constants.WARN_AT,
        preserve_recent: int = constants.PRESERVE_RECENT,
        timeout: float | None = None,
        prompt: str = _prompts.COMPACTION_PROMPT,
        on_progress: Callable[[CompactionPhase], None] | None = None,
    ) -> None:
        """Configure thresholds and collaborators."""
        if not 0 < warn_at <= compact_at <= 1:
            msg = "Thresholds must satisfy 0 < warn_at <= compact_at <= 1"
            raise ValueError(msg)
        if preserve_recent < 0:
            msg = "preserve_recent must be non-negative"
            raise ValueError(msg)
        self.store = store
        self.client = client
        self.compact_at = compact_at
        self.warn_at = warn_at
        self.preserve_recent = preserve_recent
        self.timeout = timeout
        self.prompt = prompt
        self.on_progress = on_progress
        self.phase = CompactionPhase.IDLE

    def _enter(self, phase: CompactionPhase) -> None:
        self.phase = phase
        LOGGER.debug("Compaction phase: %s", phase)
        if self.on_progress is not None:
            self.on_progress(phase)

    def _fail(self, phase: str, message: str) -> CompactionError:
        self._enter(CompactionPhase.FAILED)
        LOGGER.warning("Compaction failed during %s: %s", phase, message)
        return CompactionError(phase, message)

    # --- Thresholds ---

    def should_warn(self, conversation: Conversation) -> bool:
        return conversation.token_estimate >= conversation.token_limit * self.warn_at

    def should_compact(self, conversation: Conversation) -> bool:
        return conversation.token_estimate >= conversation.token_limit * self.compact_at

    def can_compact(self, conversation: Conversation) -> bool:
        """Whether there is anything older than the preserved tail."""
        return len(conversation.messages) > 2 * self.preserve_recent

    # --- Run ---

    async def compact(self, conversation_id: str) -> CompactionResult:
        """Compact one conversation.

        Raises:
            ValidationError: Too few messages, or no thread to summarize on.
            CompactionError: A remote step failed; nothing was changed.

        """
        conversation = self.store.get(conversation_id)
        if not self.can_compact(conversation):
            msg = (
                f"Too few messages to compact ({len(conversation.messages)}; "
                f"need more than {2 * self.preserve_recent})"
            )
            raise ValidationError(msg)
        if conversation.thread_id is None:
            msg = f"Conversation {conversation_id} has no thread to summarize"
            raise ValidationError(msg)

        old_thread_id = conversation.thread_id
        n_preserve = 2 * self.preserve_recent
        split = len(conversation.messages) - n_preserve
        to_summarize = conversation.messages[:split]
        to_preserve = conversation.messages[split:]
        LOGGER.info(
            "Compacting %s: summarizing %d message(s), preserving %d",
            conversation_id,
            len(to_summarize),
            len(to_preserve),
        )

        self._enter(CompactionPhase.SUMMARIZING)
        try:
            summary = await self.client.send_message(
                old_thread_id,
                _prompts.summary_request(to_summarize, self.prompt),
                self.timeout,
            )
        except RemoteError as exc:
            raise self._fail("summarize", str(exc)) from exc
        if not summary.content.strip():
            raise self._fail("summarize", "assistant returned an empty summary")

        self._enter(CompactionPhase.AWAITING_NEW_THREAD)
        try:
            new_thread_id = await self.client.create_thread()
        except RemoteError as exc:
            raise self._fail("new-thread", str(exc)) from exc

        continuation = _prompts.continuation_message(summary.content)
        try:
            ack = await self.client.send_message(new_thread_id, continuation, self.timeout)
        except RemoteError as exc:
            raise self._fail("continuation", str(exc)) from exc

        self._enter(CompactionPhase.SPLICING)
        compacted_at = utc_now()
        new_messages = [
            Message(role="user", content=continuation, kind="compaction"),
            Message(role="assistant", content=ack.content, timestamp=ack.timestamp, kind="compaction"),
            *to_preserve,
        ]
        try:
            updated = self.store.replace_history(
                conversation_id,
                new_messages,
                thread_id=new_thread_id,
                compacted_at=compacted_at,
            )
        except BaseException:
            self._enter(CompactionPhase.FAILED)
            raise

        self._enter(CompactionPhase.IDLE)
        LOGGER.info(
            "Compaction complete: %d messages reduced to %d, tokens %d -> %d, thread %s -> %s",
            len(conversation.messages),
            len(updated.messages),
            conversation.token_estimate,
            updated.token_estimate,
            old_thread_id,
            new_thread_id,
        )
        return CompactionResult(
            conversation_id=conversation_id,
            old_thread_id=old_thread_id,
            new_thread_id=new_thread_id,
            messages_before=len(conversation.messages),
            messages_after=len(updated.messages),
            tokens_before=conversation.token_estimate,
            tokens_after=updated.token_estimate,
            summary=summary.content,
            compacted_at=compacted_at,
        )
