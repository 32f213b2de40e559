"""Orchestrates context delivery, message exchange and automatic compaction.

``ContextChat`` ties the store, the sent-state tracker, the assembler and the
remote assistant together. Each public coroutine runs under the
conversation's in-flight guard, and nothing is committed until the remote
call it depends on has succeeded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from context_keeper import _prompts, constants
from context_keeper.assembler import ContextDocument, ContextSelection, assemble
from context_keeper.compaction import CompactionEngine, CompactionPhase, CompactionResult
from context_keeper.entities import Message
from context_keeper.errors import CompactionError, RemoteError, ValidationError
from context_keeper.files import parse_file_requests, render_full
from context_keeper.persistence import check_integrity
from context_keeper.tokens import assess_message_size, conversation_stats, estimate_tokens
from context_keeper.tracker import Delta

if TYPE_CHECKING:
    from collections.abc import Callable

    from context_keeper.assembler import ContextProviders
    from context_keeper.client import AssistantClient, AssistantReply
    from context_keeper.store import ConversationStore
    from context_keeper.tokens import ConversationStats
    from context_keeper.tracker import Category

LOGGER = logging.getLogger(__name__)

EventKind = Literal[
    "thread_created",
    "thread_recreated",
    "size_warning",
    "context_applied",
    "message_sent",
    "files_requested",
    "files_unavailable",
    "file_request_failed",
    "token_warning",
    "compaction_started",
    "compaction_phase",
    "compaction_complete",
    "compaction_failed",
]


@dataclass(frozen=True)
class ChatEvent:
    """Progress notification for a UI layer."""

    kind: EventKind
    message: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of :meth:`ContextChat.apply_context`."""

    sent: bool
    message: str
    delta: Delta = field(default_factory=Delta)
    document: ContextDocument | None = None
    reply: AssistantReply | None = None
    compaction: CompactionResult | None = None


@dataclass(frozen=True)
class SendResult:
    """Outcome of :meth:`ContextChat.send`."""

    reply: AssistantReply
    requested_files: list[str] = field(default_factory=list)
    fetched_files: list[str] = field(default_factory=list)
    unavailable_files: list[str] = field(default_factory=list)
    file_reply: AssistantReply | None = None
    compaction: CompactionResult | None = None


def _delivered(document: ContextDocument) -> Delta:
    """The tracked items that actually have a section in ``document``."""
    return Delta(
        files=tuple(document.files),
        data_sources=tuple(document.data_sources),
        skills=tuple(document.skills),
    )


class ContextChat:
    """High-level operations on conversations held in a store."""

    def __init__(
        self,
        store: ConversationStore,
        client: AssistantClient,
        providers: ContextProviders,
        *,
        engine: CompactionEngine | None = None,
        auto_compact: bool = True,
        timeout: float | None = None,
        on_event: Callable[[ChatEvent], None] | None = None,
    ) -> None:
        """Wire collaborators together.

        Args:
            store: Conversation store.
            client: Remote assistant.
            providers: Sources of context text.
            engine: Compaction engine. Defaults to one using ``store`` and
                ``client`` with default thresholds.
            auto_compact: Compact automatically after an exchange crosses the
                compaction threshold.
            timeout: Per-request timeout passed to the client.
            on_event: Receives :class:`ChatEvent` notifications.

        """
        self.store = store
        self.client = client
        self.providers = providers
        self.auto_compact = auto_compact
        self.timeout = timeout
        self.on_event = on_event
        self.engine = engine or CompactionEngine(store, client, timeout=timeout)
        if self.engine.on_progress is None:
            self.engine.on_progress = self._on_compaction_phase

    # --- Events ---

    def _emit(self, kind: EventKind, message: str, **data: Any) -> None:
        if self.on_event is not None:
            self.on_event(ChatEvent(kind=kind, message=message, data=data))

    def _on_compaction_phase(self, phase: CompactionPhase) -> None:
        self._emit("compaction_phase", f"Compaction: {phase}", phase=str(phase))

    # --- Selection ---

    def select(self, conversation_id: str, category: Category, *items: str) -> None:
        tracker = self.store.tracker(conversation_id)
        tracker.select(category, *items)
        self.store.save_tracker(conversation_id, tracker)

    def deselect(self, conversation_id: str, category: Category, *items: str) -> None:
        tracker = self.store.tracker(conversation_id)
        tracker.deselect(category, *items)
        self.store.save_tracker(conversation_id, tracker)

    def queue_refresh(self, conversation_id: str, category: Category, item: str) -> None:
        """Queue one selected or sent item for re-delivery."""
        tracker = self.store.tracker(conversation_id)
        tracker.queue_refresh(category, item)
        self.store.save_tracker(conversation_id, tracker)

    def refresh_all(self, conversation_id: str) -> int:
        """Queue every sent item for re-delivery. Returns the number queued."""
        tracker = self.store.tracker(conversation_id)
        count = tracker.queue_refresh_all()
        self.store.save_tracker(conversation_id, tracker)
        LOGGER.info("Queued %d item(s) for refresh", count)
        return count

    def stats(self, conversation_id: str) -> ConversationStats:
        return conversation_stats(
            self.store.get(conversation_id),
            compact_at=self.engine.compact_at,
            warn_at=self.engine.warn_at,
        )

    # --- Context ---

    def _selection(
        self,
        delta: Delta,
        *,
        config: bool,
        session: bool,
        git: bool,
        git_history: bool,
        data_method: str,
    ) -> ContextSelection:
        return ContextSelection(
            config=config,
            session=session,
            git=git,
            git_history=git_history,
            files=list(delta.files),
            data_sources=list(delta.data_sources),
            skills=list(delta.skills),
            data_method=data_method,
        )

    def preview_context(
        self,
        conversation_id: str,
        *,
        config: bool = False,
        session: bool = False,
        git: bool = False,
        git_history: bool = False,
        data_method: str = "summary",
    ) -> ContextDocument | None:
        """Assemble what the next :meth:`apply_context` would send, without sending."""
        delta = self.store.tracker(conversation_id).delta()
        selection = self._selection(
            delta,
            config=config,
            session=session,
            git=git,
            git_history=git_history,
            data_method=data_method,
        )
        return assemble(selection, self.providers)

    async def _ensure_thread(self, conversation_id: str) -> str:
        """Return the bound thread, creating one if needed."""
        conversation = self.store.get(conversation_id)
        if conversation.thread_id is not None:
            return conversation.thread_id

        thread_id = await self.client.create_thread()
        if problem := check_integrity(conversation):
            LOGGER.warning("%s", problem)
            self.store.rebind_thread(conversation_id, thread_id)
            self._emit("thread_recreated", str(problem), thread_id=thread_id)
        else:
            self.store.set_thread_id(conversation_id, thread_id)
            self._emit("thread_created", f"Created thread {thread_id}", thread_id=thread_id)
        return thread_id

    def _check_size(self, text: str) -> None:
        check = assess_message_size(text)
        if check.risk != "low":
            LOGGER.warning("Large outgoing message: %d characters (%s risk)", check.size, check.risk)
            self._emit(
                "size_warning",
                f"Large input: {check.size:,} characters ({check.risk} timeout risk)",
                risk=check.risk,
                size=check.size,
            )

    async def apply_context(
        self,
        conversation_id: str,
        *,
        config: bool = False,
        session: bool = False,
        git: bool = False,
        git_history: bool = False,
        data_method: str = "summary",
    ) -> ApplyResult:
        """Send the delta of selected sources plus any requested ambient sections.

        An empty delta with no ambient section is a no-op reported as
        "nothing new to send"; no remote call is made and no thread is created.
        Only items that rendered a section are marked sent; missing files and
        unknown sources stay in the delta.

        Raises:
            ConversationBusyError: Another operation is in flight.
            RemoteError: The send failed; sent-state is unchanged.

        """
        ambient = config or session or git
        with self.store.in_flight(conversation_id):
            tracker = self.store.tracker(conversation_id)
            delta = tracker.delta()
            if delta.is_empty and not ambient:
                return ApplyResult(sent=False, message="Nothing new to send")

            def build(delta: Delta) -> ContextDocument | None:
                selection = self._selection(
                    delta,
                    config=config,
                    session=session,
                    git=git,
                    git_history=git_history,
                    data_method=data_method,
                )
                return assemble(selection, self.providers)

            document = build(delta)
            if document is None:
                return ApplyResult(sent=False, message="Nothing new to send", delta=delta)

            thread_id = await self._ensure_thread(conversation_id)
            tracker = self.store.tracker(conversation_id)
            if tracker.delta() != delta:
                # Recreating a lost thread resets sent-state.
                delta = tracker.delta()
                document = build(delta)
                if document is None:
                    return ApplyResult(sent=False, message="Nothing new to send", delta=delta)

            text = _prompts.context_message(document.text, partial_files=document.has_partial_files)
            self._check_size(text)
            reply = await self.client.send_message(thread_id, text, self.timeout)

            delivered = _delivered(document)
            if skipped := delta.total - delivered.total:
                LOGGER.warning("%d selected item(s) could not be rendered and stay unsent", skipped)
            tracker.commit(delivered)
            level = document.tier_decision.tier if document.tier_decision else "full"
            note = f"Applied context ({document.char_count:,} characters)"
            self.store.append_messages(
                conversation_id,
                [
                    Message(role="system", content=note, token_count=0, kind="context"),
                    Message(
                        role="assistant",
                        content=reply.content,
                        timestamp=reply.timestamp,
                        kind="context",
                    ),
                ],
                extra_tokens=estimate_tokens(text),
                tracker=tracker,
                context_level=level,
            )
            LOGGER.info("%s: %s", note, ", ".join(document.section_names))
            self._emit(
                "context_applied",
                note,
                sections=document.section_names,
                chars=document.char_count,
            )
            compaction = await self._after_exchange(conversation_id)
        return ApplyResult(
            sent=True,
            message=note,
            delta=delta,
            document=document,
            reply=reply,
            compaction=compaction,
        )

    # --- Messages ---

    async def send(
        self,
        conversation_id: str,
        text: str,
        *,
        auto_fetch: bool = True,
    ) -> SendResult:
        """Send a user message and record the exchange.

        When the reply contains ``[REQUEST_FILE:path]`` markers for files that
        are selected or already sent, their full contents are sent back in one
        follow-up message.

        Raises:
            ValidationError: ``text`` is blank.
            ConversationBusyError: Another operation is in flight.
            RemoteError: The send failed; nothing was recorded.

        """
        if not text or not text.strip():
            msg = "Message must not be empty"
            raise ValidationError(msg)

        with self.store.in_flight(conversation_id):
            thread_id = await self._ensure_thread(conversation_id)
            outgoing = _prompts.add_chunking_guidance(text)
            self._check_size(outgoing)
            reply = await self.client.send_message(thread_id, outgoing, self.timeout)

            self.store.append_messages(
                conversation_id,
                [
                    Message(role="user", content=text, token_count=estimate_tokens(outgoing)),
                    Message(role="assistant", content=reply.content, timestamp=reply.timestamp),
                ],
            )
            self._emit("message_sent", "Message sent", chars=len(outgoing))

            requested = parse_file_requests(reply.content) if auto_fetch else []
            fetched: list[str] = []
            unavailable: list[str] = []
            file_reply = None
            if requested:
                fetched, unavailable, file_reply = await self._send_requested_files(
                    conversation_id,
                    thread_id,
                    requested,
                )
            compaction = await self._after_exchange(conversation_id)

        return SendResult(
            reply=reply,
            requested_files=requested,
            fetched_files=fetched,
            unavailable_files=unavailable,
            file_reply=file_reply,
            compaction=compaction,
        )

    async def _send_requested_files(
        self,
        conversation_id: str,
        thread_id: str,
        requested: list[str],
    ) -> tuple[list[str], list[str], AssistantReply | None]:
        tracker = self.store.tracker(conversation_id)
        known = set(tracker.selected["files"]) | tracker.sent["files"]
        workspace = self.providers.workspace
        available = [
            path for path in requested if path in known and workspace and workspace.file_exists(path)
        ]
        unavailable = [path for path in requested if path not in available]
        if unavailable:
            LOGGER.warning("Assistant requested files not in context: %s", ", ".join(unavailable))
            self._emit(
                "files_unavailable",
                f"Requested files not in context: {', '.join(unavailable)}",
                files=unavailable,
            )
        if not available or workspace is None:
            return [], unavailable, None

        self._emit("files_requested", f"Auto-fetching {len(available)} file(s)", files=available)
        sections = [render_full(path, workspace.read_file(path)) for path in available]
        text = _prompts.requested_files_message(constants.SECTION_SEPARATOR.join(sections))
        self._check_size(text)
        try:
            reply = await self.client.send_message(thread_id, text, self.timeout)
        except RemoteError as exc:
            LOGGER.warning("Sending requested files failed: %s", exc)
            self._emit("file_request_failed", str(exc), files=available)
            return [], unavailable, None

        tracker.commit(Delta(files=tuple(available)))
        self.store.append_messages(
            conversation_id,
            [
                Message(
                    role="user",
                    content=f"Sent requested files: {', '.join(available)}",
                    token_count=estimate_tokens(text),
                    kind="file_request",
                ),
                Message(
                    role="assistant",
                    content=reply.content,
                    timestamp=reply.timestamp,
                    kind="file_request",
                ),
            ],
            tracker=tracker,
        )
        return available, unavailable, reply

    # --- Budget ---

    async def _after_exchange(self, conversation_id: str) -> CompactionResult | None:
        conversation = self.store.get(conversation_id)
        stats = conversation_stats(
            conversation,
            compact_at=self.engine.compact_at,
            warn_at=self.engine.warn_at,
        )
        if stats.should_compact and self.auto_compact and self.engine.can_compact(conversation):
            self._emit(
                "compaction_started",
                f"Token usage at {stats.token_percentage}%, compacting",
                percentage=stats.token_percentage,
            )
            try:
                result = await self.engine.compact(conversation_id)
            except CompactionError as exc:
                LOGGER.warning("Automatic compaction failed: %s", exc)
                self._emit("compaction_failed", str(exc), phase=exc.phase)
                return None
            self._emit(
                "compaction_complete",
                f"Compacted {result.messages_before} messages to {result.messages_after}",
                tokens_before=result.tokens_before,
                tokens_after=result.tokens_after,
            )
            return result
        if stats.should_warn:
            LOGGER.warning(
                "Token usage at %s%% (%d / %d)",
                stats.token_percentage,
                stats.token_estimate,
                stats.token_limit,
            )
            self._emit(
                "token_warning",
                f"Token usage at {stats.token_percentage}%",
                percentage=stats.token_percentage,
                should_compact=stats.should_compact,
            )
        return None

    async def compact(self, conversation_id: str) -> CompactionResult:
        """Compact on demand, under the in-flight guard."""
        with self.store.in_flight(conversation_id):
            return await self.engine.compact(conversation_id)
