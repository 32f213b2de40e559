"""Context window and token budget management for long assistant conversations.

The pieces, leaf first:

1. ``tokens``: character-ratio token estimates and usage statistics
2. ``tiers``: choose full / summary / index detail for a batch of files
3. ``assembler``: render selected sources into one ordered context document
4. ``tracker``: selected / sent / pending-refresh sets and the next delta
5. ``store``: persisted conversations and the current-conversation session
6. ``compaction``: summarize old history into a fresh remote thread

Example:
    from context_keeper import ContextChat, ContextProviders, ConversationStore
    from context_keeper import ConversationRepository, HttpAssistantClient

    store = ConversationStore(ConversationRepository(history_dir))
    chat = ContextChat(store, HttpAssistantClient(key, assistant), ContextProviders.local(root))

    conversation = store.create_new()
    chat.select(conversation.id, "files", "analysis.py")
    await chat.apply_context(conversation.id, config=True)
    result = await chat.send(conversation.id, "What does analysis.py do?")

"""

from context_keeper.assembler import ContextDocument, ContextProviders, ContextSelection, assemble
from context_keeper.chat import ChatEvent, ContextChat
from context_keeper.client import AssistantClient, AssistantReply, HttpAssistantClient
from context_keeper.compaction import CompactionEngine, CompactionPhase, CompactionResult
from context_keeper.entities import Conversation, Message
from context_keeper.errors import (
    CompactionError,
    ContextKeeperError,
    ConversationBusyError,
    ConversationNotFoundError,
    CorruptStateError,
    RemoteError,
    ValidationError,
)
from context_keeper.persistence import ConversationRepository, export_markdown
from context_keeper.store import ConversationStore, Session
from context_keeper.tiers import FileInfo, TierDecision, select_tier
from context_keeper.tokens import ConversationStats, estimate_tokens
from context_keeper.tracker import Delta, SentStateTracker, compute_delta

__all__ = [
    "AssistantClient",
    "AssistantReply",
    "ChatEvent",
    "CompactionEngine",
    "CompactionError",
    "CompactionPhase",
    "CompactionResult",
    "ContextChat",
    "ContextDocument",
    "ContextKeeperError",
    "ContextProviders",
    "ContextSelection",
    "Conversation",
    "ConversationBusyError",
    "ConversationNotFoundError",
    "ConversationRepository",
    "ConversationStats",
    "ConversationStore",
    "CorruptStateError",
    "Delta",
    "FileInfo",
    "Message",
    "RemoteError",
    "SentStateTracker",
    "Session",
    "TierDecision",
    "ValidationError",
    "assemble",
    "compute_delta",
    "estimate_tokens",
    "export_markdown",
    "select_tier",
]
