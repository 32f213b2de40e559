"""JSON file persistence for conversations, one file per conversation."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import yaml
from pydantic import ValidationError as PydanticValidationError

from context_keeper._utils import atomic_write_text
from context_keeper.entities import Conversation
from context_keeper.errors import ConversationNotFoundError, CorruptStateError, ValidationError

if TYPE_CHECKING:
    from pathlib import Path

LOGGER = logging.getLogger(__name__)

_SUFFIX = ".json"


def check_integrity(conversation: Conversation) -> CorruptStateError | None:
    """Return the inconsistency found in a loaded conversation, if any."""
    if conversation.messages and conversation.thread_id is None:
        return CorruptStateError(
            f"Conversation {conversation.id} has {len(conversation.messages)} message(s)"
            " but no thread binding; a new thread will be created on the next send",
        )
    return None


class ConversationRepository:
    """Reads and writes conversation records under ``directory``."""

    def __init__(self, directory: Path) -> None:
        """Create the directory lazily on the first write."""
        self.directory = directory.expanduser()

    def _path(self, conversation_id: str) -> Path:
        if not conversation_id or "/" in conversation_id or conversation_id.startswith("."):
            msg = f"Invalid conversation id: {conversation_id!r}"
            raise ValidationError(msg)
        return self.directory / f"{conversation_id}{_SUFFIX}"

    def save(self, conversation: Conversation) -> Path:
        """Atomically write the conversation record."""
        path = self._path(conversation.id)
        atomic_write_text(path, conversation.model_dump_json(indent=2))
        LOGGER.debug("Saved conversation %s to %s", conversation.id, path)
        return path

    def exists(self, conversation_id: str) -> bool:
        return self._path(conversation_id).is_file()

    def load(self, conversation_id: str) -> Conversation:
        """Load one conversation.

        Raises:
            ConversationNotFoundError: If no record exists.
            ValidationError: If the record cannot be parsed.

        """
        path = self._path(conversation_id)
        if not path.is_file():
            raise ConversationNotFoundError(conversation_id)
        try:
            conversation = Conversation.model_validate_json(path.read_text(encoding="utf-8"))
        except (PydanticValidationError, json.JSONDecodeError) as exc:
            msg = f"Unreadable conversation record {path}: {exc}"
            raise ValidationError(msg) from exc
        if problem := check_integrity(conversation):
            LOGGER.warning("%s", problem)
        return conversation

    def ids(self) -> list[str]:
        """Return all persisted ids, oldest first."""
        if not self.directory.is_dir():
            return []
        return sorted(p.stem for p in self.directory.glob(f"*{_SUFFIX}"))

    def load_all(self) -> list[Conversation]:
        """Load every readable record, skipping broken ones."""
        conversations = []
        for conversation_id in self.ids():
            try:
                conversations.append(self.load(conversation_id))
            except ValidationError:
                LOGGER.warning("Skipping unreadable conversation %s", conversation_id)
        return conversations

    def delete(self, conversation_id: str) -> bool:
        """Remove a record. Returns False if it did not exist."""
        path = self._path(conversation_id)
        if not path.is_file():
            return False
        path.unlink()
        LOGGER.debug("Deleted conversation %s", conversation_id)
        return True


def export_markdown(conversation: Conversation) -> str:
    """Render a conversation as Markdown with YAML front matter."""
    front_matter = {
        "id": conversation.id,
        "title": conversation.title,
        "thread_id": conversation.thread_id,
        "created_at": conversation.created_at.isoformat(),
        "updated_at": conversation.updated_at.isoformat(),
        "messages": len(conversation.messages),
        "token_estimate": conversation.token_estimate,
        "compaction_count": conversation.compaction_count,
    }
    parts = [
        "---",
        yaml.safe_dump(front_matter, sort_keys=False, allow_unicode=True).rstrip(),
        "---",
        "",
        f"# {conversation.title}",
        "",
    ]
    for message in conversation.messages:
        stamp = message.timestamp.strftime("%Y-%m-%d %H:%M:%S")
        parts.extend([f"## {message.role.capitalize()} ({stamp})", "", message.content.strip(), ""])
    return "\n".join(parts)
