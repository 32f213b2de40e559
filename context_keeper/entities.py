"""Domain entities for conversations.

A ``Conversation`` is the unit of persisted state. Messages are immutable once
appended; only compaction replaces the whole sequence.
"""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from context_keeper import constants

Role = Literal["user", "assistant", "system"]
MessageKind = Literal["chat", "context", "file_request", "compaction", "note"]


def utc_now() -> datetime:
    return datetime.now(UTC)


def new_conversation_id(now: datetime | None = None) -> str:
    """Generate a sortable id from a timestamp plus a random suffix."""
    now = now or utc_now()
    return f"conv_{now:%Y%m%d%H%M%S%f}_{secrets.token_hex(2)}"


def make_title(content: str) -> str:
    """Derive a conversation title from the first user message."""
    first_line = content.strip().splitlines()[0] if content.strip() else ""
    if len(first_line) <= constants.TITLE_MAX_CHARS:
        return first_line or constants.DEFAULT_TITLE
    cut = constants.TITLE_MAX_CHARS - len(constants.TITLE_ELLIPSIS)
    return first_line[:cut].rstrip() + constants.TITLE_ELLIPSIS


class Message(BaseModel):
    """A single message in the conversation history."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    timestamp: datetime = Field(default_factory=utc_now)
    token_count: int | None = Field(None, ge=0)
    kind: MessageKind = "chat"


class Conversation(BaseModel):
    """Identity, history, thread binding and sent-state of a conversation."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=new_conversation_id)
    thread_id: str | None = None
    title: str = constants.DEFAULT_TITLE
    messages: list[Message] = Field(default_factory=list)

    context_sent: bool = False
    context_level: str | None = None

    selected_files: list[str] = Field(default_factory=list)
    selected_data_sources: list[str] = Field(default_factory=list)
    selected_skills: list[str] = Field(default_factory=list)

    sent_files: set[str] = Field(default_factory=set)
    sent_data_sources: set[str] = Field(default_factory=set)
    sent_skills: set[str] = Field(default_factory=set)

    pending_refresh_files: set[str] = Field(default_factory=set)
    pending_refresh_data_sources: set[str] = Field(default_factory=set)
    pending_refresh_skills: set[str] = Field(default_factory=set)

    token_estimate: int = Field(0, ge=0)
    token_limit: int = Field(constants.TOKEN_LIMIT, gt=0)

    compaction_count: int = Field(0, ge=0)
    last_compaction_at: datetime | None = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_serializer(
        "sent_files",
        "sent_data_sources",
        "sent_skills",
        "pending_refresh_files",
        "pending_refresh_data_sources",
        "pending_refresh_skills",
    )
    def _sorted(self, value: set[str]) -> list[str]:
        return sorted(value)

    @property
    def has_user_message(self) -> bool:
        return any(m.role == "user" for m in self.messages)

    def touch(self) -> None:
        """Refresh ``updated_at``."""
        self.updated_at = utc_now()
