"""Tests for conversation persistence and export."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest
import yaml

from context_keeper.entities import Conversation, Message, new_conversation_id
from context_keeper.errors import ConversationNotFoundError, CorruptStateError, ValidationError
from context_keeper.persistence import check_integrity, export_markdown

if TYPE_CHECKING:
    from context_keeper.persistence import ConversationRepository


@pytest.fixture
def conversation() -> Conversation:
    return Conversation(
        id="conv_20240101120000000000_abcd",
        thread_id="thread_1",
        title="Survival analysis",
        messages=[
            Message(
                role="user",
                content="Fit a Cox model",
                timestamp=datetime(2024, 1, 1, 12, 0, tzinfo=UTC),
                token_count=6,
            ),
            Message(
                role="assistant",
                content="Use survival::coxph.",
                timestamp=datetime(2024, 1, 1, 12, 1, tzinfo=UTC),
            ),
        ],
        selected_files=["b.R", "a.R"],
        sent_files={"b.R", "a.R"},
        pending_refresh_skills={"eda"},
        token_estimate=20,
        created_at=datetime(2024, 1, 1, 12, 0, tzinfo=UTC),
        updated_at=datetime(2024, 1, 1, 12, 1, tzinfo=UTC),
    )


class TestRepository:
    """Tests for ConversationRepository."""

    def test_save_and_load(
        self,
        repository: ConversationRepository,
        conversation: Conversation,
    ) -> None:
        """Test that every field survives a write and read."""
        path = repository.save(conversation)
        assert path.name == f"{conversation.id}.json"
        assert repository.load(conversation.id) == conversation

    def test_sets_stored_sorted(
        self,
        repository: ConversationRepository,
        conversation: Conversation,
    ) -> None:
        """Test that sets are serialized as sorted lists."""
        path = repository.save(conversation)
        data = json.loads(path.read_text())
        assert data["sent_files"] == ["a.R", "b.R"]
        assert data["selected_files"] == ["b.R", "a.R"]
        assert data["pending_refresh_skills"] == ["eda"]

    def test_no_temp_files_left(
        self,
        repository: ConversationRepository,
        conversation: Conversation,
    ) -> None:
        """Test that the atomic write cleans up after itself."""
        repository.save(conversation)
        repository.save(conversation)
        assert [p.name for p in repository.directory.iterdir()] == [f"{conversation.id}.json"]

    def test_load_missing(self, repository: ConversationRepository) -> None:
        """Test loading an unknown id."""
        with pytest.raises(ConversationNotFoundError):
            repository.load("conv_missing")

    def test_load_corrupt_record(self, repository: ConversationRepository) -> None:
        """Test that unreadable JSON is a validation error."""
        repository.directory.mkdir(parents=True)
        (repository.directory / "conv_bad.json").write_text("{not json")
        with pytest.raises(ValidationError, match="Unreadable"):
            repository.load("conv_bad")

    def test_load_all_skips_broken(
        self,
        repository: ConversationRepository,
        conversation: Conversation,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Test that one broken record does not hide the others."""
        repository.save(conversation)
        (repository.directory / "conv_bad.json").write_text('{"messages": 3}')
        assert [c.id for c in repository.load_all()] == [conversation.id]
        assert "conv_bad" in caplog.text

    @pytest.mark.parametrize("bad_id", ["", "../etc", ".hidden", "a/b"])
    def test_invalid_ids(self, repository: ConversationRepository, bad_id: str) -> None:
        """Test that ids cannot escape the directory."""
        with pytest.raises(ValidationError, match="Invalid conversation id"):
            repository.exists(bad_id)

    def test_ids_and_delete(
        self,
        repository: ConversationRepository,
        conversation: Conversation,
    ) -> None:
        """Test listing and removal."""
        assert repository.ids() == []
        repository.save(conversation)
        assert repository.ids() == [conversation.id]
        assert repository.delete(conversation.id)
        assert not repository.delete(conversation.id)
        assert repository.ids() == []

    def test_integrity_warning(
        self,
        repository: ConversationRepository,
        conversation: Conversation,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Test that messages without a thread load with a warning."""
        conversation.thread_id = None
        repository.save(conversation)
        loaded = repository.load(conversation.id)
        assert len(loaded.messages) == 2
        assert "no thread binding" in caplog.text


class TestIntegrity:
    """Tests for check_integrity."""

    def test_consistent(self, conversation: Conversation) -> None:
        """Test that a bound conversation is fine."""
        assert check_integrity(conversation) is None
        assert check_integrity(Conversation()) is None

    def test_messages_without_thread(self, conversation: Conversation) -> None:
        """Test the corrupt-state report."""
        conversation.thread_id = None
        assert isinstance(check_integrity(conversation), CorruptStateError)


class TestIds:
    """Tests for conversation id generation."""

    def test_format(self) -> None:
        """Test the timestamp prefix and random suffix."""
        stamp = datetime(2024, 3, 4, 5, 6, 7, 890, tzinfo=UTC)
        conversation_id = new_conversation_id(stamp)
        assert conversation_id.startswith("conv_20240304050607000890_")
        assert len(conversation_id.rsplit("_", 1)[1]) == 4

    def test_unique(self) -> None:
        """Test that ids do not collide."""
        assert len({new_conversation_id() for _ in range(50)}) == 50


class TestExport:
    """Tests for export_markdown."""

    def test_front_matter_and_body(self, conversation: Conversation) -> None:
        """Test YAML metadata and one section per message."""
        text = export_markdown(conversation)
        _, front, body = text.split("---\n", 2)
        meta = yaml.safe_load(front)
        assert meta["id"] == conversation.id
        assert meta["title"] == "Survival analysis"
        assert meta["messages"] == 2
        assert meta["thread_id"] == "thread_1"
        assert "# Survival analysis" in body
        assert "## User (2024-01-01 12:00:00)\n\nFit a Cox model" in body
        assert "## Assistant (2024-01-01 12:01:00)\n\nUse survival::coxph." in body
