"""Tests for token estimation and usage statistics."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from context_keeper.entities import Conversation, Message
from context_keeper.tokens import (
    assess_message_size,
    conversation_stats,
    estimate_conversation_tokens,
    estimate_tokens,
    usage_level,
)


class TestEstimateTokens:
    """Tests for estimate_tokens."""

    def test_empty_and_none(self) -> None:
        """Test that empty and missing text estimate to zero."""
        assert estimate_tokens("") == 0
        assert estimate_tokens(None) == 0
        assert estimate_tokens([]) == 0

    def test_fast_ratio_with_safety_factor(self) -> None:
        """Test ceil(chars / 3.0 * 1.15)."""
        assert estimate_tokens("Hello") == 2
        assert estimate_tokens("Hi there!") == 4
        assert estimate_tokens("a" * 300) == 115

    def test_methods_use_their_ratio(self) -> None:
        """Test the conservative and optimistic ratios."""
        assert estimate_tokens("a" * 250, method="conservative") == 115
        assert estimate_tokens("a" * 350, method="optimistic") == 115
        text = "x" * 1000
        assert (
            estimate_tokens(text, method="optimistic")
            < estimate_tokens(text, method="fast")
            < estimate_tokens(text, method="conservative")
        )

    def test_custom_safety_factor(self) -> None:
        """Test that the safety factor multiplies the raw estimate."""
        assert estimate_tokens("a" * 9, safety_factor=1.0) == 3

    def test_list_input_joined_with_newlines(self) -> None:
        """Test that a list of strings is joined before counting."""
        assert estimate_tokens(["ab", "cd"]) == estimate_tokens("ab\ncd")

    def test_unknown_method(self) -> None:
        """Test that an unknown method raises."""
        with pytest.raises(ValueError, match="Unknown estimation method"):
            estimate_tokens("text", method="exact")  # type: ignore[arg-type]

    def test_monotonic_in_length(self) -> None:
        """Test that longer text never estimates fewer tokens."""
        previous = 0
        for n in range(0, 500, 7):
            current = estimate_tokens("word " * n)
            assert current >= previous
            previous = current

    def test_deterministic(self) -> None:
        """Test that identical input gives identical output."""
        text = "some text to estimate " * 20
        assert estimate_tokens(text) == estimate_tokens(text)


class TestConversationTokens:
    """Tests for estimate_conversation_tokens."""

    def test_prefers_stored_counts(self) -> None:
        """Test that a message's stored token count is used when present."""
        messages = [
            Message(role="user", content="Hello", token_count=100),
            Message(role="assistant", content="Hi there!"),
        ]
        assert estimate_conversation_tokens(messages) == 100 + 4

    def test_empty(self) -> None:
        """Test that no messages means zero tokens."""
        assert estimate_conversation_tokens([]) == 0


class TestMessageSize:
    """Tests for assess_message_size."""

    def test_risk_levels(self) -> None:
        """Test the low / medium / high thresholds."""
        assert assess_message_size("a" * 100_000).risk == "low"
        assert assess_message_size("a" * 100_001).risk == "medium"
        assert assess_message_size("a" * 250_001).risk == "high"

    def test_size_reported(self) -> None:
        """Test that the character count is returned."""
        assert assess_message_size("abc").size == 3


class TestStats:
    """Tests for usage levels and conversation statistics."""

    def test_usage_level(self) -> None:
        """Test the display buckets."""
        assert usage_level(0, 100) == "ok"
        assert usage_level(59, 100) == "ok"
        assert usage_level(60, 100) == "elevated"
        assert usage_level(80, 100) == "critical"

    def test_conversation_stats(self) -> None:
        """Test counts, percentages and threshold flags."""
        created = datetime(2024, 1, 1, tzinfo=UTC)
        conversation = Conversation(
            id="conv_1",
            thread_id="thread_1",
            token_estimate=850,
            token_limit=1000,
            created_at=created,
            messages=[
                Message(role="user", content="q"),
                Message(role="assistant", content="a"),
                Message(role="system", content="note"),
            ],
        )
        stats = conversation_stats(conversation)
        assert stats.total_messages == 3
        assert stats.user_messages == 1
        assert stats.assistant_messages == 1
        assert stats.system_messages == 1
        assert stats.token_percentage == 85.0
        assert stats.tokens_remaining == 150
        assert stats.compact_at_tokens == 850
        assert stats.warn_at_tokens == 800
        assert stats.should_warn
        assert stats.should_compact
        assert stats.level == "critical"
        assert stats.created_at == created

    def test_below_thresholds(self) -> None:
        """Test that a fresh conversation triggers nothing."""
        stats = conversation_stats(Conversation(token_estimate=10, token_limit=1000))
        assert not stats.should_warn
        assert not stats.should_compact
        assert stats.level == "ok"
