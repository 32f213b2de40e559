"""Token estimation using a calibrated characters-per-token ratio.

Real tokenization is unavailable client-side, so counts are approximated from
character length and padded with a safety margin. Over-estimating is the safer
failure direction for a hard server-side limit.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime  # noqa: TC003
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

from context_keeper import constants

if TYPE_CHECKING:
    from collections.abc import Iterable

    from context_keeper.entities import Conversation, Message

EstimateMethod = Literal["fast", "conservative", "optimistic"]
SizeRisk = Literal["low", "medium", "high"]
UsageLevel = Literal["ok", "elevated", "critical"]


def estimate_tokens(
    text: str | Iterable[str] | None,
    method: EstimateMethod = "fast",
    safety_factor: float = constants.SAFETY_FACTOR,
) -> int:
    """Estimate the token count of ``text``.

    Args:
        text: A string, or several strings that are joined with newlines.
        method: ``fast`` (3.0 chars/token), ``conservative`` (2.5) or
            ``optimistic`` (3.5).
        safety_factor: Multiplier applied to the raw estimate.

    Returns:
        ``ceil(chars / ratio * safety_factor)``, or 0 for empty input.

    """
    if text is None:
        return 0
    if not isinstance(text, str):
        text = "\n".join(text)
    if not text:
        return 0
    try:
        ratio = constants.CHARS_PER_TOKEN[method]
    except KeyError:
        msg = f"Unknown estimation method: {method!r}"
        raise ValueError(msg) from None
    return math.ceil((len(text) / ratio) * safety_factor)


def estimate_conversation_tokens(
    messages: Iterable[Message],
    method: EstimateMethod = "fast",
) -> int:
    """Sum token counts over messages, preferring each message's stored count."""
    total = 0
    for message in messages:
        if message.token_count is not None:
            total += message.token_count
        else:
            total += estimate_tokens(message.content, method=method)
    return total


@dataclass(frozen=True)
class SizeCheck:
    """Timeout risk classification for an outgoing message."""

    risk: SizeRisk
    size: int


def assess_message_size(text: str) -> SizeCheck:
    """Classify how likely a message is to time out based on its length."""
    size = len(text)
    if size > constants.VERY_LARGE_INPUT_CHARS:
        return SizeCheck(risk="high", size=size)
    if size > constants.LARGE_INPUT_CHARS:
        return SizeCheck(risk="medium", size=size)
    return SizeCheck(risk="low", size=size)


def usage_level(token_estimate: int, token_limit: int) -> UsageLevel:
    """Bucket a usage percentage for display."""
    pct = 100 * token_estimate / token_limit if token_limit > 0 else 0
    if pct < constants.USAGE_ELEVATED_PCT:
        return "ok"
    if pct < constants.USAGE_CRITICAL_PCT:
        return "elevated"
    return "critical"


class ConversationStats(BaseModel):
    """Token usage and provenance of a conversation."""

    conversation_id: str
    thread_id: str | None
    created_at: datetime
    total_messages: int = Field(..., ge=0)
    user_messages: int = Field(..., ge=0)
    assistant_messages: int = Field(..., ge=0)
    system_messages: int = Field(..., ge=0)
    token_estimate: int = Field(..., ge=0)
    token_limit: int = Field(..., gt=0)
    token_percentage: float
    tokens_remaining: int
    compaction_count: int = Field(..., ge=0)
    last_compaction_at: datetime | None = None
    compact_at_tokens: int
    warn_at_tokens: int
    should_warn: bool
    should_compact: bool
    level: UsageLevel


def conversation_stats(
    conversation: Conversation,
    *,
    compact_at: float = constants.COMPACT_AT,
    warn_at: float = constants.WARN_AT,
) -> ConversationStats:
    """Build usage statistics for a conversation."""
    roles = [m.role for m in conversation.messages]
    limit = conversation.token_limit
    estimate = conversation.token_estimate
    compact_at_tokens = math.floor(limit * compact_at)
    warn_at_tokens = math.floor(limit * warn_at)
    return ConversationStats(
        conversation_id=conversation.id,
        thread_id=conversation.thread_id,
        created_at=conversation.created_at,
        total_messages=len(roles),
        user_messages=roles.count("user"),
        assistant_messages=roles.count("assistant"),
        system_messages=roles.count("system"),
        token_estimate=estimate,
        token_limit=limit,
        token_percentage=round(100 * estimate / limit, 1),
        tokens_remaining=limit - estimate,
        compaction_count=conversation.compaction_count,
        last_compaction_at=conversation.last_compaction_at,
        compact_at_tokens=compact_at_tokens,
        warn_at_tokens=warn_at_tokens,
        should_warn=estimate >= limit * warn_at,
        should_compact=estimate >= limit * compact_at,
        level=usage_level(estimate, limit),
    )
