"""Track what has been selected, sent and queued for refresh.

Three categories (files, data sources, skills) each carry three sets. The
next delta is ``(selected - sent) | pending``: new selections that were never
sent plus anything explicitly queued for refresh. Committing happens only
after a successful send, so a failed attempt recomputes the same delta.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from context_keeper.errors import ValidationError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from collections.abc import Set as AbstractSet

    from context_keeper.entities import Conversation

logger = logging.getLogger(__name__)

Category = Literal["files", "data_sources", "skills"]
CATEGORIES: tuple[Category, ...] = ("files", "data_sources", "skills")
ItemStatus = Literal["new", "sent", "pending", "unselected"]


def compute_delta(
    selected: Iterable[str],
    sent: AbstractSet[str],
    pending: Iterable[str],
) -> list[str]:
    """Return ``(selected - sent) | pending``.

    Selection order is kept; pending items not in the selection follow in
    sorted order so the result is deterministic.
    """
    delta = [item for item in dict.fromkeys(selected) if item not in sent]
    delta.extend(item for item in sorted(set(pending)) if item not in delta)
    return delta


def commit(sent: AbstractSet[str], to_send: Iterable[str]) -> set[str]:
    """Return ``sent | to_send``."""
    return set(sent) | set(to_send)


def queue_refresh(pending: AbstractSet[str], item: str) -> set[str]:
    """Return ``pending | {item}``."""
    return set(pending) | {item}


@dataclass(frozen=True)
class Delta:
    """Items that must be (re)sent on the next turn, per category."""

    files: tuple[str, ...] = ()
    data_sources: tuple[str, ...] = ()
    skills: tuple[str, ...] = ()

    def __getitem__(self, category: Category) -> tuple[str, ...]:
        return getattr(self, category)

    @property
    def is_empty(self) -> bool:
        return not (self.files or self.data_sources or self.skills)

    @property
    def total(self) -> int:
        return len(self.files) + len(self.data_sources) + len(self.skills)


def _empty_sets() -> dict[Category, set[str]]:
    return {category: set() for category in CATEGORIES}


def _empty_lists() -> dict[Category, list[str]]:
    return {category: [] for category in CATEGORIES}


@dataclass
class SentStateTracker:
    """Selected, sent and pending-refresh sets for one conversation."""

    selected: dict[Category, list[str]] = field(default_factory=_empty_lists)
    sent: dict[Category, set[str]] = field(default_factory=_empty_sets)
    pending: dict[Category, set[str]] = field(default_factory=_empty_sets)

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> SentStateTracker:
        """Restore the tracker state stored on a conversation."""
        return cls(
            selected={c: list(getattr(conversation, f"selected_{c}")) for c in CATEGORIES},
            sent={c: set(getattr(conversation, f"sent_{c}")) for c in CATEGORIES},
            pending={c: set(getattr(conversation, f"pending_refresh_{c}")) for c in CATEGORIES},
        )

    def apply_to(self, conversation: Conversation) -> None:
        """Write all three set triples back onto ``conversation`` together."""
        for c in CATEGORIES:
            setattr(conversation, f"selected_{c}", list(self.selected[c]))
            setattr(conversation, f"sent_{c}", set(self.sent[c]))
            setattr(conversation, f"pending_refresh_{c}", set(self.pending[c]))

    # --- Selection ---

    def select(self, category: Category, *items: str) -> None:
        """Add items to the selection, keeping first-selection order."""
        current = self.selected[category]
        current.extend(item for item in dict.fromkeys(items) if item not in current)

    def deselect(self, category: Category, *items: str) -> None:
        """Remove items from the selection; sent and pending are unaffected."""
        self.selected[category] = [i for i in self.selected[category] if i not in items]

    def status(self, category: Category, item: str) -> ItemStatus:
        """Classify an item for display."""
        if item in self.pending[category]:
            return "pending"
        if item in self.sent[category]:
            return "sent"
        if item in self.selected[category]:
            return "new"
        return "unselected"

    # --- Delta ---

    def delta(self) -> Delta:
        """Compute the delta for every category without mutating anything."""
        return Delta(
            **{
                c: tuple(compute_delta(self.selected[c], self.sent[c], self.pending[c]))
                for c in CATEGORIES
            },
        )

    def queue_refresh(self, category: Category, item: str) -> None:
        """Queue an item for re-delivery.

        Raises:
            ValidationError: If the item was never selected nor sent.

        """
        if item not in self.selected[category] and item not in self.sent[category]:
            msg = f"Cannot refresh {item!r}: it was never selected or sent"
            raise ValidationError(msg)
        self.pending[category] = queue_refresh(self.pending[category], item)
        logger.debug("Queued %s %r for refresh", category, item)

    def queue_refresh_all(self) -> int:
        """Queue every sent item of every category. Returns the number queued."""
        count = 0
        for c in CATEGORIES:
            for item in self.sent[c]:
                self.pending[c] = queue_refresh(self.pending[c], item)
                count += 1
        return count

    def commit(self, delta: Delta) -> None:
        """Mark the delta as sent and drop its items from the pending sets.

        Pending items outside ``delta`` stay queued; they were not delivered.
        """
        for c in CATEGORIES:
            self.sent[c] = commit(self.sent[c], delta[c])
            self.pending[c] = set(self.pending[c]) - set(delta[c])
        logger.debug("Committed delta of %d item(s)", delta.total)

    def reset_sent(self) -> None:
        """Forget everything sent, e.g. after the remote thread was replaced."""
        self.sent = _empty_sets()
        self.pending = _empty_sets()
