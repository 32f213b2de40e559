"""Shared test fixtures and configuration."""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING

import pytest

from context_keeper.persistence import ConversationRepository
from context_keeper.store import ConversationStore
from tests.mocks.assistant import FakeAssistantClient

if TYPE_CHECKING:
    from pathlib import Path


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Set default timeout for all tests."""
    for item in items:
        with contextlib.suppress(AttributeError):
            item.add_marker(pytest.mark.timeout(5))


@pytest.fixture
def fake_client() -> FakeAssistantClient:
    """Provide an assistant that acknowledges everything."""
    return FakeAssistantClient()


@pytest.fixture
def repository(tmp_path: Path) -> ConversationRepository:
    """Provide a repository in a temporary directory."""
    return ConversationRepository(tmp_path / "conversations")


@pytest.fixture
def store(repository: ConversationRepository) -> ConversationStore:
    """Provide an empty store backed by a temporary directory."""
    return ConversationStore(repository)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Provide a small project directory."""
    root = tmp_path / "project"
    root.mkdir()
    (root / "main.py").write_text(
        "import sys\n\n\ndef main():\n    return 0\n\n\nclass App:\n    pass\n",
    )
    (root / "utils.R").write_text("clean_data <- function(df) {\n  df\n}\n")
    (root / "notes.md").write_text("# Notes\n")
    return root
