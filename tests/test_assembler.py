"""Tests for context document assembly."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from context_keeper.assembler import (
    ContextDocument,
    ContextProviders,
    ContextSelection,
    FileSection,
    GitSection,
    assemble,
    assemble_context,
)
from context_keeper.sources import DirectorySkills, LocalWorkspace

if TYPE_CHECKING:
    from pathlib import Path


class FakeData:
    """Data sources that describe themselves by name."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def enumerate_data_sources(self) -> list:
        return []

    def describe_data_source(self, name: str, method: str) -> str:
        self.calls.append((name, method))
        return f"## Data: `{name}`\n"


@pytest.fixture
def providers(project: Path, tmp_path: Path) -> ContextProviders:
    skills_dir = tmp_path / "skills"
    (skills_dir / "eda").mkdir(parents=True)
    (skills_dir / "eda" / "SKILL.md").write_text("Explore first.")
    return ContextProviders(
        workspace=LocalWorkspace(project),
        data=FakeData(),
        skills=DirectorySkills(skills_dir),
        read_config=lambda: "## Project Memory\n",
        read_git=lambda history: "## Git Status\n" + ("history\n" if history else ""),
        read_session=lambda: "## Session Information\n",
    )


class TestAssemble:
    """Tests for assemble."""

    def test_nothing_selected(self, providers: ContextProviders) -> None:
        """Test that an empty selection produces no document."""
        assert assemble(ContextSelection(), providers) is None
        assert assemble_context(ContextSelection(), providers) is None

    def test_fixed_section_order(self, providers: ContextProviders) -> None:
        """Test config, session, git, data, files, skills regardless of input order."""
        selection = ContextSelection(
            skills=["eda"],
            files=["utils.R", "main.py"],
            data_sources=["sales"],
            git=True,
            session=True,
            config=True,
        )
        document = assemble(selection, providers)
        assert document is not None
        assert document.section_names == [
            "config",
            "session",
            "git",
            "data_sales",
            "file_utils.R",
            "file_main.py",
            "skill_eda",
        ]
        assert document.files == ["utils.R", "main.py"]
        assert document.data_sources == ["sales"]
        assert document.skills == ["eda"]

    def test_sections_joined_with_separator(self, providers: ContextProviders) -> None:
        """Test the text layout and derived sizes."""
        document = assemble(ContextSelection(config=True, session=True), providers)
        assert document is not None
        assert document.text == "## Project Memory\n\n\n---\n\n## Session Information\n"
        assert document.char_count == len(document.text)
        assert document.token_estimate > 0
        assert assemble_context(ContextSelection(config=True, session=True), providers) == (
            document.text
        )

    def test_deterministic(self, providers: ContextProviders) -> None:
        """Test that the same selection yields identical text."""
        selection = ContextSelection(config=True, files=["main.py", "utils.R"], skills=["eda"])
        first = assemble(selection, providers)
        second = assemble(selection, providers)
        assert first is not None
        assert second is not None
        assert first.text == second.text

    def test_git_history_flag(self, providers: ContextProviders) -> None:
        """Test that the history flag is passed through."""
        document = assemble(ContextSelection(git=True, git_history=True), providers)
        assert document is not None
        section = document.sections[0]
        assert isinstance(section, GitSection)
        assert "history" in section.text

    def test_data_method(self, providers: ContextProviders) -> None:
        """Test that the description method reaches the provider."""
        assemble(ContextSelection(data_sources=["a", "b"], data_method="shape"), providers)
        assert isinstance(providers.data, FakeData)
        assert providers.data.calls == [("a", "shape"), ("b", "shape")]

    def test_files_use_batch_tier(self, providers: ContextProviders) -> None:
        """Test that small files are rendered in full with a tier decision."""
        document = assemble(ContextSelection(files=["main.py"]), providers)
        assert document is not None
        assert document.tier_decision is not None
        assert document.tier_decision.tier == "full"
        assert "*Total lines: 9*" in document.text
        assert not document.has_partial_files

    def test_tier_override(self, providers: ContextProviders) -> None:
        """Test a per-file tier override."""
        document = assemble(
            ContextSelection(files=["main.py"]),
            providers,
            tier_for=lambda _path: "index",
        )
        assert document is not None
        section = document.sections[0]
        assert isinstance(section, FileSection)
        assert section.tier == "index"
        assert "**Contains 2 symbol(s):** main, App" in section.text
        assert document.has_partial_files

    def test_missing_file_and_skill_skipped(
        self,
        providers: ContextProviders,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Test that unavailable sources contribute no section."""
        document = assemble(
            ContextSelection(files=["gone.py", "notes.md"], skills=["nope"]),
            providers,
        )
        assert document is not None
        assert document.section_names == ["file_notes.md"]
        assert "Skill not found: nope" in caplog.text

    def test_empty_source_text_skipped(self, providers: ContextProviders) -> None:
        """Test that a provider returning nothing adds no section."""
        providers.read_config = lambda: None
        assert assemble(ContextSelection(config=True), providers) is None

    def test_missing_providers(self) -> None:
        """Test that selections without a provider are ignored."""
        document = assemble(
            ContextSelection(config=True, git=True, files=["a.py"], session=True),
            ContextProviders(read_session=lambda: "## Session Information\n"),
        )
        assert document is not None
        assert document.section_names == ["session"]


class TestLocalProviders:
    """Tests for ContextProviders.local."""

    def test_reads_memory_from_root(self, project: Path) -> None:
        """Test that project memory comes from the root directory."""
        (project / "CONTEXT.md").write_text("Use renv.")
        providers = ContextProviders.local(project, include_user_memory=False)
        text = assemble_context(ContextSelection(config=True, files=["notes.md"]), providers)
        assert text is not None
        assert "Use renv." in text
        assert "## File: `notes.md`" in text


def test_document_is_immutable(providers: ContextProviders) -> None:
    """Test that documents cannot be modified after assembly."""
    document = assemble(ContextSelection(config=True), providers)
    assert isinstance(document, ContextDocument)
    with pytest.raises(AttributeError):
        document.sections = ()  # type: ignore[misc]
