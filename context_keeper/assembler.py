"""Assemble selected sources into a single context document.

Each source contributes at most one tagged section. Sections are emitted in a
fixed order (config, session, git, data sources, files, skills) so the same
selection always serializes to the same text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from context_keeper import constants
from context_keeper.files import render_file
from context_keeper.sources import (
    CsvDataSources,
    DirectorySkills,
    LocalWorkspace,
    git_status_text,
    read_project_memory,
    session_info_text,
)
from context_keeper.tiers import TierDecision, collect_file_info, select_tier
from context_keeper.tokens import estimate_tokens

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from context_keeper.sources import DataSourceProvider, SkillProvider, Workspace
    from context_keeper.tiers import Tier

logger = logging.getLogger(__name__)


# --- Sections ---


@dataclass(frozen=True)
class ConfigSection:
    """Project configuration and memory text."""

    text: str
    kind: Literal["config"] = "config"

    @property
    def name(self) -> str:
        return "config"


@dataclass(frozen=True)
class SessionSection:
    """Interpreter and environment information."""

    text: str
    kind: Literal["session"] = "session"

    @property
    def name(self) -> str:
        return "session"


@dataclass(frozen=True)
class GitSection:
    """Version control status."""

    text: str
    kind: Literal["git"] = "git"

    @property
    def name(self) -> str:
        return "git"


@dataclass(frozen=True)
class DataSection:
    """Description of one tabular data source."""

    source: str
    text: str
    kind: Literal["data"] = "data"

    @property
    def name(self) -> str:
        return f"data_{self.source}"


@dataclass(frozen=True)
class FileSection:
    """One source file rendered at ``tier``."""

    path: str
    tier: Tier
    text: str
    kind: Literal["file"] = "file"

    @property
    def name(self) -> str:
        return f"file_{self.path}"


@dataclass(frozen=True)
class SkillSection:
    """One skill's instructions."""

    skill: str
    text: str
    kind: Literal["skill"] = "skill"

    @property
    def name(self) -> str:
        return f"skill_{self.skill}"


Section = ConfigSection | SessionSection | GitSection | DataSection | FileSection | SkillSection


@dataclass(frozen=True)
class ContextDocument:
    """An ordered, non-empty list of rendered sections."""

    sections: tuple[Section, ...]
    tier_decision: TierDecision | None = None

    @property
    def text(self) -> str:
        return constants.SECTION_SEPARATOR.join(s.text for s in self.sections)

    @property
    def char_count(self) -> int:
        return len(self.text)

    @property
    def token_estimate(self) -> int:
        return estimate_tokens(self.text)

    @property
    def section_names(self) -> list[str]:
        return [s.name for s in self.sections]

    @property
    def files(self) -> list[str]:
        """Paths of the file sections actually rendered."""
        return [s.path for s in self.sections if isinstance(s, FileSection)]

    @property
    def data_sources(self) -> list[str]:
        return [s.source for s in self.sections if isinstance(s, DataSection)]

    @property
    def skills(self) -> list[str]:
        return [s.skill for s in self.sections if isinstance(s, SkillSection)]

    @property
    def has_partial_files(self) -> bool:
        """Whether any file was sent below the ``full`` tier."""
        return any(isinstance(s, FileSection) and s.tier != "full" for s in self.sections)


# --- Selection and providers ---


@dataclass
class ContextSelection:
    """What the caller wants included in the next context document."""

    config: bool = False
    session: bool = False
    git: bool = False
    git_history: bool = False
    data_sources: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    skills: list[str] = field(default_factory=list)
    data_method: str = "summary"

    @property
    def has_ambient(self) -> bool:
        """Whether config, session or git content is requested."""
        return self.config or self.session or self.git


@dataclass
class ContextProviders:
    """The collaborators that produce raw section text."""

    workspace: Workspace | None = None
    data: DataSourceProvider | None = None
    skills: SkillProvider | None = None
    read_config: Callable[[], str | None] | None = None
    read_git: Callable[[bool], str | None] | None = None
    read_session: Callable[[], str] = session_info_text

    @classmethod
    def local(
        cls,
        root: Path,
        *,
        data_dir: Path | None = None,
        skills_dir: Path | None = None,
        recursive_memory: bool = False,
        include_user_memory: bool = True,
        git_commits: int = constants.GIT_HISTORY_COMMITS,
    ) -> ContextProviders:
        """Providers backed by the filesystem under ``root``."""
        return cls(
            workspace=LocalWorkspace(root),
            data=CsvDataSources(data_dir) if data_dir else None,
            skills=DirectorySkills(skills_dir) if skills_dir else None,
            read_config=lambda: read_project_memory(
                root,
                include_user=include_user_memory,
                recursive=recursive_memory,
            ),
            read_git=lambda history: git_status_text(
                root,
                include_history=history,
                n_commits=git_commits,
            ),
        )


# --- Assembly ---


def _file_sections(
    paths: list[str],
    workspace: Workspace,
    tier_for: Callable[[str], Tier] | None,
) -> tuple[list[FileSection], TierDecision]:
    infos = collect_file_info(workspace, paths)
    decision = select_tier(infos)
    sections = []
    for info in infos:
        tier = tier_for(info.path) if tier_for else decision.tier
        lines = workspace.read_file(info.path)
        sections.append(
            FileSection(
                path=info.path,
                tier=tier,
                text=render_file(info.path, lines, info.size_bytes, tier),
            ),
        )
    return sections, decision


def assemble(
    selection: ContextSelection,
    providers: ContextProviders,
    tier_for: Callable[[str], Tier] | None = None,
) -> ContextDocument | None:
    """Render the selection into a context document.

    Args:
        selection: Sources to include.
        providers: Collaborators producing the raw text.
        tier_for: Per-file tier override. By default every file uses the tier
            chosen for the whole batch.

    Returns:
        The document, or None when no source produced any content.

    """
    sections: list[Section] = []

    if selection.config and providers.read_config:
        text = providers.read_config()
        if text:
            sections.append(ConfigSection(text=text))

    if selection.session:
        text = providers.read_session()
        if text:
            sections.append(SessionSection(text=text))

    if selection.git and providers.read_git:
        text = providers.read_git(selection.git_history)
        if text:
            sections.append(GitSection(text=text))

    if selection.data_sources and providers.data:
        for name in selection.data_sources:
            text = providers.data.describe_data_source(name, selection.data_method)
            if text:
                sections.append(DataSection(source=name, text=text))

    decision = None
    if selection.files and providers.workspace:
        file_sections, decision = _file_sections(selection.files, providers.workspace, tier_for)
        sections.extend(file_sections)

    if selection.skills and providers.skills:
        for name in selection.skills:
            text = providers.skills.describe_skill(name)
            if text:
                sections.append(SkillSection(skill=name, text=text))
            else:
                logger.warning("Skill not found: %s", name)

    if not sections:
        return None
    document = ContextDocument(sections=tuple(sections), tier_decision=decision)
    logger.debug(
        "Assembled %d section(s), %d chars: %s",
        len(sections),
        document.char_count,
        ", ".join(document.section_names),
    )
    return document


def assemble_context(selection: ContextSelection, providers: ContextProviders) -> str | None:
    """Return only the rendered text of :func:`assemble`."""
    document = assemble(selection, providers)
    return document.text if document else None
