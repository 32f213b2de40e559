"""Collaborators that produce raw context text.

The assembler only depends on the protocols defined here. The concrete
implementations read from the local filesystem, ``git`` and CSV files.
"""

from __future__ import annotations

import csv
import logging
import platform
import shutil
import statistics
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from context_keeper import constants
from context_keeper.errors import ValidationError

logger = logging.getLogger(__name__)

_IGNORED_DIRS = frozenset(
    {".git", ".hg", ".svn", "__pycache__", "node_modules", ".venv", "venv", ".mypy_cache"},
)
_USER_MEMORY_DIR = Path.home() / ".config" / "context-keeper"


# --- Files ---


@runtime_checkable
class Workspace(Protocol):
    """Read access to the project files that may be sent as context."""

    def list_project_files(self) -> list[str]:
        """Return project-relative paths of all candidate files."""

    def read_file(self, path: str) -> list[str]:
        """Return the file's lines without trailing newlines."""

    def file_exists(self, path: str) -> bool:
        """Return whether ``path`` exists."""

    def file_size(self, path: str) -> int:
        """Return the file size in bytes."""


class LocalWorkspace:
    """A workspace rooted at a directory on disk."""

    def __init__(self, root: Path) -> None:
        """Resolve the project root."""
        self.root = root.expanduser().resolve()

    def _resolve(self, path: str) -> Path:
        candidate = Path(path)
        return candidate if candidate.is_absolute() else self.root / candidate

    def list_project_files(self) -> list[str]:
        """Walk the root, skipping VCS and cache directories."""
        paths = []
        for path in self.root.rglob("*"):
            rel = path.relative_to(self.root)
            if any(part in _IGNORED_DIRS for part in rel.parts):
                continue
            if path.is_file():
                paths.append(rel.as_posix())
        return sorted(paths)

    def read_file(self, path: str) -> list[str]:
        """Read a text file, replacing undecodable bytes."""
        text = self._resolve(path).read_text(encoding="utf-8", errors="replace")
        return text.splitlines()

    def file_exists(self, path: str) -> bool:
        """Return whether ``path`` is an existing file."""
        return self._resolve(path).is_file()

    def file_size(self, path: str) -> int:
        """Return the file size in bytes."""
        return self._resolve(path).stat().st_size


# --- Project memory ---


def _read_memory_files(directory: Path) -> list[tuple[str, str]]:
    found: list[tuple[str, str]] = []
    for name in constants.PROJECT_MEMORY_FILES:
        path = directory / name
        if path.is_file():
            found.append((str(path), path.read_text(encoding="utf-8")))
    rules_dir = directory / constants.PROJECT_RULES_DIR
    if rules_dir.is_dir():
        for path in sorted(rules_dir.glob("*.md")):
            found.append((str(path), path.read_text(encoding="utf-8")))
    return found


def read_project_memory(
    root: Path,
    *,
    include_user: bool = True,
    recursive: bool = False,
    user_dir: Path | None = None,
) -> str | None:
    """Collect project memory files into one ``## Project Memory`` section.

    Args:
        root: Project directory to search.
        include_user: Also read ``CONTEXT.md`` from the user config directory.
        recursive: Walk up parent directories as well.
        user_dir: Override of the user config directory.

    Returns:
        The rendered text, or None when no memory file exists.

    """
    configs: list[tuple[str, str]] = []
    if include_user:
        user_file = (user_dir or _USER_MEMORY_DIR) / "CONTEXT.md"
        if user_file.is_file():
            configs.append((str(user_file), user_file.read_text(encoding="utf-8")))

    current = root.expanduser().resolve()
    while True:
        configs.extend(_read_memory_files(current))
        if not recursive or current.parent == current:
            break
        current = current.parent

    if not configs:
        return None

    parts = ["## Project Memory\n"]
    parts.extend(f"### From {name}:\n\n{content.strip()}\n" for name, content in configs)
    return "\n".join(parts)


# --- Session ---


def session_info_text() -> str:
    """Describe the interpreter and working directory."""
    return (
        "## Session Information\n\n"
        f"**Python version:** {platform.python_version()}\n"
        f"**Platform:** {platform.platform()}\n"
        f"**Working directory:** {Path.cwd()}\n"
    )


# --- Git ---


def _is_git_installed() -> bool:
    return shutil.which("git") is not None


def _git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],  # noqa: S607
        cwd=repo,
        check=True,
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
    )
    return result.stdout


def git_status_text(
    repo: Path,
    *,
    include_history: bool = False,
    n_commits: int = constants.GIT_HISTORY_COMMITS,
) -> str | None:
    """Summarize branch, working tree state and optionally recent commits.

    Returns None when ``repo`` is not a git repository or git is unavailable.
    """
    if not (repo / ".git").exists() or not _is_git_installed():
        return None

    try:
        branch = _git(repo, "branch", "--show-current").strip()
        status_lines = [line for line in _git(repo, "status", "--porcelain").splitlines() if line]
        history = ""
        if include_history:
            history = _git(
                repo,
                "log",
                "-n",
                str(n_commits),
                "--pretty=format:%h|%an|%ad|%s",
                "--date=short",
            )
    except subprocess.CalledProcessError:
        logger.warning("Failed to read git status in %s", repo)
        return None

    lines = ["## Git Status", f"Branch: {branch or '(detached)'}"]
    if status_lines:
        staged = sum(1 for s in status_lines if s[0] not in (" ", "?"))
        unstaged = sum(1 for s in status_lines if s[1] != " " or s.startswith("??"))
        lines.append(f"Status: {len(status_lines)} uncommitted changes")
        if staged:
            lines.append(f"Staged files: {staged}")
        if unstaged:
            lines.append(f"Unstaged files: {unstaged}")
    else:
        lines.append("Status: clean")

    commits = []
    for entry in history.splitlines():
        parts = entry.split("|", 3)
        if len(parts) == 4:  # noqa: PLR2004
            _sha, author, date, subject = parts
            commits.append(f"- {date}: {subject} ({author})")
    if commits:
        lines.extend(["", "### Recent Commits:", *commits])

    return "\n".join(lines) + "\n"


# --- Data sources ---


@dataclass(frozen=True)
class DataSourceInfo:
    """Shape of one tabular data source."""

    name: str
    row_count: int
    col_count: int


@runtime_checkable
class DataSourceProvider(Protocol):
    """Enumerates tabular data sources and describes them as text."""

    def enumerate_data_sources(self) -> list[DataSourceInfo]:
        """Return all available data sources."""

    def describe_data_source(self, name: str, method: str) -> str:
        """Render a description of ``name`` using ``method``."""


class CsvDataSources:
    """CSV files in a directory, one data source per file stem.

    Methods: ``shape`` lists dimensions and column names, ``summary`` adds
    per-column type, missing-value count and numeric statistics.
    """

    METHODS = ("shape", "summary")

    def __init__(self, directory: Path) -> None:
        """Remember the directory to scan."""
        self.directory = directory.expanduser()

    def _path(self, name: str) -> Path:
        path = self.directory / f"{name}.csv"
        if not path.is_file():
            msg = f"Unknown data source: {name}"
            raise ValidationError(msg)
        return path

    def _read(self, name: str) -> tuple[list[str], list[list[str]]]:
        with self._path(name).open(newline="", encoding="utf-8") as f:
            reader = csv.reader(f)
            header = next(reader, [])
            rows = list(reader)
        return header, rows

    def enumerate_data_sources(self) -> list[DataSourceInfo]:
        """Return every CSV file in the directory."""
        if not self.directory.is_dir():
            return []
        infos = []
        for path in sorted(self.directory.glob("*.csv")):
            header, rows = self._read(path.stem)
            infos.append(DataSourceInfo(name=path.stem, row_count=len(rows), col_count=len(header)))
        return infos

    def describe_data_source(self, name: str, method: str) -> str:
        """Describe one CSV file."""
        if method not in self.METHODS:
            msg = f"Unknown description method: {method!r}"
            raise ValidationError(msg)
        header, rows = self._read(name)
        lines = [
            f"## Data: `{name}`",
            f"*{len(rows):,} rows x {len(header)} columns*",
            "",
        ]
        if method == "shape":
            lines.append("**Columns:** " + ", ".join(f"`{col}`" for col in header))
            return "\n".join(lines) + "\n"

        lines.append("| column | type | missing | summary |")
        lines.append("|---|---|---|---|")
        for index, column in enumerate(header):
            values = [row[index] for row in rows if index < len(row)]
            present = [v for v in values if v.strip()]
            missing = len(rows) - len(present)
            numbers = _as_numbers(present)
            if present and numbers is not None:
                summary = (
                    f"min {min(numbers):g}, mean {statistics.fmean(numbers):.4g}, max {max(numbers):g}"
                )
                kind = "numeric"
            else:
                summary = f"{len(set(present))} distinct"
                kind = "text"
            lines.append(f"| `{column}` | {kind} | {missing} | {summary} |")
        return "\n".join(lines) + "\n"


def _as_numbers(values: list[str]) -> list[float] | None:
    try:
        return [float(v) for v in values]
    except ValueError:
        return None


# --- Skills ---


@runtime_checkable
class SkillProvider(Protocol):
    """Renders reusable instruction bundles ("skills") by name."""

    def describe_skill(self, name: str) -> str | None:
        """Return the skill text, or None if it does not exist."""


class DirectorySkills:
    """Skills stored as ``<root>/<name>/SKILL.md``."""

    def __init__(self, root: Path) -> None:
        """Remember the skills directory."""
        self.root = root.expanduser()

    def list_skills(self) -> list[str]:
        """Return the names of all skills that have a SKILL.md."""
        if not self.root.is_dir():
            return []
        return sorted(p.parent.name for p in self.root.glob("*/SKILL.md"))

    def describe_skill(self, name: str) -> str | None:
        """Read the skill file."""
        path = self.root / name / "SKILL.md"
        if not path.is_file():
            return None
        return f"## Skill: {name}\n\n{path.read_text(encoding='utf-8').strip()}\n"
