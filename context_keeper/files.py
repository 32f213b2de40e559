"""Render source files at a given detail tier."""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from context_keeper import constants

if TYPE_CHECKING:
    from collections.abc import Sequence

    from context_keeper.tiers import Tier

_LANGUAGES = {
    ".py": "python",
    ".r": "r",
    ".rmd": "r",
    ".qmd": "r",
    ".js": "javascript",
    ".mjs": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".sh": "bash",
    ".bash": "bash",
    ".zsh": "bash",
    ".md": "markdown",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".sql": "sql",
    ".css": "css",
    ".html": "html",
    ".xml": "xml",
    ".cpp": "cpp",
    ".c": "c",
    ".h": "c",
    ".rs": "rust",
    ".go": "go",
}

_SYMBOL_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    "python": (re.compile(r"^\s*(?:async\s+)?(?:def|class)\s+([A-Za-z_]\w*)"),),
    "r": (re.compile(r"^([A-Za-z._][A-Za-z0-9._]*)\s*(?:<-|=)\s*function\s*\("),),
    "javascript": (
        re.compile(r"^\s*(?:export\s+)?(?:default\s+)?(?:async\s+)?function\*?\s+([A-Za-z_$][\w$]*)"),
        re.compile(r"^\s*(?:export\s+)?(?:default\s+)?class\s+([A-Za-z_$][\w$]*)"),
        re.compile(
            r"^\s*(?:export\s+)?(?:const|let|var)\s+([A-Za-z_$][\w$]*)\s*=\s*(?:async\s+)?(?:\([^)]*\)|[A-Za-z_$][\w$]*)\s*=>",
        ),
    ),
    "bash": (
        re.compile(r"^\s*function\s+([A-Za-z_][\w-]*)"),
        re.compile(r"^\s*([A-Za-z_][\w-]*)\s*\(\)\s*\{?"),
    ),
}
_SYMBOL_PATTERNS["typescript"] = _SYMBOL_PATTERNS["javascript"]

_FILE_REQUEST = re.compile(r"\[REQUEST_FILE:([^\]]+)\]")


def language_for(path: str) -> str:
    """Return the fenced-code language for ``path`` (empty when unknown)."""
    return _LANGUAGES.get(PurePosixPath(path).suffix.lower(), "")


def extract_symbols(path: str, lines: Sequence[str]) -> list[str]:
    """Return top-level function and class names, in file order."""
    patterns = _SYMBOL_PATTERNS.get(language_for(path), ())
    symbols: list[str] = []
    for line in lines:
        for pattern in patterns:
            match = pattern.match(line)
            if match and match.group(1) not in symbols:
                symbols.append(match.group(1))
                break
    return symbols


def _numbered(lines: Sequence[str], start: int, width: int) -> str:
    return "\n".join(f"{n:>{width}} | {line}" for n, line in enumerate(lines, start=start))


def _size_kb(size_bytes: int) -> float:
    return round(size_bytes / 1024, 1)


def render_full(path: str, lines: Sequence[str]) -> str:
    """Complete, line-numbered file contents."""
    width = len(str(len(lines)))
    return (
        f"## File: `{path}`\n"
        f"*Total lines: {len(lines)}*\n\n"
        f"```{language_for(path)}\n"
        f"{_numbered(lines, 1, width)}\n"
        "```"
    )


def render_summary(
    path: str,
    lines: Sequence[str],
    size_bytes: int,
    preview: int = constants.SUMMARY_PREVIEW_LINES,
) -> str:
    """Symbol listing plus the first and last ``preview`` lines."""
    total = len(lines)
    lang = language_for(path)
    width = len(str(total))
    meta = f"*{total} lines | {_size_kb(size_bytes)} KB*\n\n"

    if total <= preview * 2:
        return (
            f"## File: `{path}` (SUMMARY - Complete)\n"
            f"{meta}"
            f"```{lang}\n{_numbered(lines, 1, width)}\n```"
        )

    parts = [f"## File: `{path}` (SUMMARY)\n", meta]
    symbols = extract_symbols(path, lines)
    if symbols:
        parts.append("**Symbols:** " + ", ".join(f"`{s}`" for s in symbols) + "\n\n")
    parts.extend(
        [
            f"**First {preview} lines:**\n",
            f"```{lang}\n{_numbered(lines[:preview], 1, width)}\n```\n\n",
            f"*... ({total - preview * 2} lines omitted) ...*\n\n",
            f"**Last {preview} lines:**\n",
            f"```{lang}\n{_numbered(lines[-preview:], total - preview + 1, width)}\n```\n\n",
            f"*Request full file: `[REQUEST_FILE:{path}]`*",
        ],
    )
    return "".join(parts)


def render_index(path: str, lines: Sequence[str], size_bytes: int) -> str:
    """Metadata and symbol names only."""
    parts = [f"## File: `{path}` (INDEX)\n", f"*{len(lines)} lines | {_size_kb(size_bytes)} KB*\n\n"]
    symbols = extract_symbols(path, lines)
    if symbols:
        parts.append(f"**Contains {len(symbols)} symbol(s):** {', '.join(symbols)}\n\n")
    parts.append(f"*Full file available: `[REQUEST_FILE:{path}]`*")
    return "".join(parts)


def render_file(path: str, lines: Sequence[str], size_bytes: int, tier: Tier) -> str:
    """Dispatch to the renderer for ``tier``."""
    if tier == "full":
        return render_full(path, lines)
    if tier == "summary":
        return render_summary(path, lines, size_bytes)
    if tier == "index":
        return render_index(path, lines, size_bytes)
    msg = f"Unknown tier: {tier!r}"
    raise ValueError(msg)


def parse_file_requests(text: str) -> list[str]:
    """Return the unique paths named by ``[REQUEST_FILE:path]`` markers."""
    seen: list[str] = []
    for match in _FILE_REQUEST.finditer(text or ""):
        path = match.group(1).strip()
        if path and path not in seen:
            seen.append(path)
    return seen
