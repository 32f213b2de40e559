"""Detail-tier selection for batches of files about to be sent.

The tier bounds how much text each file contributes:

- ``full``: complete, line-numbered contents.
- ``summary``: symbol signatures plus a head/tail preview.
- ``index``: metadata and a symbol listing only.

A single oversized file forces at least ``summary`` so it cannot silently
consume the budget while the batch looks small in aggregate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from context_keeper import constants

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from context_keeper.sources import Workspace

logger = logging.getLogger(__name__)

Tier = Literal["full", "summary", "index"]
TIERS: tuple[Tier, ...] = ("full", "summary", "index")


@dataclass(frozen=True)
class FileInfo:
    """Size metadata for one candidate file."""

    path: str
    size_bytes: int
    line_count: int


@dataclass(frozen=True)
class TierDecision:
    """The tier chosen for a batch of files and why."""

    tier: Tier
    total_lines: int
    total_files: int
    max_single_file_lines: int
    total_size_bytes: int
    reason: str

    @property
    def total_size_kb(self) -> float:
        """Aggregate size in kilobytes, rounded for display."""
        return round(self.total_size_bytes / 1024, 1)


def select_tier(
    files: Sequence[FileInfo],
    *,
    tier1_max_lines: int = constants.TIER1_MAX_LINES,
    tier2_max_lines: int = constants.TIER2_MAX_LINES,
    large_file_lines: int = constants.LARGE_FILE_LINES,
) -> TierDecision:
    """Choose a detail tier for a batch of files.

    Args:
        files: The batch about to be sent.
        tier1_max_lines: Aggregate line ceiling for the ``full`` tier.
        tier2_max_lines: Aggregate line ceiling for the ``summary`` tier.
        large_file_lines: Any single file above this forces ``summary``.

    Returns:
        The decision, recomputed from scratch for this exact batch.

    """
    if not files:
        return TierDecision(
            tier="full",
            total_lines=0,
            total_files=0,
            max_single_file_lines=0,
            total_size_bytes=0,
            reason="no files selected",
        )

    total_lines = sum(f.line_count for f in files)
    max_lines = max(f.line_count for f in files)
    total_size = sum(f.size_bytes for f in files)
    scope = f"{total_lines:,} lines across {len(files)} file(s)"

    if total_lines <= tier1_max_lines and max_lines <= large_file_lines:
        tier: Tier = "full"
        reason = f"Small context ({scope}) - sending complete files"
    elif total_lines <= tier2_max_lines:
        tier = "summary"
        reason = (
            f"Medium context ({scope}) - sending summaries with previews. "
            "Request specific files using [REQUEST_FILE:path] for full content"
        )
    else:
        tier = "index"
        reason = (
            f"Large context ({scope}) - sending index only. "
            "Please request specific files using [REQUEST_FILE:path] syntax"
        )

    logger.debug("Tier decision: %s (%s)", tier, reason)
    return TierDecision(
        tier=tier,
        total_lines=total_lines,
        total_files=len(files),
        max_single_file_lines=max_lines,
        total_size_bytes=total_size,
        reason=reason,
    )


def collect_file_info(workspace: Workspace, paths: Iterable[str]) -> list[FileInfo]:
    """Measure the given paths, skipping ones that no longer exist."""
    infos: list[FileInfo] = []
    for path in paths:
        if not workspace.file_exists(path):
            logger.warning("Skipping missing file: %s", path)
            continue
        lines = workspace.read_file(path)
        infos.append(
            FileInfo(
                path=path,
                size_bytes=workspace.file_size(path),
                line_count=len(lines),
            ),
        )
    return infos
