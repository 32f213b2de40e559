"""Shared CLI options."""

from __future__ import annotations

from pathlib import Path

import typer

from context_keeper import constants

# --- Remote Assistant ---
API_KEY = typer.Option(
    None,
    "--api-key",
    envvar="CONTEXT_KEEPER_API_KEY",
    help="API key for the remote assistant.",
)
ASSISTANT_ID = typer.Option(
    None,
    "--assistant-id",
    envvar="CONTEXT_KEEPER_ASSISTANT_ID",
    help="Assistant that new threads are opened against.",
)
BASE_URL = typer.Option(
    constants.DEFAULT_BASE_URL,
    "--base-url",
    envvar="CONTEXT_KEEPER_BASE_URL",
    help="Base URL of the assistant API.",
)
TIMEOUT = typer.Option(
    constants.DEFAULT_TIMEOUT,
    "--timeout",
    help="Request timeout in seconds.",
)
MAX_ATTEMPTS = typer.Option(
    constants.MAX_ATTEMPTS,
    "--max-attempts",
    help="Attempts per request on rate limits, unavailability and timeouts.",
)

# --- Budget ---
TOKEN_LIMIT = typer.Option(
    constants.TOKEN_LIMIT,
    "--token-limit",
    help="Token ceiling of the remote assistant.",
)
COMPACT_AT = typer.Option(
    constants.COMPACT_AT,
    "--compact-at",
    help="Fraction of the token limit that triggers compaction.",
)
WARN_AT = typer.Option(
    constants.WARN_AT,
    "--warn-at",
    help="Fraction of the token limit that triggers a warning.",
)
PRESERVE_RECENT = typer.Option(
    constants.PRESERVE_RECENT,
    "--preserve-recent",
    help="Message pairs kept verbatim when compacting.",
)
AUTO_COMPACT = typer.Option(
    True,  # noqa: FBT003
    "--auto-compact/--no-auto-compact",
    help="Compact automatically once the compaction threshold is crossed.",
)
ESTIMATE_METHOD = typer.Option(
    "fast",
    "--method",
    help='Token estimation method ("fast", "conservative" or "optimistic").',
)

# --- Storage ---
HISTORY_DIR = typer.Option(
    None,
    "--history-dir",
    help="Directory holding conversation records.",
)
CONVERSATION_ID = typer.Option(
    None,
    "--conversation-id",
    "--id",
    help="Conversation to use (default: the most recently updated).",
)

# --- Context Sources ---
PROJECT_ROOT = typer.Option(
    Path(),
    "--project-root",
    "-p",
    help="Project directory files, memory and git status are read from.",
)
DATA_DIR = typer.Option(
    None,
    "--data-dir",
    help="Directory of CSV files available as data sources.",
)
SKILLS_DIR = typer.Option(
    None,
    "--skills-dir",
    help="Directory of skills, one <name>/SKILL.md per skill.",
)
FILES = typer.Option(
    None,
    "--file",
    "-f",
    help="Project file to select (repeatable).",
)
DATA = typer.Option(
    None,
    "--data",
    "-d",
    help="Data source to select (repeatable).",
)
SKILLS = typer.Option(
    None,
    "--skill",
    "-s",
    help="Skill to select (repeatable).",
)
DATA_METHOD = typer.Option(
    "summary",
    "--data-method",
    help='How data sources are described ("summary" or "shape").',
)
INCLUDE_CONFIG = typer.Option(
    False,  # noqa: FBT003
    "--memory/--no-memory",
    help="Include project memory files (CONTEXT.md and rules).",
)
INCLUDE_SESSION = typer.Option(
    False,  # noqa: FBT003
    "--session/--no-session",
    help="Include interpreter and working directory information.",
)
INCLUDE_GIT = typer.Option(
    False,  # noqa: FBT003
    "--git/--no-git",
    help="Include git branch and working tree status.",
)
GIT_HISTORY = typer.Option(
    False,  # noqa: FBT003
    "--git-history",
    help="Include recent commits with the git status.",
)

# --- General ---
LOG_LEVEL = typer.Option(
    "WARNING",
    "--log-level",
    help="Set the log level (e.g., DEBUG, INFO, WARNING).",
)
LOG_FILE = typer.Option(
    None,
    "--log-file",
    help="Path to a file to write logs to.",
)
QUIET = typer.Option(
    False,  # noqa: FBT003
    "--quiet",
    "-q",
    help="Suppress all output except for the final result.",
)
