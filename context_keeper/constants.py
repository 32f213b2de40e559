"""Default settings for the context-keeper package."""

from __future__ import annotations

# --- Token Budget ---
TOKEN_LIMIT = 200_000  # Server-side ceiling of the remote assistant
COMPACT_AT = 0.85  # Fraction of TOKEN_LIMIT that triggers compaction
WARN_AT = 0.80  # Fraction of TOKEN_LIMIT that only emits a warning
PRESERVE_RECENT = 2  # Message pairs kept verbatim by compaction

# --- Token Estimation ---
SAFETY_FACTOR = 1.15
CHARS_PER_TOKEN = {
    "fast": 3.0,
    "conservative": 2.5,
    "optimistic": 3.5,
}

# --- Message Size ---
CHAR_LIMIT_SINGLE = 250_000  # Conservative single message limit
CHAR_LIMIT_THREAD = 585_000  # Observed thread limit before token failures
LARGE_INPUT_CHARS = 100_000
VERY_LARGE_INPUT_CHARS = 250_000

# --- File Tiers ---
TIER1_MAX_LINES = 2000  # ~50-60K chars, complete files
TIER2_MAX_LINES = 5000  # ~120K chars, summaries with previews
LARGE_FILE_LINES = 800  # A single file above this forces at least "summary"
SUMMARY_PREVIEW_LINES = 10  # Head and tail lines shown in the summary tier

# --- Usage Display ---
USAGE_ELEVATED_PCT = 60
USAGE_CRITICAL_PCT = 80

# --- Conversations ---
DEFAULT_TITLE = "New Conversation"
TITLE_MAX_CHARS = 50
TITLE_ELLIPSIS = "..."

# --- Remote Assistant ---
DEFAULT_BASE_URL = "https://app.cassidyai.com/api"
DEFAULT_TIMEOUT = 120.0
TRANSIENT_STATUS_CODES = frozenset({429, 503, 504})
MAX_ATTEMPTS = 3

# --- Context Document ---
SECTION_SEPARATOR = "\n\n---\n\n"
PROJECT_MEMORY_FILES = (
    "CONTEXT.md",
    ".context-keeper/CONTEXT.md",
    "CONTEXT.local.md",
)
PROJECT_RULES_DIR = ".context-keeper/rules"
GIT_HISTORY_COMMITS = 5
