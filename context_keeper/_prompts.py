"""Message templates sent to the remote assistant."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from context_keeper import constants

if TYPE_CHECKING:
    from collections.abc import Iterable

    from context_keeper.entities import Message

# Compaction - asks the assistant to condense the older part of the history
COMPACTION_PROMPT = """Please create a concise summary of our conversation so far. Focus on preserving:

1. **Key decisions** we made and the reasoning behind them
2. **Unresolved issues** or questions that are still open
3. **Important outputs** (code, data insights, recommendations)
4. **Next steps** or action items we identified
5. **Critical context** needed to continue productively

You can omit:
- Redundant or superseded information
- Intermediate work that led to a final solution
- Detailed tool outputs that are no longer relevant
- Conversational pleasantries

Structure your summary with clear headings and be as concise as possible while retaining all essential information.""".strip()

SUMMARY_REQUEST_TEMPLATE = """{prompt}

# Conversation to Summarize

{history}"""

# Continuation - first message on the new thread after compaction
CONTINUATION_TEMPLATE = """This is a continuation of our previous conversation. Here is a summary of what we discussed:

{summary}

---

We will continue our conversation from here. Please acknowledge that you understand the context and are ready to continue."""

# Context framing
CONTEXT_TEMPLATE = """# Project Context

{context}

---

I've shared my project context with you. Please acknowledge that you've received it and let me know you're ready to help with this project. {closing}"""

CONTEXT_CLOSING_FULL = "Please acknowledge that you've received it and let me know you're ready to help."
CONTEXT_CLOSING_PARTIAL = (
    "Note: Some files are only summarized or indexed. To see full file contents, "
    "respond with [REQUEST_FILE:path/to/file] and I'll automatically send them. "
    "Please acknowledge and let me know you're ready."
)

REQUESTED_FILES_TEMPLATE = """# Requested Files

{files}

---

Here are the complete file contents you requested. Please provide your analysis."""

# Timeout prevention
CHUNKING_GUIDANCE = """Note: This appears to be a complex task. Please approach it incrementally:
1. First provide an outline or high-level structure
2. Then elaborate key sections
3. You can deliver this in parts if needed

"""

_COMPLEX_TASK = re.compile(
    r"implementation plan|comprehensive analysis|detailed design|architecture"
    r"|step.by.step|thoroughly analyze|create.*documentation",
    re.IGNORECASE,
)

_ROLE_LABELS = {"user": "User", "assistant": "Assistant", "system": "System"}


def format_messages_for_summary(messages: Iterable[Message]) -> str:
    """Render messages as ``### Role`` blocks separated by rules."""
    return constants.SECTION_SEPARATOR.join(
        f"### {_ROLE_LABELS[m.role]}\n\n{m.content}" for m in messages
    )


def summary_request(messages: Iterable[Message], prompt: str = COMPACTION_PROMPT) -> str:
    return SUMMARY_REQUEST_TEMPLATE.format(prompt=prompt, history=format_messages_for_summary(messages))


def continuation_message(summary: str) -> str:
    return CONTINUATION_TEMPLATE.format(summary=summary.strip())


def context_message(context: str, *, partial_files: bool) -> str:
    closing = CONTEXT_CLOSING_PARTIAL if partial_files else CONTEXT_CLOSING_FULL
    return CONTEXT_TEMPLATE.format(context=context, closing=closing)


def requested_files_message(files_text: str) -> str:
    return REQUESTED_FILES_TEMPLATE.format(files=files_text)


def is_complex_task(message: str) -> bool:
    """Whether the message looks like a long-running request."""
    return _COMPLEX_TASK.search(message) is not None


def add_chunking_guidance(message: str) -> str:
    """Prepend incremental-delivery guidance to complex requests."""
    if is_complex_task(message):
        return CHUNKING_GUIDANCE + message
    return message
