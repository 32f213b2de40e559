"""In-memory stand-in for the remote assistant."""

from __future__ import annotations

from context_keeper.client import AssistantReply


class FakeAssistantClient:
    """Records every call and replies from a script.

    ``replies`` are returned in order (a numbered acknowledgement once they run
    out). ``send_errors`` is consumed one entry per ``send_message`` call; a
    non-None entry is raised instead of replying.
    """

    def __init__(
        self,
        replies: list[str] | None = None,
        *,
        send_errors: list[Exception | None] | None = None,
        create_error: Exception | None = None,
    ) -> None:
        self.replies = list(replies or [])
        self.send_errors = list(send_errors or [])
        self.create_error = create_error
        self.sent: list[tuple[str, str]] = []
        self.threads: list[str] = []

    async def create_thread(self) -> str:
        if self.create_error is not None:
            raise self.create_error
        thread_id = f"thread_{len(self.threads) + 1}"
        self.threads.append(thread_id)
        return thread_id

    async def send_message(
        self,
        thread_id: str,
        text: str,
        timeout: float | None = None,  # noqa: ARG002
    ) -> AssistantReply:
        self.sent.append((thread_id, text))
        if self.send_errors:
            error = self.send_errors.pop(0)
            if error is not None:
                raise error
        content = self.replies.pop(0) if self.replies else f"Acknowledged ({len(self.sent)})"
        return AssistantReply(content=content)
