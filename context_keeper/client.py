"""Remote assistant collaborator: the protocol the core needs and an httpx client."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx

from context_keeper import constants
from context_keeper.entities import utc_now
from context_keeper.errors import RemoteError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime

logger = logging.getLogger(__name__)

_HTML_TITLE = re.compile(r"<title>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_ERROR_EXCERPT_CHARS = 200


@dataclass(frozen=True)
class AssistantReply:
    """The assistant's answer to one message."""

    content: str
    timestamp: datetime = field(default_factory=utc_now)


@runtime_checkable
class AssistantClient(Protocol):
    """Thread creation and message exchange with the remote assistant."""

    async def create_thread(self) -> str:
        """Open a new remote thread and return its id."""

    async def send_message(
        self,
        thread_id: str,
        text: str,
        timeout: float | None = None,
    ) -> AssistantReply:
        """Send ``text`` on ``thread_id`` and return the reply."""


def _error_message(response: httpx.Response) -> str:
    """Best-effort human readable error text from a failed response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if message:
            return str(message)
    text = response.text
    if "text/html" in response.headers.get("content-type", ""):
        match = _HTML_TITLE.search(text)
        if match:
            return f"Server error: {match.group(1).strip()}"
        return "Server returned an HTML error page"
    if len(text) > _ERROR_EXCERPT_CHARS:
        return text[:_ERROR_EXCERPT_CHARS] + "..."
    return text or "Unknown API error"


class HttpAssistantClient:
    """JSON-over-HTTP client with bounded retries on transient failures."""

    def __init__(
        self,
        api_key: str,
        assistant_id: str,
        *,
        base_url: str = constants.DEFAULT_BASE_URL,
        timeout: float = constants.DEFAULT_TIMEOUT,
        max_attempts: int = constants.MAX_ATTEMPTS,
        backoff: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Configure the client.

        Args:
            api_key: Bearer token.
            assistant_id: Assistant that new threads are opened against.
            base_url: API root.
            timeout: Default request timeout in seconds.
            max_attempts: Total attempts for transient failures.
            backoff: Base delay in seconds, doubled after every attempt.
            transport: Optional transport override (used in tests).

        """
        if not api_key:
            msg = "An API key is required"
            raise ValueError(msg)
        self.api_key = api_key
        self.assistant_id = assistant_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self._transport = transport

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "User-Agent": "context-keeper",
        }

    async def _post(
        self,
        path: str,
        payload: Mapping[str, Any],
        timeout: float | None = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}/{path}"
        request_timeout = timeout or self.timeout
        for attempt in range(1, self.max_attempts + 1):
            last = attempt == self.max_attempts
            try:
                async with httpx.AsyncClient(
                    timeout=request_timeout,
                    transport=self._transport,
                ) as client:
                    response = await client.post(url, json=dict(payload), headers=self._headers)
            except httpx.TimeoutException as exc:
                if last:
                    msg = f"Request to {path} timed out after {request_timeout:g}s"
                    raise RemoteError(msg) from exc
                logger.warning("Timeout on %s (attempt %d/%d)", path, attempt, self.max_attempts)
            except httpx.HTTPError as exc:
                msg = f"Request to {path} failed: {exc}"
                raise RemoteError(msg) from exc
            else:
                if response.is_success:
                    try:
                        return response.json()
                    except ValueError as exc:
                        msg = f"Invalid JSON from {path}"
                        raise RemoteError(msg, status=response.status_code) from exc
                if last or response.status_code not in constants.TRANSIENT_STATUS_CODES:
                    raise RemoteError(_error_message(response), status=response.status_code)
                logger.warning(
                    "HTTP %d on %s (attempt %d/%d)",
                    response.status_code,
                    path,
                    attempt,
                    self.max_attempts,
                )
            await asyncio.sleep(self.backoff * 2 ** (attempt - 1))
        msg = f"Request to {path} failed"  # pragma: no cover
        raise RemoteError(msg)  # pragma: no cover

    async def create_thread(self) -> str:
        """Open a new thread on the configured assistant."""
        body = await self._post("assistants/thread/create", {"assistant_id": self.assistant_id})
        thread_id = body.get("thread_id")
        if not thread_id:
            msg = "API returned no thread_id"
            raise RemoteError(msg)
        logger.info("Created thread %s", thread_id)
        return thread_id

    async def send_message(
        self,
        thread_id: str,
        text: str,
        timeout: float | None = None,
    ) -> AssistantReply:
        """Send one message and wait for the complete reply."""
        if not thread_id:
            msg = "thread_id is required"
            raise RemoteError(msg)
        body = await self._post(
            "assistants/message/create",
            {"thread_id": thread_id, "message": text},
            timeout=timeout,
        )
        content = body.get("content") or body.get("message") or body.get("response") or ""
        if not content:
            msg = "API returned an empty response"
            raise RemoteError(msg)
        return AssistantReply(content=content)
