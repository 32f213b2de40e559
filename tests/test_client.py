"""Tests for the HTTP assistant client."""

from __future__ import annotations

import json

import httpx
import pytest

from context_keeper.client import AssistantClient, HttpAssistantClient
from context_keeper.errors import RemoteError


class Recorder:
    """MockTransport handler that replays scripted responses."""

    def __init__(self, *responses: httpx.Response | Exception) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(recorder: Recorder, **kwargs: object) -> HttpAssistantClient:
    return HttpAssistantClient(
        "secret-key",
        "asst_1",
        base_url="https://api.example.com/api/",
        backoff=0,
        transport=httpx.MockTransport(recorder),
        **kwargs,
    )


def test_requires_api_key() -> None:
    """Test that an empty key is rejected up front."""
    with pytest.raises(ValueError, match="API key"):
        HttpAssistantClient("", "asst_1")


def test_satisfies_protocol() -> None:
    """Test that the HTTP client is an AssistantClient."""
    assert isinstance(HttpAssistantClient("k", "a"), AssistantClient)


class TestRequests:
    """Tests for request construction and response parsing."""

    @pytest.mark.asyncio
    async def test_create_thread(self) -> None:
        """Test the thread endpoint, payload and headers."""
        recorder = Recorder(httpx.Response(200, json={"thread_id": "thread_9"}))
        assert await _client(recorder).create_thread() == "thread_9"
        request = recorder.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://api.example.com/api/assistants/thread/create"
        assert request.headers["Authorization"] == "Bearer secret-key"
        assert json.loads(request.content) == {"assistant_id": "asst_1"}

    @pytest.mark.asyncio
    async def test_create_thread_without_id(self) -> None:
        """Test that a missing thread id is an error."""
        recorder = Recorder(httpx.Response(200, json={}))
        with pytest.raises(RemoteError, match="no thread_id"):
            await _client(recorder).create_thread()

    @pytest.mark.asyncio
    async def test_send_message(self) -> None:
        """Test the message endpoint and payload."""
        recorder = Recorder(httpx.Response(200, json={"content": "Hello back"}))
        reply = await _client(recorder).send_message("thread_1", "Hello")
        assert reply.content == "Hello back"
        assert reply.timestamp.tzinfo is not None
        request = recorder.requests[0]
        assert request.url.path == "/api/assistants/message/create"
        assert json.loads(request.content) == {"thread_id": "thread_1", "message": "Hello"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["content", "message", "response"])
    async def test_reply_field_fallbacks(self, field: str) -> None:
        """Test each accepted reply field."""
        recorder = Recorder(httpx.Response(200, json={field: "text"}))
        assert (await _client(recorder).send_message("t", "x")).content == "text"

    @pytest.mark.asyncio
    async def test_empty_reply(self) -> None:
        """Test that an empty reply is an error."""
        recorder = Recorder(httpx.Response(200, json={"content": ""}))
        with pytest.raises(RemoteError, match="empty response"):
            await _client(recorder).send_message("t", "x")

    @pytest.mark.asyncio
    async def test_missing_thread(self) -> None:
        """Test that no request is made without a thread."""
        recorder = Recorder()
        with pytest.raises(RemoteError, match="thread_id is required"):
            await _client(recorder).send_message("", "x")
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        """Test that a non-JSON success body is an error."""
        recorder = Recorder(httpx.Response(200, text="not json"))
        with pytest.raises(RemoteError, match="Invalid JSON") as exc_info:
            await _client(recorder).send_message("t", "x")
        assert exc_info.value.status == 200


class TestRetries:
    """Tests for transient failure handling."""

    @pytest.mark.asyncio
    async def test_retries_transient_status(self) -> None:
        """Test that 503 is retried and then succeeds."""
        recorder = Recorder(
            httpx.Response(503, json={"message": "busy"}),
            httpx.Response(200, json={"content": "ok"}),
        )
        reply = await _client(recorder).send_message("t", "x")
        assert reply.content == "ok"
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        """Test that retries are bounded."""
        recorder = Recorder(*[httpx.Response(429, json={"error": "slow down"}) for _ in range(3)])
        with pytest.raises(RemoteError) as exc_info:
            await _client(recorder, max_attempts=3).send_message("t", "x")
        assert exc_info.value.status == 429
        assert str(exc_info.value) == "HTTP 429: slow down"
        assert len(recorder.requests) == 3

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self) -> None:
        """Test that authentication failures fail immediately."""
        recorder = Recorder(httpx.Response(401, json={"message": "Invalid key"}))
        with pytest.raises(RemoteError) as exc_info:
            await _client(recorder).create_thread()
        assert exc_info.value.status == 401
        assert exc_info.value.message == "Invalid key"
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_timeouts_retried(self) -> None:
        """Test that timeouts are retried and reported when exhausted."""
        request = httpx.Request("POST", "https://api.example.com")
        recorder = Recorder(
            httpx.ReadTimeout("slow", request=request),
            httpx.ReadTimeout("slow", request=request),
        )
        with pytest.raises(RemoteError, match="timed out") as exc_info:
            await _client(recorder, max_attempts=2).send_message("t", "x", timeout=5)
        assert exc_info.value.status is None
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        """Test that transport errors other than timeouts are not retried."""
        request = httpx.Request("POST", "https://api.example.com")
        recorder = Recorder(httpx.ConnectError("refused", request=request))
        with pytest.raises(RemoteError, match="failed"):
            await _client(recorder).create_thread()
        assert len(recorder.requests) == 1


class TestErrorMessages:
    """Tests for human readable error extraction."""

    @pytest.mark.asyncio
    async def test_html_error_page(self) -> None:
        """Test that the page title is used for HTML errors."""
        recorder = Recorder(
            httpx.Response(
                500,
                text="<html><head><title> Internal Error </title></head></html>",
                headers={"content-type": "text/html"},
            ),
        )
        with pytest.raises(RemoteError) as exc_info:
            await _client(recorder).create_thread()
        assert exc_info.value.message == "Server error: Internal Error"

    @pytest.mark.asyncio
    async def test_long_text_truncated(self) -> None:
        """Test that plain-text bodies are excerpted."""
        recorder = Recorder(httpx.Response(500, text="e" * 500))
        with pytest.raises(RemoteError) as exc_info:
            await _client(recorder).create_thread()
        assert exc_info.value.message == "e" * 200 + "..."
