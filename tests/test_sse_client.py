"""Tests for the streaming API client, its SSE parsing and display state."""

import asyncio
import json
from datetime import UTC, datetime

import httpx
import pytest
import pytest_asyncio
from conftest import ANALYSIS_ARGUMENTS, GENERATED_HTML, finish, text, tool_round

from blocks.clients.blocks_api import BlocksAPIClient
from blocks.clients.chat_state import ChatStreamState
from blocks.clients.preview import HtmlPreview, extract_preview
from blocks.clients.sse import SSELineBuffer, parse_event
from blocks.main import app
from blocks.models.conversation import MessageOut
from blocks.services.chat import get_chat_service
from blocks.services.conversation_store import get_conversation_store

DONE_BYTES = b'data: {"type":"done"}\n\n'

CONVERSATION_JSON = {
    "id": "c1",
    "user_id": "user-1",
    "title": "Hi",
    "created_at": "2025-01-01T00:00:00Z",
    "updated_at": "2025-01-01T00:00:00Z",
}


def stored_message(role: str, content: str, **tool_columns) -> MessageOut:
    return MessageOut(
        id=f"{role}-1",
        conversation_id="c1",
        role=role,
        content=content,
        created_at=datetime(2025, 1, 1, tzinfo=UTC),
        **tool_columns,
    )


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in the given pieces."""

    def __init__(self, chunks: list[bytes]):
        self.chunks = chunks

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk


class HangingStream(httpx.AsyncByteStream):
    """Response body that sends its pieces and then waits forever."""

    def __init__(self, chunks: list[bytes]):
        self.chunks = chunks
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        await asyncio.Event().wait()

    async def aclose(self):
        self.closed = True


class TestSSELineBuffer:
    """Tests for reassembling data frames from arbitrary reads."""

    @pytest.mark.parametrize("split", range(1, len(DONE_BYTES)))
    def test_frame_split_anywhere_yields_one_payload(self, split):
        """Test that a frame split at any byte still produces exactly one payload."""
        buffer = SSELineBuffer()

        payloads = buffer.feed(DONE_BYTES[:split]) + buffer.feed(DONE_BYTES[split:]) + buffer.flush()

        assert payloads == ['{"type":"done"}']

    def test_multibyte_character_split_across_reads(self):
        """Test that a UTF-8 sequence cut between reads is decoded intact."""
        frame = 'data: {"type":"content_delta","content":"café ☕"}\n\n'.encode()
        cut = frame.index("☕".encode()) + 1
        buffer = SSELineBuffer()

        payloads = buffer.feed(frame[:cut]) + buffer.feed(frame[cut:])

        assert json.loads(payloads[0])["content"] == "café ☕"

    def test_crlf_and_non_data_lines(self):
        """Test that carriage returns are stripped and comments or other fields are ignored."""
        buffer = SSELineBuffer()

        payloads = buffer.feed(b": keep-alive\r\nevent: message\r\ndata: {\"a\":1}\r\n\r\n")

        assert payloads == ['{"a":1}']

    def test_flush_returns_unterminated_tail(self):
        """Test that a last line without a newline is delivered on flush."""
        buffer = SSELineBuffer()

        assert buffer.feed(b'data: {"type":"done"}') == []
        assert buffer.flush() == ['{"type":"done"}']
        assert buffer.flush() == []


class TestParseEvent:
    """Tests for decoding payloads."""

    def test_object(self):
        assert parse_event('{"type":"done"}') == {"type": "done"}

    @pytest.mark.parametrize("payload", ["{not json", "[1, 2]", '"text"', ""])
    def test_non_objects_are_ignored(self, payload):
        """Test that invalid JSON and non-object values are skipped."""
        assert parse_event(payload) is None


class TestChatStreamState:
    """Tests for reducing events into display state."""

    def test_content_and_tool_progress(self):
        """Test that deltas accumulate and the active tool tracks start and result."""
        state = ChatStreamState()
        state.begin()

        state.apply({"type": "content_delta", "content": "Analyzing "})
        state.apply({"type": "tool_call_started", "tool": "analyze_data", "input": {}})
        assert state.active_tool == "analyze_data"

        state.apply({"type": "tool_call_result", "tool": "analyze_data", "result": {"success": True}})
        state.apply({"type": "content_delta", "content": "done"})

        assert state.active_tool is None
        assert state.streaming_content == "Analyzing done"
        assert state.is_streaming

    @pytest.mark.parametrize("terminal", ["message_complete", "done"])
    def test_terminal_events_finish_the_turn(self, terminal):
        """Test that either terminal event clears streaming state and asks for a refetch."""
        state = ChatStreamState()
        state.begin()
        state.apply({"type": "content_delta", "content": "Hi"})

        assert state.apply({"type": terminal}) is True
        assert state.status == "idle"
        assert state.streaming_content == ""

    def test_error_is_recorded_without_ending_the_turn(self):
        """Test that errors are kept while the turn waits for done."""
        state = ChatStreamState()
        state.begin()

        assert state.apply({"type": "error", "message": "Unknown tool: x"}) is False
        assert state.errors == ["Unknown tool: x"]
        assert state.is_streaming

    def test_begin_clears_previous_turn(self):
        """Test that a new turn starts from a clean buffer."""
        state = ChatStreamState(streaming_content="stale", active_tool="create_page", errors=["old"])

        state.begin()

        assert (state.streaming_content, state.active_tool, state.errors) == ("", None, [])

    def test_unknown_events_are_ignored(self):
        state = ChatStreamState()
        state.begin()

        assert state.apply({"type": "heartbeat"}) is False
        assert state.is_streaming


class TestExtractPreview:
    """Tests for finding renderable HTML in stored messages."""

    def test_page_preview(self):
        """Test that page HTML and its title are found."""
        message = stored_message(
            "assistant",
            "Done",
            tool_name="create_page",
            tool_input="[{}]",
            tool_result=json.dumps([{"success": True, "data": {"title": "Form", "previewHtml": "<html>p</html>"}}]),
        )

        assert extract_preview(message) == HtmlPreview(html="<html>p</html>", title="Form")

    def test_report_preview_with_default_title(self):
        """Test that a report without a title falls back to the default."""
        message = stored_message(
            "assistant",
            "",
            tool_name="create_page,analyze_data",
            tool_result=json.dumps(
                [{"success": False, "error": "boom"}, {"success": True, "data": {"reportHtml": "<html>r</html>"}}]
            ),
        )

        assert extract_preview(message) == HtmlPreview(html="<html>r</html>", title="Analysis Report")

    def test_single_result_object(self):
        """Test that a single object is treated like a one-element array."""
        message = stored_message(
            "assistant", "", tool_result=json.dumps({"success": True, "data": {"previewHtml": "<html></html>"}})
        )

        assert extract_preview(message).title == "Page Preview"

    @pytest.mark.parametrize("tool_result", [None, "not json", json.dumps([{"success": True, "data": {"x": 1}}])])
    def test_no_preview(self, tool_result):
        """Test messages without usable HTML."""
        assert extract_preview(stored_message("assistant", "Hi", tool_result=tool_result)) is None


class TestBlocksAPIClient:
    """Tests for the HTTP client against a mocked transport."""

    @pytest.mark.asyncio
    async def test_send_message_reduces_stream_and_refetches(self):
        """Test split frames, a skipped malformed frame and the final refetch."""
        body = (
            b'data: {"type":"content_delta","content":"Hel"}\n\n'
            b"data: {broken\n\n"
            b'data: {"type":"content_delta","content":"lo"}\n\n'
            b'data: {"type":"message_complete","messageId":"m1"}\n\n' + DONE_BYTES
        )
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.method == "POST":
                chunks = [body[i : i + 7] for i in range(0, len(body), 7)]
                return httpx.Response(200, headers={"content-type": "text/event-stream"}, stream=ChunkedStream(chunks))
            return httpx.Response(
                200,
                json={
                    "conversation": CONVERSATION_JSON,
                    "messages": [
                        stored_message("user", "Hi").model_dump(mode="json"),
                        stored_message("assistant", "Hello").model_dump(mode="json"),
                    ],
                },
            )

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
        state = ChatStreamState()

        async with BlocksAPIClient(user_id="user-1", client=http_client) as api:
            events = [event async for event in api.send_message("c1", "Hi", state)]

        assert [e["type"] for e in events] == ["content_delta", "content_delta", "message_complete", "done"]
        assert state.status == "idle"
        assert [m.content for m in state.messages] == ["Hi", "Hello"]
        assert json.loads(requests[0].content) == {"message": "Hi"}
        assert requests[0].headers["X-User-Id"] == "user-1"
        assert requests[-1].url.path == "/api/conversations/c1"

    @pytest.mark.asyncio
    async def test_rejected_message_resets_state(self):
        """Test that an HTTP error aborts the turn and propagates."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"detail": "Conversation not found"})

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
        state = ChatStreamState()

        async with BlocksAPIClient(client=http_client) as api:
            with pytest.raises(httpx.HTTPStatusError):
                async for _ in api.send_message("missing", "Hi", state):
                    pass

        assert state.status == "idle"
        assert state.messages == []

    @pytest.mark.asyncio
    async def test_stream_without_terminal_event_still_refetches(self):
        """Test that a stream cut short leaves the state idle with the server record."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, content=b'data: {"type":"content_delta","content":"Hel"}\n\n')
            return httpx.Response(200, json={"conversation": CONVERSATION_JSON, "messages": []})

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
        state = ChatStreamState()

        async with BlocksAPIClient(client=http_client) as api:
            events = [event async for event in api.send_message("c1", "Hi", state)]

        assert [e["type"] for e in events] == ["content_delta"]
        assert state.status == "idle"
        assert state.streaming_content == ""

    @pytest.fixture
    def hanging_stream(self):
        return HangingStream(
            [
                b'data: {"type":"content_delta","content":"Analyzing "}\n\n',
                b'data: {"type":"tool_call_started","tool":"analyze_data","input":{}}\n\n',
            ]
        )

    @pytest.fixture
    def hanging_client(self, hanging_stream):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, stream=hanging_stream)

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
        return BlocksAPIClient(client=http_client), requests

    @pytest.mark.asyncio
    async def test_cancelling_mid_tool_resets_state_and_closes_stream(self, hanging_client, hanging_stream):
        """Test that cancelling the turn while a tool runs closes the response and leaves the state idle."""
        api, requests = hanging_client
        state = ChatStreamState()
        seen: list[dict] = []

        async def consume():
            async for event in api.send_message("c1", "Analyze my sales", state):
                seen.append(event)

        async def until_tool_started():
            while len(seen) < 2:
                await asyncio.sleep(0)

        task = asyncio.create_task(consume())
        await asyncio.wait_for(until_tool_started(), timeout=1)
        assert state.active_tool == "analyze_data"

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert state.status == "idle"
        assert state.active_tool is None
        assert state.streaming_content == ""
        assert hanging_stream.closed
        # No refetch after an aborted turn
        assert len(requests) == 1
        await api.close()

    @pytest.mark.asyncio
    async def test_aclose_after_first_event_resets_state_and_closes_stream(self, hanging_client, hanging_stream):
        """Test that closing the turn generator early closes the response and leaves the state idle."""
        api, requests = hanging_client
        state = ChatStreamState()

        events = api.send_message("c1", "Analyze my sales", state)
        first = await anext(events)
        assert first == {"type": "content_delta", "content": "Analyzing "}
        assert state.is_streaming

        await events.aclose()

        assert state.status == "idle"
        assert state.active_tool is None
        assert hanging_stream.closed
        assert len(requests) == 1
        await api.close()

    @pytest.mark.asyncio
    async def test_health_reports_connection_failures(self):
        """Test that an unreachable server is reported as unhealthy."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")

        async with BlocksAPIClient(client=http_client) as api:
            assert await api.health() is False


class TestEndToEnd:
    """Runs the client against the application in-process."""

    @pytest_asyncio.fixture
    async def api(self, store, chat_service):
        app.dependency_overrides[get_conversation_store] = lambda: store
        app.dependency_overrides[get_chat_service] = lambda: chat_service
        http_client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")
        async with BlocksAPIClient(user_id="user-1", client=http_client) as api:
            yield api
        app.dependency_overrides.clear()

    @pytest.mark.asyncio
    async def test_expense_report_turn(self, api, fake_client):
        """Test a full turn that analyzes expenses and ends with a renderable report."""
        fake_client.rounds = [
            tool_round(0, "call_1", "analyze_data", ANALYSIS_ARGUMENTS, text("Let me analyze that. ")),
            [text("Rent is your largest expense."), finish()],
        ]
        conversation = await api.create_conversation()
        state = ChatStreamState()

        events = [event async for event in api.send_message(conversation.id, "My expenses: rent 2400, food 850", state)]

        assert [e["type"] for e in events] == [
            "content_delta",
            "tool_call_started",
            "tool_call_result",
            "content_delta",
            "message_complete",
            "done",
        ]
        assert state.status == "idle"
        assert [m.role for m in state.messages] == ["user", "assistant"]

        assistant = state.messages[-1]
        assert assistant.content == "Let me analyze that. Rent is your largest expense."
        assert assistant.tool_names == ["analyze_data"]
        assert extract_preview(assistant) == HtmlPreview(html=GENERATED_HTML, title="Monthly Expenses")

        conversations = await api.list_conversations()
        assert conversations[0].title == "My expenses: rent 2400, food 850"
