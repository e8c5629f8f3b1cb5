"""Shared fixtures: a scripted model client and an in-memory store."""

import asyncio
import json

import pytest

from blocks.models.llm import LLMUsage, Message, ModelResponse, StreamChunk, ToolCallFragment
from blocks.models.tools import ToolContext
from blocks.services.chat import ChatService
from blocks.services.conversation_store import InMemoryConversationStore
from blocks.services.orchestrator import ChatOrchestrator, OrchestratorConfig
from blocks.tools.registry import create_default_registry

GENERATED_HTML = "<!DOCTYPE html><html><body><h1>Generated</h1></body></html>"


class Delay:
    """Scripted pause in a model stream."""

    def __init__(self, seconds: float):
        self.seconds = seconds


class FakeModelClient:
    """Model client that replays one scripted chunk list per streamed round.

    Entries of a round may be ``StreamChunk``, ``Delay`` or an exception to raise.
    """

    def __init__(self, rounds: list[list] | None = None, html: str = GENERATED_HTML, max_message_tokens: int = 8000):
        self.rounds = list(rounds or [])
        self.html = html
        self.max_message_tokens = max_message_tokens
        self.stream_calls: list[list[Message]] = []
        self.create_calls: list[tuple[list[Message], str]] = []
        self.tools = None
        self.closed_streams = 0

    async def stream_message(self, messages, tools=None, **kwargs):
        self.stream_calls.append(list(messages))
        self.tools = tools
        script = self.rounds.pop(0) if self.rounds else [finish("stop")]
        try:
            for entry in script:
                if isinstance(entry, Exception):
                    raise entry
                if isinstance(entry, Delay):
                    await asyncio.sleep(entry.seconds)
                    continue
                yield entry
        finally:
            self.closed_streams += 1

    async def create_message(self, messages, system_prompt, **kwargs):
        self.create_calls.append((list(messages), system_prompt))
        return ModelResponse(text=self.html, stop_reason="end_turn", usage=LLMUsage(), model="fake-model")

    def validate_message_tokens(self, message):
        token_count = len(message) // 4
        if token_count > self.max_message_tokens:
            raise ValueError(f"Message exceeds token limit: {token_count} tokens > {self.max_message_tokens} limit")


def text(content: str) -> StreamChunk:
    return StreamChunk(content_delta=content)


def finish(reason: str = "stop") -> StreamChunk:
    return StreamChunk(finish_reason=reason)


def tool_call(index: int, call_id: str, name: str, *argument_parts: str) -> list[StreamChunk]:
    """Chunks announcing a tool call followed by its argument fragments."""
    chunks = [StreamChunk(tool_call_fragments=[ToolCallFragment(index=index, call_id=call_id, name=name)])]
    chunks.extend(
        StreamChunk(tool_call_fragments=[ToolCallFragment(index=index, arguments_delta=part)])
        for part in argument_parts
    )
    return chunks


def tool_round(index: int, call_id: str, name: str, arguments: dict, *leading: StreamChunk) -> list[StreamChunk]:
    """A round requesting one tool call, with arguments split into small pieces."""
    encoded = json.dumps(arguments)
    parts = [encoded[i : i + 8] for i in range(0, len(encoded), 8)]
    return [*leading, *tool_call(index, call_id, name, *parts), finish("tool_calls")]


PAGE_ARGUMENTS = {
    "pageType": "form",
    "title": "Contact Form",
    "description": "A contact form with name, email and message fields",
}

ANALYSIS_ARGUMENTS = {
    "data": "Category,Amount\nRent,2400\nFood,850",
    "analysisType": "summary",
    "title": "Monthly Expenses",
}


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def fake_client():
    return FakeModelClient()


@pytest.fixture
def registry(fake_client, store):
    return create_default_registry(fake_client, store)


@pytest.fixture
def orchestrator(fake_client, registry):
    return ChatOrchestrator(fake_client, registry, OrchestratorConfig(max_rounds=5, round_timeout=2.0))


@pytest.fixture
def chat_service(orchestrator, store):
    return ChatService(orchestrator, store)


@pytest.fixture
def conversation(store):
    return store.create_conversation("user-1")


@pytest.fixture
def context(conversation):
    return ToolContext(user_id=conversation.user_id, conversation_id=conversation.id)
