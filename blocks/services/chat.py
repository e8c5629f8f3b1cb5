"""Chat turn service: relays orchestrator events as SSE frames and persists the turn."""

import json
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any

from blocks.models.conversation import ConversationRecord
from blocks.models.events import (
    DONE_EVENT_TYPE,
    ContentDelta,
    StreamError,
    StreamEvent,
    ToolCallResult,
    ToolCallStarted,
)
from blocks.models.llm import Message
from blocks.models.tools import ToolContext
from blocks.services.conversation_store import ConversationStore, ToolEvent, get_conversation_store
from blocks.services.orchestrator import ChatOrchestrator, get_chat_orchestrator
from blocks.utils.logging import get_logger

logger = get_logger(__name__)

MAX_MESSAGE_CHARS = 32_000


def format_sse(payload: dict[str, Any]) -> str:
    """Serialize one event as a single SSE data frame."""
    return f"data: {json.dumps(payload, separators=(',', ':'))}\n\n"


DONE_FRAME = format_sse({"type": DONE_EVENT_TYPE})


@dataclass
class TurnAccumulator:
    """Collects what a turn produced while its events are relayed."""

    content: str = ""
    tool_events: list[ToolEvent] = field(default_factory=list)

    def record(self, event: StreamEvent) -> None:
        if isinstance(event, ContentDelta):
            self.content += event.content
        elif isinstance(event, ToolCallStarted):
            self.tool_events.append(ToolEvent(name=event.tool, input=event.input, result={}))
        elif isinstance(event, ToolCallResult) and self.tool_events:
            self.tool_events[-1].result = event.result.to_payload()


class ChatService:
    """Runs chat turns for stored conversations."""

    def __init__(self, orchestrator: ChatOrchestrator, store: ConversationStore):
        self.orchestrator = orchestrator
        self.store = store

    def validate_message(self, message: str) -> None:
        """Validate an incoming user message.

        Raises:
            ValueError: If the message is empty, too long or over the model's token limit
        """
        if not message.strip():
            raise ValueError("Message is required")
        if len(message) > MAX_MESSAGE_CHARS:
            raise ValueError(f"Your message is too long. Please keep messages under {MAX_MESSAGE_CHARS} characters.")
        self.orchestrator.client.validate_message_tokens(message)

    def build_history(self, conversation_id: str, message: str) -> list[Message]:
        """Stored messages of the conversation followed by the new user message."""
        stored_messages = self.store.list_messages(conversation_id)
        history = [Message(role=stored.role, content=stored.content) for stored in stored_messages]
        history.append(Message(role="user", content=message))
        return history

    async def stream_turn(
        self,
        conversation: ConversationRecord,
        message: str,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    ) -> AsyncIterator[str]:
        """Stream one turn as SSE frames, always ending with the done frame.

        The turn is persisted before the done frame is sent, so a client that
        refetches after the stream closes sees it. If the client goes away
        mid-turn, relaying stops, the model stream is closed and nothing is
        persisted. A failure while persisting comes after the orchestrator has
        already sent ``message_complete``; it is reported as a transport-level
        error frame ahead of done.
        """
        context = ToolContext(user_id=conversation.user_id, conversation_id=conversation.id)
        turn = TurnAccumulator()

        try:
            history = self.build_history(conversation.id, message)
            async with aclosing(self.orchestrator.stream_chat(history, context)) as events:
                async for event in events:
                    if is_disconnected is not None and await is_disconnected():
                        logger.warning(f"Client disconnected from conversation {conversation.id}, dropping turn")
                        return
                    turn.record(event)
                    yield format_sse(event.to_payload())

            self.store.commit_turn(conversation.id, message, turn.content, turn.tool_events)

        except Exception as e:
            logger.error(f"Chat turn failed for conversation {conversation.id}: {e}", exc_info=True)
            yield format_sse(StreamError(message="Failed to process message").to_payload())

        yield DONE_FRAME


_chat_service: ChatService | None = None


def get_chat_service() -> ChatService:
    """Get or create the process-wide chat service."""
    global _chat_service
    if _chat_service is None:
        _chat_service = ChatService(get_chat_orchestrator(), get_conversation_store())
    return _chat_service
