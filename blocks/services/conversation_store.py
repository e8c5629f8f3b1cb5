"""Conversation persistence interface and in-memory implementation."""

import json
import threading
from dataclasses import dataclass
from typing import Any, Protocol

from cuid2 import cuid_wrapper

from blocks.models.conversation import (
    DEFAULT_CONVERSATION_TITLE,
    ConversationRecord,
    MessageRecord,
    PageRecord,
    StoredRole,
)
from blocks.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()

TITLE_MAX_LENGTH = 50
# A conversation still gets its title from the user message while it holds this many messages
TITLE_MESSAGE_THRESHOLD = 2


@dataclass
class ToolEvent:
    """One tool invocation of a turn, in invocation order."""

    name: str
    input: dict[str, Any]
    result: dict[str, Any]


def title_from_message(message: str) -> str:
    """Derive a conversation title from the first user message."""
    if len(message) > TITLE_MAX_LENGTH:
        return message[:TITLE_MAX_LENGTH] + "..."
    return message


class ConversationStore(Protocol):
    """Interface for conversation, message and page persistence."""

    def create_conversation(self, user_id: str, title: str | None = None) -> ConversationRecord: ...

    def list_conversations(self, user_id: str) -> list[ConversationRecord]:
        """Conversations of a user, most recently updated first."""
        ...

    def get_conversation(self, conversation_id: str, user_id: str | None = None) -> ConversationRecord | None:
        """Get a conversation, optionally only if owned by ``user_id``."""
        ...

    def update_title(self, conversation_id: str, title: str) -> ConversationRecord | None: ...

    def touch_conversation(self, conversation_id: str) -> None: ...

    def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and all of its messages."""
        ...

    def append_message(
        self,
        conversation_id: str,
        role: StoredRole,
        content: str,
        tool_name: str | None = None,
        tool_inputs: list[Any] | None = None,
        tool_results: list[Any] | None = None,
    ) -> MessageRecord: ...

    def list_messages(self, conversation_id: str) -> list[MessageRecord]:
        """Messages of a conversation, oldest first."""
        ...

    def commit_turn(
        self,
        conversation_id: str,
        user_message: str,
        assistant_content: str,
        tool_events: list[ToolEvent],
    ) -> MessageRecord:
        """Persist a whole turn as one atomic write and return the assistant row."""
        ...

    def save_page(self, page: PageRecord) -> None: ...

    def get_page(self, page_id: str, user_id: str | None = None) -> PageRecord | None: ...


class InMemoryConversationStore:
    """In-memory conversation store.

    A single lock serializes every write, so concurrent turns on different
    conversations (or the same one) never interleave partial rows.
    """

    def __init__(self):
        self._conversations: dict[str, ConversationRecord] = {}
        self._messages: dict[str, list[MessageRecord]] = {}
        self._pages: dict[str, PageRecord] = {}
        self._lock = threading.RLock()

    def create_conversation(self, user_id: str, title: str | None = None) -> ConversationRecord:
        conversation = ConversationRecord(id=cuid(), user_id=user_id, title=title or DEFAULT_CONVERSATION_TITLE)
        with self._lock:
            self._conversations[conversation.id] = conversation
            self._messages[conversation.id] = []
        logger.info(f"Created conversation {conversation.id} for user {user_id}")
        return conversation

    def list_conversations(self, user_id: str) -> list[ConversationRecord]:
        with self._lock:
            owned = [c for c in self._conversations.values() if c.user_id == user_id]
        return sorted(owned, key=lambda c: c.updated_at, reverse=True)

    def get_conversation(self, conversation_id: str, user_id: str | None = None) -> ConversationRecord | None:
        conversation = self._conversations.get(conversation_id)
        if conversation is None or (user_id is not None and conversation.user_id != user_id):
            return None
        return conversation

    def update_title(self, conversation_id: str, title: str) -> ConversationRecord | None:
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                return None
            conversation.title = title
            conversation.touch()
            return conversation

    def touch_conversation(self, conversation_id: str) -> None:
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is not None:
                conversation.touch()

    def delete_conversation(self, conversation_id: str) -> bool:
        with self._lock:
            if conversation_id not in self._conversations:
                return False
            del self._conversations[conversation_id]
            removed = self._messages.pop(conversation_id, [])
        logger.info(f"Deleted conversation {conversation_id} with {len(removed)} messages")
        return True

    def append_message(
        self,
        conversation_id: str,
        role: StoredRole,
        content: str,
        tool_name: str | None = None,
        tool_inputs: list[Any] | None = None,
        tool_results: list[Any] | None = None,
    ) -> MessageRecord:
        """Append one row.

        Raises:
            KeyError: If the conversation does not exist
        """
        message = MessageRecord(
            id=cuid(),
            conversation_id=conversation_id,
            role=role,
            content=content,
            tool_name=tool_name,
            tool_input=json.dumps(tool_inputs) if tool_inputs is not None else None,
            tool_result=json.dumps(tool_results) if tool_results is not None else None,
        )
        with self._lock:
            if conversation_id not in self._conversations:
                raise KeyError(f"Conversation not found: {conversation_id}")
            self._messages[conversation_id].append(message)
        return message

    def list_messages(self, conversation_id: str) -> list[MessageRecord]:
        with self._lock:
            return list(self._messages.get(conversation_id, []))

    def commit_turn(
        self,
        conversation_id: str,
        user_message: str,
        assistant_content: str,
        tool_events: list[ToolEvent],
    ) -> MessageRecord:
        with self._lock:
            self.append_message(conversation_id, "user", user_message)

            if tool_events:
                assistant = self.append_message(
                    conversation_id,
                    "assistant",
                    assistant_content,
                    tool_name=",".join(event.name for event in tool_events),
                    tool_inputs=[event.input for event in tool_events],
                    tool_results=[event.result for event in tool_events],
                )
            else:
                assistant = self.append_message(conversation_id, "assistant", assistant_content)

            if len(self._messages[conversation_id]) <= TITLE_MESSAGE_THRESHOLD:
                self.update_title(conversation_id, title_from_message(user_message))
            else:
                self.touch_conversation(conversation_id)

        logger.info(
            f"Committed turn to conversation {conversation_id}: "
            f"{len(assistant_content)} chars, {len(tool_events)} tool calls"
        )
        return assistant

    def save_page(self, page: PageRecord) -> None:
        with self._lock:
            self._pages[page.id] = page

    def get_page(self, page_id: str, user_id: str | None = None) -> PageRecord | None:
        page = self._pages.get(page_id)
        if page is None or (user_id is not None and page.user_id != user_id):
            return None
        return page


_conversation_store: InMemoryConversationStore | None = None


def get_conversation_store() -> ConversationStore:
    """Get or create the process-wide conversation store."""
    global _conversation_store
    if _conversation_store is None:
        _conversation_store = InMemoryConversationStore()
    return _conversation_store
