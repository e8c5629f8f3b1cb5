"""Conversation, message and page data models."""

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

DEFAULT_CONVERSATION_TITLE = "New Chat"

StoredRole = Literal["user", "assistant", "tool"]


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class ConversationRecord:
    """A stored conversation owned by one user."""

    id: str
    user_id: str
    title: str = DEFAULT_CONVERSATION_TITLE
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def touch(self) -> None:
        """Update the last activity timestamp."""
        self.updated_at = _now()


@dataclass
class MessageRecord:
    """One persisted row of a conversation.

    An assistant turn that invoked tools keeps them flattened on a single row:
    ``tool_name`` is the comma-joined list of names in invocation order and
    ``tool_input``/``tool_result`` are JSON arrays in the same order.
    """

    id: str
    conversation_id: str
    role: StoredRole
    content: str
    tool_name: str | None = None
    tool_input: str | None = None
    tool_result: str | None = None
    created_at: datetime = field(default_factory=_now)


@dataclass
class PageRecord:
    """An HTML page generated by the create_page tool."""

    id: str
    user_id: str
    title: str
    page_type: str
    description: str
    html_content: str
    color_scheme: str = "dark"
    created_at: datetime = field(default_factory=_now)


class ChatRequest(BaseModel):
    """Request model for the streaming chat endpoint."""

    message: str


class ConversationCreateRequest(BaseModel):
    """Request model for creating a conversation."""

    title: str | None = None


class ConversationUpdateRequest(BaseModel):
    """Request model for renaming a conversation."""

    title: str


class ConversationOut(BaseModel):
    """A conversation as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    created_at: datetime
    updated_at: datetime


class MessageOut(BaseModel):
    """A stored message as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    conversation_id: str
    role: StoredRole
    content: str
    tool_name: str | None = None
    tool_input: str | None = None
    tool_result: str | None = None
    created_at: datetime

    @property
    def tool_names(self) -> list[str]:
        return self.tool_name.split(",") if self.tool_name else []

    def tool_inputs(self) -> list[Any]:
        """Decode the stored tool input array."""
        return json.loads(self.tool_input) if self.tool_input else []

    def tool_results(self) -> list[Any]:
        """Decode the stored tool result array."""
        return json.loads(self.tool_result) if self.tool_result else []


class ConversationListResponse(BaseModel):
    """Response model for listing conversations."""

    conversations: list[ConversationOut]


class ConversationResponse(BaseModel):
    """Response model wrapping a single conversation."""

    conversation: ConversationOut


class ConversationDetailResponse(BaseModel):
    """Response model for a conversation with its messages."""

    conversation: ConversationOut
    messages: list[MessageOut]


class DeleteResponse(BaseModel):
    """Response model for deletions."""

    success: bool


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str
