"""Stream events produced by the chat orchestrator."""

from typing import Annotated, Any, Literal

from pydantic import Field, TypeAdapter

from blocks.models.tools import CamelModel, ToolResult


class ContentDelta(CamelModel):
    """Incremental assistant text."""

    type: Literal["content_delta"] = "content_delta"
    content: str


class ToolCallStarted(CamelModel):
    """A tool is about to run with the given input."""

    type: Literal["tool_call_started"] = "tool_call_started"
    tool: str
    input: dict[str, Any]


class ToolCallResult(CamelModel):
    """A tool finished; carries its result verbatim, including failures."""

    type: Literal["tool_call_result"] = "tool_call_result"
    tool: str
    result: ToolResult


class MessageComplete(CamelModel):
    """Terminates a successful run."""

    type: Literal["message_complete"] = "message_complete"
    message_id: str


class StreamError(CamelModel):
    """Reports a problem; terminal for model failures, localized for bad tool calls."""

    type: Literal["error"] = "error"
    message: str


StreamEvent = Annotated[
    ContentDelta | ToolCallStarted | ToolCallResult | MessageComplete | StreamError,
    Field(discriminator="type"),
]

stream_event_adapter: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)

DONE_EVENT_TYPE = "done"
