"""LLM-related data models and types (provider-agnostic)."""

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

Role = Literal["user", "assistant", "system", "tool"]
FinishReason = Literal["tool_calls", "stop"]


class ToolCallRecord(BaseModel):
    """A fully assembled tool call requested by the assistant."""

    id: str
    name: str
    arguments: str


class Message(BaseModel):
    """One entry of the conversation history fed back to the model on every call.

    ``tool_call_id`` is only set on ``tool`` messages and ``tool_calls`` only on
    ``assistant`` messages that requested tools.
    """

    role: Role
    content: str = ""
    tool_call_id: str | None = None
    tool_calls: list[ToolCallRecord] | None = None


# Content block types
class TextBlock(BaseModel):
    """Text content block."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    """Tool use content block."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any]


class ToolResultBlock(BaseModel):
    """Tool result content block."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str
    is_error: bool = False


ContentBlock = TextBlock | ToolUseBlock | ToolResultBlock


class LLMToolDefinition(BaseModel):
    """Tool declaration sent to the model with every request."""

    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass
class ToolCallFragment:
    """A piece of a tool call delivered by one streamed chunk.

    Fragments sharing an ``index`` belong to the same call.
    """

    index: int
    call_id: str | None = None
    name: str | None = None
    arguments_delta: str | None = None


@dataclass
class StreamChunk:
    """Normalised streaming chunk from the model provider."""

    content_delta: str | None = None
    tool_call_fragments: list[ToolCallFragment] = field(default_factory=list)
    finish_reason: FinishReason | None = None


@dataclass
class LLMUsage:
    """Token usage information from the LLM provider."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class ModelResponse:
    """Provider-agnostic response of a non-streaming model call."""

    text: str
    stop_reason: str | None
    usage: LLMUsage
    model: str
    provider: str = "anthropic"
