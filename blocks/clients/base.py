"""Interface the chat loop and tools expect from a language model provider."""

from collections.abc import AsyncIterator
from typing import Protocol

from blocks.models.llm import LLMToolDefinition, Message, ModelResponse, StreamChunk


class ModelClient(Protocol):
    """Capability to stream completions and to run one-shot generations."""

    def stream_message(
        self,
        messages: list[Message],
        tools: list[LLMToolDefinition] | None = None,
        **kwargs,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a completion for ``messages`` with the given tools declared.

        The final chunk carries a finish reason telling whether tool calls are
        pending (``"tool_calls"``) or the answer is complete (``"stop"``).
        """
        ...

    async def create_message(self, messages: list[Message], system_prompt: str, **kwargs) -> ModelResponse:
        """Generate a complete response without streaming."""
        ...

    def validate_message_tokens(self, message: str) -> None:
        """Reject a user message that would not fit the model's per-message token limit.

        Raises:
            ValueError: If the message exceeds the limit
        """
        ...
