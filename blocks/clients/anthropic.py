"""Anthropic API client with rate limiting, streaming and error handling."""

import asyncio
import json
import os
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal, TypeVar

import tiktoken
from anthropic import APIError, AsyncAnthropic
from limits import RateLimitItem, parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from pydantic import BaseModel

from blocks.models.llm import (
    ContentBlock,
    LLMToolDefinition,
    LLMUsage,
    Message,
    ModelResponse,
    StreamChunk,
    TextBlock,
    ToolCallFragment,
    ToolResultBlock,
    ToolUseBlock,
)
from blocks.utils.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5"
NOT_EXECUTED_RESULT = "Tool call was not executed."


class CacheControl(BaseModel):
    """Cache control configuration for prompt caching."""

    type: Literal["ephemeral"] = "ephemeral"
    ttl: Literal["5m", "1h"] = "5m"


class AnthropicMessage(BaseModel):
    """Message format for Anthropic API."""

    role: Literal["user", "assistant"]
    content: str | list[ContentBlock]


class AnthropicTool(BaseModel):
    """Tool definition for Anthropic API."""

    name: str
    description: str
    input_schema: dict[str, Any]
    cache_control: CacheControl | None = None


@dataclass
class AnthropicConfig:
    """Configuration for Anthropic API client."""

    model: str = field(default_factory=lambda: os.getenv("ANTHROPIC_MODEL", DEFAULT_MODEL))
    max_tokens: int = 4096
    temperature: float = 0.7
    max_retries: int = 3
    retry_delay: float = 1.0
    request_timeout: float = 120.0

    # Token limits for validation and truncation
    max_message_tokens: int = 8000
    max_conversation_tokens: int = 200000
    token_headroom: int = 8000


class AnthropicRateLimiter:
    """Moving-window rate limiter for requests and tokens."""

    def __init__(self, requests_per_minute: int = 50, tokens_per_minute: int = 400_000):
        self.limiter = MovingWindowRateLimiter(MemoryStorage())
        self.request_limit = parse(f"{requests_per_minute}/minute")
        self.token_limit = parse(f"{tokens_per_minute}/minute")

    async def acquire(self, estimated_tokens: int, identifier: str = "anthropic") -> None:
        """Wait until one more request of ``estimated_tokens`` fits both windows."""
        logger.debug(f"Checking rate limit for {estimated_tokens} tokens, identifier: {identifier}")
        await self._wait_for(self.request_limit, identifier, cost=1)
        await self._wait_for(self.token_limit, f"{identifier}_tokens", cost=max(estimated_tokens, 1))

    async def _wait_for(self, limit: RateLimitItem, identifier: str, cost: int) -> None:
        if self.limiter.hit(limit, identifier, cost=cost):
            return

        window_stats = self.limiter.get_window_stats(limit, identifier)
        # reset_time is an epoch timestamp
        wait_time = max(0.0, window_stats.reset_time - time.time())
        if wait_time > 0:
            logger.warning(f"Rate limit {limit} exceeded for {identifier}, waiting {wait_time:.2f}s")
            await asyncio.sleep(wait_time)


def _decode_arguments(arguments: str) -> dict[str, Any]:
    try:
        decoded = json.loads(arguments or "{}")
    except json.JSONDecodeError:
        return {}
    return decoded if isinstance(decoded, dict) else {}


def to_anthropic_messages(messages: list[Message]) -> tuple[str, list[AnthropicMessage]]:
    """Translate provider-neutral history into Anthropic's system prompt and messages.

    Tool messages following an assistant tool request are folded into a single
    user message of ``tool_result`` blocks. Calls that were never answered get
    an error result, since the API rejects unanswered ``tool_use`` blocks.
    """
    system_parts: list[str] = []
    converted: list[AnthropicMessage] = []

    index = 0
    while index < len(messages):
        message = messages[index]
        index += 1

        if message.role == "system":
            if message.content:
                system_parts.append(message.content)
            continue

        if message.role == "tool":
            logger.warning(f"Dropping tool message without a preceding tool request: {message.tool_call_id}")
            continue

        if message.role == "assistant" and message.tool_calls:
            blocks: list[ContentBlock] = []
            if message.content:
                blocks.append(TextBlock(text=message.content))
            blocks.extend(
                ToolUseBlock(id=call.id, name=call.name, input=_decode_arguments(call.arguments))
                for call in message.tool_calls
            )
            converted.append(AnthropicMessage(role="assistant", content=blocks))

            answers: dict[str, str] = {}
            while index < len(messages) and messages[index].role == "tool":
                answers[messages[index].tool_call_id or ""] = messages[index].content
                index += 1

            results: list[ContentBlock] = [
                ToolResultBlock(tool_use_id=call.id, content=answers[call.id])
                if call.id in answers
                else ToolResultBlock(tool_use_id=call.id, content=NOT_EXECUTED_RESULT, is_error=True)
                for call in message.tool_calls
            ]
            converted.append(AnthropicMessage(role="user", content=results))
            continue

        if not message.content:
            continue

        converted.append(AnthropicMessage(role=message.role, content=message.content))

    return "\n\n".join(system_parts), converted


def convert_stream_event(event: Any) -> StreamChunk | None:
    """Map one raw Anthropic stream event to a provider-neutral chunk."""
    if event.type == "content_block_start":
        block = event.content_block
        if block.type == "tool_use":
            fragment = ToolCallFragment(index=event.index, call_id=block.id, name=block.name)
            return StreamChunk(tool_call_fragments=[fragment])

    elif event.type == "content_block_delta":
        delta = event.delta
        if delta.type == "text_delta" and delta.text:
            return StreamChunk(content_delta=delta.text)
        if delta.type == "input_json_delta" and delta.partial_json:
            fragment = ToolCallFragment(index=event.index, arguments_delta=delta.partial_json)
            return StreamChunk(tool_call_fragments=[fragment])

    elif event.type == "message_delta":
        stop_reason = event.delta.stop_reason
        if stop_reason:
            return StreamChunk(finish_reason="tool_calls" if stop_reason == "tool_use" else "stop")

    return None


def _message_text(message: AnthropicMessage) -> str:
    if isinstance(message.content, str):
        return message.content

    parts: list[str] = []
    for block in message.content:
        if isinstance(block, TextBlock):
            parts.append(block.text)
        elif isinstance(block, ToolUseBlock):
            parts.append(json.dumps(block.input))
        else:
            parts.append(block.content)
    return "".join(parts)


class AnthropicClient:
    """Low-level Anthropic API client with rate limiting and error handling."""

    tokenizer: tiktoken.Encoding | None = None
    client: AsyncAnthropic
    config: AnthropicConfig
    rate_limiter: AnthropicRateLimiter = AnthropicRateLimiter()

    def __init__(self, api_key: str | None = None, config: AnthropicConfig | None = None):
        """Initialize Anthropic client.

        Args:
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            config: Client configuration
        """
        anthropic_api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not anthropic_api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable is required")

        self.config = config or AnthropicConfig()
        # Retries are handled here; streaming requests are never retried
        self.client = AsyncAnthropic(
            api_key=anthropic_api_key,
            timeout=self.config.request_timeout,
            max_retries=0,
        )

        try:
            # Close approximation for Claude
            self.tokenizer = tiktoken.encoding_for_model("gpt-4")
        except Exception:
            self.tokenizer = None

    def _build_tools(self, tools: list[LLMToolDefinition]) -> list[AnthropicTool]:
        """Convert tool definitions, caching the whole list via the last entry."""
        return [
            AnthropicTool(
                name=tool.name,
                description=tool.description,
                input_schema=tool.input_schema,
                cache_control=CacheControl() if i == len(tools) - 1 else None,
            )
            for i, tool in enumerate(tools)
        ]

    async def _prepare_request(
        self,
        messages: list[Message],
        tools: list[LLMToolDefinition] | None,
        system_prompt: str | None = None,
        **kwargs,
    ) -> dict[str, Any]:
        history_system, anthropic_messages = to_anthropic_messages(messages)
        system = system_prompt if system_prompt is not None else history_system
        anthropic_tools = self._build_tools(tools) if tools else []

        truncated_messages = self.truncate_conversation(anthropic_messages, system, anthropic_tools)

        estimated_tokens = self._estimate_tokens(truncated_messages, system)
        logger.debug(f"Estimated tokens: {estimated_tokens}")
        await self.rate_limiter.acquire(estimated_tokens)

        request_params: dict[str, Any] = {
            "model": kwargs.get("model", self.config.model),
            "max_tokens": kwargs.get("max_tokens", self.config.max_tokens),
            "temperature": kwargs.get("temperature", self.config.temperature),
            "messages": [msg.model_dump() for msg in truncated_messages],
        }
        if system:
            request_params["system"] = system
        if anthropic_tools:
            request_params["tools"] = [tool.model_dump(exclude_none=True) for tool in anthropic_tools]

        logger.debug(
            f"Prepared request with {len(truncated_messages)} messages, {len(anthropic_tools)} tools, "
            f"model: {request_params['model']}"
        )
        return request_params

    async def stream_message(
        self,
        messages: list[Message],
        tools: list[LLMToolDefinition] | None = None,
        **kwargs,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a completion as provider-neutral chunks.

        System messages in ``messages`` become the system prompt. The
        underlying HTTP stream is closed when the iterator is closed, even
        if the caller stops consuming early.
        """
        request_params = await self._prepare_request(messages, tools, **kwargs)

        usage = LLMUsage()
        stream = await self.client.messages.create(**request_params, stream=True)
        async with stream:
            async for event in stream:
                if event.type == "message_start" and event.message.usage:
                    usage.input_tokens = event.message.usage.input_tokens
                elif event.type == "message_delta" and event.usage:
                    usage.output_tokens = event.usage.output_tokens

                chunk = convert_stream_event(event)
                if chunk is not None:
                    yield chunk

        logger.debug(f"Stream finished - input tokens: {usage.input_tokens}, output tokens: {usage.output_tokens}")

    async def create_message(
        self,
        messages: list[Message],
        system_prompt: str,
        **kwargs,
    ) -> ModelResponse:
        """Create a message without streaming.

        Args:
            messages: Conversation history
            system_prompt: System prompt for Claude
            **kwargs: Overrides for model, max_tokens and temperature

        Returns:
            Provider-agnostic response with the concatenated text
        """
        request_params = await self._prepare_request(messages, None, system_prompt=system_prompt, **kwargs)

        response = await self._request_with_retries(lambda: self.client.messages.create(**request_params))

        usage = LLMUsage()
        if response.usage:
            usage = LLMUsage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            )

        logger.debug(
            f"Response received - Stop reason: {response.stop_reason}, Content blocks: {len(response.content)}"
        )

        return ModelResponse(
            text="".join(block.text for block in response.content if block.type == "text"),
            stop_reason=response.stop_reason,
            usage=usage,
            model=response.model,
        )

    async def _request_with_retries(self, call: Callable[[], Awaitable[T]]) -> T:
        """Execute Anthropic API request with retry logic."""
        for attempt in range(self.config.max_retries):
            try:
                return await call()

            except APIError as e:
                status_code = getattr(e, "status_code", None)
                if status_code == 429:  # Rate limit exceeded
                    retry_after = 60
                    response = getattr(e, "response", None)
                    if response is not None:
                        retry_after = int(response.headers.get("retry-after", 60))

                    if retry_after < 120 and attempt < self.config.max_retries - 1:
                        await asyncio.sleep(retry_after)
                        continue

                elif status_code is not None and status_code >= 500 and attempt < self.config.max_retries - 1:
                    # Server error, retry with exponential backoff
                    await asyncio.sleep(self.config.retry_delay * (2**attempt))
                    continue

                raise

            except Exception:
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(self.config.retry_delay * (2**attempt))
                    continue
                raise

        raise RuntimeError(f"Failed to complete request after {self.config.max_retries} attempts")

    def _estimate_tokens(self, messages: list[AnthropicMessage], system_prompt: str) -> int:
        """Estimate token count for rate limiting."""
        text_content = system_prompt + "".join(_message_text(message) for message in messages)
        return self.estimate_message_tokens(text_content)

    def estimate_message_tokens(self, message: str) -> int:
        """Estimate token count for a single message.

        Args:
            message: Message content

        Returns:
            Estimated token count
        """
        try:
            return len(self.tokenizer.encode(message)) if self.tokenizer else len(message) // 4
        except Exception:
            # Fallback: roughly 4 characters per token
            return len(message) // 4

    def validate_message_tokens(self, message: str) -> None:
        """Validate that a message doesn't exceed token limits.

        Raises:
            ValueError: If message exceeds token limit
        """
        token_count = self.estimate_message_tokens(message)
        if token_count > self.config.max_message_tokens:
            raise ValueError(
                f"Message exceeds token limit: {token_count} tokens > {self.config.max_message_tokens} limit"
            )

    def truncate_conversation(
        self, messages: list[AnthropicMessage], system_prompt: str, tools: list[AnthropicTool] | None = None
    ) -> list[AnthropicMessage]:
        """Truncate conversation from the beginning to fit within token limits.

        The result always starts with a plain user message so that no
        ``tool_result`` block is left without its ``tool_use``.
        """
        if not messages:
            return messages

        available_tokens = self.config.max_conversation_tokens - self.config.token_headroom
        available_tokens -= self.estimate_message_tokens(system_prompt)
        if tools:
            tool_content = "".join(tool.name + tool.description + str(tool.input_schema) for tool in tools)
            available_tokens -= self.estimate_message_tokens(tool_content)

        truncated_messages: list[AnthropicMessage] = []
        current_tokens = 0

        for message in reversed(messages):
            message_tokens = self.estimate_message_tokens(_message_text(message))
            if current_tokens + message_tokens > available_tokens:
                break
            truncated_messages.insert(0, message)
            current_tokens += message_tokens

        if len(truncated_messages) < len(messages):
            while truncated_messages and not (
                truncated_messages[0].role == "user" and isinstance(truncated_messages[0].content, str)
            ):
                truncated_messages.pop(0)

            logger.warning(
                f"Truncated conversation from {len(messages)} to {len(truncated_messages)} messages "
                f"to fit within {available_tokens} token limit"
            )

        return truncated_messages


_anthropic_client: AnthropicClient | None = None


def get_anthropic_client() -> AnthropicClient:
    """Get or create Anthropic client instance."""
    global _anthropic_client
    if _anthropic_client is None:
        _anthropic_client = AnthropicClient()
    return _anthropic_client
