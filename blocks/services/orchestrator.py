"""Streaming chat orchestration: model rounds, tool call assembly and dispatch."""

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field

from cuid2 import cuid_wrapper

from blocks.clients.anthropic import get_anthropic_client
from blocks.clients.base import ModelClient
from blocks.models.events import (
    ContentDelta,
    MessageComplete,
    StreamError,
    StreamEvent,
    ToolCallResult,
    ToolCallStarted,
)
from blocks.models.llm import FinishReason, LLMToolDefinition, Message, ToolCallFragment, ToolCallRecord
from blocks.models.tools import ToolContext
from blocks.services.conversation_store import get_conversation_store
from blocks.tools.registry import ToolRegistry, get_tool_registry
from blocks.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


def get_system_prompt() -> str:
    """System instruction prepended to every model call of a turn."""
    return """You are a helpful AI assistant for Blocks, an AI-native application builder.
You help users build applications and analyze data through conversation.

You have two tools:
1. create_page - generate complete, styled web pages (forms, dashboards, landing pages, calculators, lists)
2. analyze_data - analyze data and produce an HTML report with insights

DATA ANALYSIS RULES:
- Use analyze_data whenever the user mentions data or numbers, or asks for analysis
- You convert the user's input into CSV yourself. Never ask the user to reformat their data
- Pull numbers and labels out of natural language and infer sensible column headers

EXAMPLES:
- "My expenses: rent $2400, food $850, transport $320" -> analyze_data with
  data "Category,Amount\\nRent,2400\\nFood,850\\nTransport,320"
- "Traffic was 1200 on Monday, 1800 Tuesday, 2100 Wednesday" -> analyze_data with
  data "Day,Traffic\\nMonday,1200\\nTuesday,1800\\nWednesday,2100"
- "Sales: Jan 50k, Feb 62k, Mar 71k" -> analyze_data with data "Month,Sales\\nJan,50000\\nFeb,62000\\nMar,71000"

AFTER USING A TOOL:
- Never repeat the generated HTML or code in your reply
- Reply in one or two short sentences confirming what you did; the user sees the preview
- Offer a follow-up, e.g. "Want me to change anything?"
- Do not walk through the numbers of a report; they are in the dashboard"""


@dataclass
class OrchestratorConfig:
    """Limits for one chat turn."""

    max_rounds: int = 10
    round_timeout: float = 120.0
    system_prompt: str = field(default_factory=get_system_prompt)


@dataclass
class PendingToolCall:
    """A tool call being assembled from streamed fragments."""

    id: str = ""
    name: str = ""
    arguments: str = ""

    def to_record(self) -> ToolCallRecord:
        return ToolCallRecord(id=self.id, name=self.name, arguments=self.arguments)


class ToolCallAccumulator:
    """Assembles tool calls from fragments keyed by positional index.

    Ids and names are taken when a fragment provides them. Argument text is
    always appended, because the JSON arrives a few characters at a time.
    """

    def __init__(self):
        self._calls: dict[int, PendingToolCall] = {}

    def add(self, fragment: ToolCallFragment) -> None:
        call = self._calls.setdefault(fragment.index, PendingToolCall())
        if fragment.call_id:
            call.id = fragment.call_id
        if fragment.name:
            call.name = fragment.name
        if fragment.arguments_delta:
            call.arguments += fragment.arguments_delta

    def calls(self) -> list[PendingToolCall]:
        """Calls in the order their index was first seen."""
        return list(self._calls.values())

    def __len__(self) -> int:
        return len(self._calls)


@dataclass
class ModelRound:
    """What one streamed model response produced."""

    content: str = ""
    tool_calls: ToolCallAccumulator = field(default_factory=ToolCallAccumulator)
    finish_reason: FinishReason | None = None
    continuation: list[Message] | None = None


class ChatOrchestrator:
    """Runs a chat turn against the model, executing requested tools between rounds.

    Each round streams one model response. When the model asks for tools, the
    first call that resolves and parses is executed and the history is
    extended with the assistant's tool calls and that call's result; the next
    round continues from there. Later calls of the same batch are not run.
    """

    def __init__(self, client: ModelClient, registry: ToolRegistry, config: OrchestratorConfig | None = None):
        self.client = client
        self.registry = registry
        self.config = config or OrchestratorConfig()

    async def stream_chat(self, history: list[Message], context: ToolContext) -> AsyncIterator[StreamEvent]:
        """Stream the events of one turn.

        Ends with exactly one ``MessageComplete`` on success, or with a
        ``StreamError`` when the model call fails, times out or the round
        limit is reached. Localized errors for bad tool calls do not end it.
        """
        messages = [Message(role="system", content=self.config.system_prompt), *history]
        tools = self.registry.get_llm_tools()

        logger.info(f"Starting turn for conversation {context.conversation_id} with {len(history)} messages")

        try:
            for round_number in range(1, self.config.max_rounds + 1):
                logger.debug(f"Model round {round_number}/{self.config.max_rounds} with {len(messages)} messages")
                model_round = ModelRound()

                async with aclosing(self._read_round(messages, tools, model_round)) as deltas:
                    async for event in deltas:
                        yield event

                if model_round.finish_reason == "tool_calls" and len(model_round.tool_calls):
                    async with aclosing(self._dispatch_tool_calls(messages, model_round, context)) as tool_events:
                        async for event in tool_events:
                            yield event

                if model_round.continuation is None:
                    message_id = cuid()
                    logger.info(f"Turn for conversation {context.conversation_id} completed in {round_number} rounds")
                    yield MessageComplete(message_id=message_id)
                    return

                messages = model_round.continuation

        except Exception as e:
            logger.error(f"Chat turn failed for conversation {context.conversation_id}: {e}", exc_info=True)
            yield StreamError(message=str(e) or type(e).__name__)
            return

        logger.warning(
            f"Turn for conversation {context.conversation_id} hit the limit of {self.config.max_rounds} rounds"
        )
        yield StreamError(message=f"Stopped after {self.config.max_rounds} tool rounds without a final answer")

    async def _read_round(
        self,
        messages: list[Message],
        tools: list[LLMToolDefinition],
        model_round: ModelRound,
    ) -> AsyncIterator[ContentDelta]:
        """Stream one model response, yielding text and collecting tool call fragments.

        Raises:
            TimeoutError: If the response does not finish within the round timeout
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.round_timeout
        fragment_count = 0

        async with aclosing(self.client.stream_message(messages, tools=tools)) as chunks:
            while True:
                remaining = deadline - loop.time()
                try:
                    if remaining <= 0:
                        raise TimeoutError
                    chunk = await asyncio.wait_for(anext(chunks), remaining)
                except StopAsyncIteration:
                    break
                except TimeoutError as e:
                    raise TimeoutError(f"Model response timed out after {self.config.round_timeout:g}s") from e

                if chunk.content_delta:
                    model_round.content += chunk.content_delta
                    yield ContentDelta(content=chunk.content_delta)

                for fragment in chunk.tool_call_fragments:
                    model_round.tool_calls.add(fragment)
                    fragment_count += 1

                if chunk.finish_reason is not None:
                    model_round.finish_reason = chunk.finish_reason

        logger.debug(
            f"Round finished ({model_round.finish_reason}): {len(model_round.content)} chars, "
            f"{len(model_round.tool_calls)} tool calls from {fragment_count} fragments"
        )

    async def _dispatch_tool_calls(
        self,
        messages: list[Message],
        model_round: ModelRound,
        context: ToolContext,
    ) -> AsyncIterator[StreamEvent]:
        """Run the first usable tool call of the round and set its continuation.

        Unknown tools and unparsable arguments yield a localized error and the
        next call is tried instead.
        """
        calls = model_round.tool_calls.calls()

        for call in calls:
            tool = self.registry.get(call.name)
            if tool is None:
                logger.warning(f"Model requested unknown tool: {call.name}")
                yield StreamError(message=f"Unknown tool: {call.name}")
                continue

            try:
                raw_input = tool.parse_arguments(call.arguments)
                tool_input = tool.parse_input(raw_input)
            # JSONDecodeError and pydantic's ValidationError are both ValueErrors
            except ValueError as e:
                logger.warning(f"Invalid arguments for {call.name}: {e}")
                yield StreamError(message=f"Invalid tool arguments for {call.name}")
                continue

            yield ToolCallStarted(tool=call.name, input=raw_input)
            result = await tool.execute(tool_input, context)
            yield ToolCallResult(tool=call.name, result=result)

            model_round.continuation = [
                *messages,
                Message(role="assistant", content=model_round.content, tool_calls=[c.to_record() for c in calls]),
                Message(role="tool", content=json.dumps(result.to_payload()), tool_call_id=call.id),
            ]
            if len(calls) > 1:
                logger.info(f"Continuing after {call.name}; {len(calls) - 1} other tool calls of the batch are not run")
            return


_chat_orchestrator: ChatOrchestrator | None = None


def get_chat_orchestrator() -> ChatOrchestrator:
    """Get or create the process-wide orchestrator wired to the Anthropic client."""
    global _chat_orchestrator
    if _chat_orchestrator is None:
        client = get_anthropic_client()
        _chat_orchestrator = ChatOrchestrator(client, get_tool_registry(client, get_conversation_store()))
    return _chat_orchestrator
