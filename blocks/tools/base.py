"""Base types and definitions for tools."""

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from blocks.models.llm import LLMToolDefinition
from blocks.models.tools import ToolContext, ToolResult
from blocks.utils.logging import get_logger

logger = get_logger(__name__)

ToolHandler = Callable[[Any, ToolContext], Awaitable[ToolResult]]


@dataclass(frozen=True)
class ToolDefinition:
    """Definition of a tool available to the AI assistant."""

    name: str
    description: str
    input_schema_class: type[BaseModel]
    handler: ToolHandler
    failure_message: str = "Tool failed"

    def get_json_schema(self) -> dict[str, Any]:
        """Get JSON schema for this tool's input, using wire field names."""
        return self.input_schema_class.model_json_schema(by_alias=True)

    def to_llm_tool(self) -> LLMToolDefinition:
        return LLMToolDefinition(name=self.name, description=self.description, input_schema=self.get_json_schema())

    def parse_arguments(self, arguments: str) -> dict[str, Any]:
        """Decode the streamed argument text into a JSON object.

        Raises:
            ValueError: If the text is not valid JSON or not an object
        """
        decoded = json.loads(arguments) if arguments.strip() else {}
        if not isinstance(decoded, dict):
            raise ValueError(f"Arguments for {self.name} must be a JSON object")
        return decoded

    def parse_input(self, raw_input: dict[str, Any]) -> BaseModel:
        """Parse and validate tool input."""
        return self.input_schema_class.model_validate(raw_input)

    async def execute(self, tool_input: BaseModel, context: ToolContext) -> ToolResult:
        """Run the handler; any exception becomes a failed result instead of propagating."""
        logger.info(f"Executing tool {self.name} for conversation {context.conversation_id}")
        try:
            result = await self.handler(tool_input, context)
        except Exception as e:
            logger.error(f"Tool {self.name} failed: {e}", exc_info=True)
            return ToolResult.failure(f"{self.failure_message}: {e}")

        logger.debug(f"Tool {self.name} finished, success: {result.success}")
        return result
