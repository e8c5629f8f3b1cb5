"""Tools for the conversational AI assistant."""

from blocks.tools.base import ToolDefinition
from blocks.tools.registry import ToolRegistry, create_default_registry, get_tool_registry

__all__ = ["ToolDefinition", "ToolRegistry", "create_default_registry", "get_tool_registry"]
