"""Tools registry for managing AI assistant tools."""

from blocks.clients.base import ModelClient
from blocks.models.llm import LLMToolDefinition
from blocks.services.conversation_store import ConversationStore
from blocks.tools.analyze_data import create_analyze_data_tool
from blocks.tools.base import ToolDefinition
from blocks.tools.create_page import create_create_page_tool
from blocks.utils.logging import get_logger

logger = get_logger(__name__)


class ToolRegistry:
    """Registry of tools, keyed by unique name.

    Tools are registered at startup and the registry is then frozen; lookups
    after that need no synchronization because nothing mutates it.
    """

    def __init__(self, tools: list[ToolDefinition] | None = None):
        self._tools: dict[str, ToolDefinition] = {}
        self._frozen = False
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: ToolDefinition) -> None:
        """Register a tool; registering the same definition twice is a no-op.

        Raises:
            RuntimeError: If the registry is frozen
            ValueError: If a different tool already uses the name
        """
        if self._frozen:
            raise RuntimeError(f"Cannot register {tool.name}: tool registry is frozen")

        existing = self._tools.get(tool.name)
        if existing is not None:
            if existing is not tool:
                raise ValueError(f"A different tool is already registered as {tool.name}")
            return

        self._tools[tool.name] = tool

    def freeze(self) -> "ToolRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def get_llm_tools(self) -> list[LLMToolDefinition]:
        """Tool declarations sent with every model request."""
        return [tool.to_llm_tool() for tool in self._tools.values()]

    def get_tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    # Defined last: inside the class body the name shadows the builtin used in annotations above
    def list(self) -> "list[ToolDefinition]":
        """Registered tools in registration order."""
        return [*self._tools.values()]


def create_default_registry(client: ModelClient, store: ConversationStore) -> ToolRegistry:
    """Build and freeze the registry holding the page and data analysis tools."""
    registry = ToolRegistry(
        [
            create_create_page_tool(client, store),
            create_analyze_data_tool(client),
        ]
    ).freeze()
    logger.info(f"Registered {len(registry.list())} tools: {', '.join(registry.get_tool_names())}")
    return registry


_tool_registry: ToolRegistry | None = None


def get_tool_registry(client: ModelClient | None = None, store: ConversationStore | None = None) -> ToolRegistry:
    """Get or create the process-wide tool registry."""
    global _tool_registry

    if _tool_registry is None:
        if client is None or store is None:
            raise ValueError("Must provide a model client and store for initial registry creation")
        _tool_registry = create_default_registry(client, store)

    return _tool_registry
