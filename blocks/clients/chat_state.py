"""Client-side reduction of a chat stream into display state."""

from dataclasses import dataclass, field
from typing import Any, Literal

from blocks.models.conversation import MessageOut
from blocks.utils.logging import get_logger

logger = get_logger(__name__)

StreamStatus = Literal["idle", "streaming"]


@dataclass
class ChatStreamState:
    """Display state of one conversation while turns stream in.

    ``messages`` holds the committed record from the server; the streaming
    buffer and active tool only describe the turn in flight.
    """

    status: StreamStatus = "idle"
    streaming_content: str = ""
    active_tool: str | None = None
    messages: list[MessageOut] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def is_streaming(self) -> bool:
        return self.status == "streaming"

    def begin(self) -> None:
        """Enter the streaming state for a new turn."""
        self.status = "streaming"
        self.streaming_content = ""
        self.active_tool = None
        self.errors = []

    def apply(self, event: dict[str, Any]) -> bool:
        """Apply one stream event.

        Returns:
            True when the turn concluded and the committed messages should be refetched
        """
        match event.get("type"):
            case "content_delta":
                self.streaming_content += event.get("content") or ""
            case "tool_call_started":
                self.active_tool = event.get("tool")
            case "tool_call_result":
                self.active_tool = None
            case "message_complete" | "done":
                self._finish()
                return True
            case "error":
                # The done frame that always follows ends the turn
                message = event.get("message") or "Unknown error"
                logger.warning(f"Stream error: {message}")
                self.errors.append(message)
            case other:
                logger.debug(f"Ignoring stream event of type {other}")
        return False

    def replace_messages(self, messages: list[MessageOut]) -> None:
        """Replace local state with the authoritative server record."""
        self.messages = list(messages)

    def abort(self) -> None:
        """Reset after a cancelled or failed stream."""
        self._finish()

    def _finish(self) -> None:
        self.status = "idle"
        self.streaming_content = ""
        self.active_tool = None
