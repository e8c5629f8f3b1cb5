#!/usr/bin/env python3
"""Interactive terminal client for the Blocks chat service."""

import asyncio
import re
import sys
import webbrowser
from contextlib import aclosing
from pathlib import Path

import httpx
from rich.console import Console, Group
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.spinner import Spinner

from blocks.clients.blocks_api import BlocksAPIClient
from blocks.clients.chat_state import ChatStreamState
from blocks.clients.preview import extract_preview

PREVIEW_DIR = Path("previews")


class ChatCLI:
    """Interactive chat interface that streams assistant turns."""

    def __init__(self, base_url: str = "http://localhost:8000", open_previews: bool = False):
        self.api = BlocksAPIClient(base_url)
        self.console = Console()
        self.state = ChatStreamState()
        self.conversation_id: str | None = None
        self.open_previews = open_previews

    async def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                "[bold magenta]🧱 Blocks - Interactive Chat[/bold magenta]\n"
                "Ask for a page or paste some data to analyze.\n"
                "Commands: /help, /new, /list, /quit",
                border_style="magenta",
            )
        )

        if not await self.api.health():
            self.console.print("[red]❌ Cannot connect to the service. Make sure it's running.[/red]")
            await self.api.close()
            return

        self.console.print("[green]✅ Connected to Blocks[/green]\n")

        try:
            while True:
                user_input = Prompt.ask("\n[bold cyan]You[/bold cyan]")

                if user_input.lower() in ["/quit", "/exit", "quit", "exit"]:
                    break
                elif user_input.lower() == "/help":
                    self._show_help()
                    continue
                elif user_input.lower() == "/new":
                    self.conversation_id = None
                    self.state = ChatStreamState()
                    self.console.print("[yellow]🔄 Started a new conversation[/yellow]")
                    continue
                elif user_input.lower() == "/list":
                    await self._list_conversations()
                    continue
                elif user_input.strip() == "":
                    continue

                await self._send_message(user_input)

        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]👋 Goodbye![/yellow]")
            await self.api.close()

    async def _send_message(self, message: str) -> None:
        """Stream one turn, showing text as it arrives and the running tool."""
        try:
            if self.conversation_id is None:
                conversation = await self.api.create_conversation()
                self.conversation_id = conversation.id

            with Live(self._render_stream(), console=self.console, refresh_per_second=12) as live:
                turn = self.api.send_message(self.conversation_id, message, self.state)
                async with aclosing(turn) as events:
                    async for event in events:
                        if event.get("type") == "error":
                            live.console.print(f"[red]⚠️  {event.get('message')}[/red]")
                        live.update(self._render_stream())

        except httpx.HTTPStatusError as e:
            self.console.print(f"[red]❌ API Error: {e.response.status_code} - {e.response.text}[/red]")
            return
        except httpx.HTTPError as e:
            self.console.print(f"[red]❌ Connection error: {e}[/red]")
            return

        self._display_last_reply()

    def _render_stream(self) -> Group:
        parts = []
        if self.state.streaming_content:
            parts.append(Markdown(self.state.streaming_content))
        if self.state.active_tool:
            parts.append(Spinner("dots", text=f"Running {self.state.active_tool}..."))
        elif self.state.is_streaming and not self.state.streaming_content:
            parts.append(Spinner("dots", text="Thinking..."))
        return Group(*parts)

    def _display_last_reply(self) -> None:
        """Show the committed assistant reply and save any HTML it produced."""
        replies = [m for m in self.state.messages if m.role == "assistant"]
        if not replies:
            return
        reply = replies[-1]

        self.console.print(
            Panel(
                Markdown(reply.content or "_(no text)_"),
                title="[bold green]🤖 Blocks[/bold green]",
                subtitle=f"[dim]tools: {', '.join(reply.tool_names)}[/dim]" if reply.tool_names else None,
                border_style="green",
                padding=(1, 2),
            )
        )

        preview = extract_preview(reply)
        if preview is None:
            return

        PREVIEW_DIR.mkdir(exist_ok=True)
        slug = re.sub(r"[^a-z0-9]+", "-", preview.title.lower()).strip("-") or "preview"
        path = PREVIEW_DIR / f"{slug}-{reply.id[:8]}.html"
        path.write_text(preview.html, encoding="utf-8")
        self.console.print(f"[blue]📄 {preview.title} saved to {path}[/blue]")
        if self.open_previews:
            webbrowser.open(path.resolve().as_uri())

    async def _list_conversations(self) -> None:
        conversations = await self.api.list_conversations()
        if not conversations:
            self.console.print("[dim]No conversations yet[/dim]")
            return
        lines = "\n".join(
            f"{'→' if c.id == self.conversation_id else '•'} {c.title} [dim]({c.id})[/dim]" for c in conversations
        )
        self.console.print(Panel(lines, title="[yellow]💬 Conversations[/yellow]", border_style="yellow"))

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /new - Start a new conversation
• /list - List your conversations
• /quit or /exit - Exit the chat

[bold]Things to try:[/bold]
1. "Build me a contact form with a dark theme"
2. "My expenses: rent 2400, food 850, transport 320"
3. "Make a tip calculator"

[bold]Tips:[/bold]
• Generated pages and reports are written to the previews/ directory
• Pass --open to open previews in your browser automatically
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]❓ Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the chat CLI."""
    args = [arg for arg in sys.argv[1:] if arg != "--open"]
    base_url = args[0] if args else "http://localhost:8000"

    chat = ChatCLI(base_url, open_previews="--open" in sys.argv)
    asyncio.run(chat.start())


if __name__ == "__main__":
    main()
