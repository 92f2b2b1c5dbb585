#!/usr/bin/env python3
"""main.py

Entry point for toolchat - a chat client that answers with the help of MCP
tools (web search, weather).

Usage:
    python main.py <path_to_server_script>
"""

from __future__ import annotations

# Standard Library
import asyncio
import logging
import os
import sys

# Third-Party Libraries
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.theme import Theme

# Local Modules
from toolchat.chat import ChatEngine
from toolchat.completion import build_completion
from toolchat.config import Settings
from toolchat.errors import ConfigurationError, ServerConnectionError, ToolchatError
from toolchat.invoker import ToolInvoker
from toolchat.session import McpSession

logger = logging.getLogger("toolchat")

EXIT_COMMANDS = {"quit", "exit", "/quit", "/exit"}

custom_theme = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "bold green",
        "user": "bold blue",
        "assistant": "green",
    }
)
console = Console(theme=custom_theme)


def display_help() -> None:
    """Display available commands."""
    help_text = """
**Available Commands:**

- `/help` - Show this help message
- `/tools` - List the tools exposed by the server
- `/clear` - Clear conversation history
- `quit` or `exit` - Leave toolchat
- Any other text - Ask a question
    """
    console.print(Panel(Markdown(help_text), title="Help", border_style="cyan"))


def display_tools(session: McpSession) -> None:
    """Display the tools discovered at connect time."""
    table = Table(title="Tools", border_style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("Description")
    for tool in session.registry:
        table.add_row(tool.name, tool.description)
    console.print(table)


async def chat_loop(engine: ChatEngine, session: McpSession) -> None:
    """Read one query at a time and print its answer before reading the next."""
    console.print("\nMCP client started!", style="success")
    console.print("Type your queries, [bold]/help[/bold] for commands, or 'quit' to exit.\n", style="info")

    while True:
        try:
            user_input = (await asyncio.to_thread(Prompt.ask, "[bold blue]Query[/bold blue]")).strip()
        except (EOFError, KeyboardInterrupt):
            console.print("\nGoodbye!\n", style="warning")
            return

        if not user_input:
            continue

        command = user_input.lower()
        if command in EXIT_COMMANDS:
            console.print("\nGoodbye!\n", style="success")
            return
        if command == "/help":
            display_help()
            continue
        if command == "/tools":
            display_tools(session)
            continue
        if command == "/clear":
            engine.clear_history()
            console.print("Conversation history cleared.\n", style="success")
            continue

        try:
            with console.status("[bold green]Thinking...", spinner="dots"):
                response = await engine.process_query(user_input)
        except ToolchatError as exc:
            console.print(f"\nError: {exc}\n", style="error")
            continue
        except Exception as exc:
            logger.error("Unexpected error while answering: %s", exc, exc_info=True)
            console.print(f"\nError: {exc}\n", style="error")
            console.print(
                "You can continue chatting or type /quit to exit.\n", style="info"
            )
            continue

        console.print(
            Panel(
                Markdown(response),
                title="[bold green]toolchat[/bold green]",
                border_style="green",
            )
        )
        console.print()


async def run(script_path: str, settings: Settings) -> int:
    """Connect to the server, run the chat loop, and always disconnect."""
    session = McpSession(script_path, env=dict(os.environ))
    try:
        await session.connect()
    except (ConfigurationError, ServerConnectionError) as exc:
        console.print(f"Failed to connect to MCP server: {exc}", style="error")
        return 1

    try:
        console.print(
            f"Connected to server with tools: {', '.join(session.registry.names())}",
            style="info",
        )
        invoker = ToolInvoker(session.registry, session.client, timeout=settings.tool_timeout)
        engine = ChatEngine(
            registry=session.registry,
            invoker=invoker,
            completion=build_completion(settings),
            settings=settings,
        )
        await chat_loop(engine, session)
    finally:
        await session.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the toolchat CLI."""
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 1:
        console.print("Usage: python main.py <path_to_server_script>", style="warning")
        return 1

    load_dotenv()
    try:
        settings = Settings()
        settings.require_client_credentials()
    except (ConfigurationError, ValidationError) as exc:
        console.print(f"Configuration error: {exc}", style="error")
        return 1

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    return asyncio.run(run(argv[0], settings))


if __name__ == "__main__":
    sys.exit(main())
