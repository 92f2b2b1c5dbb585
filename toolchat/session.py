"""toolchat/session.py

Persistent MCP connection to a tool server script.

The server script's extension picks its runtime: ``.py`` runs under the
interpreter running this client, ``.js`` under Node.js.  The stdio channel
stays open for the whole session and is closed by :meth:`McpSession.close`.
"""

from __future__ import annotations

# Standard Library
import contextlib
import logging
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any

# Third-Party Libraries
from fastmcp import Client
from fastmcp.client.transports import StdioTransport

# Local Modules
from toolchat.errors import ConfigurationError, ServerConnectionError, ToolchatError
from toolchat.registry import ToolRegistry

logger = logging.getLogger(__name__)


def resolve_server_command(
    script_path: str, platform: str | None = None
) -> tuple[str, list[str]]:
    """Return ``(command, args)`` that launch the server script.

    Args:
        script_path: Path to a ``.py`` or ``.js`` server script.
        platform: Override for ``sys.platform`` (tests).

    Raises:
        ConfigurationError: For any other extension.
    """
    platform = platform or sys.platform
    suffix = Path(script_path).suffix.lower()
    if suffix == ".py":
        return sys.executable, [script_path]
    if suffix == ".js":
        return ("node.exe" if platform == "win32" else "node"), [script_path]
    raise ConfigurationError(
        f"Server script must be a .js or .py file, got: {script_path}"
    )


class McpSession:
    """One client session against one MCP server process.

    Usage::

        async with McpSession("servers/search_tools/server.py") as session:
            invoker = ToolInvoker(session.registry, session.client)

    Args:
        script_path: Server script to launch.
        env: Environment for the server process (API keys live here).
        client: Pre-built client (tests pass an in-memory ``fastmcp.Client``).
    """

    def __init__(
        self,
        script_path: str,
        env: Mapping[str, str] | None = None,
        client: Any | None = None,
    ) -> None:
        self.script_path = script_path
        self.env = dict(env) if env is not None else None
        self.client = client
        self._registry: ToolRegistry | None = None
        self._stack = contextlib.AsyncExitStack()

    @property
    def registry(self) -> ToolRegistry:
        if self._registry is None:
            raise ServerConnectionError("Session is not connected")
        return self._registry

    async def connect(self) -> ToolRegistry:
        """Start the server, open the channel and load the tool registry.

        Raises:
            ConfigurationError: Unsupported script type.
            ServerConnectionError: The server could not be started, or it
                exposes no tools.
        """
        if self.client is None:
            command, args = resolve_server_command(self.script_path)
            logger.info("Starting MCP server: %s %s", command, " ".join(args))
            self.client = Client(StdioTransport(command=command, args=args, env=self.env))

        try:
            await self._stack.enter_async_context(self.client)
            self._registry = await ToolRegistry.load(self.client)
        except ToolchatError:
            await self.close()
            raise
        except Exception as exc:
            logger.error("Failed to connect to MCP server: %s", exc, exc_info=True)
            await self.close()
            raise ServerConnectionError(
                f"Failed to connect to MCP server {self.script_path}: {exc}"
            ) from exc
        return self._registry

    async def close(self) -> None:
        await self._stack.aclose()

    async def __aenter__(self) -> McpSession:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
