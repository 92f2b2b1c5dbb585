"""toolchat/registry.py

Registry of the tools exposed by the connected MCP server.

Loaded once per session and read-only afterwards, so it can be shared by
the invoker and the orchestrator without locking.
"""

from __future__ import annotations

# Standard Library
import logging
from collections.abc import Iterable, Iterator
from types import MappingProxyType
from typing import Any

# Local Modules
from toolchat.errors import ServerConnectionError, UnknownToolError
from toolchat.models import ToolDescriptor

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Immutable name → :class:`ToolDescriptor` mapping."""

    def __init__(self, descriptors: Iterable[ToolDescriptor]) -> None:
        tools: dict[str, ToolDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.name in tools:
                logger.warning("Duplicate tool name ignored: %s", descriptor.name)
                continue
            tools[descriptor.name] = descriptor
        self._tools = MappingProxyType(tools)

    @classmethod
    async def load(cls, client: Any) -> ToolRegistry:
        """List the tools of a connected MCP client and build the registry.

        Args:
            client: A connected ``fastmcp.Client`` (anything with an async
                ``list_tools()`` returning MCP ``Tool`` objects).

        Returns:
            The populated registry.

        Raises:
            ServerConnectionError: If listing fails or the server has no tools.
        """
        try:
            tools = await client.list_tools()
        except Exception as exc:
            logger.error("Failed to list MCP tools: %s", exc, exc_info=True)
            raise ServerConnectionError(f"Could not list tools: {exc}") from exc

        registry = cls(
            ToolDescriptor(
                name=tool.name,
                description=tool.description or "",
                input_schema=tool.inputSchema or {"type": "object", "properties": {}},
            )
            for tool in tools
        )
        if not registry:
            raise ServerConnectionError("MCP server exposes no tools")

        logger.info("Connected to server with tools: %s", registry.names())
        return registry

    def lookup(self, name: str) -> ToolDescriptor | None:
        return self._tools.get(name)

    def get(self, name: str) -> ToolDescriptor:
        """Like :meth:`lookup` but raises :class:`UnknownToolError`."""
        descriptor = self._tools.get(name)
        if descriptor is None:
            raise UnknownToolError(name)
        return descriptor

    def names(self) -> list[str]:
        return list(self._tools)

    def descriptors(self) -> list[ToolDescriptor]:
        return list(self._tools.values())

    def as_anthropic_tools(self) -> list[dict[str, Any]]:
        return [d.to_anthropic() for d in self._tools.values()]

    def as_ollama_tools(self) -> list[dict[str, Any]]:
        return [d.to_ollama() for d in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)
