"""toolchat/errors.py

Exception taxonomy shared by the toolchat client and the search tools server.
"""

from __future__ import annotations


class ToolchatError(Exception):
    """Base class for every error raised by toolchat."""


class ConfigurationError(ToolchatError):
    """A required setting (usually an API credential) is missing or invalid."""


class ServerConnectionError(ToolchatError, ConnectionError):
    """The MCP tool server could not be reached or exposes no tools."""


class UnknownToolError(ToolchatError, LookupError):
    """A tool was requested by name but is not in the registry."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class ToolExecutionError(ToolchatError):
    """A tool call failed, and its fallback (if any) failed too.

    Attributes:
        tool: Name of the tool whose execution failed.
        cause: The underlying exception, when there is one.
    """

    def __init__(
        self, tool: str, message: str, cause: BaseException | None = None
    ) -> None:
        super().__init__(f"Tool '{tool}' failed: {message}")
        self.tool = tool
        self.cause = cause


class ToolArgumentsError(ToolExecutionError):
    """Tool arguments do not satisfy the tool's input schema."""


class UpstreamError(ToolchatError):
    """The completion endpoint call failed or timed out."""


class ProviderError(ToolchatError):
    """An HTTP search or weather provider failed or returned an unusable payload."""


class WeatherDataError(ProviderError):
    """A weather payload is missing fields the report needs."""
