"""tests/conftest.py

Pytest configuration and shared fixtures for the toolchat test suite.
"""

from __future__ import annotations

# Standard Library
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, Mock

# Third-Party Libraries
import pytest
from mcp.types import CallToolResult, TextContent, Tool

# Local Modules
from toolchat.config import Settings
from toolchat.models import Completion, TextBlock, ToolDescriptor, ToolUseBlock
from toolchat.registry import ToolRegistry

WEATHER_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "city": {"type": "string"},
        "postal_code": {"type": "string", "default": ""},
    },
    "required": ["city"],
}

SEARCH_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {"query": {"type": "string"}},
    "required": ["query"],
}


@pytest.fixture
def settings() -> Settings:
    """Settings with every credential set and no .env file.

    Returns:
        A Settings instance safe for offline tests.
    """
    return Settings(
        _env_file=None,
        anthropic_api_key="test-anthropic-key",
        brave_search_api_key="test-brave-key",
        openweather_api_key="test-owm-key",
        completion_provider="anthropic",
        search_provider="brave",
        max_rounds=2,
    )


@pytest.fixture
def descriptors() -> list[ToolDescriptor]:
    """The tools the search tools server exposes."""
    return [
        ToolDescriptor("search", "Search the web", SEARCH_SCHEMA),
        ToolDescriptor("weather", "Weather report", WEATHER_SCHEMA),
        ToolDescriptor(
            "chat",
            "Answer with search results",
            {
                "type": "object",
                "properties": {"message": {"type": "string"}},
                "required": ["message"],
            },
        ),
    ]


@pytest.fixture
def registry(descriptors: list[ToolDescriptor]) -> ToolRegistry:
    return ToolRegistry(descriptors)


@pytest.fixture
def mcp_tools() -> list[Tool]:
    """MCP Tool objects as returned by ``Client.list_tools()``."""
    return [
        Tool(name="search", description="Search the web", inputSchema=SEARCH_SCHEMA),
        Tool(name="weather", description="Weather report", inputSchema=WEATHER_SCHEMA),
    ]


@pytest.fixture
def tool_result() -> Callable[..., CallToolResult]:
    """Factory for MCP ``CallToolResult`` objects."""

    def _make(*texts: str, is_error: bool = False) -> CallToolResult:
        return CallToolResult(
            content=[TextContent(type="text", text=t) for t in texts],
            isError=is_error,
        )

    return _make


@pytest.fixture
def mcp_client(mcp_tools: list[Tool]) -> Mock:
    """Mock connected fastmcp Client.

    Returns:
        Mock with async ``list_tools`` and ``call_tool_mcp``.
    """
    client = Mock()
    client.list_tools = AsyncMock(return_value=mcp_tools)
    client.call_tool_mcp = AsyncMock()
    return client


@pytest.fixture
def completion_backend() -> Mock:
    """Mock completion backend; set ``complete.side_effect`` per test."""
    backend = Mock()
    backend.model = "test-model"
    backend.complete = AsyncMock()
    return backend


@pytest.fixture
def text_completion() -> Callable[..., Completion]:
    """Factory for completions made of text blocks only."""

    def _make(*texts: str) -> Completion:
        return Completion(content=[TextBlock(text=t) for t in texts], stop_reason="end_turn")

    return _make


@pytest.fixture
def tool_completion() -> Callable[..., Completion]:
    """Factory for a completion with optional lead text then one tool request."""

    def _make(
        name: str,
        arguments: dict[str, Any],
        text: str | None = None,
        call_id: str = "toolu_01",
    ) -> Completion:
        blocks: list[TextBlock | ToolUseBlock] = []
        if text is not None:
            blocks.append(TextBlock(text=text))
        blocks.append(ToolUseBlock(id=call_id, name=name, input=arguments))
        return Completion(content=blocks, stop_reason="tool_use")

    return _make


SAMPLE_SEARCH_JSON = (
    '{"results": ['
    '{"title": "Météo Chelles", "url": "https://meteo.example/chelles", "description": "Prévisions"}, '
    '{"title": "Chelles 77500", "url": "https://weather.example/77500", "description": "Forecast"}'
    "]}"
)


@pytest.fixture
def sample_search_json() -> str:
    """Output of the ``search`` tool for a Chelles weather query."""
    return SAMPLE_SEARCH_JSON
