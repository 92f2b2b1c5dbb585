"""servers/search_tools/server.py

FastMCP server providing the toolchat tools over stdio:

  - search  : web search (Brave, or DuckDuckGo without a key)
  - chat    : answer a question grounded on search results
  - weather : French weather report from OpenWeatherMap

Never print() to stdout here: it is the MCP channel.  Logging goes to stderr.

Run with:
    python servers/search_tools/server.py
"""

from __future__ import annotations

# Standard Library
import json
import logging
import sys

# Third-Party Libraries
from dotenv import load_dotenv
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import BaseModel, ConfigDict, Field

# Local Modules
from servers.search_tools.search import SearchProvider, SearchResult, build_search_provider
from servers.search_tools.weather import OpenWeatherClient
from toolchat.completion import CompletionBackend, build_completion
from toolchat.config import Settings
from toolchat.errors import ConfigurationError, ToolchatError
from toolchat.models import Message

logger = logging.getLogger("search-tools")

NO_ANSWER = "I apologize, but I couldn't generate a proper response."


class ChatContext(BaseModel):
    """Optional grounding context for the ``chat`` tool."""

    model_config = ConfigDict(populate_by_name=True)

    search_results: list[SearchResult] = Field(
        default_factory=list,
        alias="searchResults",
        description="Search results to ground the answer on.",
    )


def build_chat_prompt(message: str, results: list[SearchResult]) -> str:
    """Prompt asking the model to answer ``message`` from ``results``."""
    listing = "\n\n".join(f"- {r.title}\n  {r.description}\n  {r.url}" for r in results)
    return (
        f'Here are some search results about "{message}":\n\n{listing}\n\n'
        "Please provide a comprehensive answer based on these results."
    )


def create_server(
    settings: Settings,
    search_provider: SearchProvider | None = None,
    weather_client: OpenWeatherClient | None = None,
    completion: CompletionBackend | None = None,
) -> FastMCP:
    """Build the FastMCP server with its three tools.

    Args:
        settings: Credentials and provider choices.
        search_provider: Overrides the provider picked from ``settings``.
        weather_client: Overrides the OpenWeatherMap client.
        completion: Overrides the completion backend used by ``chat``.
            Built on first use otherwise, so the server starts without an
            Anthropic key.

    Returns:
        The configured server.
    """
    mcp: FastMCP = FastMCP(
        "toolchat-search-tools",
        instructions=(
            "Provides web search, search-grounded answers and French weather "
            "reports for toolchat."
        ),
    )
    search = search_provider or build_search_provider(settings)
    weather = weather_client or OpenWeatherClient(
        api_key=settings.openweather_api_key, timeout=settings.http_timeout
    )
    backend: dict[str, CompletionBackend] = {}
    if completion is not None:
        backend["chat"] = completion

    @mcp.tool(name="search")
    async def search_tool(
        query: str = Field(..., description="The search query"),
    ) -> str:
        """Search the web and return the top results as JSON."""
        try:
            results = await search.search(query)
        except ToolchatError as exc:
            raise ToolError(str(exc)) from exc
        payload = {"results": [r.model_dump() for r in results]}
        return json.dumps(payload, indent=2, ensure_ascii=False)

    @mcp.tool(name="chat")
    async def chat_tool(
        message: str = Field(..., description="The message to send to the model"),
        context: ChatContext | None = Field(
            None, description="Optional context with search results"
        ),
    ) -> str:
        """Answer a question using the given search results."""
        results = context.search_results if context else []
        if "chat" not in backend:
            try:
                settings.require_client_credentials()
            except ConfigurationError as exc:
                raise ToolError(str(exc)) from exc
            backend["chat"] = build_completion(settings)

        try:
            response = await backend["chat"].complete(
                [Message.user(build_chat_prompt(message, results))],
                tools=[],
                max_tokens=settings.max_tokens,
            )
        except ToolchatError as exc:
            raise ToolError(str(exc)) from exc

        first = response.content[0] if response.content else None
        if first is not None and first.type == "text":
            return first.text
        return NO_ANSWER

    @mcp.tool(name="weather")
    async def weather_tool(
        city: str = Field(..., description="City name, e.g. 'Chelles'"),
        postal_code: str = Field("", description="Postal code, if known"),
    ) -> str:
        """Get current weather and a two-day forecast for a French city."""
        if not city.strip():
            raise ToolError("City must not be empty")
        try:
            report = await weather.report(city, postal_code)
        except ToolchatError as exc:
            raise ToolError(str(exc)) from exc
        return report.text

    return mcp


def main() -> None:
    """Entry point: validate credentials and serve over stdio."""
    load_dotenv()
    settings = Settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        settings.require_server_credentials()
    except ConfigurationError as exc:
        logger.error("%s", exc)
        sys.exit(1)

    mcp = create_server(settings)
    logger.info("Search tools MCP server running on stdio")
    mcp.run()


if __name__ == "__main__":
    main()
