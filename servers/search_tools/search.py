"""servers/search_tools/search.py

Web search providers for the search tools server.

Brave is the default (API token required); DuckDuckGo needs no key and runs
the synchronous ``ddgs`` client in a worker thread.
"""

from __future__ import annotations

# Standard Library
import asyncio
import logging
from typing import Protocol

# Third-Party Libraries
import httpx
from ddgs import DDGS
from pydantic import BaseModel

# Local Modules
from toolchat.config import Settings
from toolchat.errors import ProviderError

logger = logging.getLogger(__name__)

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"


class SearchResult(BaseModel):
    title: str
    url: str
    description: str = ""


class SearchProvider(Protocol):
    async def search(self, query: str) -> list[SearchResult]: ...


class BraveSearch:
    """Brave Web Search API client.

    Args:
        api_key: Brave subscription token.
        count: Results requested per query.
        timeout: Request timeout in seconds.
        client: Optional shared ``httpx.AsyncClient`` (tests pass one backed
            by ``httpx.MockTransport``).
    """

    def __init__(
        self,
        api_key: str,
        count: int = 5,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.count = count
        self.timeout = timeout
        self._client = client

    async def search(self, query: str) -> list[SearchResult]:
        logger.info("[brave_search] query=%r count=%d", query, self.count)
        headers = {
            "Accept": "application/json",
            "X-Subscription-Token": self.api_key,
        }
        params = {"q": query, "count": self.count}
        try:
            if self._client is not None:
                response = await self._client.get(
                    BRAVE_SEARCH_URL, headers=headers, params=params, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(
                        BRAVE_SEARCH_URL, headers=headers, params=params
                    )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("[brave_search] failure: %s", exc, exc_info=True)
            raise ProviderError(f"Brave search failed: {exc}") from exc
        if not isinstance(payload, dict):
            raise ProviderError("Brave search returned an unexpected payload")

        hits = (payload.get("web") or {}).get("results") or []
        results = [
            SearchResult(
                title=hit.get("title", ""),
                url=hit.get("url", ""),
                description=hit.get("description", ""),
            )
            for hit in hits
        ]
        logger.info("[brave_search] returned %d results", len(results))
        return results


class DuckDuckGoSearch:
    """Keyless search through DuckDuckGo."""

    def __init__(self, count: int = 5) -> None:
        self.count = count

    def _search_sync(self, query: str) -> list[SearchResult]:
        with DDGS() as ddgs:
            return [
                SearchResult(
                    title=hit.get("title", ""),
                    url=hit.get("href", ""),
                    description=hit.get("body", ""),
                )
                for hit in ddgs.text(query, max_results=self.count)
            ]

    async def search(self, query: str) -> list[SearchResult]:
        logger.info("[ddg_search] query=%r max_results=%d", query, self.count)
        try:
            return await asyncio.to_thread(self._search_sync, query)
        except Exception as exc:
            logger.error("[ddg_search] DDG failure: %s", exc, exc_info=True)
            raise ProviderError(f"DuckDuckGo search failed: {exc}") from exc


def build_search_provider(settings: Settings) -> SearchProvider:
    """Create the provider selected by ``settings.search_provider``."""
    if settings.search_provider == "duckduckgo":
        return DuckDuckGoSearch(count=settings.search_count)
    return BraveSearch(
        api_key=settings.brave_search_api_key,
        count=settings.search_count,
        timeout=settings.http_timeout,
    )
