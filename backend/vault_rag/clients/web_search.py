"""Web search backends."""

from __future__ import annotations

from typing import Protocol

import httpx

from vault_rag.clients.http import OwnedClient, describe, send_with_retries
from vault_rag.core.errors import WebSearchError
from vault_rag.core.logging import get_logger
from vault_rag.models.entities import WebSnippet

logger = get_logger(__name__)

TAVILY_SEARCH_URL = "https://api.tavily.com/search"


class WebSearchClient(Protocol):
    async def search(self, query: str, max_results: int = 5) -> list[WebSnippet]: ...


class TavilySearchClient(OwnedClient):
    def __init__(
        self,
        api_key: str,
        url: str = TAVILY_SEARCH_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        if not api_key:
            raise WebSearchError("Tavily search requires an API key")
        self.url = url
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._init_client(client, timeout=timeout, headers={"Authorization": f"Bearer {api_key}"})

    async def search(self, query: str, max_results: int = 5) -> list[WebSnippet]:
        body = {
            "query": query,
            "search_depth": "basic",
            "max_results": max_results,
            "include_answer": False,
            "include_raw_content": False,
        }
        try:
            response = await send_with_retries(
                lambda: self._client.post(self.url, json=body),
                label="tavily search",
                attempts=self.retry_attempts,
                base_delay=self.retry_delay,
            )
            payload = response.json()
        except httpx.HTTPError as exc:
            raise WebSearchError(f"tavily search failed: {describe(exc)}") from exc
        except ValueError as exc:
            raise WebSearchError("tavily returned a non-JSON response") from exc

        snippets = [
            WebSnippet(
                title=str(item.get("title") or ""),
                url=str(item.get("url") or ""),
                snippet=str(item.get("content") or ""),
            )
            for item in payload.get("results") or []
            if item.get("url")
        ]
        logger.debug("Tavily returned %s results for query", len(snippets))
        return snippets[:max_results]


__all__ = ["WebSearchClient", "TavilySearchClient"]
