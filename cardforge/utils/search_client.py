"""Tavily web search over httpx."""
from __future__ import annotations

import logging
from typing import Optional, Protocol

import httpx
from pydantic import BaseModel

logger = logging.getLogger("cardforge.search")

TAVILY_SEARCH_URL = "https://api.tavily.com/search"


class SearchHit(BaseModel):
    title: Optional[str] = ""
    content: Optional[str] = ""
    url: Optional[str] = None
    score: Optional[float] = None


class SearchClient(Protocol):
    async def search(self, query: str) -> list[SearchHit]:
        ...


class TavilySearchClient:
    def __init__(
        self,
        api_key: str,
        max_results: int = 8,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self._max_results = max_results
        self._timeout = timeout
        self._transport = transport

    async def search(self, query: str) -> list[SearchHit]:
        body = {
            "query": query,
            "search_depth": "advanced",
            "max_results": self._max_results,
            "include_answer": False,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(TAVILY_SEARCH_URL, json=body, headers=headers)
            response.raise_for_status()
            data = response.json()

        hits = [SearchHit(**item) for item in data.get("results", [])]
        logger.info("search_done | query=%.80s | hits=%d", query, len(hits))
        return hits


def tavily_factory(api_key: str) -> SearchClient:
    from cardforge.config import get_settings
    return TavilySearchClient(api_key, max_results=get_settings().search_max_results)
