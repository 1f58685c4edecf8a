"""SEARCH tool: web research that feeds the knowledge base."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from cardforge.errors import ToolExecutionError
from cardforge.schemas.agent_schemas import ExecutionResult, ParameterType, ToolParameter, ToolType
from cardforge.tools.base import BaseTool
from cardforge.utils.search_client import SearchClient, tavily_factory

logger = logging.getLogger("cardforge.tools.search")

DEFAULT_SCORE = 0.5
MAX_SOURCES = 10


class SearchTool(BaseTool):
    tool_type = ToolType.SEARCH
    name = "Web Search"
    description = (
        "Search the web for reference material (source works, settings, genre "
        "conventions). Each query runs independently; results are added to the "
        "knowledge base."
    )
    parameters = [
        ToolParameter(name="query", type=ParameterType.ARRAY, required=True,
                      description="One query string or an array of query strings"),
    ]

    def __init__(self, client_factory: Optional[Callable[[str], SearchClient]] = None):
        self._client_factory = client_factory or tavily_factory

    def normalize(self, parameters: Dict[str, Any]) -> Dict[str, Any]:
        query = parameters.get("query")
        if isinstance(query, str):
            parameters["query"] = [query]
        return parameters

    async def do_work(self, context, parameters: Dict[str, Any]) -> ExecutionResult:
        queries = [str(q).strip() for q in parameters["query"] if str(q).strip()]
        if not queries:
            return self.failure("at least one non-empty query is required")

        api_key = context.llm_config.search_api_key
        if not api_key:
            return self.failure(
                "Tavily API key not configured. Set TAVILY_API_KEY to enable web search."
            )

        client = self._client_factory(api_key)
        entries = []
        sources: List[str] = []
        failed: List[str] = []

        for query in queries:
            try:
                hits = await client.search(query)
            except Exception as exc:
                logger.warning("search_query_failed | query=%.80s | error=%s", query, exc,
                               extra={"session_id": context.session_id, "tool": "SEARCH"})
                failed.append(f"{query}: {exc}")
                continue

            for hit in hits:
                score = hit.score if hit.score is not None else DEFAULT_SCORE
                entries.append(self.create_knowledge_entry(
                    source=f"{hit.title or 'Untitled'} (Query: {query})",
                    content=hit.content or "",
                    url=hit.url,
                    relevance=round(score * 100),
                ))
                if hit.url and hit.url not in sources:
                    sources.append(hit.url)

        if failed and len(failed) == len(queries):
            raise ToolExecutionError("all search queries failed: " + "; ".join(failed))

        return ExecutionResult.ok({
            "knowledge_entries": entries,
            "sources": sources[:MAX_SOURCES],
            "summary": _summarize(queries, entries, failed),
            "failed_queries": failed,
            "search_method": "tavily",
        })


def _summarize(queries: List[str], entries, failed: List[str]) -> str:
    lines = [f"Found {len(entries)} results for {len(queries)} queries."]
    for entry in sorted(entries, key=lambda e: e.relevance, reverse=True)[:3]:
        lines.append(f"- {entry.source}: {entry.content[:160]}")
    if failed:
        lines.append(f"{len(failed)} queries failed.")
    return "\n".join(lines)
