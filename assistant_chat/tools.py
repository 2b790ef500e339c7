"""Tools the assistant can run before answering.

Every tool returns a tagged result, :class:`ToolSuccess` or
:class:`ToolFailure`, so callers can branch on the type instead of
inspecting loosely shaped JSON.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Union

import requests

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolSuccess:
    data: Any


@dataclass(frozen=True)
class ToolFailure:
    message: str


ToolResult = Union[ToolSuccess, ToolFailure]


class KnowledgeSearch(Protocol):
    def search(self, query: str, top_k: int = 3) -> List[Dict[str, Any]]:
        ...


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    handler: Callable[[Dict[str, Any]], ToolResult]


class ToolExecutor:
    """Dispatches tool calls by name."""

    def __init__(
        self,
        knowledge: Optional[KnowledgeSearch] = None,
        *,
        request_timeout: int = 15,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.knowledge = knowledge
        self.request_timeout = request_timeout
        self.http = session or requests.Session()
        self._tools: Dict[str, ToolSpec] = {}
        self.register(
            ToolSpec(
                "query_database",
                "Query user profile data such as name or email.",
                self._query_database,
            )
        )
        self.register(
            ToolSpec(
                "search_knowledge",
                "Search the knowledge base for documents relevant to a query.",
                self._search_knowledge,
            )
        )
        self.register(
            ToolSpec(
                "call_api",
                "Make an HTTP request to an external API (weather, news, ...).",
                self._call_api,
            )
        )

    def register(self, spec: ToolSpec) -> None:
        self._tools[spec.name] = spec

    def describe(self) -> List[Dict[str, str]]:
        return [{"name": s.name, "description": s.description} for s in self._tools.values()]

    def execute(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        spec = self._tools.get(name)
        if spec is None:
            return ToolFailure(f"Unknown tool: {name}")

        start = time.perf_counter()
        try:
            result = spec.handler(arguments or {})
        except Exception as exc:
            logger.exception("Tool %s raised an error", name)
            result = ToolFailure(str(exc) or "Tool execution failed")
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Tool %s finished in %.0fms (success=%s)",
            name,
            elapsed_ms,
            isinstance(result, ToolSuccess),
        )
        return result

    # Demo profile source; there is no user database behind this service.
    @staticmethod
    def _query_database(arguments: Dict[str, Any]) -> ToolResult:
        query = str(arguments.get("query") or "").lower()
        if "profile" in query or "user" in query or "me" in query:
            return ToolSuccess(
                {
                    "sub": "demo-user-123",
                    "email": "demo@example.com",
                    "name": "Demo User",
                    "created_at": datetime.now(timezone.utc).isoformat(),
                }
            )
        if "email" in query:
            return ToolSuccess({"email": "demo@example.com"})
        return ToolFailure("Could not understand query. Try asking about profile or email.")

    def _search_knowledge(self, arguments: Dict[str, Any]) -> ToolResult:
        if self.knowledge is None:
            return ToolFailure("Knowledge base is not configured")
        query = str(arguments.get("query") or "").strip()
        if not query:
            return ToolFailure("query must not be empty")
        limit = int(arguments.get("limit") or 3)
        results = self.knowledge.search(query, top_k=limit)
        return ToolSuccess(
            {
                "results": [
                    {"text": r.get("text", ""), "score": r.get("score", 0.0), "metadata": r.get("metadata", {})}
                    for r in results
                ],
                "count": len(results),
            }
        )

    def _call_api(self, arguments: Dict[str, Any]) -> ToolResult:
        url = arguments.get("url")
        if not url:
            return ToolFailure("url is required")
        method = str(arguments.get("method") or "GET").upper()
        headers = {"Content-Type": "application/json"}
        headers.update(arguments.get("headers") or {})
        body = arguments.get("body") if method in ("POST", "PUT") else None

        try:
            response = self.http.request(
                method, url, headers=headers, json=body, timeout=self.request_timeout
            )
        except requests.RequestException as exc:
            logger.warning("call_api request to %s failed: %s", url, exc)
            return ToolFailure(str(exc))

        try:
            data: Any = response.json()
        except ValueError:
            data = response.text
        if not response.ok:
            return ToolFailure(f"API call failed with status {response.status_code}")
        return ToolSuccess({"status": response.status_code, "data": data})
