"""Abstract search interface: all search backends implement this contract.

Why: Decouples the search handler from any specific provider.  Swap
Jina / Brave / DuckDuckGo / Serper through config without touching the agent.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class AbstractSearchClientInterface(ABC):
    """Contract every search backend must fulfil."""

    #: Short provider label used in logs and token accounting.
    service_name: str = "search"

    @abstractmethod
    def execute_search_query(self, query: str, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run a web search.

        Returns ``{"service", "query", "results": [{title, url, description}], "count"}``
        plus ``"error"`` when the call failed and ``"tokens"`` when the
        provider bills in tokens.  Never raises for provider-side failures.
        """
        ...

    def _error_result(self, query: str, error: str) -> Dict[str, Any]:
        return {"service": self.service_name, "query": query, "results": [], "count": 0, "error": error}

    def _ok_result(self, query: str, results: List[Dict[str, str]], tokens: int = 0) -> Dict[str, Any]:
        payload = {"service": self.service_name, "query": query, "results": results, "count": len(results)}
        if tokens:
            payload["tokens"] = tokens
        return payload
