"""Brave Web Search client over the HTTP API.

Why: Brave has strong English-language coverage and fast responses; its
``web.results`` carry exactly the title/url/description triple we ledger.
"""

import logging
import os
import time
from typing import Any, Dict, Optional

import requests

from deepsearch.search.abstract_search_client_interface import AbstractSearchClientInterface

logger = logging.getLogger(__name__)

BRAVE_API_URL = "https://api.search.brave.com/res/v1/web/search"


class BraveWebSearchClient(AbstractSearchClientInterface):
    """Brave Web Search via the subscription-token HTTP API."""

    service_name = "brave"

    def __init__(self, api_key: str, count: int = 10, timeout: int = 15):
        self.api_key = api_key
        self.count = count
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: dict) -> Optional["BraveWebSearchClient"]:
        """Factory: ``BRAVE_API_KEY`` env or ``api_keys.brave_api_key``."""
        key = os.getenv("BRAVE_API_KEY") or (config.get("api_keys") or {}).get("brave_api_key", "")
        if not key or key.startswith("YOUR_"):
            return None
        search_cfg = config.get("search") or {}
        return cls(api_key=key, count=int(search_cfg.get("count", 10)),
                   timeout=int(search_cfg.get("timeout", 15)))

    def execute_search_query(self, query: str, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        start_time = time.time()
        logger.info("Brave search: query=%s", query[:80])
        try:
            response = requests.get(
                BRAVE_API_URL,
                headers={"Accept": "application/json", "Accept-Encoding": "gzip",
                         "X-Subscription-Token": self.api_key},
                params={"q": query, "count": self.count, "safesearch": "strict"},
                timeout=self.timeout,
            )
            if response.status_code == 429:
                logger.warning("Brave HTTP rate limited")
                return self._error_result(query, "rate_limited")
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Brave HTTP error: %s", exc)
            return self._error_result(query, str(exc))

        results = [
            {"title": item.get("title", ""), "url": item.get("url", ""),
             "description": item.get("description", "")}
            for item in (data.get("web") or {}).get("results", [])
        ]
        elapsed_ms = int((time.time() - start_time) * 1000)
        top_titles = [r["title"][:60] for r in results[:3]]
        logger.info("Brave search ok: elapsed_ms=%d query=%s results=%d top=%s",
                    elapsed_ms, query[:80], len(results), top_titles)
        return self._ok_result(query, results)
