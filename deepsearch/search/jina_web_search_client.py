"""Jina Search (s.jina.ai) client, the default provider.

Why: Jina returns title/url/description for the top hits in one JSON call
and bills in tokens, which lets the step loop charge search cost against the
same budget as the LLM calls.
"""

import logging
import os
import time
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from deepsearch.search.abstract_search_client_interface import AbstractSearchClientInterface

logger = logging.getLogger(__name__)

JINA_SEARCH_URL = "https://s.jina.ai/"


class JinaWebSearchClient(AbstractSearchClientInterface):
    """Jina Search over HTTP; reports billed tokens in the ``tokens`` field."""

    service_name = "jina"

    def __init__(self, api_key: str, timeout: int = 30):
        self.api_key = api_key
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: dict) -> Optional["JinaWebSearchClient"]:
        """Factory: ``JINA_API_KEY`` env or ``api_keys.jina_api_key``."""
        key = os.getenv("JINA_API_KEY") or (config.get("api_keys") or {}).get("jina_api_key", "")
        if not key or key.startswith("YOUR_"):
            return None
        return cls(api_key=key, timeout=int((config.get("search") or {}).get("timeout", 30)))

    def execute_search_query(self, query: str, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        start_time = time.time()
        logger.info("Jina search: query=%s", query[:80])
        try:
            response = requests.get(
                JINA_SEARCH_URL + quote(query),
                headers={
                    "Accept": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                    "X-Retain-Images": "none",
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Jina search error: %s", exc)
            return self._error_result(query, str(exc))

        items = data.get("data") or []
        results = [
            {
                "title": item.get("title", ""),
                "url": item.get("url", ""),
                "description": item.get("description", "") or item.get("content", "")[:500],
            }
            for item in items
            if isinstance(item, dict)
        ]
        tokens = int(((data.get("meta") or {}).get("usage") or {}).get("tokens") or 0)
        if not tokens:
            tokens = sum(int((item.get("usage") or {}).get("tokens") or 0)
                         for item in items if isinstance(item, dict))

        elapsed_ms = int((time.time() - start_time) * 1000)
        logger.info("Jina search ok: elapsed_ms=%d query=%s results=%d tokens=%d",
                    elapsed_ms, query[:80], len(results), tokens)
        return self._ok_result(query, results, tokens)
