"""Serper (google.serper.dev) client: Google organic results as JSON."""

import logging
import os
import time
from typing import Any, Dict, Optional

import requests

from deepsearch.search.abstract_search_client_interface import AbstractSearchClientInterface

logger = logging.getLogger(__name__)

SERPER_SEARCH_URL = "https://google.serper.dev/search"


class SerperGoogleSearchClient(AbstractSearchClientInterface):
    """Google results through Serper; maps ``organic[].link/snippet``."""

    service_name = "serper"

    def __init__(self, api_key: str, count: int = 10, timeout: int = 15):
        self.api_key = api_key
        self.count = count
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: dict) -> Optional["SerperGoogleSearchClient"]:
        """Factory: ``SERPER_API_KEY`` env or ``api_keys.serper_api_key``."""
        key = os.getenv("SERPER_API_KEY") or (config.get("api_keys") or {}).get("serper_api_key", "")
        if not key or key.startswith("YOUR_"):
            return None
        search_cfg = config.get("search") or {}
        return cls(api_key=key, count=int(search_cfg.get("count", 10)),
                   timeout=int(search_cfg.get("timeout", 15)))

    def execute_search_query(self, query: str, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        start_time = time.time()
        logger.info("Serper search: query=%s", query[:80])
        try:
            response = requests.post(
                SERPER_SEARCH_URL,
                headers={"X-API-KEY": self.api_key, "Content-Type": "application/json"},
                json={"q": query, "num": self.count, "autocorrect": False},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Serper search error: %s", exc)
            return self._error_result(query, str(exc))

        results = [
            {"title": item.get("title", ""), "url": item.get("link", ""),
             "description": item.get("snippet", "")}
            for item in data.get("organic", [])
        ]
        elapsed_ms = int((time.time() - start_time) * 1000)
        logger.info("Serper search ok: elapsed_ms=%d query=%s results=%d",
                    elapsed_ms, query[:80], len(results))
        return self._ok_result(query, results)
