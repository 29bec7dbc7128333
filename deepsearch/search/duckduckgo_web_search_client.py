"""DuckDuckGo Web Search client: free, no API key required.

Why: A provider that never runs out of quota, useful for local runs without
any search subscription.  The HTML lite endpoint is parsed with BeautifulSoup.
"""

import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlsplit

import requests
from bs4 import BeautifulSoup

from deepsearch.search.abstract_search_client_interface import AbstractSearchClientInterface

logger = logging.getLogger(__name__)

DUCKDUCKGO_HTML_SEARCH_URL = "https://html.duckduckgo.com/html/"


def _unwrap_duckduckgo_redirect(href: str) -> str:
    """``//duckduckgo.com/l/?uddg=<encoded>&rut=...`` -> the target URL."""
    if "uddg=" not in href:
        return href
    target = parse_qs(urlsplit(href).query).get("uddg")
    return target[0] if target else href


def parse_duckduckgo_html_results(html_text: str) -> List[Dict[str, str]]:
    """Parse the HTML lite result page into ``[{title, url, description}]``."""
    soup = BeautifulSoup(html_text, "html.parser")
    results: List[Dict[str, str]] = []
    for block in soup.select(".result"):
        link = block.select_one("a.result__a")
        if link is None:
            continue
        snippet = block.select_one(".result__snippet")
        title = link.get_text(" ", strip=True)
        description = snippet.get_text(" ", strip=True) if snippet else ""
        url = _unwrap_duckduckgo_redirect(link.get("href", ""))
        if title or description:
            results.append({"title": title, "url": url, "description": description})
    return results


class DuckDuckGoWebSearchClient(AbstractSearchClientInterface):
    """DuckDuckGo web search via the HTML lite endpoint (safe search strict)."""

    service_name = "duck"

    def __init__(self, timeout: int = 15):
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: dict) -> "DuckDuckGoWebSearchClient":
        return cls(timeout=int((config.get("search") or {}).get("timeout", 15)))

    def execute_search_query(self, query: str, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        start_time = time.time()
        logger.info("DuckDuckGo search: query=%s", query[:80])
        try:
            response = requests.post(
                DUCKDUCKGO_HTML_SEARCH_URL,
                data={"q": query, "kp": "1"},
                headers={"User-Agent": "Mozilla/5.0 (compatible; DeepSearch/1.0)"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error("DuckDuckGo search error: %s", exc)
            return self._error_result(query, str(exc))

        results = parse_duckduckgo_html_results(response.text)
        elapsed_ms = int((time.time() - start_time) * 1000)
        top_titles = [r["title"][:60] for r in results[:3]]
        logger.info("DuckDuckGo search ok: elapsed_ms=%d query=%s results=%d top=%s",
                    elapsed_ms, query[:80], len(results), top_titles)
        return self._ok_result(query, results)
