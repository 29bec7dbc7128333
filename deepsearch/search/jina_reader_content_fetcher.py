"""Jina Reader (r.jina.ai) fetcher: any URL to LLM-friendly markdown.

Why: Reader handles JS-rendered pages, PDFs and paywall-free article
extraction server side, and bills in tokens like Jina Search does.
"""

import logging
import os
import time
from typing import Any, Dict, Optional

import requests

from deepsearch.research_agent_errors import ContentFetchError
from deepsearch.search.abstract_content_fetcher_interface import AbstractContentFetcherInterface

logger = logging.getLogger(__name__)

JINA_READER_URL = "https://r.jina.ai/"


class JinaReaderContentFetcher(AbstractContentFetcherInterface):
    """POSTs the URL to Jina Reader and returns its markdown content."""

    service_name = "jina-reader"

    def __init__(self, api_key: str, timeout: int = 60):
        self.api_key = api_key
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: dict) -> Optional["JinaReaderContentFetcher"]:
        key = os.getenv("JINA_API_KEY") or (config.get("api_keys") or {}).get("jina_api_key", "")
        if not key or key.startswith("YOUR_"):
            return None
        return cls(api_key=key, timeout=int((config.get("reader") or {}).get("timeout", 60)))

    def fetch_page(self, url: str) -> Dict[str, Any]:
        start_time = time.time()
        logger.info("Jina reader: url=%s", url[:120])
        try:
            response = requests.post(
                JINA_READER_URL,
                headers={
                    "Accept": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "X-Retain-Images": "none",
                },
                json={"url": url},
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise ContentFetchError(url, str(exc)) from exc

        data = body.get("data") or {}
        content = (data.get("content") or "").strip()
        if not data.get("url") or not content:
            raise ContentFetchError(url, "no content found")

        tokens = int((data.get("usage") or {}).get("tokens") or 0)
        elapsed_ms = int((time.time() - start_time) * 1000)
        logger.info("Jina reader ok: elapsed_ms=%d url=%s chars=%d tokens=%d",
                    elapsed_ms, url[:120], len(content), tokens)
        return {"url": data["url"], "title": data.get("title", ""), "content": content, "tokens": tokens}
