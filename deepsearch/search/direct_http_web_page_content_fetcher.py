"""Direct HTTP page fetcher: download HTML and strip it to text locally.

Why: A zero-cost alternative to the Jina Reader for setups without a Jina
key.  Pages are fetched with ``stream=True`` so headers are inspected before
any body bytes are read; binary files, blacklisted hosts and oversized bodies
are rejected early instead of being downloaded and discarded.
"""

import logging
import os
import time
from typing import Any, Dict
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

from deepsearch.research_agent_errors import ContentFetchError
from deepsearch.search.abstract_content_fetcher_interface import AbstractContentFetcherInterface

logger = logging.getLogger(__name__)

MAX_PAGE_TEXT_LENGTH = 20000  # chars kept per page
FETCH_TIMEOUT_SECONDS = 10
MAX_RESPONSE_BYTES = 2_000_000

_BINARY_FILE_SUFFIXES = frozenset({
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".zip", ".tar", ".gz", ".bz2", ".rar", ".7z",
    ".mp3", ".mp4", ".avi", ".mov", ".wmv", ".flv", ".mkv", ".webm",
    ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".svg", ".webp", ".ico",
})

# Login walls and JS-only shells: nothing useful comes back from a plain GET
_URL_BLACKLIST_DOMAINS = frozenset({
    "facebook.com", "instagram.com", "twitter.com", "x.com",
    "linkedin.com", "tiktok.com", "youtube.com",
})

_NOISE_TAGS = ("script", "style", "noscript", "nav", "footer", "header", "aside", "form", "iframe", "svg")

_USER_AGENT = ("Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
               "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0")


def _is_url_blacklisted(url: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    if host.startswith("www.") or host.startswith("m."):
        host = host.split(".", 1)[1]
    return host in _URL_BLACKLIST_DOMAINS


def _has_binary_file_suffix(url: str) -> bool:
    _, ext = os.path.splitext(urlparse(url).path.lower())
    return ext in _BINARY_FILE_SUFFIXES


def html_to_readable_text(html_text: str) -> str:
    """Drop boilerplate tags and return the visible text, one block per line."""
    soup = BeautifulSoup(html_text, "html.parser")
    for tag in soup(_NOISE_TAGS):
        tag.decompose()
    root = soup.find("main") or soup.find("article") or soup.body or soup
    lines = (line.strip() for line in root.get_text("\n").splitlines())
    return "\n".join(line for line in lines if line)


class DirectHttpWebPageContentFetcher(AbstractContentFetcherInterface):
    """Fetches pages with requests and cleans them with BeautifulSoup."""

    service_name = "direct-http"

    def __init__(self, timeout: int = FETCH_TIMEOUT_SECONDS,
                 max_text_length: int = MAX_PAGE_TEXT_LENGTH):
        self.timeout = timeout
        self.max_text_length = max_text_length

    @classmethod
    def from_config(cls, config: dict) -> "DirectHttpWebPageContentFetcher":
        return cls(timeout=int((config.get("reader") or {}).get("timeout", FETCH_TIMEOUT_SECONDS)))

    def fetch_page(self, url: str) -> Dict[str, Any]:
        if not url or not url.startswith("http"):
            raise ContentFetchError(url, "not an http(s) URL")
        if _is_url_blacklisted(url):
            raise ContentFetchError(url, "blacklisted domain")
        if _has_binary_file_suffix(url):
            raise ContentFetchError(url, "binary file suffix")

        start_time = time.time()
        try:
            response = requests.get(
                url,
                headers={"User-Agent": _USER_AGENT, "Accept": "text/html,application/xhtml+xml"},
                timeout=self.timeout,
                allow_redirects=True,
                stream=True,
            )
        except requests.RequestException as exc:
            raise ContentFetchError(url, str(exc)) from exc

        try:
            if response.status_code != 200:
                raise ContentFetchError(url, f"HTTP {response.status_code}")
            content_type = response.headers.get("Content-Type", "").lower()
            if "html" not in content_type and "text" not in content_type:
                raise ContentFetchError(url, f"non-text content type {content_type[:40]}")
            declared_length = response.headers.get("Content-Length", "")
            if declared_length.isdigit() and int(declared_length) > MAX_RESPONSE_BYTES:
                raise ContentFetchError(url, f"response too large ({declared_length} bytes)")

            chunks = []
            bytes_read = 0
            for chunk in response.iter_content(chunk_size=65536):
                chunks.append(chunk)
                bytes_read += len(chunk)
                if bytes_read > MAX_RESPONSE_BYTES:
                    raise ContentFetchError(url, f"response exceeded {MAX_RESPONSE_BYTES} bytes")
            html_text = b"".join(chunks).decode(response.encoding or "utf-8", errors="replace")
        except requests.RequestException as exc:
            raise ContentFetchError(url, str(exc)) from exc
        finally:
            response.close()

        content = html_to_readable_text(html_text)[:self.max_text_length]
        if not content:
            raise ContentFetchError(url, "no content found")
        elapsed_ms = int((time.time() - start_time) * 1000)
        logger.info("Direct fetch ok: elapsed_ms=%d url=%s chars=%d", elapsed_ms, url[:120], len(content))
        return {"url": url, "content": content, "tokens": 0}
