"""URL normalization for the URL ledger and the visited set.

Why: The same page shows up as ``https://www.Example.com/a/?utm_source=x#top``
from one provider and ``https://example.com/a`` from another.  Keying the
ledger and the visited set by one canonical form is what makes
"last write wins" and "never revisit" hold across providers.
"""

import logging
from typing import Any, Dict, Iterable, List
from urllib.parse import parse_qsl, quote, unquote, urlencode, urlsplit, urlunsplit

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"http": 80, "https": 443}
_TRACKING_PARAM_PREFIXES = ("utm_",)
_TRACKING_PARAMS = frozenset({"fbclid", "gclid"})


def normalize_url(url: str) -> str:
    """Return the canonical form of ``url``.

    - scheme and host lower-cased, leading ``www.`` dropped
    - default port and fragment dropped
    - tracking query params dropped, remaining params sorted
    - trailing slash on the path dropped (root path becomes empty)

    Raises ValueError for anything that is not an absolute http(s) URL.
    """
    if not isinstance(url, str) or not url.strip():
        raise ValueError("empty URL")
    raw = url.strip()
    if "://" not in raw:
        raw = "https://" + raw

    parts = urlsplit(raw)
    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS:
        raise ValueError(f"unsupported scheme: {parts.scheme!r}")
    host = (parts.hostname or "").lower()
    if not host or "." not in host and host != "localhost":
        raise ValueError(f"invalid host in URL: {url!r}")
    if host.startswith("www."):
        host = host[4:]

    try:
        port = parts.port
    except ValueError as exc:
        raise ValueError(f"invalid port in URL: {url!r}") from exc
    netloc = host
    if port and port != _DEFAULT_PORTS[scheme]:
        netloc = f"{host}:{port}"

    path = quote(unquote(parts.path), safe="/:@!$&'()*+,;=-._~")
    path = path.rstrip("/")

    params = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if not key.lower().startswith(_TRACKING_PARAM_PREFIXES)
        and key.lower() not in _TRACKING_PARAMS
    ]
    query = urlencode(sorted(params))

    return urlunsplit((scheme, netloc, path, query, ""))


def try_normalize_url(url: str, fallback_to_raw: bool = False) -> str:
    """normalize_url that returns ``""`` (or the raw string) instead of raising."""
    try:
        return normalize_url(url)
    except ValueError as exc:
        logger.debug("Cannot normalize URL %r: %s", url, exc)
        return (url or "") if fallback_to_raw else ""


def get_unvisited_urls(all_urls: Dict[str, Any], visited_urls: Iterable[str]) -> List[Any]:
    """Ledger entries whose key is not in ``visited_urls``, in ledger order."""
    visited = set(visited_urls)
    return [meta for url, meta in all_urls.items() if url not in visited]
