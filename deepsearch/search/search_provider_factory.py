"""Pick the search provider and page reader named in config.yaml."""

import logging

from deepsearch.search.abstract_content_fetcher_interface import AbstractContentFetcherInterface
from deepsearch.search.abstract_search_client_interface import AbstractSearchClientInterface
from deepsearch.search.brave_web_search_client import BraveWebSearchClient
from deepsearch.search.direct_http_web_page_content_fetcher import DirectHttpWebPageContentFetcher
from deepsearch.search.duckduckgo_web_search_client import DuckDuckGoWebSearchClient
from deepsearch.search.jina_reader_content_fetcher import JinaReaderContentFetcher
from deepsearch.search.jina_web_search_client import JinaWebSearchClient
from deepsearch.search.serper_google_search_client import SerperGoogleSearchClient

logger = logging.getLogger(__name__)

SEARCH_PROVIDERS = {
    "jina": JinaWebSearchClient,
    "brave": BraveWebSearchClient,
    "duck": DuckDuckGoWebSearchClient,
    "serper": SerperGoogleSearchClient,
}

READER_PROVIDERS = {
    "jina": JinaReaderContentFetcher,
    "direct": DirectHttpWebPageContentFetcher,
}


def build_search_client(config: dict) -> AbstractSearchClientInterface:
    """Instantiate ``search.provider``; raises RuntimeError if it cannot be built."""
    provider = str((config.get("search") or {}).get("provider", "jina")).lower()
    client_cls = SEARCH_PROVIDERS.get(provider)
    if client_cls is None:
        raise RuntimeError(f"Unknown search provider {provider!r}; expected one of {sorted(SEARCH_PROVIDERS)}")
    client = client_cls.from_config(config)
    if client is None:
        raise RuntimeError(f"Cannot create {provider} search client: check api_keys in config.yaml")
    logger.info("Search provider: %s", provider)
    return client


def build_content_fetcher(config: dict) -> AbstractContentFetcherInterface:
    """Instantiate ``reader.provider``, falling back to direct HTTP without a Jina key."""
    provider = str((config.get("reader") or {}).get("provider", "jina")).lower()
    fetcher_cls = READER_PROVIDERS.get(provider)
    if fetcher_cls is None:
        raise RuntimeError(f"Unknown reader provider {provider!r}; expected one of {sorted(READER_PROVIDERS)}")
    fetcher = fetcher_cls.from_config(config)
    if fetcher is None:
        logger.warning("Reader %s unavailable (missing key), using direct HTTP fetcher", provider)
        fetcher = DirectHttpWebPageContentFetcher.from_config(config)
    logger.info("Reader provider: %s", fetcher.service_name)
    return fetcher
