"""Search package: web search providers and page readers."""

from deepsearch.search.abstract_content_fetcher_interface import AbstractContentFetcherInterface
from deepsearch.search.abstract_search_client_interface import AbstractSearchClientInterface
from deepsearch.search.brave_web_search_client import BraveWebSearchClient
from deepsearch.search.direct_http_web_page_content_fetcher import DirectHttpWebPageContentFetcher
from deepsearch.search.duckduckgo_web_search_client import DuckDuckGoWebSearchClient
from deepsearch.search.jina_reader_content_fetcher import JinaReaderContentFetcher
from deepsearch.search.jina_web_search_client import JinaWebSearchClient
from deepsearch.search.search_provider_factory import build_content_fetcher, build_search_client
from deepsearch.search.serper_google_search_client import SerperGoogleSearchClient

__all__ = [
    "AbstractContentFetcherInterface",
    "AbstractSearchClientInterface",
    "BraveWebSearchClient",
    "DirectHttpWebPageContentFetcher",
    "DuckDuckGoWebSearchClient",
    "JinaReaderContentFetcher",
    "JinaWebSearchClient",
    "SerperGoogleSearchClient",
    "build_content_fetcher",
    "build_search_client",
]
