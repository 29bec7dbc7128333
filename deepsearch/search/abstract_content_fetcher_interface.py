"""Abstract page-content fetcher used by the visit action."""

from abc import ABC, abstractmethod
from typing import Any, Dict


class AbstractContentFetcherInterface(ABC):
    """Contract every page reader must fulfil."""

    service_name: str = "reader"

    @abstractmethod
    def fetch_page(self, url: str) -> Dict[str, Any]:
        """Return ``{"url", "content", "tokens"}`` for ``url``.

        Raises ContentFetchError when the page cannot be read or its content
        is empty.  Callers isolate the error per URL.
        """
        ...
