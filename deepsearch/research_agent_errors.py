"""Exception hierarchy for the research agent.

Why: Collaborator hiccups (one search query, one URL fetch) are handled
inside the handlers and never reach the caller.  What does reach the caller
is a small set of contract violations, so they share one base class that the
HTTP adapter can map to a 500 without catching unrelated bugs.
"""


class ResearchAgentError(Exception):
    """Base class for unrecoverable research-agent failures."""


class CodingActionNotImplementedError(ResearchAgentError):
    """The oracle chose the ``coding`` action, which has no sandbox behind it."""


class ResultContractError(ResearchAgentError):
    """Result assembly was attempted on a step that is not a final answer."""


class StructuredOutputError(ResearchAgentError):
    """The LLM never produced a payload matching the requested JSON schema."""

    def __init__(self, purpose: str, attempts: int, last_errors=None):
        self.purpose = purpose
        self.attempts = attempts
        self.last_errors = list(last_errors or [])
        detail = "; ".join(self.last_errors[:3]) or "empty response"
        super().__init__(
            f"{purpose}: no valid structured output after {attempts} attempt(s) ({detail})"
        )


class ContentFetchError(Exception):
    """A single URL could not be turned into non-empty page content.

    Not a ResearchAgentError: the visit handler isolates it per URL.
    """

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"{url}: {reason}")
