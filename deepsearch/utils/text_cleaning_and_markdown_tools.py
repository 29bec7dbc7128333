"""Small text helpers: HTML stripping, line-break folding, markdown footnotes."""

import re
from typing import Any, List, Sequence, TypeVar

from bs4 import BeautifulSoup

T = TypeVar("T")

_MULTI_BLANK_LINES = re.compile(r"\n{3,}")
_WHITESPACE_RUN = re.compile(r"\s+")


def remove_html_tags(text: str) -> str:
    """Strip markup from search snippets (``<strong>`` highlights and the like)."""
    if not text:
        return ""
    if "<" not in text:
        return text
    return BeautifulSoup(text, "html.parser").get_text()


def remove_all_line_breaks(text: str) -> str:
    """Fold every line break (and the whitespace around it) into a single space."""
    if not text:
        return ""
    return _WHITESPACE_RUN.sub(" ", text.replace("\r", "\n")).strip()


def remove_extra_line_breaks(text: str) -> str:
    """Collapse runs of blank lines to one blank line."""
    if not text:
        return ""
    return _MULTI_BLANK_LINES.sub("\n\n", text)


def choose_k(items: Sequence[T], k: int) -> List[T]:
    """First ``k`` items.  Deterministic so replays and tests see the same picks."""
    if k <= 0:
        return []
    return list(items[:k])


def build_md_from_answer(answer: Any) -> str:
    """Render an AnswerAction as markdown with numbered footnote references.

    ``answer`` needs ``.answer`` and ``.references`` (each with ``exact_quote``,
    ``url`` and optional ``title``).  Without references the answer text is
    returned as is.
    """
    body = (getattr(answer, "answer", "") or "").strip()
    references = list(getattr(answer, "references", None) or [])
    if not references:
        return body

    markers = "".join(f"[^{i}]" for i in range(1, len(references) + 1))
    footnotes = []
    for i, ref in enumerate(references, start=1):
        quote = remove_all_line_breaks(getattr(ref, "exact_quote", "") or "")
        url = getattr(ref, "url", "") or ""
        title = getattr(ref, "title", "") or url
        source = f"[{title}]({url})" if url else title
        footnotes.append(f"[^{i}]: {quote} {source}".rstrip() if quote else f"[^{i}]: {source}")
    return f"{body} {markers}\n\n" + "\n".join(footnotes)
