import pytest

from deepsearch.agents.research_session_state import SearchResultMeta
from deepsearch.agents.step_action_types_and_schema import AnswerAction, Reference
from deepsearch.utils.text_cleaning_and_markdown_tools import (
    build_md_from_answer,
    choose_k,
    remove_all_line_breaks,
    remove_extra_line_breaks,
    remove_html_tags,
)
from deepsearch.utils.url_normalization_tools import get_unvisited_urls, normalize_url, try_normalize_url


@pytest.mark.parametrize("raw, expected", [
    ("https://www.Example.com/a/b/", "https://example.com/a/b"),
    ("HTTP://example.com:80/x", "http://example.com/x"),
    ("https://example.com:8443/x", "https://example.com:8443/x"),
    ("https://example.com/a?utm_source=x&b=2&a=1&fbclid=z#frag", "https://example.com/a?a=1&b=2"),
    ("example.com/page", "https://example.com/page"),
    ("https://example.com/", "https://example.com"),
])
def test_normalize_url(raw, expected):
    assert normalize_url(raw) == expected


@pytest.mark.parametrize("raw", ["", "ftp://example.com/file", "https://nodot/path", "   "])
def test_normalize_url_rejects_invalid(raw):
    with pytest.raises(ValueError):
        normalize_url(raw)


def test_try_normalize_url_fallbacks():
    assert try_normalize_url("ftp://x.org") == ""
    assert try_normalize_url("ftp://x.org", fallback_to_raw=True) == "ftp://x.org"


def test_get_unvisited_urls_keeps_ledger_order():
    ledger = {
        "https://a.com": SearchResultMeta("A", "https://a.com"),
        "https://b.com": SearchResultMeta("B", "https://b.com"),
        "https://c.com": SearchResultMeta("C", "https://c.com"),
    }
    assert [m.title for m in get_unvisited_urls(ledger, ["https://b.com"])] == ["A", "C"]


def test_text_cleaning_helpers():
    assert remove_html_tags("<strong>Jina</strong> AI") == "Jina AI"
    assert remove_html_tags("plain") == "plain"
    assert remove_all_line_breaks("a\n\n b\r\nc ") == "a b c"
    assert remove_extra_line_breaks("a\n\n\n\nb\n\nc") == "a\n\nb\n\nc"


def test_choose_k_is_deterministic():
    assert choose_k(["a", "b", "c"], 2) == ["a", "b"]
    assert choose_k(["a"], 5) == ["a"]
    assert choose_k(["a"], 0) == []


def test_build_md_from_answer_renders_footnotes():
    answer = AnswerAction(think="", answer="Han Xiao is the CEO.", references=[
        Reference(exact_quote="Han Xiao,\nCEO", url="https://jina.ai/about", title="About Jina"),
        Reference(exact_quote="", url="https://example.com/x"),
    ])

    md = build_md_from_answer(answer)

    assert md == (
        "Han Xiao is the CEO. [^1][^2]\n\n"
        "[^1]: Han Xiao, CEO [About Jina](https://jina.ai/about)\n"
        "[^2]: [https://example.com/x](https://example.com/x)"
    )


def test_build_md_from_answer_without_references():
    assert build_md_from_answer(AnswerAction(think="", answer=" Hello! ")) == "Hello!"
