"""Per-handler behaviour: each handler returns a SessionUpdate that is applied here."""

import pytest

from conftest import (
    ExactDeduplicator,
    FakeErrorAnalyzer,
    FakeEvaluator,
    FakeFetcher,
    FakeSearchClient,
    IdentityRewriter,
)
from deepsearch.agents.answer_action_handler import AnswerActionHandler
from deepsearch.agents.coding_action_handler import CodingActionHandler
from deepsearch.agents.reflect_action_handler import ReflectActionHandler
from deepsearch.agents.research_session_state import KNOWLEDGE_QA, KNOWLEDGE_SIDE_INFO, KNOWLEDGE_URL
from deepsearch.agents.search_action_handler import SearchActionHandler
from deepsearch.agents.session_update import apply_session_update
from deepsearch.agents.step_action_types_and_schema import (
    AnswerAction,
    CodingAction,
    ReflectAction,
    SearchAction,
    VisitAction,
)
from deepsearch.agents.visit_action_handler import VisitActionHandler
from deepsearch.research_agent_errors import CodingActionNotImplementedError
from deepsearch.utils.action_history_tracker import ActionTracker
from deepsearch.utils.token_usage_tracker import TokenTracker


def _search_handler(search_client, deduplicator=None, sleeps=None):
    return SearchActionHandler(
        deduplicator or ExactDeduplicator(), IdentityRewriter(), search_client,
        ActionTracker(), TokenTracker(), step_sleep=0.5,
        sleep_fn=(sleeps.append if sleeps is not None else (lambda _s: None)),
    )


# ── Search ──────────────────────────────────────────────────────────────

def test_search_dedups_queries_before_calling_the_provider(session):
    search_client = FakeSearchClient()
    handler = _search_handler(search_client)
    action = SearchAction(think="ceo", search_requests=[
        "jina ai ceo", "Jina AI CEO", "jina  ai ceo", "jina ai founder", "JINA AI founder"])

    update = handler.handle(session, action)
    apply_session_update(session, update)

    assert search_client.queries == ["jina ai ceo", "jina ai founder"]
    assert set(session.all_urls) == {"https://example.com/jina-ai-ceo", "https://example.com/jina-ai-founder"}
    assert session.all_keywords == ["jina ai ceo", "jina ai founder"]
    side_info = [k for k in session.all_knowledge if k.type == KNOWLEDGE_SIDE_INFO]
    assert side_info[0].question == 'What do Internet say about "jina ai ceo"?'
    assert side_info[0].answer == "jina ai ceo snippet"


def test_search_ledger_keeps_the_last_metadata_for_a_url(session):
    search_client = FakeSearchClient({
        "first": [{"title": "Old title", "url": "https://www.jina.ai/about/", "description": "old"}],
        "second": [{"title": "New title", "url": "https://jina.ai/about?utm_source=x", "description": "new"}],
    })
    handler = _search_handler(search_client)

    apply_session_update(session, handler.handle(session, SearchAction(think="", search_requests=["first", "second"])))

    assert list(session.all_urls) == ["https://jina.ai/about"]
    assert session.all_urls["https://jina.ai/about"].title == "New title"


def test_search_isolates_a_failing_query_and_sleeps_after_each(session):
    sleeps = []
    search_client = FakeSearchClient({"broken": "HTTP 500"})
    handler = _search_handler(search_client, sleeps=sleeps)

    update = handler.handle(session, SearchAction(think="", search_requests=["broken", "working"]))
    apply_session_update(session, update)

    assert search_client.queries == ["broken", "working"]
    assert sleeps == [0.5, 0.5]
    assert session.all_keywords == ["working"]
    assert session.allow_search is True


def test_search_with_only_repeated_keywords_disables_search_permanently(session):
    session.all_keywords.append("jina ai ceo")
    search_client = FakeSearchClient()
    handler = _search_handler(search_client)

    apply_session_update(session, handler.handle(session, SearchAction(think="", search_requests=["jina ai ceo"])))

    assert search_client.queries == []
    assert session.allow_search is False
    assert "search" in session.permanently_disabled
    assert "you have already searched for these keywords" in session.diary_context[-1]


def test_search_tracks_provider_tokens(session):
    tokens = TokenTracker()
    handler = SearchActionHandler(ExactDeduplicator(), IdentityRewriter(), FakeSearchClient(tokens=42),
                                  ActionTracker(), tokens, step_sleep=0)

    handler.handle(session, SearchAction(think="", search_requests=["jina"]))

    assert tokens.get_usage_breakdown()["search"]["total"] == 42


# ── Visit ───────────────────────────────────────────────────────────────

def test_visit_keeps_successful_pages_and_marks_every_attempt_visited(session):
    urls = ["https://a.example.com/1", "https://b.example.com/2", "https://c.example.com/3"]
    fetcher = FakeFetcher(failing={"https://b.example.com/2"})
    handler = VisitActionHandler(fetcher, ActionTracker(), TokenTracker())

    apply_session_update(session, handler.handle(session, VisitAction(think="read", url_targets=urls)))

    url_knowledge = [k for k in session.all_knowledge if k.type == KNOWLEDGE_URL]
    assert len(url_knowledge) == 2
    assert {k.references[0] for k in url_knowledge} == {urls[0], urls[2]}
    assert session.visited_urls.to_list() == urls
    assert session.allow_read is True


def test_visit_never_refetches_a_visited_url(session):
    session.visited_urls.add("https://a.example.com/1")
    fetcher = FakeFetcher()
    handler = VisitActionHandler(fetcher, ActionTracker(), TokenTracker())

    update = handler.handle(session, VisitAction(think="", url_targets=["https://www.a.example.com/1/"]))
    apply_session_update(session, update)

    assert fetcher.fetched == []
    assert session.allow_read is False
    assert "visit" not in session.permanently_disabled


def test_visit_caps_urls_per_step(session):
    fetcher = FakeFetcher()
    handler = VisitActionHandler(fetcher, ActionTracker(), TokenTracker())
    urls = [f"https://example.com/page-{i}" for i in range(6)]

    handler.handle(session, VisitAction(think="", url_targets=urls))

    assert sorted(fetcher.fetched) == sorted(urls[:4])


def test_visit_all_failures_disables_visit_permanently(session):
    fetcher = FakeFetcher(failing={"https://example.com/x"})
    handler = VisitActionHandler(fetcher, ActionTracker(), TokenTracker())

    apply_session_update(session, handler.handle(session, VisitAction(think="", url_targets=["https://example.com/x"])))

    assert session.allow_read is False
    assert "visit" in session.permanently_disabled
    assert session.visited_urls.to_list() == ["https://example.com/x"]


def test_visit_tracks_reader_tokens(session):
    tokens = TokenTracker()
    handler = VisitActionHandler(FakeFetcher(tokens=7), ActionTracker(), tokens)

    handler.handle(session, VisitAction(think="", url_targets=["https://example.com/a", "https://example.com/b"]))

    assert tokens.get_usage_breakdown()["read"] == {"total": 14, "by_provider": {"fake-reader": 14}}


# ── Reflect ─────────────────────────────────────────────────────────────

def test_reflect_enqueues_new_questions_followed_by_root(session):
    session.gaps.pop_next()
    handler = ReflectActionHandler(ExactDeduplicator())

    apply_session_update(session, handler.handle(session, ReflectAction(
        think="gaps", questions_to_answer=["who founded jina ai?", "where is jina ai?", "when?"])))

    assert session.gaps.snapshot() == ["who founded jina ai?", "where is jina ai?", session.root_question]
    assert session.all_questions == ["who founded jina ai?", "where is jina ai?"]
    assert session.allow_reflect is True


def test_reflect_with_only_asked_questions_leaves_queue_unchanged(session):
    session.all_questions.append("who founded jina ai?")
    before = session.gaps.snapshot()
    handler = ReflectActionHandler(ExactDeduplicator())

    apply_session_update(session, handler.handle(session, ReflectAction(
        think="", questions_to_answer=["Who founded Jina AI?"])))

    assert session.gaps.snapshot() == before
    assert session.allow_reflect is False
    assert "reflect" in session.permanently_disabled


# ── Answer ──────────────────────────────────────────────────────────────

def _answer_handler(evaluator, analyzer=None, max_bad_attempts=3):
    return AnswerActionHandler(evaluator, analyzer or FakeErrorAnalyzer(), ActionTracker(), max_bad_attempts)


def test_sub_question_answer_that_passes_becomes_knowledge(session):
    session.current_question = "who founded jina ai?"
    handler = _answer_handler(FakeEvaluator(default=True))

    apply_session_update(session, handler.handle(session, AnswerAction(think="", answer="Han Xiao")))

    assert session.all_knowledge[-1].type == KNOWLEDGE_QA
    assert session.all_knowledge[-1].question == "who founded jina ai?"
    assert session.this_step.is_final is False
    assert session.bad_attempts == 0


def test_sub_question_answer_that_fails_only_adds_a_diary_note(session):
    session.current_question = "who founded jina ai?"
    handler = _answer_handler(FakeEvaluator(default=False))

    apply_session_update(session, handler.handle(session, AnswerAction(think="", answer="not sure")))

    assert session.all_knowledge == []
    assert session.bad_attempts == 0
    assert session.gaps.snapshot() == [session.root_question]
    assert "sub-question" in session.diary_context[-1]


def test_root_answer_evaluated_with_memoized_criteria_and_visited_urls(session):
    session.evaluation_metrics[session.root_question] = ["definitive", "freshness"]
    session.visited_urls.add("https://jina.ai/about")
    evaluator = FakeEvaluator(default=True)
    handler = _answer_handler(evaluator)

    update = handler.handle(session, AnswerAction(think="", answer="Han Xiao"))

    assert evaluator.answer_calls[0]["criteria"] == ["definitive", "freshness"]
    assert evaluator.answer_calls[0]["visited_urls"] == ["https://jina.ai/about"]
    assert update.this_step.is_final is True


def test_root_failure_at_ceiling_only_counts_the_rejection(session):
    session.bad_attempts = 3
    session.diary_context.append("earlier step")
    analyzer = FakeErrorAnalyzer(questions=["q?"])
    handler = _answer_handler(FakeEvaluator(default=False), analyzer)

    apply_session_update(session, handler.handle(session, AnswerAction(think="", answer="nope")))

    assert session.bad_attempts == 4
    assert analyzer.calls == []
    assert session.bad_context == []
    assert session.diary_context == ["earlier step"]
    assert session.this_step.is_final is False


def test_root_failure_feeds_the_failure_entry_to_the_analyzer(session):
    session.diary_context.append("At step 1, you searched.")
    analyzer = FakeErrorAnalyzer()
    handler = _answer_handler(FakeEvaluator(default=False), analyzer)

    apply_session_update(session, handler.handle(session, AnswerAction(think="", answer="nope")))

    assert analyzer.calls[0][0] == "At step 1, you searched."
    assert "evaluator thinks it is not a good answer" in analyzer.calls[0][1]
    assert session.bad_context[0].improvement == "improve"
    assert session.all_knowledge[0].answer == "nope"


# ── Coding ──────────────────────────────────────────────────────────────

def test_coding_handler_always_raises(session):
    with pytest.raises(CodingActionNotImplementedError):
        CodingActionHandler().handle(session, CodingAction(think="", coding_issue="sum 1..10"))
