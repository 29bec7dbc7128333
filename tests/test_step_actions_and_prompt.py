from datetime import datetime, timezone

import pytest

from deepsearch.agents.next_action_prompt_builder import build_next_action_prompt
from deepsearch.agents.research_session_state import (
    KNOWLEDGE_QA,
    FailedAttempt,
    GapQueue,
    KnowledgeItem,
    SearchResultMeta,
)
from deepsearch.agents.step_action_types_and_schema import (
    AnswerAction,
    SearchAction,
    VisitAction,
    build_agent_action_schema,
    parse_step_action,
    permitted_actions_from_flags,
    validate_step_action_payload,
)

ALL_ON = dict(allow_reflect=True, allow_read=True, allow_answer=True, allow_search=True, allow_coding=True)
ONLY_ANSWER = dict(allow_reflect=False, allow_read=False, allow_answer=True, allow_search=False, allow_coding=False)


def test_permitted_actions_follow_flags():
    assert permitted_actions_from_flags(**ALL_ON) == ["search", "coding", "answer", "reflect", "visit"]
    assert permitted_actions_from_flags(**ONLY_ANSWER) == ["answer"]


def test_schema_only_offers_permitted_actions():
    schema = build_agent_action_schema(**ONLY_ANSWER)

    assert schema["properties"]["action"]["enum"] == ["answer"]
    assert "answer" in schema["properties"]
    assert "search_requests" not in schema["properties"]
    assert "url_targets" not in schema["properties"]
    assert schema["required"] == ["action", "think"]


def test_schema_with_nothing_permitted_is_an_error():
    with pytest.raises(ValueError):
        build_agent_action_schema(False, False, False, False, False)


def test_parse_step_action_variants():
    search = parse_step_action({"action": "search", "think": "t", "search_requests": ["a"]}, ["search"])
    visit = parse_step_action({"action": "visit", "think": "t", "url_targets": ["https://x.com"]}, ["visit"])
    answer = parse_step_action({
        "action": "answer", "think": "t", "answer": "42",
        "references": [{"exact_quote": "q", "url": "https://x.com"}],
    }, ["answer"])

    assert isinstance(search, SearchAction) and search.search_requests == ["a"]
    assert isinstance(visit, VisitAction)
    assert isinstance(answer, AnswerAction)
    assert answer.references[0].url == "https://x.com"
    assert answer.is_final is False


def test_payload_for_a_non_permitted_action_is_rejected():
    errors = validate_step_action_payload({"action": "search", "think": "", "search_requests": ["a"]}, ["answer"])
    assert errors and "must be one of" in errors[0]
    with pytest.raises(ValueError):
        parse_step_action({"action": "search", "think": "", "search_requests": ["a"]}, ["answer"])


def test_payload_missing_its_field_is_rejected():
    errors = validate_step_action_payload({"action": "reflect", "think": ""}, ["reflect"])
    assert errors == ["missing required field for action 'reflect': questions_to_answer"]
    assert validate_step_action_payload(
        {"action": "visit", "think": "", "url_targets": "https://x.com"}, ["visit"]) == [
        "url_targets must be a list of strings"]


def test_gap_queue_returns_root_when_empty():
    queue = GapQueue("root?")
    assert queue.pop_next() == "root?"
    assert len(queue) == 0
    assert queue.pop_next() == "root?"
    queue.enqueue_with_root(["a?", "b?"])
    assert queue.snapshot() == ["a?", "b?", "root?"]


def _prompt(**overrides):
    kwargs = dict(
        diary=[], all_questions=[], all_keywords=[], bad_context=[], knowledge=[], unvisited_urls=[],
        now=datetime(2026, 10, 19, 8, 30, tzinfo=timezone.utc), **ALL_ON,
    )
    kwargs.update(overrides)
    return build_next_action_prompt(**kwargs)


def test_prompt_sections_present_only_with_content():
    prompt = _prompt()

    assert prompt.startswith("Current date: Mon, 19 Oct 2026 08:30:00 GMT")
    assert "Here is the knowledge you have gathered so far" not in prompt
    assert "You have conducted the following actions" not in prompt
    assert "you have tried the following actions but failed" not in prompt
    assert "<bad-attempts>\n\n" not in prompt and "<learned-strategy>\n" not in prompt
    for block in ("<action-visit>", "<action-coding>", "<action-search>", "<action-answer>", "<action-reflect>"):
        assert block in prompt
    assert prompt.rstrip().endswith("Respond in valid JSON format matching exact JSON schema.")


def test_prompt_renders_memory():
    prompt = _prompt(
        diary=["At step 1, you took the **search** action."],
        all_questions=["who founded jina ai?"],
        all_keywords=["jina ceo"],
        bad_context=[FailedAttempt("q", "a", "bad", "recap", "blame", "do better")],
        knowledge=[KnowledgeItem(question="who?", answer="Han", type=KNOWLEDGE_QA)],
        unvisited_urls=[SearchResultMeta("About", "https://jina.ai/about")],
    )

    assert "<knowledge-1>" in prompt
    assert "Here is the knowledge you have gathered so far" in prompt
    assert "You have conducted the following actions" in prompt
    assert "At step 1, you took the **search** action." in prompt
    assert "<bad-attempts>" in prompt and "<learned-strategy>" in prompt
    assert "do better" in prompt
    assert "<asked-questions>" in prompt
    assert '"https://jina.ai/about": "About"' in prompt
    assert "<bad-requests>\njina ceo\n</bad-requests>" in prompt


def test_beast_mode_prompt_has_only_the_forced_answer_block():
    prompt = _prompt(beast_mode=True, allow_reflect=False, allow_answer=False, allow_read=False,
                     allow_search=False, allow_coding=False)

    assert "ENGAGE MAXIMUM FORCE" in prompt
    assert "<action-search>" not in prompt
    assert "<action-reflect>" not in prompt
    assert "\n\n\n" not in prompt
