import json

import pytest
import requests

from conftest import ScriptedLLM
from deepsearch.agents.answer_evaluator import LLMAnswerEvaluator
from deepsearch.agents.error_analyzer import LLMErrorAnalyzer
from deepsearch.agents.next_action_oracle import LLMNextActionOracle
from deepsearch.agents.query_deduplicator import LLMQueryDeduplicator, drop_exact_duplicates
from deepsearch.agents.query_rewriter import LLMQueryRewriter
from deepsearch.agents.step_action_types_and_schema import AnswerAction, SearchAction, build_agent_action_schema
from deepsearch.llm.client import OpenAICompatibleClient
from deepsearch.llm.structured_output_generator import (
    StructuredOutputGenerator,
    extract_json_object_from_llm_text,
    validate_against_json_schema,
)
from deepsearch.research_agent_errors import StructuredOutputError
from deepsearch.utils.token_usage_tracker import TokenTracker

_SCHEMA = {
    "type": "object",
    "properties": {"think": {"type": "string"}, "pass": {"type": "boolean"}},
    "required": ["think", "pass"],
}


@pytest.mark.parametrize("text", [
    '{"think": "ok", "pass": true}',
    'Sure!\n```json\n{"think": "ok", "pass": true}\n```',
    'Here you go: {"think": "ok", "pass": true} hope it helps',
    '{"think": "ok", "pass": true,}',
    '{"think": "ok", "pass": true',
])
def test_extract_json_object_handles_common_llm_output(text):
    assert extract_json_object_from_llm_text(text) == {"think": "ok", "pass": True}


def test_extract_json_object_gives_up_on_prose():
    assert extract_json_object_from_llm_text("I cannot answer that.") is None
    assert extract_json_object_from_llm_text("") is None


def test_schema_validation_reports_problems():
    assert validate_against_json_schema({"think": "x", "pass": True}, _SCHEMA) == []
    assert validate_against_json_schema({"think": "x"}, _SCHEMA)
    assert validate_against_json_schema({"think": 1, "pass": True}, _SCHEMA)
    enum_schema = {"type": "object", "properties": {"action": {"type": "string", "enum": ["answer"]}}}
    assert validate_against_json_schema({"action": "search"}, enum_schema)


def test_generator_reprompts_with_errors_and_tracks_every_attempt():
    llm = ScriptedLLM(["not json at all", '{"think": "fine", "pass": false}'], tokens=25)
    tracker = TokenTracker()
    generator = StructuredOutputGenerator(llm, token_tracker=tracker,
                                          model_settings={"evaluator": {"temperature": 0.0, "max_tokens": 50}})

    payload = generator.generate_object("evaluator", _SCHEMA, "Evaluate.")

    assert payload == {"think": "fine", "pass": False}
    assert len(llm.requests) == 2
    assert llm.requests[0]["json_mode"] is True
    assert llm.requests[0]["max_tokens"] == 50
    assert "Respond with a single JSON object" in llm.requests[0]["system_prompt"]
    retry_messages = llm.requests[1]["messages"]
    assert retry_messages[-2] == {"role": "assistant", "content": "not json at all"}
    assert "invalid" in retry_messages[-1]["content"]
    assert tracker.get_usage_breakdown()["evaluator"] == {"total": 50, "by_provider": {"scripted": 50}}


def test_generator_raises_after_max_retries():
    llm = ScriptedLLM(["nope", "still nope", "never"])
    generator = StructuredOutputGenerator(llm, max_retries=2)

    with pytest.raises(StructuredOutputError) as excinfo:
        generator.generate_object("agent", _SCHEMA, "Decide.")

    assert excinfo.value.attempts == 3
    assert excinfo.value.purpose == "agent"


def test_generator_uses_purpose_settings():
    generator = StructuredOutputGenerator(ScriptedLLM([]), model_settings={"agent": {"temperature": 0.7}})
    assert generator.settings_for("agent") == {"temperature": 0.7, "max_tokens": 1000}
    assert generator.settings_for("dedup") == {"temperature": 0.0, "max_tokens": 1000}


def test_oracle_rejects_non_permitted_action_then_accepts():
    llm = ScriptedLLM([
        json.dumps({"action": "search", "think": "x", "search_requests": ["a"]}),
        json.dumps({"action": "answer", "think": "x", "answer": "42", "references": []}),
    ])
    oracle = LLMNextActionOracle(StructuredOutputGenerator(llm))
    schema = build_agent_action_schema(False, False, True, False, False)

    action = oracle.choose_action("prompt", schema, ["answer"])

    assert isinstance(action, AnswerAction) and action.answer == "42"
    assert len(llm.requests) == 2


def test_evaluator_builds_criteria_and_stops_at_first_failure():
    llm = ScriptedLLM([
        json.dumps({"think": "time sensitive", "needs_freshness": True, "needs_plurality": False}),
        json.dumps({"think": "clear", "pass": True}),
        json.dumps({"think": "outdated", "pass": False}),
    ])
    evaluator = LLMAnswerEvaluator(StructuredOutputGenerator(llm))

    criteria = evaluator.evaluate_question("who is the ceo of openai?")
    evaluation = evaluator.evaluate_answer("who is the ceo of openai?",
                                           AnswerAction(think="", answer="Someone"), criteria, [])

    assert criteria == ["definitive", "freshness"]
    assert evaluation.passed is False
    assert evaluation.criterion == "freshness"
    assert evaluation.reasoning == "outdated"
    assert "Current date:" in llm.requests[2]["system_prompt"]


def test_error_analyzer_returns_structured_analysis():
    llm = ScriptedLLM([json.dumps({"recap": "r", "blame": "b", "improvement": "i",
                                   "questions_to_answer": ["sub?", "  "]})])
    analysis = LLMErrorAnalyzer(StructuredOutputGenerator(llm)).analyze_steps(["step 1", "step 2"])

    assert (analysis.recap, analysis.blame, analysis.improvement) == ("r", "b", "i")
    assert analysis.questions_to_answer == ["sub?"]
    assert "step 1\nstep 2" in llm.requests[0]["messages"][0]["content"]


def test_query_rewriter_falls_back_to_the_request():
    llm = ScriptedLLM([json.dumps({"think": "t", "queries": ["jina ceo", "jina founder"]}),
                       json.dumps({"think": "t", "queries": []})])
    rewriter = LLMQueryRewriter(StructuredOutputGenerator(llm))

    queries = rewriter.rewrite_query(SearchAction(think="why", search_requests=["who runs jina", "raw request"]))

    assert queries == ["jina ceo", "jina founder", "raw request"]


def test_deduplicator_skips_llm_for_a_single_new_candidate():
    llm = ScriptedLLM([])
    dedup = LLMQueryDeduplicator(StructuredOutputGenerator(llm))

    assert dedup.dedup_queries(["a", "A ", "a"], []) == ["a"]
    assert llm.requests == []


def test_deduplicator_keeps_only_candidates_the_llm_returned():
    llm = ScriptedLLM([json.dumps({"think": "t", "unique_queries": ["jina founder", "invented query"]})])
    dedup = LLMQueryDeduplicator(StructuredOutputGenerator(llm))

    unique = dedup.dedup_queries(["jina ceo", "jina founder"], ["jina chief executive"])

    assert unique == ["jina founder"]
    assert "SetB" in llm.requests[0]["messages"][0]["content"]


def test_exact_dedup_is_stable_when_reapplied():
    existing = ["Jina CEO"]
    once = drop_exact_duplicates(["jina ceo", "jina  founder", "", "JINA FOUNDER", "jina hq"], existing)

    assert once == ["jina  founder", "jina hq"]
    assert drop_exact_duplicates(once, existing) == once


def test_llm_dedup_is_stable_when_reapplied():
    reply = json.dumps({"think": "t", "unique_queries": ["jina founder", "jina hq"]})
    llm = ScriptedLLM([reply, reply])
    dedup = LLMQueryDeduplicator(StructuredOutputGenerator(llm))
    existing = ["jina chief executive"]

    once = dedup.dedup_queries(["jina ceo", "Jina CEO", "jina founder", "jina hq"], existing)
    twice = dedup.dedup_queries(once, existing)

    assert once == ["jina founder", "jina hq"]
    assert twice == once
    assert json.dumps(once) in llm.requests[1]["messages"][0]["content"]


class _FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload or {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self):
        return self._payload


def test_openai_client_retries_rate_limit_and_reports_usage(monkeypatch):
    responses = [
        _FakeResponse(429),
        _FakeResponse(200, {"choices": [{"message": {"content": " {\"a\": 1} "}}], "usage": {"total_tokens": 33}}),
    ]
    posted = []

    def fake_post(url, headers=None, json=None, timeout=None):
        posted.append(json)
        return responses.pop(0)

    monkeypatch.setattr(requests, "post", fake_post)
    sleeps = []
    client = OpenAICompatibleClient("https://llm.example.com/v1/chat/completions", "k", "m",
                                    retry_sleep=sleeps.append)

    completion = client.complete("sys", [{"role": "user", "content": "hi"}], json_mode=True)

    assert completion.text == '{"a": 1}'
    assert completion.total_tokens == 33
    assert sleeps == [5]
    assert posted[0]["response_format"] == {"type": "json_object"}
    assert posted[0]["messages"][0] == {"role": "system", "content": "sys"}


def test_openai_client_returns_empty_completion_on_failure(monkeypatch):
    def fake_post(*args, **kwargs):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(requests, "post", fake_post)
    client = OpenAICompatibleClient("https://llm.example.com", "k", "m", max_retries=2, retry_sleep=lambda _s: None)

    completion = client.complete("sys", [{"role": "user", "content": "hi"}])

    assert completion.text == ""
    assert completion.total_tokens == 0


def test_openai_client_from_config(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_BASE_URL", raising=False)
    assert OpenAICompatibleClient.from_config({"api_url": "u", "api_key": "YOUR_KEY", "model_id": "m"}) is None

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("OPENAI_BASE_URL", "https://proxy.example.com/v1/")
    client = OpenAICompatibleClient.from_config({"api_url": "u", "api_key": "YOUR_KEY", "model_id": "m"})
    assert client.api_key == "sk-test"
    assert client.api_url == "https://proxy.example.com/v1/chat/completions"
