"""Scripted stand-ins for the LLM and network collaborators.

Every fake records its calls so tests can assert on what the controller
asked for, not only on what it produced.
"""

import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

BASE_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BASE_DIR))

from deepsearch.agents.answer_evaluator import CRITERION_DEFINITIVE, AnswerEvaluation, AnswerEvaluator
from deepsearch.agents.error_analyzer import ErrorAnalysis, ErrorAnalyzer
from deepsearch.agents.next_action_oracle import PURPOSE_AGENT, NextActionOracle
from deepsearch.agents.query_deduplicator import QueryDeduplicator, drop_exact_duplicates
from deepsearch.agents.query_rewriter import QueryRewriter
from deepsearch.agents.research_session_state import ResearchSession
from deepsearch.agents.step_action_types_and_schema import AnswerAction, SearchAction
from deepsearch.agents.step_loop_research_controller import StepLoopResearchController
from deepsearch.llm.client import LLMClient, LLMCompletion
from deepsearch.research_agent_errors import ContentFetchError
from deepsearch.search.abstract_content_fetcher_interface import AbstractContentFetcherInterface
from deepsearch.search.abstract_search_client_interface import AbstractSearchClientInterface


class ScriptedOracle(NextActionOracle):
    """Returns the scripted actions in order, then a plain answer forever."""

    def __init__(self, script=None, fallback_answer: str = "fallback answer"):
        self.script = list(script or [])
        self.fallback_answer = fallback_answer
        self.calls: List[Dict[str, Any]] = []

    def choose_action(self, system_prompt, schema, permitted, messages=None, purpose=PURPOSE_AGENT):
        self.calls.append({"prompt": system_prompt, "schema": schema, "permitted": list(permitted),
                           "messages": messages, "purpose": purpose})
        action = self.script.pop(0) if self.script else AnswerAction(think="done", answer=self.fallback_answer)
        if callable(action):
            action = action(list(permitted))
        assert action.action in permitted, f"{action.action} not in {permitted}"
        return action


class FakeEvaluator(AnswerEvaluator):
    def __init__(self, verdicts=None, default: bool = True, criteria=None):
        self.verdicts = list(verdicts or [])
        self.default = default
        self.criteria = list(criteria or [CRITERION_DEFINITIVE])
        self.question_calls: List[str] = []
        self.answer_calls: List[Dict[str, Any]] = []

    def evaluate_question(self, question):
        self.question_calls.append(question)
        return list(self.criteria)

    def evaluate_answer(self, question, action, criteria, visited_urls):
        self.answer_calls.append({"question": question, "answer": action.answer,
                                  "criteria": list(criteria), "visited_urls": list(visited_urls)})
        passed = self.verdicts.pop(0) if self.verdicts else self.default
        return AnswerEvaluation(passed=passed, reasoning="looks good" if passed else "not definitive")


class FakeErrorAnalyzer(ErrorAnalyzer):
    def __init__(self, questions=None):
        self.questions = list(questions or [])
        self.calls: List[List[str]] = []

    def analyze_steps(self, diary):
        self.calls.append(list(diary))
        return ErrorAnalysis(recap="recap", blame="blame", improvement="improve",
                             questions_to_answer=list(self.questions))


class IdentityRewriter(QueryRewriter):
    def __init__(self):
        self.calls: List[List[str]] = []

    def rewrite_query(self, action: SearchAction):
        self.calls.append(list(action.search_requests))
        return list(action.search_requests)


class ExactDeduplicator(QueryDeduplicator):
    def __init__(self):
        self.calls: List[Dict[str, List[str]]] = []

    def dedup_queries(self, candidates, existing):
        self.calls.append({"candidates": list(candidates), "existing": list(existing)})
        return drop_exact_duplicates(candidates, existing)


class FakeSearchClient(AbstractSearchClientInterface):
    """``responses`` maps query -> result list, an error string, or a full response dict."""

    service_name = "fake-search"

    def __init__(self, responses=None, tokens: int = 0):
        self.responses = dict(responses or {})
        self.tokens = tokens
        self.queries: List[str] = []

    def execute_search_query(self, query, meta=None):
        self.queries.append(query)
        response = self.responses.get(query)
        if response is None:
            slug = "-".join(query.lower().split()) or "empty"
            response = [{"title": f"About {query}", "url": f"https://example.com/{slug}",
                         "description": f"<b>{query}</b> snippet"}]
        if isinstance(response, str):
            return self._error_result(query, response)
        if isinstance(response, dict):
            return response
        return self._ok_result(query, response, self.tokens)


class FakeFetcher(AbstractContentFetcherInterface):
    service_name = "fake-reader"

    def __init__(self, pages=None, failing=(), tokens: int = 0):
        self.pages = dict(pages or {})
        self.failing = set(failing)
        self.tokens = tokens
        self.fetched: List[str] = []

    def fetch_page(self, url):
        self.fetched.append(url)
        if url in self.failing:
            raise ContentFetchError(url, "boom")
        content = self.pages.get(url, f"content of {url}")
        return {"url": url, "content": content, "tokens": self.tokens}


class ScriptedLLM(LLMClient):
    """Replies with the scripted texts in order; records every request."""

    provider_name = "scripted"

    def __init__(self, replies, tokens: int = 10):
        self.replies = list(replies)
        self.tokens = tokens
        self.requests: List[Dict[str, Any]] = []

    def complete(self, system_prompt, messages, temperature=0.0, max_tokens=1024, purpose="", json_mode=False):
        self.requests.append({"system_prompt": system_prompt, "messages": list(messages),
                              "temperature": temperature, "max_tokens": max_tokens,
                              "purpose": purpose, "json_mode": json_mode})
        text = self.replies.pop(0) if self.replies else ""
        return LLMCompletion(text=text, total_tokens=self.tokens)


@pytest.fixture
def fakes():
    """Fresh set of collaborators; tests replace whichever they need."""
    return {
        "oracle": ScriptedOracle(),
        "evaluator": FakeEvaluator(),
        "error_analyzer": FakeErrorAnalyzer(),
        "query_rewriter": IdentityRewriter(),
        "deduplicator": ExactDeduplicator(),
        "search_client": FakeSearchClient(),
        "content_fetcher": FakeFetcher(),
    }


@pytest.fixture
def make_controller(fakes):
    def _make(question: str = "who is the ceo of jina ai?", **overrides) -> StepLoopResearchController:
        collaborators = {k: overrides.pop(k) if k in overrides else v for k, v in fakes.items()}
        options = dict(step_sleep=0, sleep_fn=lambda _seconds: None)
        options.update(overrides)
        return StepLoopResearchController(question, **collaborators, **options)
    return _make


@pytest.fixture
def session():
    s = ResearchSession(root_question="who is the ceo of jina ai?")
    s.step = 2
    s.total_step = 2
    s.current_question = s.root_question
    return s
