"""Step-loop controller: the research agent's state machine.

Why: Each step depends on everything the previous steps left behind, so the
loop is strictly sequential and this class is the only place the
ResearchSession is mutated.  One step is:

    1. narrow reflect (only when gaps are nearly drained) and search
       (only while the unread URL backlog is small); when that leaves no
       action at all, stop the loop
    2. bump step counters, log budget and gaps
    3. pop the next question from the gap queue (root when empty)
    4. fetch evaluation criteria for it once (memoized per question string)
    5. ask the oracle for one action under a schema built from the flags
    6. record the action
    7. reset the flags, except actions switched off for good and coding
    8. dispatch to the handler and apply the SessionUpdate it returns
    9. sleep ``step_sleep`` seconds

The loop runs while less than 90% of the token budget is spent, the retry
ceiling has not been passed and some action is still permitted.  If it ends
without a final answer, one forced-finalization step ("beast mode") asks for
an answer about the root question with every other action removed and
accepts whatever comes back.
"""

import logging
import time
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

from deepsearch.agents.answer_action_handler import AnswerActionHandler
from deepsearch.agents.answer_evaluator import AnswerEvaluator
from deepsearch.agents.coding_action_handler import CodingActionHandler
from deepsearch.agents.error_analyzer import ErrorAnalyzer
from deepsearch.agents.next_action_oracle import PURPOSE_AGENT, PURPOSE_AGENT_BEAST_MODE, NextActionOracle
from deepsearch.agents.next_action_prompt_builder import build_next_action_prompt
from deepsearch.agents.query_deduplicator import QueryDeduplicator
from deepsearch.agents.query_rewriter import QueryRewriter
from deepsearch.agents.reflect_action_handler import ReflectActionHandler
from deepsearch.agents.research_result_assembler import ResearchResult, assemble_research_result
from deepsearch.agents.research_session_state import ResearchSession
from deepsearch.agents.search_action_handler import SearchActionHandler
from deepsearch.agents.session_update import SessionUpdate, allow_flag_name, apply_session_update
from deepsearch.agents.step_action_types_and_schema import (
    ACTION_ANSWER,
    ACTION_CODING,
    ACTION_REFLECT,
    ACTION_SEARCH,
    ACTION_VISIT,
    build_agent_action_schema,
    permitted_actions_from_flags,
    step_action_to_dict,
)
from deepsearch.agents.visit_action_handler import VisitActionHandler
from deepsearch.search.abstract_content_fetcher_interface import AbstractContentFetcherInterface
from deepsearch.search.abstract_search_client_interface import AbstractSearchClientInterface
from deepsearch.utils.action_history_tracker import TrackerContext, create_tracker_context
from deepsearch.utils.per_run_context_snapshot_writer import ContextSnapshotWriter

logger = logging.getLogger(__name__)

REGULAR_BUDGET_RATIO = 0.9
MAX_UNVISITED_URLS_FOR_SEARCH = 50

# Flags reset to True after every oracle call (coding is never re-enabled)
_RESETTABLE_ACTIONS = (ACTION_ANSWER, ACTION_REFLECT, ACTION_VISIT, ACTION_SEARCH)

# Payload field that must be non-empty for a non-answer action to be dispatched
_DISPATCH_PAYLOAD_FIELD = {
    ACTION_REFLECT: "questions_to_answer",
    ACTION_SEARCH: "search_requests",
    ACTION_VISIT: "url_targets",
    ACTION_CODING: "coding_issue",
}


class StepLoopResearchController:
    """Runs one research session from root question to final answer."""

    def __init__(
        self,
        question: str,
        oracle: NextActionOracle,
        evaluator: AnswerEvaluator,
        error_analyzer: ErrorAnalyzer,
        query_rewriter: QueryRewriter,
        deduplicator: QueryDeduplicator,
        search_client: AbstractSearchClientInterface,
        content_fetcher: AbstractContentFetcherInterface,
        context: Optional[Any] = None,
        token_budget: int = 1_000_000,
        max_bad_attempts: int = 3,
        step_sleep: float = 1.0,
        allow_coding: bool = False,
        messages: Optional[List[Dict[str, str]]] = None,
        snapshot_writer: Optional[ContextSnapshotWriter] = None,
        sleep_fn: Optional[Callable[[float], None]] = None,
    ):
        question = (question or "").strip()
        self.context: TrackerContext = create_tracker_context(context)
        self.session = ResearchSession(root_question=question, token_budget=token_budget or 1_000_000,
                                       allow_coding=allow_coding)
        self.oracle = oracle
        self.evaluator = evaluator
        self.max_bad_attempts = max_bad_attempts
        self.step_sleep = step_sleep
        self.messages = list(messages or [{"role": "user", "content": question}])
        self.snapshot_writer = snapshot_writer
        self._sleep = sleep_fn or time.sleep
        self.last_prompt = ""
        self.last_schema: Dict[str, Any] = {}
        self.stalled = False

        action_tracker = self.context.action_tracker
        token_tracker = self.context.token_tracker
        self.handlers = {
            ACTION_ANSWER: AnswerActionHandler(evaluator, error_analyzer, action_tracker, max_bad_attempts),
            ACTION_REFLECT: ReflectActionHandler(deduplicator),
            ACTION_SEARCH: SearchActionHandler(deduplicator, query_rewriter, search_client, action_tracker,
                                               token_tracker, step_sleep=step_sleep, sleep_fn=self._sleep),
            ACTION_VISIT: VisitActionHandler(content_fetcher, action_tracker, token_tracker),
            ACTION_CODING: CodingActionHandler(),
        }

    # ── Predicates ──────────────────────────────────────────────────────

    @property
    def regular_budget(self) -> float:
        return self.session.token_budget * REGULAR_BUDGET_RATIO

    def should_continue(self) -> bool:
        return (self.context.token_tracker.get_total_usage() < self.regular_budget
                and self.session.bad_attempts <= self.max_bad_attempts
                and not self.stalled)

    def _needs_forced_finalization(self) -> bool:
        step = self.session.this_step
        return not (step.action == ACTION_ANSWER and step.is_final)

    # ── Step internals ──────────────────────────────────────────────────

    def _log_budget_and_gaps(self) -> None:
        used = self.context.token_tracker.get_total_usage()
        percentage = used / self.session.token_budget * 100 if self.session.token_budget else 0.0
        logger.info("Step %d / Budget used %.2f%%", self.session.total_step, percentage)
        logger.info("Gaps: %s", self.session.gaps.snapshot())

    def _ensure_evaluation_criteria(self, question: str) -> None:
        if question not in self.session.evaluation_metrics:
            self.session.evaluation_metrics[question] = self.evaluator.evaluate_question(question)

    def _ask_oracle(self, beast_mode: bool = False) -> None:
        s = self.session
        if beast_mode:
            flags = dict(allow_reflect=False, allow_read=False, allow_answer=True,
                         allow_search=False, allow_coding=False)
        else:
            flags = dict(allow_reflect=s.allow_reflect, allow_read=s.allow_read, allow_answer=s.allow_answer,
                         allow_search=s.allow_search, allow_coding=s.allow_coding)

        prompt = build_next_action_prompt(
            diary=s.diary_context,
            all_questions=s.all_questions,
            all_keywords=s.all_keywords,
            allow_reflect=flags["allow_reflect"] and not beast_mode,
            allow_answer=flags["allow_answer"] and not beast_mode,
            allow_read=flags["allow_read"],
            allow_search=flags["allow_search"],
            allow_coding=flags["allow_coding"],
            bad_context=s.bad_context,
            knowledge=s.all_knowledge,
            unvisited_urls=s.unvisited_urls(),
            beast_mode=beast_mode,
        )
        schema = build_agent_action_schema(**flags)
        permitted = permitted_actions_from_flags(**flags)
        self.last_prompt, self.last_schema = prompt, schema

        s.this_step = self.oracle.choose_action(
            prompt, schema, permitted, messages=self.messages,
            purpose=PURPOSE_AGENT_BEAST_MODE if beast_mode else PURPOSE_AGENT,
        )
        logger.info("%s <- [%s]", s.this_step.action, ", ".join(permitted))

    def _track_chosen_action(self) -> None:
        s = self.session
        self.context.action_tracker.track_action({
            "total_step": s.total_step,
            "action": s.this_step.action,
            "think": s.this_step.think,
            "this_step": step_action_to_dict(s.this_step),
            "gaps": s.gaps.snapshot(),
            "bad_attempts": s.bad_attempts,
        })

    def _reset_allowed_actions(self) -> None:
        for action in _RESETTABLE_ACTIONS:
            setattr(self.session, allow_flag_name(action), action not in self.session.permanently_disabled)

    def _dispatch(self) -> Optional[SessionUpdate]:
        action = self.session.this_step
        if action.action == ACTION_ANSWER:
            return self.handlers[ACTION_ANSWER].handle(self.session, action)
        payload_field = _DISPATCH_PAYLOAD_FIELD.get(action.action)
        if payload_field and getattr(action, payload_field, None):
            return self.handlers[action.action].handle(self.session, action)
        logger.warning("Action %s carried no %s; step skipped", action.action, payload_field)
        return None

    # ── Public API ──────────────────────────────────────────────────────

    def run_step(self) -> None:
        s = self.session
        s.allow_reflect = s.allow_reflect and len(s.gaps) <= 1
        s.allow_search = s.allow_search and len(s.unvisited_urls()) < MAX_UNVISITED_URLS_FOR_SEARCH
        if not permitted_actions_from_flags(allow_reflect=s.allow_reflect, allow_read=s.allow_read,
                                            allow_answer=s.allow_answer, allow_search=s.allow_search,
                                            allow_coding=s.allow_coding):
            logger.warning("No action permitted at total_step=%d (disabled for good: %s); leaving the loop",
                           s.total_step, sorted(s.permanently_disabled))
            self.stalled = True
            return

        s.step += 1
        s.total_step += 1
        self._log_budget_and_gaps()

        s.current_question = s.gaps.pop_next()
        self._ensure_evaluation_criteria(s.current_question)

        self._ask_oracle()
        self._track_chosen_action()
        self._reset_allowed_actions()

        update = self._dispatch()
        if update is not None:
            apply_session_update(s, update)

        if self.step_sleep:
            self._sleep(self.step_sleep)

    def run_forced_finalization(self) -> None:
        """Any answer is better than none: one answer-only step, accepted as final."""
        s = self.session
        s.step += 1
        s.total_step += 1
        logger.info("Enter beast mode: total_step=%d bad_attempts=%d", s.total_step, s.bad_attempts)

        self._ask_oracle(beast_mode=True)
        s.this_step = replace(s.this_step, is_final=True)
        s.step_log.append(dict(step_action_to_dict(s.this_step), total_step=s.total_step, beast_mode=True))
        self._track_chosen_action()

    def run(self) -> ResearchResult:
        while self.should_continue():
            self.run_step()
            if not self._needs_forced_finalization():
                break

        if self._needs_forced_finalization():
            self.run_forced_finalization()

        result = assemble_research_result(self.session, self.context)

        if self.snapshot_writer is not None:
            s = self.session
            self.snapshot_writer.write_snapshot(
                prompt=self.last_prompt,
                schema=self.last_schema,
                step_log=s.step_log,
                keywords=s.all_keywords,
                questions=s.all_questions,
                knowledge=s.all_knowledge,
                step=s.total_step,
            )
        return result
