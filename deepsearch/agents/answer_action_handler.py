"""Answer action: evaluate a candidate answer and decide whether the run ends.

Root question:
  - pass                          -> final answer, run ends
  - fail, retry ceiling reached   -> not final; only the rejection is counted
  - fail otherwise                -> record the failure, analyze the diary,
                                     queue the analyzer's sub-questions,
                                     wipe the diary and restart the step count
Sub-question:
  - pass -> becomes knowledge, keep going
  - fail -> noted in the diary, nothing else changes
"""

import logging
from dataclasses import replace
from typing import List

from deepsearch.agents.abstract_action_handler_interface import AbstractActionHandler
from deepsearch.agents.answer_evaluator import AnswerEvaluator
from deepsearch.agents.error_analyzer import ErrorAnalyzer
from deepsearch.agents.research_session_state import (
    KNOWLEDGE_QA,
    FailedAttempt,
    KnowledgeItem,
    ResearchSession,
)
from deepsearch.agents.session_update import SessionUpdate
from deepsearch.agents.step_action_types_and_schema import (
    ACTION_ANSWER,
    MAX_REFLECT_PER_STEP,
    AnswerAction,
    Reference,
    step_action_to_dict,
)
from deepsearch.utils.action_history_tracker import ActionTracker
from deepsearch.utils.text_cleaning_and_markdown_tools import choose_k
from deepsearch.utils.url_normalization_tools import try_normalize_url

logger = logging.getLogger(__name__)


class AnswerActionHandler(AbstractActionHandler):
    action_name = ACTION_ANSWER

    def __init__(self, evaluator: AnswerEvaluator, error_analyzer: ErrorAnalyzer,
                 action_tracker: ActionTracker, max_bad_attempts: int = 3):
        self.evaluator = evaluator
        self.error_analyzer = error_analyzer
        self.action_tracker = action_tracker
        self.max_bad_attempts = max_bad_attempts

    def _normalize_references(self, session: ResearchSession, references: List[Reference]) -> List[Reference]:
        normalized = []
        for ref in references:
            url = try_normalize_url(ref.url, fallback_to_raw=True) if ref.url else ""
            known = session.all_urls.get(url)
            title = known.title if known else ref.title
            normalized.append(Reference(exact_quote=ref.exact_quote, url=url, title=title or ""))
        return normalized

    def handle(self, session: ResearchSession, action: AnswerAction) -> SessionUpdate:
        update = SessionUpdate()

        if session.step == 1:
            # Confident on the very first step: trust it, skip evaluation
            update.this_step = replace(action, is_final=True)
            return update

        question = session.current_question
        action = replace(action, references=self._normalize_references(session, action.references))
        update.this_step = action
        update.step_log_entries.append(
            dict(step_action_to_dict(action), total_step=session.total_step, question=question))

        self.action_tracker.track_think("eval_first")
        evaluation = self.evaluator.evaluate_answer(
            question, action, session.evaluation_metrics.get(question, []), session.visited_urls.to_list())

        if question.strip() == session.root_question:
            if evaluation.passed:
                update.diary_entries.append(
                    f"At step {session.step}, you took **answer** action and finally found the answer "
                    f"to the original question:\n\n"
                    f"Original question:\n{question}\n\n"
                    f"Your answer:\n{action.answer}\n\n"
                    f"The evaluator thinks your answer is good because:\n{evaluation.reasoning}\n\n"
                    f"Your journey ends here. You have successfully answered the original question."
                )
                update.this_step = replace(action, is_final=True)
                logger.info("Root answer accepted at total_step=%d", session.total_step)
                return update

            if session.bad_attempts >= self.max_bad_attempts:
                # Count the rejection so the loop predicate gives up; nothing else changes
                update.this_step = replace(action, is_final=False)
                update.increment_bad_attempts = True
                logger.info("Root answer rejected at retry ceiling (bad_attempts=%d)", session.bad_attempts)
                return update

            failure_entry = (
                f"At step {session.step}, you took **answer** action but evaluator thinks it is not a good answer:\n\n"
                f"Original question:\n{question}\n\n"
                f"Your answer:\n{action.answer}\n\n"
                f"The evaluator thinks your answer is bad because:\n{evaluation.reasoning}\n"
            )
            analysis = self.error_analyzer.analyze_steps(session.diary_context + [failure_entry])

            update.diary_entries.append(failure_entry)
            update.knowledge.append(KnowledgeItem(
                question=question, answer=action.answer, references=list(action.references), type=KNOWLEDGE_QA))
            update.failed_attempts.append(FailedAttempt(
                question=question,
                answer=action.answer,
                evaluation=evaluation.reasoning,
                recap=analysis.recap,
                blame=analysis.blame,
                improvement=analysis.improvement,
            ))
            sub_questions = choose_k(analysis.questions_to_answer, MAX_REFLECT_PER_STEP)
            if sub_questions:
                update.new_gap_questions.extend(sub_questions)
                update.new_questions.extend(sub_questions)
            update.this_step = replace(action, is_final=False)
            update.increment_bad_attempts = True
            update.disable_once.add(ACTION_ANSWER)
            update.clear_diary = True
            update.reset_step = True
            logger.info("Root answer rejected (bad_attempts=%d -> %d), sub_questions=%s",
                        session.bad_attempts, session.bad_attempts + 1, sub_questions)
            return update

        if evaluation.passed:
            update.diary_entries.append(
                f"At step {session.step}, you took **answer** action. You found a good answer to the sub-question:\n\n"
                f"Sub-question:\n{question}\n\n"
                f"Your answer:\n{action.answer}\n\n"
                f"The evaluator thinks your answer is good because:\n{evaluation.reasoning}\n\n"
                f"Although you solved a sub-question, you still need to find the answer to the original question. "
                f"You need to keep going."
            )
            update.knowledge.append(KnowledgeItem(
                question=question, answer=action.answer, references=list(action.references), type=KNOWLEDGE_QA))
        else:
            update.diary_entries.append(
                f"At step {session.step}, you took **answer** action for the sub-question:\n{question}\n\n"
                f"Your answer:\n{action.answer}\n\n"
                f"The evaluator rejected it because:\n{evaluation.reasoning}\n\n"
                f"This sub-question stays open. Try a different angle on the original question."
            )
            logger.info("Sub-question answer rejected: %s", question[:80])
        return update
