"""Reflect action: turn the oracle's knowledge gaps into new sub-questions."""

import logging

from deepsearch.agents.abstract_action_handler_interface import AbstractActionHandler
from deepsearch.agents.query_deduplicator import QueryDeduplicator
from deepsearch.agents.research_session_state import ResearchSession
from deepsearch.agents.session_update import SessionUpdate
from deepsearch.agents.step_action_types_and_schema import (
    ACTION_REFLECT,
    MAX_REFLECT_PER_STEP,
    ReflectAction,
    step_action_to_dict,
)
from deepsearch.utils.text_cleaning_and_markdown_tools import choose_k

logger = logging.getLogger(__name__)

STUCK_RESULT = ("You have tried all possible questions and found no useful information. "
                "You must think out of the box or different angle!!!")


class ReflectActionHandler(AbstractActionHandler):
    action_name = ACTION_REFLECT

    def __init__(self, deduplicator: QueryDeduplicator):
        self.deduplicator = deduplicator

    def handle(self, session: ResearchSession, action: ReflectAction) -> SessionUpdate:
        update = SessionUpdate()
        proposed = list(action.questions_to_answer)
        new_questions = choose_k(
            self.deduplicator.dedup_queries(proposed, session.all_questions), MAX_REFLECT_PER_STEP)
        question = session.current_question

        if new_questions:
            bullet_list = "\n".join(f"- {q}" for q in new_questions)
            update.diary_entries.append(
                f"At step {session.step}, you took **reflect** and think about the knowledge gaps. "
                f"You found some sub-questions are important to the question: \"{question}\"\n"
                f"You realize you need to know the answers to the following sub-questions:\n{bullet_list}\n\n"
                f"You will now figure out the answers to these sub-questions and see if they can help you "
                f"find the answer to the original question."
            )
            update.new_gap_questions.extend(new_questions)
            update.new_questions.extend(new_questions)
            logged = dict(step_action_to_dict(action), questions_to_answer=new_questions)
            update.step_log_entries.append(dict(logged, total_step=session.total_step))
            logger.info("Reflect: new sub-questions=%s", new_questions)
            return update

        update.diary_entries.append(
            f"At step {session.step}, you took **reflect** and think about the knowledge gaps. "
            f"You tried to break down the question \"{question}\" into gap-questions like this: "
            f"{', '.join(proposed)}\n"
            f"But then you realized you have asked them before. You decided to think out of the box "
            f"or cut from a completely different angle."
        )
        update.step_log_entries.append(
            dict(step_action_to_dict(action), total_step=session.total_step, result=STUCK_RESULT))
        update.disable_permanently.add(ACTION_REFLECT)
        logger.info("Reflect: no new sub-questions, reflect disabled for the rest of the run")
        return update
