"""Turn a finished session into the caller-facing ResearchResult."""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List

from deepsearch.agents.research_session_state import ResearchSession
from deepsearch.agents.step_action_types_and_schema import ACTION_ANSWER, AnswerAction
from deepsearch.research_agent_errors import ResultContractError
from deepsearch.utils.action_history_tracker import TrackerContext
from deepsearch.utils.text_cleaning_and_markdown_tools import build_md_from_answer


@dataclass
class ResearchResult:
    result: AnswerAction
    context: TrackerContext
    # Every URL the run knows about: read ones first, then discovered-only ones
    visited_urls: List[str] = field(default_factory=list)
    read_urls: List[str] = field(default_factory=list)
    step_log: List[Dict[str, Any]] = field(default_factory=list)


def assemble_research_result(session: ResearchSession, context: TrackerContext) -> ResearchResult:
    """Raises ResultContractError unless the session ended on a final answer."""
    final_step = session.this_step
    if final_step is None or final_step.action != ACTION_ANSWER:
        raise ResultContractError(
            f"final step is not an answer: {getattr(final_step, 'action', None)!r}")
    if not final_step.is_final:
        raise ResultContractError("attempted to assemble a result from a step that was not final")

    final_step = replace(final_step, md_answer=build_md_from_answer(final_step))
    read_urls = session.visited_urls.to_list()
    return ResearchResult(
        result=final_step,
        context=context,
        visited_urls=list(dict.fromkeys(read_urls + list(session.all_urls))),
        read_urls=read_urls,
        step_log=list(session.step_log),
    )
