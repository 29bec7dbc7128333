"""SessionUpdate: the delta an action handler returns to the controller.

Handlers never touch the ResearchSession directly.  They describe what
should change and the controller applies it in one place
(``apply_session_update``), which keeps the mutation order fixed:
ledger and histories first, then queue, then flags and counters, and the
diary reset last so a reset always wins over entries added in the same step.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from deepsearch.agents.research_session_state import (
    FailedAttempt,
    KnowledgeItem,
    ResearchSession,
    SearchResultMeta,
)
from deepsearch.agents.step_action_types_and_schema import StepAction


@dataclass
class SessionUpdate:
    diary_entries: List[str] = field(default_factory=list)
    knowledge: List[KnowledgeItem] = field(default_factory=list)
    failed_attempts: List[FailedAttempt] = field(default_factory=list)
    # Enqueued onto the gap queue followed by the root question
    new_gap_questions: List[str] = field(default_factory=list)
    new_questions: List[str] = field(default_factory=list)
    new_keywords: List[str] = field(default_factory=list)
    # Applied in order, so a later entry for the same URL wins
    url_metadata: List[SearchResultMeta] = field(default_factory=list)
    visited_urls: List[str] = field(default_factory=list)
    step_log_entries: List[Dict[str, Any]] = field(default_factory=list)
    disable_once: Set[str] = field(default_factory=set)
    disable_permanently: Set[str] = field(default_factory=set)
    increment_bad_attempts: bool = False
    clear_diary: bool = False
    reset_step: bool = False
    # Replacement for session.this_step (e.g. the answer with is_final set)
    this_step: Optional[StepAction] = None


_FLAG_BY_ACTION = {
    "answer": "allow_answer",
    "search": "allow_search",
    "visit": "allow_read",
    "reflect": "allow_reflect",
    "coding": "allow_coding",
}


def allow_flag_name(action: str) -> str:
    return _FLAG_BY_ACTION[action]


def apply_session_update(session: ResearchSession, update: SessionUpdate) -> None:
    """Apply ``update`` to ``session`` in place."""
    for meta in update.url_metadata:
        session.all_urls[meta.url] = meta
    for url in update.visited_urls:
        session.visited_urls.add(url)
    session.all_keywords.extend(update.new_keywords)
    session.all_questions.extend(update.new_questions)
    session.all_knowledge.extend(update.knowledge)
    session.bad_context.extend(update.failed_attempts)
    session.step_log.extend(update.step_log_entries)

    if update.new_gap_questions:
        session.gaps.enqueue_with_root(update.new_gap_questions)

    for action in update.disable_permanently:
        session.permanently_disabled.add(action)
        setattr(session, allow_flag_name(action), False)
    for action in update.disable_once:
        setattr(session, allow_flag_name(action), False)

    if update.increment_bad_attempts:
        session.bad_attempts += 1
    if update.this_step is not None:
        session.this_step = update.this_step

    session.diary_context.extend(update.diary_entries)
    if update.clear_diary:
        session.diary_context = []
    if update.reset_step:
        session.step = 0
