"""Session state for one research run: ledger, gap queue, counters, flags.

One ResearchSession is created per ``get_response`` call and owned by the
step-loop controller, which is the only component that mutates it.  Handlers
read it and hand back a SessionUpdate.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Iterable, List, Optional, Set

from deepsearch.agents.step_action_types_and_schema import AnswerAction, StepAction
from deepsearch.utils.url_normalization_tools import get_unvisited_urls

KNOWLEDGE_QA = "qa"
KNOWLEDGE_SIDE_INFO = "side-info"
KNOWLEDGE_URL = "url"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class KnowledgeItem:
    question: str
    answer: str
    type: str
    references: Optional[List[Any]] = None
    updated: str = field(default_factory=utc_timestamp)


@dataclass(frozen=True)
class FailedAttempt:
    """A rejected root answer plus the error analysis that followed it."""

    question: str
    answer: str
    evaluation: str
    recap: str
    blame: str
    improvement: str


@dataclass(frozen=True)
class SearchResultMeta:
    title: str
    url: str
    description: str = ""


class GapQueue:
    """FIFO worklist of questions still to be worked on.

    Starts with the root question.  Whenever new sub-questions are found they
    are enqueued followed by the root question, so the root is always
    revisited after the sub-goals.
    """

    def __init__(self, root_question: str):
        self.root_question = root_question
        self._items: Deque[str] = deque([root_question])

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(list(self._items))

    def enqueue_with_root(self, questions: Iterable[str]) -> None:
        self._items.extend(questions)
        self._items.append(self.root_question)

    def pop_next(self) -> str:
        """Dequeue the head, or return the root question when empty."""
        if self._items:
            return self._items.popleft()
        return self.root_question

    def snapshot(self) -> List[str]:
        return list(self._items)


class OrderedUrlSet:
    """Insertion-ordered set of URLs (visited set keeps visit order)."""

    def __init__(self, urls: Iterable[str] = ()):
        self._urls: Dict[str, None] = dict.fromkeys(urls)

    def add(self, url: str) -> None:
        self._urls[url] = None

    def __contains__(self, url: object) -> bool:
        return url in self._urls

    def __iter__(self):
        return iter(list(self._urls))

    def __len__(self) -> int:
        return len(self._urls)

    def to_list(self) -> List[str]:
        return list(self._urls)


@dataclass
class ResearchSession:
    """Mutable per-run state.  Fields mirror what the oracle prompt needs."""

    root_question: str
    token_budget: int = 1_000_000
    step: int = 0
    total_step: int = 0
    bad_attempts: int = 0
    gaps: Optional[GapQueue] = None
    all_questions: List[str] = field(default_factory=list)
    all_keywords: List[str] = field(default_factory=list)
    all_knowledge: List[KnowledgeItem] = field(default_factory=list)
    bad_context: List[FailedAttempt] = field(default_factory=list)
    diary_context: List[str] = field(default_factory=list)
    all_urls: Dict[str, SearchResultMeta] = field(default_factory=dict)
    visited_urls: OrderedUrlSet = field(default_factory=OrderedUrlSet)
    evaluation_metrics: Dict[str, List[str]] = field(default_factory=dict)
    allow_answer: bool = True
    allow_search: bool = True
    allow_read: bool = True
    allow_reflect: bool = True
    allow_coding: bool = False
    permanently_disabled: Set[str] = field(default_factory=set)
    this_step: Optional[StepAction] = None
    step_log: List[Dict[str, Any]] = field(default_factory=list)
    current_question: str = ""

    def __post_init__(self):
        if self.gaps is None:
            self.gaps = GapQueue(self.root_question)
        if self.this_step is None:
            self.this_step = AnswerAction(think="", answer="")

    def unvisited_urls(self) -> List[SearchResultMeta]:
        return get_unvisited_urls(self.all_urls, self.visited_urls)
