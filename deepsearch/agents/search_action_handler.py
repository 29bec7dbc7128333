"""Search action: dedup requests, rewrite to keyword queries, query the provider.

Queries run one after another with ``step_sleep`` after each attempt so the
provider sees a steady request rate.  One failing or empty query is logged
and skipped; search is switched off for the rest of the run only when no
query survives dedup or every query fails.
"""

import logging
import time
from typing import Callable, List, Optional

from deepsearch.agents.abstract_action_handler_interface import AbstractActionHandler
from deepsearch.agents.query_deduplicator import QueryDeduplicator
from deepsearch.agents.query_rewriter import QueryRewriter
from deepsearch.agents.research_session_state import (
    KNOWLEDGE_SIDE_INFO,
    KnowledgeItem,
    ResearchSession,
    SearchResultMeta,
)
from deepsearch.agents.session_update import SessionUpdate
from deepsearch.agents.step_action_types_and_schema import (
    ACTION_SEARCH,
    MAX_QUERIES_PER_STEP,
    SearchAction,
    step_action_to_dict,
)
from deepsearch.search.abstract_search_client_interface import AbstractSearchClientInterface
from deepsearch.utils.action_history_tracker import ActionTracker
from deepsearch.utils.text_cleaning_and_markdown_tools import choose_k, remove_html_tags
from deepsearch.utils.token_usage_tracker import TokenTracker
from deepsearch.utils.url_normalization_tools import try_normalize_url

logger = logging.getLogger(__name__)

EXHAUSTED_RESULT = ("You have tried all possible queries and found no new information. "
                    "You must think out of the box or different angle!!!")


class SearchActionHandler(AbstractActionHandler):
    action_name = ACTION_SEARCH

    def __init__(
        self,
        deduplicator: QueryDeduplicator,
        rewriter: QueryRewriter,
        search_client: AbstractSearchClientInterface,
        action_tracker: ActionTracker,
        token_tracker: TokenTracker,
        step_sleep: float = 1.0,
        sleep_fn: Optional[Callable[[float], None]] = None,
    ):
        self.deduplicator = deduplicator
        self.rewriter = rewriter
        self.search_client = search_client
        self.action_tracker = action_tracker
        self.token_tracker = token_tracker
        self.step_sleep = step_sleep
        self._sleep = sleep_fn or time.sleep

    def _run_query(self, query: str) -> List[SearchResultMeta]:
        """One provider call; returns normalized results or [] on failure."""
        try:
            response = self.search_client.execute_search_query(query)
        except Exception as exc:
            logger.error("%s search failed for query %r: %s", self.search_client.service_name, query, exc)
            return []
        finally:
            if self.step_sleep:
                self._sleep(self.step_sleep)

        if response.get("tokens"):
            self.token_tracker.track_usage("search", response["tokens"], response.get("service"))
        if response.get("error"):
            logger.error("%s search failed for query %r: %s",
                         response.get("service", "search"), query, response["error"])
            return []

        results = []
        for item in response.get("results") or []:
            url = try_normalize_url(item.get("url", ""))
            if not url:
                continue
            results.append(SearchResultMeta(
                title=item.get("title", "") or "",
                url=url,
                description=item.get("description", "") or "",
            ))
        if not results:
            logger.warning("No results found for query %r", query)
        return results

    def handle(self, session: ResearchSession, action: SearchAction) -> SessionUpdate:
        update = SessionUpdate()
        question = session.current_question

        search_requests = choose_k(
            self.deduplicator.dedup_queries(action.search_requests, []), MAX_QUERIES_PER_STEP)
        keyword_queries: List[str] = []
        if search_requests:
            rewritten = self.rewriter.rewrite_query(
                SearchAction(think=action.think, search_requests=search_requests))
            if rewritten:
                keyword_queries = choose_k(
                    self.deduplicator.dedup_queries(rewritten, session.all_keywords), MAX_QUERIES_PER_STEP)

        any_result = False
        if keyword_queries:
            self.action_tracker.track_think("search_for", keywords=", ".join(keyword_queries))
            for query in keyword_queries:
                logger.info("Search query: %s", query)
                results = self._run_query(query)
                if not results:
                    continue
                any_result = True
                update.url_metadata.extend(results)
                update.new_keywords.append(query)
                update.knowledge.append(KnowledgeItem(
                    question=f'What do Internet say about "{query}"?',
                    answer=remove_html_tags("; ".join(r.description for r in results)),
                    type=KNOWLEDGE_SIDE_INFO,
                ))

        if any_result:
            update.diary_entries.append(
                f"At step {session.step}, you took the **search** action and look for external information "
                f"for the question: \"{question}\".\n"
                f"In particular, you tried to search for the following keywords: \"{', '.join(keyword_queries)}\".\n"
                f"You found quite some information and add them to your URL list and **visit** them later when needed."
            )
            update.step_log_entries.append(dict(
                step_action_to_dict(action), total_step=session.total_step, keywords=list(update.new_keywords)))
            return update

        update.diary_entries.append(
            f"At step {session.step}, you took the **search** action and look for external information "
            f"for the question: \"{question}\".\n"
            f"In particular, you tried to search for the following keywords: {', '.join(keyword_queries)}.\n"
            f"But then you realized you have already searched for these keywords before, "
            f"no new information is returned.\n"
            f"You decided to think out of the box or cut from a completely different angle."
        )
        update.step_log_entries.append(
            dict(step_action_to_dict(action), total_step=session.total_step, result=EXHAUSTED_RESULT))
        update.disable_permanently.add(ACTION_SEARCH)
        logger.info("Search: nothing new (queries=%s), search disabled for the rest of the run", keyword_queries)
        return update
