"""Visit action: read unvisited pages concurrently and keep their content as knowledge.

Every URL that was attempted goes into the visited set whether or not it
could be read, so an unreachable page is never picked again in this run.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Tuple

from deepsearch.agents.abstract_action_handler_interface import AbstractActionHandler
from deepsearch.agents.research_session_state import KNOWLEDGE_URL, KnowledgeItem, ResearchSession
from deepsearch.agents.session_update import SessionUpdate
from deepsearch.agents.step_action_types_and_schema import (
    ACTION_VISIT,
    MAX_URLS_PER_STEP,
    VisitAction,
    step_action_to_dict,
)
from deepsearch.search.abstract_content_fetcher_interface import AbstractContentFetcherInterface
from deepsearch.utils.action_history_tracker import ActionTracker
from deepsearch.utils.text_cleaning_and_markdown_tools import choose_k, remove_all_line_breaks
from deepsearch.utils.token_usage_tracker import TokenTracker
from deepsearch.utils.url_normalization_tools import try_normalize_url

logger = logging.getLogger(__name__)

NOTHING_NEW_RESULT = ("You have visited all possible URLs and found no new information. "
                      "You must think out of the box or different angle!!!")
ALL_FAILED_RESULT = ("You have tried all possible URLs and found no new information. "
                     "You must think out of the box or different angle!!!")


class VisitActionHandler(AbstractActionHandler):
    action_name = ACTION_VISIT

    def __init__(self, fetcher: AbstractContentFetcherInterface, action_tracker: ActionTracker,
                 token_tracker: TokenTracker):
        self.fetcher = fetcher
        self.action_tracker = action_tracker
        self.token_tracker = token_tracker

    def _select_targets(self, session: ResearchSession, targets: List[str]) -> List[str]:
        selected: List[str] = []
        for raw in targets:
            url = try_normalize_url(raw)
            if not url or url in session.visited_urls or url in selected:
                continue
            selected.append(url)
        return choose_k(selected, MAX_URLS_PER_STEP)

    def _fetch_one(self, url: str) -> Tuple[str, Optional[Dict[str, Any]]]:
        try:
            page = self.fetcher.fetch_page(url)
        except Exception as exc:
            logger.error("Error reading URL %s: %s", url, exc)
            return url, None
        if not page or not page.get("content"):
            logger.error("Error reading URL %s: no content found", url)
            return url, None
        return url, page

    def handle(self, session: ResearchSession, action: VisitAction) -> SessionUpdate:
        update = SessionUpdate()
        urls = self._select_targets(session, action.url_targets)

        if not urls:
            update.diary_entries.append(
                f"At step {session.step}, you took the **visit** action. But then you realized you have already "
                f"visited these URLs and you already know very well about their contents.\n"
                f"You decided to think out of the box or cut from a completely different angle."
            )
            update.step_log_entries.append(
                dict(step_action_to_dict(action), total_step=session.total_step, result=NOTHING_NEW_RESULT))
            update.disable_once.add(ACTION_VISIT)
            return update

        self.action_tracker.track_think("read_for", urls=", ".join(urls))
        with ThreadPoolExecutor(max_workers=len(urls)) as executor:
            outcomes = list(executor.map(self._fetch_one, urls))

        update.visited_urls.extend(urls)
        succeeded: List[str] = []
        for url, page in outcomes:
            if page is None:
                continue
            if page.get("tokens"):
                self.token_tracker.track_usage("read", page["tokens"], self.fetcher.service_name)
            source_url = page.get("url") or url
            update.knowledge.append(KnowledgeItem(
                question=f"What is in {source_url}?",
                answer=remove_all_line_breaks(page["content"]),
                references=[source_url],
                type=KNOWLEDGE_URL,
            ))
            succeeded.append(url)

        if succeeded:
            update.diary_entries.append(
                f"At step {session.step}, you took the **visit** action and deep dive into the following URLs:\n"
                + "\n".join(succeeded)
                + "\nYou found some useful information on the web and add them to your knowledge for future reference."
            )
            update.step_log_entries.append(dict(
                step_action_to_dict(action), total_step=session.total_step,
                question=session.current_question, result=succeeded))
        else:
            update.diary_entries.append(
                f"At step {session.step}, you took the **visit** action and try to visit some URLs but failed "
                f"to read the content. You need to think out of the box or cut from a completely different angle."
            )
            update.step_log_entries.append(
                dict(step_action_to_dict(action), total_step=session.total_step, result=ALL_FAILED_RESULT))
            update.disable_permanently.add(ACTION_VISIT)
        logger.info("Visit: attempted=%d succeeded=%d", len(urls), len(succeeded))
        return update
