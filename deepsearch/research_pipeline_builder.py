"""Standalone research pipeline, decoupled from Flask for reuse.

Why: The same agent must run from the CLI (scripts/run_example.py), the
OpenAI-compatible API server and the tests.  This module loads config.yaml
and wires LLM + search provider + page reader into a step-loop controller
without any web framework.

Clients (LLM, search, reader) are built once per pipeline.  Everything that
counts tokens (the structured output generator and the collaborators on top
of it) is built per run so each run bills its own TokenTracker.

Usage::

    from deepsearch.research_pipeline_builder import build_research_pipeline, get_response
    pipeline = build_research_pipeline()
    result   = get_response("who is the ceo of jina ai?", pipeline=pipeline)
"""

import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from deepsearch.agents.answer_evaluator import LLMAnswerEvaluator
from deepsearch.agents.error_analyzer import LLMErrorAnalyzer
from deepsearch.agents.next_action_oracle import LLMNextActionOracle
from deepsearch.agents.query_deduplicator import LLMQueryDeduplicator
from deepsearch.agents.query_rewriter import LLMQueryRewriter
from deepsearch.agents.research_result_assembler import ResearchResult
from deepsearch.agents.step_loop_research_controller import StepLoopResearchController
from deepsearch.llm.client import LLMClient, OpenAICompatibleClient
from deepsearch.llm.structured_output_generator import StructuredOutputGenerator
from deepsearch.search.abstract_content_fetcher_interface import AbstractContentFetcherInterface
from deepsearch.search.abstract_search_client_interface import AbstractSearchClientInterface
from deepsearch.search.search_provider_factory import build_content_fetcher, build_search_client
from deepsearch.utils.action_history_tracker import create_tracker_context
from deepsearch.utils.per_run_context_snapshot_writer import ContextSnapshotWriter

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_PATH = BASE_DIR / "configs" / "config.yaml"


class ResearchPipeline:
    """Holds the config and the long-lived clients needed to run research."""

    def __init__(self, config: Dict[str, Any], llm: LLMClient,
                 search: AbstractSearchClientInterface, reader: AbstractContentFetcherInterface):
        self.config = config or {}
        self.llm = llm
        self.search = search
        self.reader = reader

    @property
    def agent_config(self) -> Dict[str, Any]:
        return self.config.get("agent", {}) or {}

    def create_controller(
        self,
        question: str,
        token_budget: Optional[int] = None,
        max_bad_attempts: Optional[int] = None,
        existing_context: Optional[Any] = None,
        messages: Optional[List[Dict[str, str]]] = None,
    ) -> StepLoopResearchController:
        """Wire one run: per-run trackers, LLM collaborators, controller."""
        agent_cfg = self.agent_config
        context = create_tracker_context(existing_context)
        generator = StructuredOutputGenerator(
            self.llm,
            token_tracker=context.token_tracker,
            model_settings=self.config.get("models", {}) or {},
            max_retries=int(agent_cfg.get("structured_output_retries", 2)),
        )

        snapshot_writer = None
        debug_dir = agent_cfg.get("debug_dir")
        if debug_dir:
            debug_path = Path(debug_dir)
            if not debug_path.is_absolute():
                debug_path = BASE_DIR / debug_path
            snapshot_writer = ContextSnapshotWriter(debug_path)

        deduplicator = LLMQueryDeduplicator(generator)
        evaluator = LLMAnswerEvaluator(generator)
        return StepLoopResearchController(
            question,
            oracle=LLMNextActionOracle(generator),
            evaluator=evaluator,
            error_analyzer=LLMErrorAnalyzer(generator),
            query_rewriter=LLMQueryRewriter(generator),
            deduplicator=deduplicator,
            search_client=self.search,
            content_fetcher=self.reader,
            context=context,
            token_budget=token_budget or int(agent_cfg.get("token_budget", 1_000_000)),
            max_bad_attempts=(max_bad_attempts if max_bad_attempts is not None
                              else int(agent_cfg.get("max_bad_attempts", 3))),
            step_sleep=float(agent_cfg.get("step_sleep", 1.0)),
            allow_coding=bool(agent_cfg.get("enable_coding", False)),
            messages=messages,
            snapshot_writer=snapshot_writer,
        )


def build_research_pipeline(
    config_path: Optional[str] = None,
    llm_client: Optional[LLMClient] = None,
    search_client: Optional[AbstractSearchClientInterface] = None,
    content_fetcher: Optional[AbstractContentFetcherInterface] = None,
) -> ResearchPipeline:
    """Factory: load config, create clients.

    Override ``llm_client`` / ``search_client`` / ``content_fetcher`` for testing.
    """
    config = load_config(config_path)

    if llm_client is None:
        llm_client = OpenAICompatibleClient.from_config(config.get("base_model", {}) or {})
        if llm_client is None:
            raise RuntimeError("Cannot create LLM client: check base_model in config.yaml or OPENAI_API_KEY")

    if search_client is None:
        search_client = build_search_client(config)
    if content_fetcher is None:
        content_fetcher = build_content_fetcher(config)

    return ResearchPipeline(config=config, llm=llm_client, search=search_client, reader=content_fetcher)


def get_response(
    question: Optional[str] = None,
    token_budget: Optional[int] = None,
    max_bad_attempts: Optional[int] = None,
    existing_context: Optional[Any] = None,
    messages: Optional[List[Dict[str, str]]] = None,
    pipeline: Optional[ResearchPipeline] = None,
) -> ResearchResult:
    """Research ``question`` to a final answer.

    When ``messages`` is given, the last message's content is the question
    and the whole conversation is shown to the oracle.
    """
    if messages:
        question = str(messages[-1].get("content", ""))
    question = (question or "").strip()
    if not question:
        raise ValueError("question must not be empty")

    pipeline = pipeline or build_research_pipeline()
    controller = pipeline.create_controller(
        question,
        token_budget=token_budget,
        max_bad_attempts=max_bad_attempts,
        existing_context=existing_context,
        messages=messages,
    )

    start_time = time.time()
    logger.info("Research: question=%s", question[:100])
    result = controller.run()
    logger.info("Research: answer=%s steps=%d tokens=%d elapsed=%.1fs",
                result.result.answer[:60], controller.session.total_step,
                result.context.token_tracker.get_total_usage(), time.time() - start_time)
    return result


# ── Internal helpers ────────────────────────────────────────────────────

def load_config(path=None) -> Dict[str, Any]:
    file_path = Path(path or DEFAULT_CONFIG_PATH)
    if not file_path.is_absolute():
        file_path = BASE_DIR / file_path
    with open(file_path, "r", encoding="utf-8") as fh:
        config = yaml.safe_load(fh) or {}
    _apply_env_overrides(config)
    return config


def _apply_env_overrides(config: Dict[str, Any]) -> None:
    """Secrets from the environment win over the file."""
    api_keys = config.setdefault("api_keys", {}) or {}
    config["api_keys"] = api_keys
    for env_name, key in (("JINA_API_KEY", "jina_api_key"),
                          ("BRAVE_API_KEY", "brave_api_key"),
                          ("SERPER_API_KEY", "serper_api_key")):
        value = os.getenv(env_name)
        if value:
            api_keys[key] = value
    secret = os.getenv("DEEPSEARCH_SECRET")
    if secret:
        server_cfg = config.setdefault("server", {}) or {}
        config["server"] = server_cfg
        server_cfg["secret"] = secret
