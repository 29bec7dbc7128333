#!/usr/bin/env python3
"""
OpenAI-compatible API server for the DeepSearch research agent.

Exposes ``POST /v1/chat/completions`` (plain JSON or ``text/event-stream``
when ``"stream": true``) and ``GET /health``.  While a streamed run is in
progress, each think message from the action tracker is sent as a content
chunk wrapped in ``<think>...</think>``; the markdown answer follows.
"""

import json
import logging
import math
import queue
import sys
import threading
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

from flask import Flask, Response, jsonify, request, stream_with_context

BASE_DIR = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(BASE_DIR))

from deepsearch.research_agent_errors import ResearchAgentError
from deepsearch.research_pipeline_builder import (
    ResearchPipeline,
    build_research_pipeline,
    get_response,
    load_config,
)
from deepsearch.utils.action_history_tracker import TrackerContext

logger = logging.getLogger(__name__)

_STREAM_DONE = object()


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four UTF-8 bytes."""
    return math.ceil(len((text or "").encode("utf-8")) / 4)


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise TypeError("boolean is not an integer option")
    number = int(value)
    if number < 0:
        raise ValueError(f"negative option: {number}")
    return number


class ResearchAPIServer:
    """Flask front end; the research pipeline is built on first use."""

    def __init__(self, config_path: Optional[str] = None, pipeline: Optional[ResearchPipeline] = None,
                 secret: Optional[str] = None, config: Optional[Dict[str, Any]] = None):
        if config is None:
            config = pipeline.config if pipeline is not None else load_config(config_path)
        self.config = config or {}
        self.config_path = config_path
        server_cfg = self.config.get("server", {}) or {}
        self.secret = secret if secret is not None else (server_cfg.get("secret") or "")
        self.model_id = (self.config.get("base_model", {}) or {}).get("model_id", "deepsearch")
        self._pipeline = pipeline
        self._pipeline_lock = threading.Lock()

        self.app = Flask(__name__)
        self._setup_routes()
        logger.info("API server ready: model=%s auth=%s", self.model_id, "on" if self.secret else "off")

    @property
    def pipeline(self) -> ResearchPipeline:
        with self._pipeline_lock:
            if self._pipeline is None:
                self._pipeline = build_research_pipeline(self.config_path)
            return self._pipeline

    # ── Request helpers ─────────────────────────────────────────────────

    def _is_authorized(self) -> bool:
        if not self.secret:
            return True
        auth_header = request.headers.get("Authorization", "")
        return auth_header.startswith("Bearer ") and auth_header[len("Bearer "):] == self.secret

    def _completion_envelope(self, completion_id: str, created: int, model: str, obj: str) -> Dict[str, Any]:
        return {
            "id": completion_id,
            "object": obj,
            "created": created,
            "model": model,
            "system_fingerprint": "fp_" + completion_id[-12:],
        }

    def _chunk(self, completion_id: str, created: int, model: str, delta: Dict[str, Any],
               finish_reason: Optional[str] = None) -> str:
        payload = self._completion_envelope(completion_id, created, model, "chat.completion.chunk")
        payload["choices"] = [{"index": 0, "delta": delta, "logprobs": None, "finish_reason": finish_reason}]
        return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"

    def _usage(self, messages: List[Dict[str, Any]], answer: str, research_tokens: int) -> Dict[str, int]:
        prompt_tokens = sum(estimate_tokens(str(m.get("content", ""))) for m in messages)
        completion_tokens = research_tokens or estimate_tokens(answer)
        return {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        }

    def _research(self, messages: List[Dict[str, Any]], options: Dict[str, Any],
                  context: Optional[TrackerContext] = None):
        return get_response(
            messages=messages,
            token_budget=options.get("budget_tokens"),
            max_bad_attempts=options.get("max_attempts"),
            existing_context=context,
            pipeline=self.pipeline,
        )

    # ── Streaming ───────────────────────────────────────────────────────

    def _generate_event_stream(self, messages: List[Dict[str, Any]], options: Dict[str, Any],
                               model: str) -> Generator[str, None, None]:
        """Run the research in a worker thread and relay think events as chunks."""
        completion_id = uuid.uuid4().hex
        created = int(time.time())
        events: "queue.Queue[Any]" = queue.Queue()
        context = TrackerContext()

        def on_action_event(event: str, payload: Dict[str, Any]) -> None:
            if event == "think" and payload.get("think"):
                events.put(("think", payload["think"]))

        context.action_tracker.add_listener(on_action_event)

        def worker() -> None:
            try:
                events.put(("result", self._research(messages, options, context)))
            except Exception as exc:
                logger.error("Streamed research failed: %s", exc, exc_info=True)
                events.put(("error", exc))
            finally:
                events.put(_STREAM_DONE)

        yield self._chunk(completion_id, created, model, {"role": "assistant"})
        yield self._chunk(completion_id, created, model, {"content": "<think>"})

        thread = threading.Thread(target=worker, name="research-stream", daemon=True)
        thread.start()

        result = None
        error: Optional[Exception] = None
        while True:
            item = events.get()
            if item is _STREAM_DONE:
                break
            kind, value = item
            if kind == "think":
                yield self._chunk(completion_id, created, model, {"content": f"{value}\n"})
            elif kind == "result":
                result = value
            else:
                error = value
        thread.join()
        context.action_tracker.remove_listener(on_action_event)

        yield self._chunk(completion_id, created, model, {"content": "</think>\n\n"})
        if result is not None:
            yield self._chunk(completion_id, created, model, {"content": result.result.md_answer}, "stop")
        else:
            yield self._chunk(completion_id, created, model,
                              {"content": f"Error: {error}"}, "stop")
        yield "data: [DONE]\n\n"

    # ── Routes ──────────────────────────────────────────────────────────

    def _setup_routes(self):
        """Setup Flask routes."""

        @self.app.after_request
        def after_request(response):
            response.headers.add("Access-Control-Allow-Origin", "*")
            response.headers.add("Access-Control-Allow-Headers", "Content-Type,Authorization,Accept")
            response.headers.add("Access-Control-Allow-Methods", "GET,POST,OPTIONS")
            return response

        @self.app.route("/health", methods=["GET"])
        def health_check():
            return jsonify({
                "status": "healthy",
                "service": "DeepSearch API",
                "model": self.model_id,
                "timestamp": datetime.now().isoformat(),
            })

        @self.app.route("/v1/chat/completions", methods=["POST"])
        def chat_completions():
            if not self._is_authorized():
                logger.warning("API Request - Unauthorized")
                return jsonify({"error": "Unauthorized"}), 401

            body = request.get_json(silent=True) or {}
            messages = body.get("messages")
            if not isinstance(messages, list) or not messages:
                return jsonify({"error": "Messages array is required and must not be empty"}), 400
            last = messages[-1] if isinstance(messages[-1], dict) else {}
            if last.get("role") != "user":
                return jsonify({"error": "Last message must be from user"}), 400
            if not str(last.get("content", "")).strip():
                return jsonify({"error": "Last message must not be empty"}), 400

            model = body.get("model") or self.model_id
            try:
                options = {name: _optional_int(body.get(name)) for name in ("budget_tokens", "max_attempts")}
            except (TypeError, ValueError):
                return jsonify({"error": "budget_tokens and max_attempts must be non-negative integers"}), 400
            logger.info("API Request - question=%s stream=%s", str(last.get("content"))[:100],
                        bool(body.get("stream")))

            if body.get("stream"):
                return Response(
                    stream_with_context(self._generate_event_stream(messages, options, model)),
                    mimetype="text/event-stream",
                    headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
                )

            try:
                result = self._research(messages, options)
            except ResearchAgentError as exc:
                logger.error("API Request - research failed: %s", exc)
                return jsonify({"error": type(exc).__name__, "message": str(exc)}), 500

            answer = result.result.md_answer
            completion_id = uuid.uuid4().hex
            payload = self._completion_envelope(completion_id, int(time.time()), model, "chat.completion")
            payload["choices"] = [{
                "index": 0,
                "message": {"role": "assistant", "content": answer},
                "logprobs": None,
                "finish_reason": "stop",
            }]
            payload["usage"] = self._usage(messages, answer, result.context.token_tracker.get_total_usage())
            payload["visitedURLs"] = result.visited_urls
            payload["readURLs"] = result.read_urls
            logger.info("API Response - Status: 200")
            return jsonify(payload)

    def run(self, host: str = "0.0.0.0", port: int = 3000):
        """Run Flask server."""
        logger.info("Starting Flask Server on %s:%s", host, port)
        self.app.run(host=host, port=port, threaded=True)


def create_app(pipeline: Optional[ResearchPipeline] = None, secret: Optional[str] = None,
               config_path: Optional[str] = None) -> Flask:
    return ResearchAPIServer(config_path=config_path, pipeline=pipeline, secret=secret).app


def main():
    """Main function."""
    from deepsearch.utils.logger_config import setup_logging

    server = ResearchAPIServer()
    logging_cfg = server.config.get("logging", {}) or {}
    setup_logging(logging_cfg.get("level", "INFO"), logging_cfg.get("log_dir"), "api.log")
    server_cfg = server.config.get("server", {}) or {}
    server.run(host=server_cfg.get("host", "0.0.0.0"), port=int(server_cfg.get("port", 3000)))


if __name__ == "__main__":
    main()
